"""Shared test fixtures for the jitscope test suite.

WHY: The prettifier, splitter, orchestrator and CLI tests all need the
same realistic JIT output. Keeping one copy here means a format change
is updated in one place.

HOW: Module-level constants hold a two-method JitDisasm listing, the
condensed form it must produce, and a flow-graph dump with a tier0 and a
tier1 compilation. Fixtures hand out copies and small builders.

RULES:
- Sample text mirrors what the JIT actually prints (labels, trailers)
- Fixtures never touch the network or spawn dotnet
"""

from __future__ import annotations

from pathlib import Path

import pytest

from jitscope.core.symbols import CodeSymbolDescriptor, SymbolKind
from jitscope.toolchain.models import Configuration, ProjectConfiguration, ProjectContext


# ---------------------------------------------------------------------------
# JitDisasm listing
# ---------------------------------------------------------------------------

SAMPLE_LISTING = """\
; Assembly listing for method Program:Foo():int
; Emitting BLENDED_CODE for X64 with AVX
; optimized code

G_M1_IG01:
       sub      rsp, 40
G_M1_IG02:
       mov      eax, 42
       add      rsp, 40
       ret

; Total bytes of code 76, prolog size 5, PerfScore 2.50

; Assembly listing for method Program:Bar()
; optimized code
G_M2_IG01:
       ret
; Total bytes of code 12
"""

SAMPLE_PRETTIFIED = (
    "; Method Program:Foo():int\n"
    "G_M1_IG01:\n"
    "       sub      rsp, 40\n"
    "\n"
    "G_M1_IG02:\n"
    "       mov      eax, 42\n"
    "       add      rsp, 40\n"
    "       ret\n"
    "; Total bytes of code: 76\n"
    "\n"
    "; Method Program:Bar()\n"
    "G_M2_IG01:\n"
    "       ret\n"
    "; Total bytes of code: 12\n"
    "\n"
)


# ---------------------------------------------------------------------------
# JitDumpFg flow-graph dump
# ---------------------------------------------------------------------------


def _graph(phase: str) -> str:
    return (
        "digraph FlowGraph {\n"
        '    graph [label = "Flowgraph for Program:Foo()\\nafter ' + phase + '"];\n'
        "    BB01 -> BB02;\n"
        "}\n"
    )


SAMPLE_FLOWGRAPH_DUMP = "".join([
    _graph("Pre-import"),
    _graph("Importation"),
    _graph("Morph - Global"),
    _graph("Pre-import"),
    _graph("Optimize layout"),
])


@pytest.fixture
def sample_listing() -> str:
    return SAMPLE_LISTING


@pytest.fixture
def sample_flowgraph_dump() -> str:
    return SAMPLE_FLOWGRAPH_DUMP


# ---------------------------------------------------------------------------
# Toolchain inputs
# ---------------------------------------------------------------------------


@pytest.fixture
def method_symbol() -> CodeSymbolDescriptor:
    """Program.Foo in namespace MyApp."""
    return CodeSymbolDescriptor(
        kind=SymbolKind.METHOD,
        type_path=("Program",),
        namespace="MyApp",
        name="Foo",
    )


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A directory holding a minimal SDK-style MyApp.csproj."""
    (tmp_path / "MyApp.csproj").write_text(
        '<Project Sdk="Microsoft.NET.Sdk">\n'
        "  <PropertyGroup>\n"
        "    <OutputType>Exe</OutputType>\n"
        "    <TargetFramework>net8.0</TargetFramework>\n"
        "  </PropertyGroup>\n"
        "</Project>\n",
        encoding="utf-8",
    )
    return tmp_path


@pytest.fixture
def project(project_dir: Path) -> ProjectContext:
    return ProjectContext(
        project_path=str(project_dir / "MyApp.csproj"),
        configurations=[
            ProjectConfiguration(configuration="Debug", target_framework="net8.0", output_path="bin/Debug/net8.0"),
            ProjectConfiguration(configuration="Release", target_framework="net8.0", output_path="bin/Release/net8.0"),
        ],
    )


@pytest.fixture
def make_config():
    """Build a Configuration with keyword overrides."""

    def _make(**kwargs) -> Configuration:
        return Configuration(**kwargs)

    return _make


@pytest.fixture
def sample_prettified() -> str:
    return SAMPLE_PRETTIFIED
