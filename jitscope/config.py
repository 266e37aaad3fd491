"""Configuration constants, toolchain defaults, and .env loading.

WHY: The JIT output markers and the env-var prefix belong to the .NET
toolchain, not to jitscope, and they drift between runtime releases.
Keeping them next to the machine-dependent defaults means a toolchain
change is a one-file edit.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level strings, sets, and ints. Defaults that depend on the
machine (dotnet executable, Graphviz dot, local runtime repo) can be
overridden via environment variables.

RULES:
- JIT_ENV_PREFIX is prepended to every JIT knob name (JitDisasm, JitDump, ...)
- SUPPORTED_ARCHES is the allow-list for Configuration.arch
- All defaults can be overridden via JITSCOPE_* environment variables
- Nothing here performs I/O beyond reading the environment
"""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv

from jitscope import __version__

# Load .env from the project root (where the tool is run from)
load_dotenv()

# ---------------------------------------------------------------------------
# Toolchain wire contract
# ---------------------------------------------------------------------------

JIT_ENV_PREFIX = os.getenv("JITSCOPE_ENV_PREFIX", "DOTNET_")
"""Prefix the runtime uses to recognize JIT configuration knobs."""

LEGACY_ENV_PREFIX = "COMPlus_"
"""Older spelling of the same prefix, still honoured by the runtime."""

CODEGEN_OPTION_PREFIX = "--codegenopt:"
"""crossgen2/ilc command-line spelling of a JIT knob."""

CORE_LIBRARIES_VAR = "CORE_LIBRARIES"

DEFAULT_JIT = "clrjit.dll"
"""Name of the stock JIT; selecting it means 'no alternate JIT'."""

SUPPORTED_ARCHES: set[str] = {"x64", "x86", "arm64", "arm"}

# ---------------------------------------------------------------------------
# Output format markers
# ---------------------------------------------------------------------------

METHOD_START_MARKER = "; Assembly listing for method "
TOTAL_BYTES_MARKER = "; Total bytes of code "
JIT_DUMP_PHASE_PREFIX = "*************** Starting PHASE "
FLOWGRAPH_SEPARATOR = "digraph FlowGraph {"
COMPILE_ERROR_MARKER = ": error"
LOADER_NOTE_PREFIX = "; jitscope: "
"""Prefix of the loader app's own notes (skipped or failed members)."""

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DOTNET_EXECUTABLE = os.getenv("JITSCOPE_DOTNET", "dotnet")
DEFAULT_ARCH = os.getenv("JITSCOPE_ARCH", "x64")
DEFAULT_GRAPHVIZ_DOT = os.getenv("JITSCOPE_GRAPHVIZ_DOT", "")
DEFAULT_LOCAL_RUNTIME = os.getenv("JITSCOPE_LOCAL_RUNTIME", "")
FALLBACK_TARGET_FRAMEWORK = "net7.0"

OUTPUT_FOLDER_NAME = "jitscope-v" + __version__
"""Per-version folder name so a new release never reuses stale loader binaries."""

LOADER_NAME = "JitscopeLoader"

# ---------------------------------------------------------------------------
# Host platform
# ---------------------------------------------------------------------------


def host_os() -> str:
    """Return the runtime repo's name for the current OS: windows, osx, or linux."""
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "osx"
    return "linux"


def host_rid_prefix() -> str:
    """Return the runtime-identifier prefix (win, osx, linux) for `-r <rid>-<arch>`."""
    os_name = host_os()
    return "win" if os_name == "windows" else os_name


def executable_name(name: str) -> str:
    """Append .exe on Windows."""
    return name + ".exe" if host_os() == "windows" else name


def max_parallel_renders() -> int:
    """Cap on concurrent Graphviz renders.

    WHY: dot eats exactly one core per render. Rendering every phase of a
    large dump at once saturates the machine.

    HOW: Half the logical cores, never fewer than two.

    RULES:
    - max(2, cpu_count // 2)
    - cpu_count() returning None counts as 2 cores
    """
    return max(2, (os.cpu_count() or 2) // 2)
