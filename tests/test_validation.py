"""Tests for the validation gates and local-runtime discovery.

WHY: Every gate replaces a confusing failure minutes into a build with
one sentence up front. These tests pin which combinations are rejected
and that valid ones still pass.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from jitscope.config import host_os
from jitscope.core.symbols import CodeSymbolDescriptor, SymbolKind, build_symbol_info
from jitscope.toolchain.errors import ConfigValidationError
from jitscope.toolchain.models import Compiler, Configuration
from jitscope.toolchain.runtime import (
    RuntimeLayout,
    core_run_path,
    find_checked_coreclr,
    find_native_aot_dir,
    find_runtime_pack,
)
from jitscope.toolchain.strategies import select_strategy
from jitscope.toolchain.validation import validate


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_runtime(root: Path, arch: str = "x64", checked: bool = True, pack: bool = True,
                  aot: bool = False, flavor: str = "Checked") -> Path:
    """Lay out the directories of a built dotnet/runtime clone."""
    coreclr = root / "artifacts" / "bin" / "coreclr" / "{}.{}.{}".format(host_os(), arch, flavor)
    if checked:
        coreclr.mkdir(parents=True)
    if aot:
        (coreclr / "aotsdk").mkdir(parents=True, exist_ok=True)
        (coreclr / "ilc").mkdir(parents=True, exist_ok=True)
    if pack:
        (root / "artifacts" / "bin" / "runtime" / "net8.0-{}-Release-{}".format(host_os(), arch)).mkdir(parents=True)
    return root


def _check(symbol, config):
    info = build_symbol_info(symbol) if symbol is not None else None
    return validate(symbol, info, config, select_strategy(config))


def _dot(tmp_path: Path) -> str:
    dot = tmp_path / "dot"
    dot.write_text("", encoding="utf-8")
    return str(dot)


# ---------------------------------------------------------------------------
# TestSymbolGates
# ---------------------------------------------------------------------------


class TestSymbolGates:

    def test_valid_method_passes(self, method_symbol):
        assert _check(method_symbol, Configuration()) == RuntimeLayout()

    def test_missing_symbol(self):
        with pytest.raises(ConfigValidationError, match="Symbol is not recognized"):
            _check(None, Configuration())

    def test_generic_method_requires_run_mode(self):
        symbol = CodeSymbolDescriptor(SymbolKind.METHOD, ("Program",), "MyApp", "Map", is_generic_method=True)
        with pytest.raises(ConfigValidationError, match="Generic methods"):
            _check(symbol, Configuration())
        _check(symbol, Configuration(run_app_mode=True))

    def test_run_mode_with_publish(self, method_symbol):
        with pytest.raises(ConfigValidationError, match="publish"):
            _check(method_symbol, Configuration(run_app_mode=True, use_publish_for_reload=True))


# ---------------------------------------------------------------------------
# TestFlowgraphGates
# ---------------------------------------------------------------------------


class TestFlowgraphGates:

    def test_requires_jit_dump(self, method_symbol, tmp_path):
        config = Configuration(flowgraph_enable=True, graphviz_dot_path=_dot(tmp_path))
        with pytest.raises(ConfigValidationError, match="JitDump"):
            _check(method_symbol, config)

    def test_requires_existing_dot(self, method_symbol, tmp_path):
        config = Configuration(flowgraph_enable=True, jit_dump=True, graphviz_dot_path=str(tmp_path / "nope"))
        with pytest.raises(ConfigValidationError, match="Graphviz"):
            _check(method_symbol, config)

    def test_whole_type_rejected(self, tmp_path):
        symbol = CodeSymbolDescriptor(SymbolKind.TYPE, ("Program",), "MyApp")
        config = Configuration(flowgraph_enable=True, jit_dump=True, graphviz_dot_path=_dot(tmp_path))
        with pytest.raises(ConfigValidationError, match="classes"):
            _check(symbol, config)

    def test_valid_flowgraph_config(self, method_symbol, tmp_path):
        config = Configuration(flowgraph_enable=True, jit_dump=True, graphviz_dot_path=_dot(tmp_path))
        _check(method_symbol, config)


# ---------------------------------------------------------------------------
# TestAotGates
# ---------------------------------------------------------------------------


class TestAotGates:

    @pytest.mark.parametrize("option, message", [
        ({"use_pgo": True}, "PGO"),
        ({"run_app_mode": True}, "Run mode"),
        ({"use_tiered_jit": True}, "TieredCompilation"),
    ])
    def test_incompatible_options(self, method_symbol, option, message):
        with pytest.raises(ConfigValidationError, match=message):
            _check(method_symbol, Configuration(compiler=Compiler.NATIVE_AOT, **option))

    def test_flowgraph_with_aot(self, method_symbol, tmp_path):
        config = Configuration(compiler=Compiler.NATIVE_AOT, flowgraph_enable=True, jit_dump=True,
                               graphviz_dot_path=_dot(tmp_path))
        with pytest.raises(ConfigValidationError, match="Flowgraphs"):
            _check(method_symbol, config)

    def test_crossgen2_requires_custom_runtime(self, method_symbol):
        with pytest.raises(ConfigValidationError, match="Crossgen2"):
            _check(method_symbol, Configuration(compiler=Compiler.CROSSGEN2))

    def test_default_native_aot_needs_no_runtime(self, method_symbol):
        assert _check(method_symbol, Configuration(compiler=Compiler.NATIVE_AOT)) == RuntimeLayout()


# ---------------------------------------------------------------------------
# TestRuntimeLayout
# ---------------------------------------------------------------------------


class TestRuntimeLayout:

    def test_checked_runtime_with_pack(self, method_symbol, tmp_path):
        root = _make_runtime(tmp_path)
        layout = _check(method_symbol, Configuration(use_custom_runtime=True, path_to_local_runtime=str(root)))
        assert layout.checked_dir.name == "{}.x64.Checked".format(host_os())
        assert layout.runtime_pack.name == "net8.0-{}-Release-x64".format(host_os())
        assert core_run_path(layout).parent == layout.checked_dir

    def test_debug_fallback(self, tmp_path):
        root = _make_runtime(tmp_path, flavor="Debug", pack=False)
        assert find_checked_coreclr(root, "x64").name.endswith(".Debug")

    def test_missing_checked_build(self, method_symbol, tmp_path):
        config = Configuration(use_custom_runtime=True, path_to_local_runtime=str(tmp_path), arch="arm64")
        with pytest.raises(ConfigValidationError, match="not built for arm64"):
            _check(method_symbol, config)

    def test_missing_runtime_pack(self, method_symbol, tmp_path):
        root = _make_runtime(tmp_path, pack=False)
        with pytest.raises(ConfigValidationError, match="runtime-pack"):
            _check(method_symbol, Configuration(use_custom_runtime=True, path_to_local_runtime=str(root)))

    def test_publish_does_not_need_runtime_pack(self, method_symbol, tmp_path):
        root = _make_runtime(tmp_path, pack=False)
        layout = _check(method_symbol, Configuration(use_custom_runtime=True, path_to_local_runtime=str(root),
                                                     use_publish_for_reload=True))
        assert layout.runtime_pack is None

    def test_newest_runtime_pack_wins(self, tmp_path):
        base = tmp_path / "artifacts" / "bin" / "runtime"
        for tfm in ("net8.0", "net9.0"):
            (base / "{}-{}-Release-x64".format(tfm, host_os())).mkdir(parents=True)
        assert find_runtime_pack(tmp_path, "x64").name.startswith("net9.0")

    def test_native_aot_custom_needs_ilc(self, method_symbol, tmp_path):
        root = _make_runtime(tmp_path, pack=False)
        config = Configuration(compiler=Compiler.NATIVE_AOT, use_custom_runtime=True, path_to_local_runtime=str(root))
        with pytest.raises(ConfigValidationError, match="Clr.AllJits"):
            _check(method_symbol, config)

    def test_native_aot_custom_layout(self, method_symbol, tmp_path):
        root = _make_runtime(tmp_path, pack=False, aot=True)
        config = Configuration(compiler=Compiler.NATIVE_AOT, use_custom_runtime=True, path_to_local_runtime=str(root))
        layout = _check(method_symbol, config)
        assert layout.native_aot_dir == find_native_aot_dir(root, "x64")
        assert layout.checked_dir is None
