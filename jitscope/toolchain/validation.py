"""Validation gates: reject option combinations before anything is built.

WHY: Most option combinations that make no sense (PGO for precompiled
code, flow graphs without a JIT dump, a generic method with no concrete
instantiation) would otherwise only fail after a full build, with an
obscure error from the runtime. Checking them up front gives the user one
clear sentence instead.

HOW: validate() runs every gate in a fixed order and raises
ConfigValidationError on the first violation. When a locally built
runtime is in use it also locates the checked CoreCLR directory, the
runtime pack and the NativeAOT toolchain, returning them as RuntimeLayout
so the execute step never has to search the disk again.

RULES:
- Gates run before any process is spawned
- The first failing gate wins; messages are user-facing
- RuntimeLayout fields are None whenever the run does not need them
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from jitscope.config import host_os
from jitscope.core.symbols import CodeSymbolDescriptor, SymbolInfo
from jitscope.toolchain.errors import ConfigValidationError
from jitscope.toolchain.models import Compiler, Configuration
from jitscope.toolchain.runtime import (
    RuntimeLayout,
    build_script,
    find_checked_coreclr,
    find_native_aot_dir,
    find_runtime_pack,
)
from jitscope.toolchain.strategies import NativeAotCustom, NativeAotDefault, ToolchainStrategy

logger = logging.getLogger(__name__)


def validate(
    symbol: CodeSymbolDescriptor | None,
    symbol_info: SymbolInfo | None,
    config: Configuration,
    strategy: ToolchainStrategy,
) -> RuntimeLayout:
    """Run every validation gate for one run.

    WHY: One place decides whether a run may start, so the orchestrator's
    VALIDATING state is a single call.

    HOW: Symbol gates first, then option-combination gates, then the
    local runtime layout (which touches the disk).

    RULES:
    - Raises ConfigValidationError on the first violation
    - Returns an empty RuntimeLayout when no local runtime is used

    Args:
        symbol: The resolved symbol, or None if the caller could not resolve one.
        symbol_info: Target string derived from the symbol, or None.
        config: User options.
        strategy: The strategy chosen by select_strategy(config).

    Returns:
        RuntimeLayout with the directories this run needs.
    """
    if symbol is None or symbol_info is None:
        raise ConfigValidationError("Symbol is not recognized, put cursor on a function/class name.")

    if symbol.is_generic_method and not config.run_app_mode:
        raise ConfigValidationError(
            "Generic methods are only supported in 'Run' mode.\n"
            "Enable run_app_mode and call the method with concrete type arguments."
        )

    if config.run_app_mode and config.use_publish_for_reload:
        raise ConfigValidationError("'Run' mode is not compatible with 'dotnet publish' reload.")

    _check_flowgraph(symbol_info, config)
    _check_aot(config)

    if config.compiler == Compiler.CROSSGEN2 and not config.use_custom_runtime:
        raise ConfigValidationError("Crossgen2 mode requires a locally built dotnet/runtime (use_custom_runtime).")

    if not config.use_custom_runtime or isinstance(strategy, NativeAotDefault):
        return RuntimeLayout()

    return _resolve_layout(config, strategy)


def _check_flowgraph(symbol_info: SymbolInfo, config: Configuration) -> None:
    if not config.flowgraph_enable:
        return

    if not config.jit_dump:
        raise ConfigValidationError("Either disable flowgraphs or enable JitDump.")

    if symbol_info.method_name == "*":
        raise ConfigValidationError("Flowgraph for classes (all methods) is not supported yet.")

    dot_path = (config.graphviz_dot_path or "").strip()
    if not dot_path or not os.path.isfile(dot_path):
        raise ConfigValidationError(
            "Graphviz is not installed or the path to 'dot' is invalid: '{}'.\n"
            "Install Graphviz (https://graphviz.org/download/) and set graphviz_dot_path "
            "(or JITSCOPE_GRAPHVIZ_DOT).".format(dot_path)
        )


def _check_aot(config: Configuration) -> None:
    if not config.is_aot:
        return

    if config.use_pgo:
        raise ConfigValidationError("PGO has no effect on R2R'd/NativeAOT code.")

    if config.run_app_mode:
        raise ConfigValidationError("Run mode is not supported for crossgen/NativeAOT.")

    if config.use_tiered_jit:
        raise ConfigValidationError("TieredCompilation is not supported for crossgen/NativeAOT.")

    if config.flowgraph_enable:
        raise ConfigValidationError("Flowgraphs are not tested with crossgen/NativeAOT yet.")


def _resolve_layout(config: Configuration, strategy: ToolchainStrategy) -> RuntimeLayout:
    repo_root = Path(config.path_to_local_runtime).expanduser()
    arch = config.arch

    if isinstance(strategy, NativeAotCustom):
        aot_dir = find_native_aot_dir(repo_root, arch)
        if aot_dir is None:
            raise ConfigValidationError(
                "Path to a local dotnet/runtime repository is either not set or it's not built for {arch} arch yet "
                "(please clone it and build it in `Checked` mode, e.g.:\n\n"
                "{script} Clr.AllJits+clr.aot -a {arch} -c Checked\n\n"
                "Expected: {path}".format(
                    arch=arch,
                    script=build_script(),
                    path=repo_root / "artifacts" / "bin" / "coreclr" / "{}.{}.Checked".format(host_os(), arch),
                )
            )
        logger.debug("NativeAOT toolchain: %s", aot_dir)
        return RuntimeLayout(repo_root=repo_root, native_aot_dir=aot_dir)

    checked_dir = find_checked_coreclr(repo_root, arch)
    if checked_dir is None:
        raise ConfigValidationError(
            "Path to a local dotnet/runtime repository is either not set or it's not built for {arch} arch yet "
            "(please clone it and build it in `Checked` mode, e.g.:\n\n"
            "{script} Clr+Libs -c Release -rc Checked -a {arch}\n\n"
            "Expected: {path}".format(
                arch=arch,
                script=build_script(),
                path=repo_root / "artifacts" / "bin" / "coreclr" / "{}.{}.Checked".format(host_os(), arch),
            )
        )

    runtime_pack = None
    if not config.use_publish_for_reload:
        runtime_pack = find_runtime_pack(repo_root, arch)
        if runtime_pack is None:
            raise ConfigValidationError(
                "Please, build a runtime-pack in your local repo:\n\n"
                "Run '{script} Clr+Libs -c Release -rc Checked -a {arch}' in the repo root.\n"
                "Expected: {path}".format(
                    script=build_script(),
                    arch=arch,
                    path=repo_root / "artifacts" / "bin" / "runtime" / "*-{}-Release-{}".format(host_os(), arch),
                )
            )

    logger.debug("Local runtime: checked=%s runtime_pack=%s", checked_dir, runtime_pack)
    return RuntimeLayout(repo_root=repo_root, checked_dir=checked_dir, runtime_pack=runtime_pack)
