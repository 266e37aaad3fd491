"""Toolchain strategies: how the listing for a symbol is produced.

WHY: Each combination of user options boils down to one way of getting
the code generator to print a listing: load the assembly in a helper app
and let the JIT compile the method, run the user's app, precompile with
crossgen2 or ilc, or publish with NativeAOT. Deciding that once, up
front, keeps the orchestrator free of nested option checks.

HOW: ToolchainStrategy is an ABC; every variant is a frozen dataclass
carrying only the data it needs. select_strategy() picks the variant
from a Configuration. build_jit_env() assembles the JIT knobs every
variant starts from, and each variant's plan() turns them into the
command line of the execute step.

RULES:
- Precedence: crossgen2 > NativeAOT (custom / default) > run-app > AltJit
  > JitDump > PrintInlinees > JitDisasm
- Env order: listing knob, AltJit, toggles, CORE_LIBRARIES, flow graph,
  run-app override, then user overrides (they win)
- Precompiling variants translate prefixed env vars into --codegenopt:
  options with lower-cased keys; their own process env is replaced

To add a strategy:
1. Subclass ToolchainStrategy as a frozen dataclass
2. Implement plan()
3. Register it in STRATEGIES and teach select_strategy() when to pick it
"""

from __future__ import annotations

import enum
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar
from xml.sax.saxutils import escape

from jitscope.config import (
    CODEGEN_OPTION_PREFIX,
    CORE_LIBRARIES_VAR,
    DOTNET_EXECUTABLE,
    JIT_ENV_PREFIX,
    LEGACY_ENV_PREFIX,
    LOADER_NAME,
    host_os,
    host_rid_prefix,
)
from jitscope.core.symbols import SymbolInfo
from jitscope.toolchain.errors import ConfigValidationError
from jitscope.toolchain.models import Compiler, Configuration
from jitscope.toolchain.project import ResolvedProject, target_framework_args
from jitscope.toolchain.runtime import RuntimeLayout, core_run_path, dotnet_script_path, ilc_path

# Speeds up crossgen2 itself; the generated code is unaffected.
CROSSGEN2_HOST_ENV = {
    "TieredPGO": "0",
    "ReadyToRun": "1",
    "TC_QuickJitForLoops": "1",
    "TC_CallCountingDelayMs": "0",
    "TieredCompilation": "1",
}

DOTNET_REPO_PLACEHOLDER = "%DOTNET_REPO%"


class ListingKind(str, enum.Enum):
    """Which JIT knob produces the listing; the value is the knob name."""

    DISASM = "JitDisasm"
    DUMP = "JitDump"
    INLINEES = "JitPrintInlinedMethods"


def listing_kind_for(config: Configuration) -> ListingKind:
    if config.jit_dump:
        return ListingKind.DUMP
    if config.print_inlinees:
        return ListingKind.INLINEES
    return ListingKind.DISASM


@dataclass(frozen=True)
class ExecutionInputs:
    """Everything plan() may read; assembled by the orchestrator."""

    symbol_info: SymbolInfo
    project: ResolvedProject
    config: Configuration
    layout: RuntimeLayout
    env_vars: dict[str, str]
    props_path: Path | None = None


@dataclass(frozen=True)
class ExecutionPlan:
    """The execute-step command: what to run, where, with which env."""

    executable: str
    args: tuple[str, ...]
    env_vars: dict[str, str]
    working_directory: str
    status: str


@dataclass(frozen=True)
class ToolchainStrategy(ABC):
    """Base of the strategy tagged union.

    RULES:
    - key is a stable kebab-case identifier (logs, RunResult.strategy)
    - listing decides the JIT knob and whether the output is prettified
    """

    key: ClassVar[str] = ""

    listing: ListingKind = ListingKind.DISASM

    @property
    def needs_build(self) -> bool:
        """False only for variants that build and execute in one command."""
        return True

    @property
    def uses_loader(self) -> bool:
        """True when the execute step runs the loader helper app."""
        return False

    @property
    def prettifies(self) -> bool:
        return self.listing == ListingKind.DISASM

    def extra_env(self, symbol_info: SymbolInfo, config: Configuration) -> dict[str, str]:
        """Variant-specific JIT knobs, applied before the user overrides."""
        return {}

    @abstractmethod
    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        """Build the execute-step command for this strategy.

        Args:
            inputs: Symbol, resolved project, options, runtime layout and
                    the assembled JIT env vars.

        Returns:
            ExecutionPlan ready to hand to the ProcessRunner.
        """


# ---------------------------------------------------------------------------
# JIT-based variants (the method is compiled at run time)
# ---------------------------------------------------------------------------


def _host_executable(inputs: ExecutionInputs) -> str:
    # A custom runtime without publish runs on CoreRun from the checked build
    config = inputs.config
    if config.use_custom_runtime and not config.use_publish_for_reload:
        return str(core_run_path(inputs.layout))
    return DOTNET_EXECUTABLE


def _loader_plan(inputs: ExecutionInputs) -> ExecutionPlan:
    info = inputs.symbol_info
    args = (
        LOADER_NAME + ".dll",
        inputs.project.assembly_name + ".dll",
        info.class_name,
        info.method_name,
        str(inputs.config.use_unloadable_context),
    )
    return ExecutionPlan(
        executable=_host_executable(inputs),
        args=args,
        env_vars=dict(inputs.env_vars),
        working_directory=str(inputs.project.output_dir),
        status="Executing {}...".format(LOADER_NAME),
    )


@dataclass(frozen=True)
class JitDisasm(ToolchainStrategy):
    """Plain DOTNET_JitDisasm listing through the loader app."""

    key: ClassVar[str] = "jit-disasm"

    @property
    def uses_loader(self) -> bool:
        return True

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        return _loader_plan(inputs)


@dataclass(frozen=True)
class JitDump(ToolchainStrategy):
    """Full DOTNET_JitDump (checked JIT only); output is shown raw."""

    key: ClassVar[str] = "jit-dump"

    listing: ListingKind = ListingKind.DUMP

    @property
    def uses_loader(self) -> bool:
        return True

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        return _loader_plan(inputs)


@dataclass(frozen=True)
class PrintInlinees(ToolchainStrategy):
    """DOTNET_JitPrintInlinedMethods inlining tree; output is shown raw."""

    key: ClassVar[str] = "print-inlinees"

    listing: ListingKind = ListingKind.INLINEES

    @property
    def uses_loader(self) -> bool:
        return True

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        return _loader_plan(inputs)


@dataclass(frozen=True)
class AltJit(ToolchainStrategy):
    """A non-default JIT binary from the local runtime, loaded as AltJit.

    RULES:
    - jit_name is the binary name, e.g. clrjit_universal_arm64_x64.dll
    - AltJit is restricted to the symbol's target so the rest of the
      process still runs on the stock JIT
    """

    key: ClassVar[str] = "alt-jit"

    jit_name: str = ""

    @property
    def uses_loader(self) -> bool:
        return True

    def extra_env(self, symbol_info: SymbolInfo, config: Configuration) -> dict[str, str]:
        return {
            JIT_ENV_PREFIX + "AltJitName": self.jit_name,
            JIT_ENV_PREFIX + "AltJit": symbol_info.target,
        }

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        return _loader_plan(inputs)


@dataclass(frozen=True)
class RunApp(ToolchainStrategy):
    """Run the user's app itself; the JIT prints whatever it compiles.

    RULES:
    - jit_disasm_override replaces the JitDisasm value (e.g. "Main" or "*")
    - lines the app prints before the first listing are skipped
    """

    key: ClassVar[str] = "run-app"

    jit_disasm_override: str | None = None

    def extra_env(self, symbol_info: SymbolInfo, config: Configuration) -> dict[str, str]:
        if self.jit_disasm_override:
            return {JIT_ENV_PREFIX + "JitDisasm": self.jit_disasm_override}
        return {}

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        return ExecutionPlan(
            executable=_host_executable(inputs),
            args=(inputs.project.assembly_name + ".dll",),
            env_vars=dict(inputs.env_vars),
            working_directory=str(inputs.project.output_dir),
            status="Running the app...",
        )


# ---------------------------------------------------------------------------
# Precompiling variants (crossgen2 / NativeAOT)
# ---------------------------------------------------------------------------


def env_to_codegen_options(env_vars: dict[str, str]) -> list[tuple[str, str]]:
    """Translate prefixed JIT env vars into (option, value) pairs.

    WHY: crossgen2 and ilc host the JIT in-process and do not read the
    environment; they take the same knobs as --codegenopt:<name>=<value>.

    RULES:
    - Only keys starting with the JIT prefix or COMPlus_ (case-insensitive)
      are translated; everything else is dropped
    - The option name is lower-cased

    Returns:
        [("--codegenopt:jitdisasm", "Program:Main"), ...] in env order.
    """
    prefixes = (JIT_ENV_PREFIX.lower(), LEGACY_ENV_PREFIX.lower())
    options: list[tuple[str, str]] = []
    for key, value in env_vars.items():
        lower = key.lower()
        for prefix in prefixes:
            if lower.startswith(prefix):
                options.append((CODEGEN_OPTION_PREFIX + lower[len(prefix):], value))
                break
    return options


def codegen_args(env_vars: dict[str, str]) -> list[str]:
    """--codegenopt: command-line arguments for env_vars."""
    return ["{}={}".format(option, value) for option, value in env_to_codegen_options(env_vars)]


def ilc_props_file(env_vars: dict[str, str]) -> str:
    """MSBuild .props content passing env_vars to ilc as <IlcArg> items.

    RULES:
    - Values are quoted with &quot; so ilc receives them as one token
    - DefineConstants gains JITSCOPE, as in every jitscope build
    """
    items = "".join(
        '\t\t<IlcArg Include="{}={}" />\n'.format(
            escape(option, {'"': "&quot;"}),
            "&quot;" + escape(value, {'"': "&quot;"}) + "&quot;",
        )
        for option, value in env_to_codegen_options(env_vars)
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<Project>\n"
        "\t<PropertyGroup>\n"
        "\t\t<DefineConstants>$(DefineConstants);JITSCOPE</DefineConstants>\n"
        "\t</PropertyGroup>\n"
        "\t<ItemGroup>\n"
        "{}"
        "\t</ItemGroup>\n"
        "</Project>\n"
    ).format(items)


def _split_user_args(text: str) -> list[str]:
    """Split user-typed crossgen2/ilc arguments like a shell would.

    Raises:
        ConfigValidationError: unbalanced quotes or a dangling escape
    """
    try:
        return shlex.split(text.replace("\r\n", " ").replace("\n", " "), posix=host_os() != "windows")
    except ValueError as exc:
        raise ConfigValidationError("Malformed crossgen2/ilc arguments: {}".format(exc)) from exc


@dataclass(frozen=True)
class Crossgen2(ToolchainStrategy):
    """ReadyToRun precompilation with the local runtime's crossgen2.

    RULES:
    - Requires a custom runtime (checked CoreCLR, plus a runtime pack
      unless publishing)
    - --targetos/--targetarch are added unless extra_args already has them
    """

    key: ClassVar[str] = "crossgen2"

    extra_args: tuple[str, ...] = field(default=())

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        layout = inputs.layout
        config = inputs.config
        if layout.checked_dir is None:
            raise ValueError("crossgen2 requires a checked CoreCLR directory")

        args = [str(layout.checked_dir / "crossgen2" / "crossgen2.dll"), "--out", "aot"]
        args += codegen_args(inputs.env_vars)
        args += list(self.extra_args)
        if "--targetos" not in self.extra_args:
            args += ["--targetos", host_os()]
        if "--targetarch" not in self.extra_args:
            args += ["--targetarch", config.arch]
        args.append(inputs.project.assembly_name + ".dll")

        if config.use_publish_for_reload:
            args += ["-r", str(inputs.project.output_dir / "*.dll")]
        else:
            # The runtime pack has no corelib; use the checked one
            if layout.runtime_pack is None:
                raise ValueError("crossgen2 requires a runtime pack when not publishing")
            args += ["-r", str(layout.runtime_pack / "*.dll")]
            args += ["-r", str(layout.checked_dir / "System.Private.CoreLib.dll")]

        return ExecutionPlan(
            executable=str(dotnet_script_path(layout)),
            args=tuple(args),
            env_vars={JIT_ENV_PREFIX + key: value for key, value in CROSSGEN2_HOST_ENV.items()},
            working_directory=str(inputs.project.output_dir),
            status="Executing crossgen2...",
        )


@dataclass(frozen=True)
class NativeAotCustom(ToolchainStrategy):
    """NativeAOT compilation with the local runtime's ilc.

    RULES:
    - ilc_args may use %DOTNET_REPO% for the local runtime root
    - The ilc process gets no extra env vars
    """

    key: ClassVar[str] = "nativeaot-custom"

    ilc_args: str = ""

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        layout = inputs.layout
        repo = str(layout.repo_root or "").rstrip("\\/")

        args = [inputs.project.assembly_name + ".dll"]
        args += codegen_args(inputs.env_vars)
        if self.ilc_args.strip():
            args += _split_user_args(self.ilc_args.replace(DOTNET_REPO_PLACEHOLDER, repo))
        if inputs.config.use_publish_for_reload:
            args += ["-r", str(inputs.project.output_dir / "*.dll")]

        return ExecutionPlan(
            executable=str(ilc_path(layout)),
            args=tuple(args),
            env_vars={},
            working_directory=str(inputs.project.output_dir),
            status=(
                "Executing ILC... Make sure your method is not inlined and is reachable "
                "as NativeAOT runs IL Link. It might take some time..."
            ),
        )


@dataclass(frozen=True)
class NativeAotDefault(ToolchainStrategy):
    """NativeAOT through the stock SDK: one fused 'dotnet publish'.

    RULES:
    - No separate build step; JIT knobs reach ilc as <IlcArg> items in a
      temporary .props file passed via CustomBeforeDirectoryBuildProps
    - The JIT writes its listing to the file named by JitStdOutFile
    """

    key: ClassVar[str] = "nativeaot-default"

    @property
    def needs_build(self) -> bool:
        return False

    def plan(self, inputs: ExecutionInputs) -> ExecutionPlan:
        if inputs.props_path is None:
            raise ValueError("NativeAOT publish requires a props file")

        args = ["publish"]
        args += target_framework_args(inputs.project, inputs.config)
        args += [
            "-r", "{}-{}".format(host_rid_prefix(), inputs.config.arch),
            "-c", "Release",
            "/p:PublishAot=true",
            "/p:CustomBeforeDirectoryBuildProps={}".format(inputs.props_path),
            "/p:WarningLevel=0",
            "/p:TreatWarningsAsErrors=false",
            "-v:q",
        ]
        return ExecutionPlan(
            executable=DOTNET_EXECUTABLE,
            args=tuple(args),
            env_vars={},
            working_directory=str(inputs.project.project_dir),
            status="Compiling for NativeAOT (.NET 8.0+ is required)...",
        )


STRATEGIES: dict[str, type[ToolchainStrategy]] = {
    JitDisasm.key: JitDisasm,
    JitDump.key: JitDump,
    PrintInlinees.key: PrintInlinees,
    AltJit.key: AltJit,
    Crossgen2.key: Crossgen2,
    NativeAotCustom.key: NativeAotCustom,
    NativeAotDefault.key: NativeAotDefault,
    RunApp.key: RunApp,
}


def select_strategy(config: Configuration) -> ToolchainStrategy:
    """Pick the strategy for a configuration (see module RULES for precedence).

    Raises:
        ConfigValidationError: crossgen2/ilc arguments that cannot be split
    """
    listing = listing_kind_for(config)

    if config.compiler == Compiler.CROSSGEN2:
        return Crossgen2(listing=listing, extra_args=tuple(_split_user_args(config.crossgen2_args)))

    if config.is_default_native_aot:
        return NativeAotDefault(listing=listing)

    if config.compiler == Compiler.NATIVE_AOT:
        # ilc args are split at plan time; reject bad quoting now.
        _split_user_args(config.ilc_args)
        return NativeAotCustom(listing=listing, ilc_args=config.ilc_args)

    if config.run_app_mode:
        override = (config.overridden_jit_disasm or "").strip() or None
        return RunApp(listing=listing, jit_disasm_override=override)

    if config.uses_alt_jit:
        return AltJit(listing=listing, jit_name=config.custom_jit.strip())

    if listing == ListingKind.DUMP:
        return JitDump()
    if listing == ListingKind.INLINEES:
        return PrintInlinees()
    return JitDisasm()


def build_jit_env(
    strategy: ToolchainStrategy,
    symbol_info: SymbolInfo,
    config: Configuration,
    layout: RuntimeLayout,
    flowgraph_file: str | None = None,
) -> dict[str, str]:
    """Assemble the JIT knobs for the execute step.

    WHY: Every strategy starts from the same knobs; precompiling variants
    later translate them into --codegenopt: options.

    RULES:
    - Insertion order follows the module RULES; later keys win
    - CORE_LIBRARIES (unprefixed) only for a custom runtime without publish
    - flowgraph_file enables JitDumpFg* for the symbol's target

    Args:
        strategy: The selected strategy.
        symbol_info: Selector for the symbol.
        config: User options.
        layout: Local runtime layout (runtime_pack feeds CORE_LIBRARIES).
        flowgraph_file: Where the JIT writes the flow-graph dump, or None.

    Returns:
        Ordered dict of env var name → value.
    """
    p = JIT_ENV_PREFIX
    env: dict[str, str] = {p + strategy.listing.value: symbol_info.target}
    strategy_env = strategy.extra_env(symbol_info, config)

    alt_jit_keys = (p + "AltJitName", p + "AltJit")
    for key in alt_jit_keys:
        if key in strategy_env:
            env[key] = strategy_env[key]

    env[p + "TieredPGO"] = "1" if config.use_pgo else "0"
    env[p + "JitDisasmDiffable"] = "1" if config.diffable else "0"

    if config.use_custom_runtime and not config.use_publish_for_reload and layout.runtime_pack is not None:
        env[CORE_LIBRARIES_VAR] = str(layout.runtime_pack)

    env[p + "TieredCompilation"] = "1" if config.use_tiered_jit else "0"

    if flowgraph_file:
        env[p + "JitDumpFg"] = symbol_info.target
        env[p + "JitDumpFgDot"] = "1"
        env[p + "JitDumpFgPhase"] = "*"
        env[p + "JitDumpFgFile"] = flowgraph_file

    for key, value in strategy_env.items():
        if key not in alt_jit_keys:
            env[key] = value

    env.update(config.env_overrides)
    return env
