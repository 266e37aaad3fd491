"""Toolchain orchestrator: validate → resolve → build → execute → postprocess.

WHY: Getting a listing for one method takes several external tools run
in the right order, with the right arguments and environment, and with a
clear message whenever one of them fails. This module owns that sequence
so callers (CLI, Session) only hand over a symbol, a project and options.

HOW: ToolchainOrchestrator.run() creates a fresh OrchestrationContext and
walks it through the RunState machine. Each step either advances the
state or raises a typed error; the outer handler converts that error into
a RunResult with one user-facing message.

RULES:
- States: VALIDATING → RESOLVING_PROJECT_CONFIG → BUILDING (optional)
  → EXECUTING → POSTPROCESSING → DONE | FAILED | CANCELLED
- Cancellation is checked between states and inside every process run
- ConfigValidationError / ToolInvocationError → FAILED with the message
- RunCancelled → CANCELLED, partial output discarded
- Anything else → FAILED with the traceback, logged via logger.exception
- Temp files are deleted when the run ends, except NativeAOT publish
  diagnostics of a failed run
"""

from __future__ import annotations

import enum
import logging
import os
import shutil
import tempfile
import time
import traceback
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from jitscope.config import (
    COMPILE_ERROR_MARKER,
    DOTNET_EXECUTABLE,
    JIT_DUMP_PHASE_PREFIX,
    JIT_ENV_PREFIX,
    host_rid_prefix,
)
from jitscope.core.flowgraph import split_flowgraph
from jitscope.core.ir import FlowGraphPhase
from jitscope.core.prettifier import prettify
from jitscope.core.symbols import CodeSymbolDescriptor, SymbolInfo, build_symbol_info
from jitscope.runner import CancellationToken, ProcessInvocation, ProcessResult, ProcessRunner, RunCancelled
from jitscope.toolchain.errors import ConfigValidationError, ToolInvocationError
from jitscope.toolchain.loader import LoaderAppManager
from jitscope.toolchain.models import Configuration, ProjectContext
from jitscope.toolchain.project import ResolvedProject, resolve_project, target_framework_args
from jitscope.toolchain.runtime import RuntimeLayout
from jitscope.toolchain.strategies import (
    ExecutionInputs,
    NativeAotDefault,
    RunApp,
    ToolchainStrategy,
    build_jit_env,
    ilc_props_file,
    select_strategy,
)
from jitscope.toolchain.validation import validate

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

# Keeps 'dotnet build' quiet and fast; no effect on the generated code.
FAST_BUILD_ENV = {
    "DOTNET_SKIP_FIRST_TIME_EXPERIENCE": "1",
    "DOTNET_CLI_TELEMETRY_OPTOUT": "1",
    "MSBUILDDISABLENODEREUSE": "1",
}

NATIVE_AOT_NO_OUTPUT_MESSAGE = (
    "JitDisasm didn't produce any output :(. Make sure your method is not inlined by the code generator\n"
    "(it's a good idea to mark it as [MethodImpl(MethodImplOptions.NoInlining)]) and is reachable from Main() as\n"
    "NativeAOT may delete unused methods. Also, JitDisasm doesn't work well for Main() in NativeAOT mode."
)


class RunState(str, enum.Enum):
    """Where a run is in the orchestration state machine."""

    VALIDATING = "validating"
    RESOLVING_PROJECT_CONFIG = "resolving_project_config"
    BUILDING = "building"
    EXECUTING = "executing"
    POSTPROCESSING = "postprocessing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunStatus(str, enum.Enum):
    """Terminal outcome of a run."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """What a run hands back to the caller.

    RULES:
    - output: the listing (prettified or raw), or the failure message
    - phases: flow-graph phases, empty unless flow graphs were requested
    - strategy: key of the strategy used, or None if validation failed first
    - jit_dump_phases: phase names found in a JitDump listing
    """

    status: RunStatus
    output: str
    phases: list[FlowGraphPhase] = field(default_factory=list)
    strategy: Optional[str] = None
    elapsed_s: float = 0.0
    jit_dump_phases: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == RunStatus.COMPLETED


@dataclass
class OrchestrationContext:
    """Mutable accumulator for one run; never shared between runs."""

    symbol: Optional[CodeSymbolDescriptor]
    project: ProjectContext
    config: Configuration
    token: CancellationToken
    state: RunState = RunState.VALIDATING
    strategy: Optional[ToolchainStrategy] = None
    symbol_info: Optional[SymbolInfo] = None
    layout: RuntimeLayout = field(default_factory=RuntimeLayout)
    resolved: Optional[ResolvedProject] = None
    env_vars: dict = field(default_factory=dict)
    raw_output: str = ""
    output: str = ""
    execute_failed: bool = False
    flowgraph_file: Optional[str] = None
    phases: list = field(default_factory=list)
    temp_files: list = field(default_factory=list)


def extract_jit_dump_phases(output: str) -> list[str]:
    """Names of the JIT phases listed in a JitDump, in order."""
    return [
        line[len(JIT_DUMP_PHASE_PREFIX):].strip()
        for line in output.splitlines()
        if line.startswith(JIT_DUMP_PHASE_PREFIX)
    ]


def _temp_file(suffix: str = "") -> str:
    handle, path = tempfile.mkstemp(prefix="jitscope_", suffix=suffix)
    os.close(handle)
    return path


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to delete temp file %s", path, exc_info=True)


class ToolchainOrchestrator:
    """Runs one disassembly request end to end.

    WHY: The single entry point for the toolchain; the Session and CLI
    never spawn processes themselves.

    HOW: Holds the shared ProcessRunner and LoaderAppManager. Each run()
    call has its own OrchestrationContext, so concurrent runs on one
    orchestrator do not interfere (the Session still runs one at a time).

    RULES:
    - on_status receives short progress strings for the user
    - flowgraph_root is where per-run flow-graph folders are created
    """

    def __init__(
        self,
        runner: ProcessRunner | None = None,
        loader: LoaderAppManager | None = None,
        on_status: StatusCallback | None = None,
        flowgraph_root: str | Path | None = None,
    ) -> None:
        self._runner = runner or ProcessRunner()
        self._loader = loader or LoaderAppManager(self._runner)
        self._on_status = on_status
        if flowgraph_root is None:
            flowgraph_root = Path(tempfile.gettempdir()) / "jitscope" / "flowgraphs"
        self._flowgraph_root = Path(flowgraph_root)

    async def run(
        self,
        symbol: CodeSymbolDescriptor | None,
        project: ProjectContext,
        config: Configuration,
        token: CancellationToken | None = None,
    ) -> RunResult:
        """Produce the listing for one symbol.

        WHY: Callers want a single awaitable that never raises for
        ordinary failure and always cleans up after itself.

        HOW: Walks the RunState machine on a fresh context; every typed
        error is caught here and turned into a RunResult.

        Args:
            symbol: The resolved symbol, or None if resolution failed.
            project: The project the symbol lives in.
            config: User options.
            token: Cancellation token; a fresh one is used when omitted.

        Returns:
            RunResult with status, output, phases and timing.
        """
        ctx = OrchestrationContext(
            symbol=symbol,
            project=project,
            config=config,
            token=token or CancellationToken(),
        )
        started = time.monotonic()
        keep_temp_files = False

        try:
            await self._run_states(ctx)
            ctx.state = RunState.DONE
            status = RunStatus.FAILED if ctx.execute_failed else RunStatus.COMPLETED
            result = self._result(ctx, status, ctx.output)
        except RunCancelled as exc:
            logger.info("Run cancelled in state %s", ctx.state.value)
            ctx.state = RunState.CANCELLED
            result = self._result(ctx, RunStatus.CANCELLED, str(exc))
        except ConfigValidationError as exc:
            ctx.state = RunState.FAILED
            logger.info("Validation failed: %s", exc)
            result = self._result(ctx, RunStatus.FAILED, str(exc))
        except ToolInvocationError as exc:
            ctx.state = RunState.FAILED
            keep_temp_files = isinstance(ctx.strategy, NativeAotDefault)
            result = self._result(ctx, RunStatus.FAILED, exc.output)
        except Exception:
            ctx.state = RunState.FAILED
            logger.exception("Unexpected failure while running the toolchain")
            result = self._result(ctx, RunStatus.FAILED, traceback.format_exc())
        finally:
            if keep_temp_files:
                logger.info("Keeping temp files for diagnostics: %s", ", ".join(ctx.temp_files))
            else:
                for path in ctx.temp_files:
                    _remove_quietly(path)

        result.elapsed_s = time.monotonic() - started
        return result

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run_states(self, ctx: OrchestrationContext) -> None:
        ctx.state = RunState.VALIDATING
        self._validate(ctx)
        ctx.token.raise_if_cancelled()

        ctx.state = RunState.RESOLVING_PROJECT_CONFIG
        ctx.resolved = resolve_project(ctx.project, ctx.config)
        ctx.token.raise_if_cancelled()

        if ctx.strategy.needs_build:
            ctx.state = RunState.BUILDING
            await self._build(ctx)
            ctx.token.raise_if_cancelled()

        ctx.state = RunState.EXECUTING
        await self._execute(ctx)
        ctx.token.raise_if_cancelled()

        ctx.state = RunState.POSTPROCESSING
        self._postprocess(ctx)

    def _validate(self, ctx: OrchestrationContext) -> None:
        ctx.strategy = select_strategy(ctx.config)
        if ctx.symbol is not None:
            try:
                ctx.symbol_info = build_symbol_info(ctx.symbol)
            except ValueError as exc:
                logger.info("Cannot build a selector for %s: %s", ctx.symbol, exc)
        ctx.layout = validate(ctx.symbol, ctx.symbol_info, ctx.config, ctx.strategy)
        logger.info("Strategy %s, target %s", ctx.strategy.key, ctx.symbol_info.target)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    async def _build(self, ctx: OrchestrationContext) -> None:
        config = ctx.config
        resolved = ctx.resolved
        verb = "dotnet publish" if config.use_publish_for_reload else "dotnet build"
        self._status("Running '{}'...".format(verb))

        props_path = _temp_file(".props")
        try:
            Path(props_path).write_text(
                '<?xml version="1.0" encoding="utf-8"?>\n'
                "<Project>\n"
                "\t<PropertyGroup>\n"
                "\t\t<DefineConstants>$(DefineConstants);JITSCOPE</DefineConstants>\n"
                "\t</PropertyGroup>\n"
                "</Project>\n",
                encoding="utf-8",
            )
            result = await self._runner.run(
                ProcessInvocation(
                    DOTNET_EXECUTABLE,
                    tuple(self._build_args(ctx, props_path)),
                    env_vars=self._build_env(config),
                    working_directory=str(resolved.project_dir),
                    cancellation=ctx.token,
                ),
                on_output=self._forward_output,
            )
        finally:
            _remove_quietly(props_path)

        ctx.token.raise_if_cancelled()
        if result.stderr or COMPILE_ERROR_MARKER in result.stdout:
            raise ToolInvocationError(result.stderr or result.stdout)

        if config.use_publish_for_reload and config.use_custom_runtime:
            self._status("Copying files from locally built CoreCLR...")
            self._overlay_checked_runtime(ctx)

        if ctx.strategy.uses_loader:
            await self._loader.ensure_copied_to(
                resolved.target_framework,
                resolved.output_dir,
                ctx.token,
                on_status=self._status,
            )

    def _build_args(self, ctx: OrchestrationContext, props_path: str) -> list[str]:
        config = ctx.config
        resolved = ctx.resolved
        if config.use_publish_for_reload:
            args = ["publish"]
            args += target_framework_args(resolved, config)
            args += [
                "-r", "{}-{}".format(host_rid_prefix(), config.arch),
                "-c", "Release",
                "-o", str(resolved.output_dir),
                "--self-contained", "true",
                "/p:PublishTrimmed=false",
                "/p:PublishSingleFile=false",
            ]
        else:
            args = ["build"]
            args += target_framework_args(resolved, config)
            args += [
                "-c", "Release",
                "-o", str(resolved.output_dir),
                "--no-self-contained",
                "/p:RuntimeIdentifier=",
                "/p:RuntimeIdentifiers=",
            ]
            if config.use_no_restore:
                args += ["--no-restore", "--no-dependencies", "--nologo"]

        args += [
            "/p:WarningLevel=0",
            "/p:CustomBeforeDirectoryBuildProps={}".format(props_path),
            "/p:TreatWarningsAsErrors=false",
            "/p:UseSharedCompilation=false",
            str(resolved.project_path),
        ]
        return args

    @staticmethod
    def _build_env(config: Configuration) -> dict[str, str]:
        env = dict(FAST_BUILD_ENV)
        if config.use_no_restore and not config.use_publish_for_reload:
            env["DOTNET_MULTILEVEL_LOOKUP"] = "0"
        return env

    def _overlay_checked_runtime(self, ctx: OrchestrationContext) -> None:
        checked_dir = ctx.layout.checked_dir
        if checked_dir is None:
            raise ToolInvocationError("Locally built CoreCLR was not found.")
        try:
            shutil.copytree(checked_dir, ctx.resolved.output_dir, dirs_exist_ok=True)
        except (OSError, shutil.Error) as exc:
            raise ToolInvocationError(
                "Failed to copy {} into {}: {}".format(checked_dir, ctx.resolved.output_dir, exc)
            ) from exc

    # ------------------------------------------------------------------
    # Executing
    # ------------------------------------------------------------------

    async def _execute(self, ctx: OrchestrationContext) -> None:
        strategy = ctx.strategy

        if ctx.config.flowgraph_enable:
            ctx.flowgraph_file = _temp_file()
            ctx.temp_files += [ctx.flowgraph_file, ctx.flowgraph_file + ".dot"]

        ctx.env_vars = build_jit_env(strategy, ctx.symbol_info, ctx.config, ctx.layout, ctx.flowgraph_file)

        if isinstance(strategy, NativeAotDefault):
            await self._execute_native_aot_publish(ctx)
            return

        plan = strategy.plan(ExecutionInputs(
            symbol_info=ctx.symbol_info,
            project=ctx.resolved,
            config=ctx.config,
            layout=ctx.layout,
            env_vars=ctx.env_vars,
        ))
        self._status(plan.status)
        result = await self._runner.run(
            ProcessInvocation(
                plan.executable,
                plan.args,
                env_vars=plan.env_vars,
                working_directory=plan.working_directory,
                cancellation=ctx.token,
            ),
            on_output=self._forward_output,
        )
        ctx.token.raise_if_cancelled()
        self._take_result(ctx, result)

    async def _execute_native_aot_publish(self, ctx: OrchestrationContext) -> None:
        asm_file = _temp_file(".asm")
        # The JIT creates the file itself; its absence means no output
        _remove_quietly(asm_file)
        props_path = _temp_file(".props")
        ctx.temp_files += [asm_file, props_path]

        ctx.env_vars[JIT_ENV_PREFIX + "JitStdOutFile"] = asm_file
        Path(props_path).write_text(ilc_props_file(ctx.env_vars), encoding="utf-8")

        plan = ctx.strategy.plan(ExecutionInputs(
            symbol_info=ctx.symbol_info,
            project=ctx.resolved,
            config=ctx.config,
            layout=ctx.layout,
            env_vars=ctx.env_vars,
            props_path=Path(props_path),
        ))
        self._status(plan.status)
        result = await self._runner.run(
            ProcessInvocation(
                plan.executable,
                plan.args,
                env_vars=plan.env_vars,
                working_directory=plan.working_directory,
                cancellation=ctx.token,
            ),
            on_output=self._forward_output,
        )
        ctx.token.raise_if_cancelled()

        if result.stderr:
            raise ToolInvocationError(result.stderr)

        if not os.path.isfile(asm_file):
            raise ToolInvocationError(NATIVE_AOT_NO_OUTPUT_MESSAGE + "\n\n\n" + result.stdout)

        ctx.raw_output = Path(asm_file).read_text(encoding="utf-8", errors="replace")
        ctx.output = ctx.raw_output

    def _take_result(self, ctx: OrchestrationContext, result: ProcessResult) -> None:
        ctx.raw_output = result.stdout
        if result.stderr:
            ctx.execute_failed = True
            ctx.output = result.stdout + "\nERROR:\n" + result.stderr
        else:
            ctx.output = result.stdout

    # ------------------------------------------------------------------
    # Postprocessing
    # ------------------------------------------------------------------

    def _postprocess(self, ctx: OrchestrationContext) -> None:
        if ctx.execute_failed:
            return

        if ctx.strategy.prettifies:
            ctx.output = prettify(
                ctx.raw_output,
                minimal_comments=ctx.config.minimal_comments,
                run_mode=isinstance(ctx.strategy, RunApp),
            )

        if ctx.flowgraph_file:
            self._status("Splitting flow graphs...")
            ctx.phases = self._split_flowgraph(ctx.flowgraph_file + ".dot")

    def _split_flowgraph(self, dump_path: str) -> list[FlowGraphPhase]:
        try:
            dump_text = Path(dump_path).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            dump_text = ""

        if not dump_text.strip():
            raise ToolInvocationError(
                "Oops, JitDumpFgFile ('{}') doesn't exist or is empty :(\n"
                "Make sure the method is actually compiled (e.g. not inlined).".format(dump_path)
            )

        output_dir = self._flowgraph_root / uuid.uuid4().hex
        return split_flowgraph(dump_text, output_dir)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _status(self, message: str) -> None:
        logger.info(message)
        if self._on_status is not None:
            self._on_status(message)

    @staticmethod
    def _forward_output(is_error: bool, line: str) -> None:
        if is_error:
            logger.debug("stderr: %s", line.rstrip("\n"))

    @staticmethod
    def _result(ctx: OrchestrationContext, status: RunStatus, output: str) -> RunResult:
        if status == RunStatus.COMPLETED:
            phases = list(ctx.phases)
            dump_phases = extract_jit_dump_phases(ctx.raw_output) if ctx.config.jit_dump else []
        else:
            phases = []
            dump_phases = []
        return RunResult(
            status=status,
            output=output,
            phases=phases,
            strategy=ctx.strategy.key if ctx.strategy is not None else None,
            jit_dump_phases=dump_phases,
        )
