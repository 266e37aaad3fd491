"""Run session: one in-flight run, with the previous output kept around.

WHY: An interactive caller (an editor command, a watch loop) fires a new
request whenever the user points at another symbol. Only the latest
request matters; the one still running must be cancelled, and the user
wants to compare the new listing with the last one.

HOW: Session owns the cancellation token of the current run. run()
cancels the previous token, waits for the previous run to unwind, then
delegates to the ToolchainOrchestrator. Output and PreviousOutput are
swapped only by runs that were not superseded.

RULES:
- At most one run executes at a time (asyncio.Lock)
- Starting a run cancels the previous run's token
- A new non-blank output pushes the old one to previous_output
- A superseded run's result is returned to its caller but never shown
- Flow-graph folders live as long as the result that owns them: the
  previous last_result's folder is removed when a newer result replaces
  it, a superseded result's folder right away
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

from jitscope.core.symbols import CodeSymbolDescriptor
from jitscope.runner import CancellationToken, RunCancelled
from jitscope.toolchain.models import Configuration, ProjectContext
from jitscope.toolchain.orchestrator import RunResult, RunStatus, ToolchainOrchestrator

logger = logging.getLogger(__name__)


class Session:
    """Serializes runs and tracks Output / PreviousOutput."""

    def __init__(self, orchestrator: ToolchainOrchestrator) -> None:
        self._orchestrator = orchestrator
        self._lock = asyncio.Lock()
        self._token: CancellationToken | None = None
        self._generation = 0
        self.output = ""
        self.previous_output = ""
        self.last_result: RunResult | None = None

    @property
    def is_running(self) -> bool:
        return self._token is not None

    def cancel(self) -> None:
        """Cancel the run in flight, if any."""
        if self._token is not None:
            self._token.cancel()

    async def run(
        self,
        symbol: CodeSymbolDescriptor | None,
        project: ProjectContext,
        config: Configuration,
    ) -> RunResult:
        """Run the orchestrator for a symbol, superseding any run in flight.

        Returns:
            The RunResult of this run (CANCELLED if a newer run superseded it).
        """
        self.cancel()
        token = CancellationToken()
        self._token = token
        self._generation += 1
        generation = self._generation

        async with self._lock:
            if token.cancelled:
                # Superseded while waiting for the previous run to unwind
                result = RunResult(status=RunStatus.CANCELLED, output=str(RunCancelled()))
            else:
                result = await self._orchestrator.run(symbol, project, config, token)

        if generation != self._generation:
            logger.info("Discarding the result of a superseded run (%s)", result.status.value)
            _remove_flowgraphs(result)
            return result

        self._token = None
        if self.last_result is not None:
            _remove_flowgraphs(self.last_result)
        self.last_result = result
        self._set_output(result.output)
        return result

    def _set_output(self, output: str) -> None:
        if self.output.strip():
            self.previous_output = self.output
        self.output = output


def _remove_flowgraphs(result: RunResult) -> None:
    """Delete the per-run folder(s) holding a result's flow-graph files."""
    folders = {Path(phase.file_path).parent for phase in result.phases if phase.file_path}
    for folder in folders:
        try:
            shutil.rmtree(folder)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove flow-graph folder %s: %s", folder, exc)
