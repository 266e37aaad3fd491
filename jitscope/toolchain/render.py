"""Bounded Graphviz rendering of flow-graph phases.

WHY: A JitDump of a single method can hold dozens of phases. Rendering
them all at once starts dozens of 'dot' processes; rendering them one by
one keeps the user waiting. A small fixed pool is the middle ground.

HOW: PhaseRenderer wraps ProcessRunner with an asyncio.Semaphore.
render() returns the .png path for a persisted phase, reusing an image
that is already on disk and joining a render of the same file that is
already in flight.

RULES:
- At most `limit` renders run at once; waiters are admitted in FIFO order
- Command: <dot> -Tpng -o<file>.png -Kdot <file>
- A failed render returns None and is logged; it never raises
- Phases must be persisted (file_path set) before rendering
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from jitscope.config import max_parallel_renders
from jitscope.core.ir import FlowGraphPhase
from jitscope.runner import CancellationToken, ProcessInvocation, ProcessRunner

logger = logging.getLogger(__name__)


class PhaseRenderer:
    """Renders .dot phase files to .png with bounded parallelism."""

    def __init__(
        self,
        dot_path: str,
        runner: ProcessRunner | None = None,
        limit: int | None = None,
    ) -> None:
        self._dot_path = dot_path
        self._runner = runner or ProcessRunner()
        self._limit = limit if limit is not None else max_parallel_renders()
        if self._limit < 1:
            raise ValueError("Render limit must be at least 1")
        self._semaphore = asyncio.Semaphore(self._limit)
        self._in_flight = 0
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def in_flight(self) -> int:
        """Number of 'dot' processes currently running."""
        return self._in_flight

    async def render(self, phase: FlowGraphPhase, token: CancellationToken | None = None) -> str | None:
        """Render one phase and set its image_path.

        Returns:
            Path of the .png, or None when rendering failed.
        """
        if phase.file_path is None:
            raise ValueError("Phase '{}' has not been written to disk".format(phase.identifier))

        image_path = phase.file_path + ".png"
        if Path(image_path).is_file():
            phase.image_path = image_path
            return image_path

        task = self._pending.get(phase.file_path)
        if task is None:
            task = asyncio.ensure_future(self._render_file(phase.file_path, image_path, token))
            self._pending[phase.file_path] = task
            task.add_done_callback(lambda _t, key=phase.file_path: self._pending.pop(key, None))

        result = await asyncio.shield(task)
        if result is not None:
            phase.image_path = result
        return result

    async def render_all(
        self,
        phases: list[FlowGraphPhase],
        token: CancellationToken | None = None,
    ) -> list[str | None]:
        """Render every phase, at most `limit` at a time, in phase order."""
        return list(await asyncio.gather(*(self.render(phase, token) for phase in phases)))

    async def _render_file(self, dot_file: str, image_path: str, token: CancellationToken | None) -> str | None:
        async with self._semaphore:
            self._in_flight += 1
            try:
                result = await self._runner.run(
                    ProcessInvocation(
                        self._dot_path,
                        ("-Tpng", "-o" + image_path, "-Kdot", dot_file),
                        cancellation=token,
                    )
                )
            finally:
                self._in_flight -= 1

        if not result.ok or not Path(image_path).is_file():
            logger.warning("Failed to render %s: %s", dot_file, result.stderr or "no image produced")
            return None
        return image_path
