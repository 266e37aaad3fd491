"""Process invocation and result types, plus cooperative cancellation.

WHY: Every external tool jitscope drives (dotnet, CoreRun, crossgen2,
ilc, Graphviz dot) goes through one runner. A typed invocation and a
typed result make the contract explicit: the runner never raises for an
ordinary tool failure, it reports it in the result.

HOW: ProcessInvocation bundles what to run; ProcessResult carries the
combined log and the stderr text. CancellationToken is a thin wrapper
around asyncio.Event with explicit checkpoints that raise RunCancelled.

RULES:
- ProcessResult.stdout holds the interleaved log of both streams
- ProcessResult.stderr holds standard error only
- Non-empty stderr means failure, by convention
- A CancellationToken is bound to the event loop it is first awaited on
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


class RunCancelled(Exception):
    """Raised at a cancellation checkpoint once the token is cancelled.

    RULES:
    - Raised by CancellationToken.raise_if_cancelled()
    - Always converted to a CANCELLED outcome by the orchestrator
    """

    def __init__(self, message: str = "The operation was cancelled.") -> None:
        super().__init__(message)


class CancellationToken:
    """Cooperative cancellation signal shared by one run.

    WHY: The toolchain steps run for seconds to minutes. Users cancel from
    the outside; each step checks the token at well-defined points and
    the process runner kills its child when the token fires.

    HOW: cancel() sets an asyncio.Event. wait() lets the runner race
    process exit against cancellation.

    RULES:
    - cancel() is idempotent
    - raise_if_cancelled() raises RunCancelled after cancel()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ProcessInvocation:
    """One external command to run.

    RULES:
    - executable: program name or path (looked up on PATH if bare)
    - args: arguments, passed without shell interpretation
    - env_vars: variables overlaid on the inherited environment
    - working_directory: cwd for the child, or None for the current one
    - cancellation: token checked before spawn, after spawn, and while waiting
    """

    executable: str
    args: tuple[str, ...] = ()
    env_vars: dict[str, str] = field(default_factory=dict)
    working_directory: str | None = None
    cancellation: CancellationToken | None = None

    @property
    def command_line(self) -> str:
        return " ".join([self.executable, *self.args])


@dataclass
class ProcessResult:
    """Outcome of one external command.

    RULES:
    - stdout: both streams interleaved in arrival order, outer newlines trimmed
    - stderr: standard error only, outer newlines trimmed; for runner-level
      failures (spawn error, cancellation) a synthesized diagnostic
    - pid/returncode: None when the process never started or was killed
      before reporting
    """

    stdout: str = ""
    stderr: str = ""
    pid: int | None = None
    returncode: int | None = None

    @property
    def ok(self) -> bool:
        return not self.stderr
