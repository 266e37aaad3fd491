"""Async external-process runner with streaming output and guaranteed cleanup.

WHY: The toolchain steps are long-running external processes whose output
the user wants to see as it arrives, that must be killable on cancel, and
whose failures are normal outcomes ("build failed") rather than crashes.
A child left running after the run ends (e.g. a CoreRun stuck in the
user's code) would hold locks on the output folder and burn CPU.

HOW: asyncio.create_subprocess_exec spawns the child with both streams
piped. Two reader coroutines consume stdout and stderr line by line; both
append to the combined log, stderr also to its own buffer. Process exit
is raced against the cancellation token. A finally block kills and reaps
the child on every exit path.

RULES:
- Environment: os.environ overlaid with invocation.env_vars
- Cancellation checked before spawn, right after spawn, and while waiting
- The child's exit ends the wait, even if a grandchild keeps the pipes open
- Ordinary failures (spawn error, I/O error, cancellation) never raise;
  they return a ProcessResult with a synthesized stderr diagnostic
- asyncio.CancelledError (the awaiting task itself was cancelled) is not
  swallowed; the child is still killed first
- Each stream has exactly one reader, and all readers run on one event
  loop, so buffer appends never race
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

from jitscope.runner.models import CancellationToken, ProcessInvocation, ProcessResult

logger = logging.getLogger(__name__)

# JitDump lines can be very long; the asyncio default line limit is 64 KiB.
_STREAM_LIMIT = 4 * 1024 * 1024

# Exit is detected by polling returncode: Process.wait() may also wait for
# the pipes, which build servers spawned by the child keep open.
_EXIT_POLL_INTERVAL = 0.05

# How long the readers may keep draining after the child has exited.
_DRAIN_TIMEOUT = 1.0

OutputCallback = Callable[[bool, str], None]


def _trim(lines: list[str]) -> str:
    return "\n".join(lines).strip("\r\n")


def _dump_env_vars(env_vars: dict[str, str]) -> str:
    return "".join("{}={}\n".format(key, value) for key, value in env_vars.items())


class ProcessRunner:
    """Runs one external process per call and always cleans it up.

    WHY: A single runner instance can be shared by the orchestrator, the
    loader manager, and the phase renderer; tests substitute a fake.

    HOW: run() is a coroutine. The instance holds no per-call state, so
    concurrent run() calls are independent.

    RULES:
    - run() returns a ProcessResult for every ordinary outcome
    - on_output(is_error, line) is called for each line as it arrives
    """

    async def run(
        self,
        invocation: ProcessInvocation,
        on_output: OutputCallback | None = None,
    ) -> ProcessResult:
        """Run the invocation to completion, failure, or cancellation.

        WHY: Every toolchain step needs the same semantics: capture both
        streams, respect the user's cancel, never leak the child.

        HOW: Spawns, streams, waits, and always kills-and-reaps in finally.

        RULES:
        - Success: stdout = combined log, stderr = standard error text
        - Failure/cancellation: stderr = diagnostic with exception text,
          executable, args, working directory and output captured so far

        Args:
            invocation: What to run and where.
            on_output: Optional per-line callback (is_error, line).

        Returns:
            ProcessResult; never raises for ordinary failure.
        """
        logger.info(
            'Executing a command in directory "%s":\n\t%s\nEnv vars:\n%s',
            invocation.working_directory,
            invocation.command_line,
            _dump_env_vars(invocation.env_vars),
        )

        combined: list[str] = []
        errors: list[str] = []
        token = invocation.cancellation
        process: asyncio.subprocess.Process | None = None

        try:
            if token is not None:
                token.raise_if_cancelled()

            env = dict(os.environ)
            env.update(invocation.env_vars)

            process = await asyncio.create_subprocess_exec(
                invocation.executable,
                *invocation.args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=invocation.working_directory,
                limit=_STREAM_LIMIT,
            )

            if token is not None:
                token.raise_if_cancelled()

            await self._wait_for_exit(process, token, combined, errors, on_output)

            if token is not None:
                token.raise_if_cancelled()

            return ProcessResult(
                stdout=_trim(combined),
                stderr=_trim(errors),
                pid=process.pid,
                returncode=process.returncode,
            )
        except Exception as exc:
            working_directory = invocation.working_directory or str(Path.cwd())
            message = "RunProcess failed: {}.\npath={}\nargs={}\nworkingdir={}\n{}".format(
                exc,
                invocation.executable,
                " ".join(invocation.args),
                working_directory,
                _trim(combined),
            )
            logger.warning("Process %s failed: %s", invocation.executable, exc)
            return ProcessResult(
                stdout=_trim(combined),
                stderr=message.rstrip("\n"),
                pid=process.pid if process is not None else None,
            )
        finally:
            await _kill_safe(process)

    async def _wait_for_exit(
        self,
        process: asyncio.subprocess.Process,
        token: CancellationToken | None,
        combined: list[str],
        errors: list[str],
        on_output: OutputCallback | None,
    ) -> None:
        """Pump both streams until the process exits, or until cancelled.

        RULES:
        - Exit means the child itself exited; its own children may still
          hold the pipes, so readers get _DRAIN_TIMEOUT to reach EOF
        """

        async def pump(stream: asyncio.StreamReader | None, is_error: bool) -> None:
            if stream is None:
                return
            async for raw_line in stream:
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                if on_output is not None:
                    on_output(is_error, line + "\n")
                combined.append(line)
                if is_error:
                    errors.append(line)

        async def exited() -> None:
            while process.returncode is None:
                await asyncio.sleep(_EXIT_POLL_INTERVAL)

        readers = asyncio.ensure_future(
            asyncio.gather(pump(process.stdout, False), pump(process.stderr, True))
        )
        exit_watch = asyncio.ensure_future(exited())
        pending = [readers, exit_watch]
        if token is not None:
            pending.append(asyncio.ensure_future(token.wait()))

        try:
            await asyncio.wait(pending[1:], return_when=asyncio.FIRST_COMPLETED)
            if not exit_watch.done() and token is not None:
                token.raise_if_cancelled()

            try:
                await asyncio.wait_for(asyncio.shield(readers), _DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                logger.info(
                    "Process %s exited but its output pipes are still open (inherited by a child process)",
                    process.pid,
                )
        finally:
            for task in pending:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)


async def _kill_safe(process: asyncio.subprocess.Process | None) -> None:
    """Kill the process if it is still running, then reap it."""
    if process is None or process.returncode is not None:
        return

    try:
        process.kill()
    except ProcessLookupError:
        pass
    except OSError:
        logger.debug("Failed to kill process %s", process.pid, exc_info=True)
        return

    await process.wait()
