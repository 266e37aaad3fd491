"""External process execution: one primitive for every tool jitscope runs.

WHY: dotnet build/publish, the loader app, CoreRun, crossgen2, ilc and
Graphviz are all external processes. They share one set of concerns:
streaming output, cancellation, and never leaking a child process.

HOW: ProcessRunner (process.py) spawns the child with asyncio and
returns a ProcessResult (models.py). CancellationToken carries the
user's cancel request into the runner.

RULES:
- All process spawning goes through ProcessRunner
- ProcessRunner.run() never raises for ordinary tool failure
"""

from jitscope.runner.models import (
    CancellationToken,
    ProcessInvocation,
    ProcessResult,
    RunCancelled,
)
from jitscope.runner.process import ProcessRunner

__all__ = [
    "CancellationToken",
    "ProcessInvocation",
    "ProcessResult",
    "ProcessRunner",
    "RunCancelled",
]
