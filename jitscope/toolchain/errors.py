"""Typed failures of a toolchain run.

WHY: A run can stop for reasons that are entirely normal: the options
don't make sense together, the build has compile errors, a local runtime
is not built yet. Callers need to tell these apart from bugs, and from a
user-requested cancel (RunCancelled, see jitscope.runner.models).

RULES:
- ConfigValidationError: a validation gate failed; the message is shown
  as-is; fixing the configuration fixes the run
- ToolInvocationError: an external tool failed; the message is the tool's
  own output, shown verbatim
- Both are converted to a FAILED RunResult by the orchestrator
"""

from __future__ import annotations


class ConfigValidationError(ValueError):
    """A validation gate rejected the configuration."""


class ToolInvocationError(RuntimeError):
    """An external tool reported an error (stderr output or an error marker).

    RULES:
    - output is the text to show the user (tool output, verbatim)
    """

    def __init__(self, output: str) -> None:
        self.output = output
        super().__init__(output)
