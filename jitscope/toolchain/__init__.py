"""Toolchain orchestration: from a symbol and a project to a listing.

WHY: Producing a listing takes a build, a helper app or a precompiler,
the right JIT knobs, and a postprocessing pass. This package sequences
those steps behind ToolchainOrchestrator.run().

HOW: models.py holds the user-facing pydantic inputs. project.py picks
the build configuration. strategies.py decides how the listing is
produced. validation.py rejects bad combinations early. loader.py builds
the helper app. orchestrator.py runs the state machine; session.py keeps
one run in flight; render.py turns flow graphs into images.
"""

from jitscope.toolchain.errors import ConfigValidationError, ToolInvocationError
from jitscope.toolchain.models import Compiler, Configuration, ProjectConfiguration, ProjectContext
from jitscope.toolchain.orchestrator import RunResult, RunState, RunStatus, ToolchainOrchestrator
from jitscope.toolchain.session import Session

__all__ = [
    "Compiler",
    "ConfigValidationError",
    "Configuration",
    "ProjectConfiguration",
    "ProjectContext",
    "RunResult",
    "RunState",
    "RunStatus",
    "Session",
    "ToolInvocationError",
    "ToolchainOrchestrator",
]
