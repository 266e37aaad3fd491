"""Pydantic models for user configuration and project context.

WHY: The orchestrator consumes two inputs produced by outer layers: the
user's toolchain options and the project's evaluated build properties.
Pydantic models validate both at the boundary (unknown architecture,
malformed env overrides) so the state machine only ever sees sane input.

HOW: Configuration mirrors the options a user can toggle. ProjectContext
carries the project file plus its known build configurations, each with
the evaluated properties jitscope needs (TargetFramework, OutputPath,
AssemblyName).

RULES:
- All fields use Field(description=...) so the models document themselves
- Defaults come from jitscope.config (environment / .env overridable)
- Python 3.9+ compatible (no PEP 604 unions in model annotations)
- Configuration is never persisted by jitscope
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from jitscope.config import (
    DEFAULT_ARCH,
    DEFAULT_GRAPHVIZ_DOT,
    DEFAULT_JIT,
    DEFAULT_LOCAL_RUNTIME,
    SUPPORTED_ARCHES,
)


class Compiler(str, enum.Enum):
    """Which code generator produces the listing."""

    JIT = "jit"
    CROSSGEN2 = "crossgen2"
    NATIVE_AOT = "nativeaot"


class Configuration(BaseModel):
    """User-selected toolchain options for one run.

    RULES:
    - jit_dump and print_inlinees pick the listing kind; JitDisasm otherwise
    - compiler selects JIT, crossgen2 (R2R) or NativeAOT
    - use_custom_runtime points the toolchain at a locally built dotnet/runtime
    - env_overrides are applied last and win over everything jitscope sets
    """

    show_asm_comments: bool = Field(
        default=False,
        description="Keep the JIT's comment lines instead of condensing the listing.",
    )
    jit_dump: bool = Field(
        default=False,
        description="Use DOTNET_JitDump instead of DOTNET_JitDisasm (requires a checked JIT).",
    )
    print_inlinees: bool = Field(
        default=False,
        description="Use DOTNET_JitPrintInlinedMethods instead of DOTNET_JitDisasm.",
    )
    run_app_mode: bool = Field(
        default=False,
        description="Run the app itself instead of the loader helper.",
    )
    overridden_jit_disasm: Optional[str] = Field(
        default=None,
        description="JitDisasm value to use in run-app mode instead of the symbol's target.",
    )
    compiler: Compiler = Field(
        default=Compiler.JIT,
        description="Code generator: jit, crossgen2 or nativeaot.",
    )
    use_custom_runtime: bool = Field(
        default=False,
        description="Use a locally built dotnet/runtime repository.",
    )
    path_to_local_runtime: str = Field(
        default=DEFAULT_LOCAL_RUNTIME,
        description="Root of the local dotnet/runtime clone.",
    )
    custom_jit: str = Field(
        default=DEFAULT_JIT,
        description="JIT binary name; anything but the default enables AltJit.",
    )
    arch: str = Field(
        default=DEFAULT_ARCH,
        description="Target architecture (x64, x86, arm64, arm).",
    )
    use_pgo: bool = Field(default=False, description="Enable tiered PGO.")
    diffable: bool = Field(default=False, description="Emit diff-friendly listings.")
    use_tiered_jit: bool = Field(default=False, description="Enable tiered compilation.")
    use_unloadable_context: bool = Field(
        default=False,
        description="Load the target assembly into a collectible context in the loader app.",
    )
    use_publish_for_reload: bool = Field(
        default=False,
        description="Use 'dotnet publish --self-contained' instead of 'dotnet build'.",
    )
    use_no_restore: bool = Field(
        default=False,
        description="Pass --no-restore --no-dependencies to 'dotnet build'.",
    )
    crossgen2_args: str = Field(
        default="-O",
        description="Extra crossgen2 arguments (--targetos/--targetarch are added automatically).",
    )
    ilc_args: str = Field(
        default="",
        description="Extra ilc arguments; %DOTNET_REPO% expands to the local runtime path.",
    )
    flowgraph_enable: bool = Field(
        default=False,
        description="Capture per-phase flow graphs (requires jit_dump).",
    )
    graphviz_dot_path: str = Field(
        default=DEFAULT_GRAPHVIZ_DOT,
        description="Path to Graphviz 'dot' used to render flow graphs.",
    )
    overridden_target_framework: Optional[str] = Field(
        default=None,
        description="Pin the target framework (e.g. net8.0) instead of picking the highest.",
    )
    dont_guess_target_framework: bool = Field(
        default=False,
        description="Omit '-f <tfm>' from build commands when no framework is pinned.",
    )
    env_overrides: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the execute step; they win.",
    )

    @field_validator("arch")
    @classmethod
    def _check_arch(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in SUPPORTED_ARCHES:
            raise ValueError(
                "Unsupported arch '{}'. Supported: {}".format(value, ", ".join(sorted(SUPPORTED_ARCHES)))
            )
        return value

    @field_validator("env_overrides")
    @classmethod
    def _check_env_overrides(cls, value: Dict[str, str]) -> Dict[str, str]:
        for key in value:
            if not key or "=" in key or key.strip() != key:
                raise ValueError("Invalid environment variable name: {!r}".format(key))
        return value

    @property
    def minimal_comments(self) -> bool:
        return not self.show_asm_comments

    @property
    def is_aot(self) -> bool:
        return self.compiler != Compiler.JIT

    @property
    def uses_alt_jit(self) -> bool:
        return (
            self.use_custom_runtime
            and not self.is_aot
            and bool(self.custom_jit.strip())
            and self.custom_jit.strip().lower() != DEFAULT_JIT.lower()
        )

    @property
    def is_default_native_aot(self) -> bool:
        """NativeAOT through the stock SDK: a single fused 'dotnet publish'."""
        return self.compiler == Compiler.NATIVE_AOT and not self.use_custom_runtime


class ProjectConfiguration(BaseModel):
    """One build configuration of the project and its evaluated properties."""

    configuration: str = Field(description="Configuration name, e.g. Release.")
    target_framework: Optional[str] = Field(
        default=None,
        description="Evaluated TargetFramework, e.g. net8.0.",
    )
    output_path: Optional[str] = Field(
        default=None,
        description="Evaluated OutputPath, relative to the project directory or absolute.",
    )
    assembly_name: Optional[str] = Field(
        default=None,
        description="Evaluated AssemblyName, if it differs from the project name.",
    )


class ProjectContext(BaseModel):
    """The project the symbol lives in.

    RULES:
    - project_path points at the .csproj file
    - configurations may be empty when the project system is unavailable
    """

    project_path: str = Field(description="Path to the project file.")
    configurations: List[ProjectConfiguration] = Field(
        default_factory=list,
        description="Known build configurations (Configuration x TargetFramework).",
    )

    @property
    def project_dir(self) -> Path:
        return Path(self.project_path).resolve().parent

    @property
    def project_name(self) -> str:
        return Path(self.project_path).stem
