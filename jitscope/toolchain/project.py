"""Project configuration resolution: target framework, output folder, assembly name.

WHY: A project usually has several build configurations (Debug/Release x
one or more target frameworks). Disassembly is only meaningful for an
optimized build on a runtime new enough to honour the JIT knobs, so the
orchestrator must pick the right configuration and reject unsupported
frameworks before spending a minute on a build.

HOW: load_project() reads an SDK-style .csproj and enumerates its
configurations. resolve_project() applies the selection rules and the
framework gates, producing a ResolvedProject with absolute paths.

RULES:
- Release configurations are preferred whenever any exist
- Highest target-framework version first, unless the user pinned one
- Pinned framework: first configuration whose version is <= the pin,
  falling back to the highest; the pin itself is not validated
- Unpinned framework below net6.0 → rejected; below net7.0 → rejected
  unless a locally built runtime is used
- No known configuration → fall back to net7.0 and "bin"
- Output folder: <OutputPath>/jitscope-v<version>[_published], absolute
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from jitscope.config import FALLBACK_TARGET_FRAMEWORK, OUTPUT_FOLDER_NAME
from jitscope.toolchain.models import Configuration, ProjectConfiguration, ProjectContext
from jitscope.toolchain.errors import ConfigValidationError

logger = logging.getLogger(__name__)

_MODERN_TFM_RE = re.compile(r"^net(?:coreapp|standard)?(\d+)\.(\d+)", re.IGNORECASE)
_LEGACY_TFM_RE = re.compile(r"^net(\d)(\d+)$", re.IGNORECASE)

_KNOWN_CONFIGURATIONS = ("Release", "Debug")


@dataclass(frozen=True)
class ResolvedProject:
    """The build configuration chosen for one run.

    RULES:
    - project_dir and output_dir are absolute
    - target_framework_pinned: the user pinned the framework explicitly
    """

    project_path: Path
    project_dir: Path
    configuration: str
    target_framework: str
    target_framework_pinned: bool
    output_dir: Path
    assembly_name: str


def parse_tfm_version(tfm: str | None) -> tuple[int, int] | None:
    """Parse "net8.0", "netcoreapp3.1", "net8.0-windows" or "net48" into (major, minor)."""
    if not tfm:
        return None
    tfm = tfm.strip()

    match = _MODERN_TFM_RE.match(tfm)
    if match:
        return int(match.group(1)), int(match.group(2))

    match = _LEGACY_TFM_RE.match(tfm)
    if match:
        return int(match.group(1)), int(match.group(2))

    return None


def _version_key(cfg: ProjectConfiguration) -> tuple[int, int]:
    return parse_tfm_version(cfg.target_framework) or (-1, -1)


def select_configuration(
    configurations: list[ProjectConfiguration],
    pinned_framework: str | None = None,
) -> ProjectConfiguration | None:
    """Pick the best configuration to build.

    WHY: Optimized (Release) code on the newest framework is what users
    almost always want to inspect.

    HOW: Sorts by framework version descending, narrows to Release when
    possible, then honours a pinned framework.

    RULES:
    - Returns None when there are no configurations
    - Release wins over any other configuration name (case-insensitive)
    - Pinned: first configuration with version <= pin, else the first one
    """
    ordered = sorted(configurations, key=_version_key, reverse=True)
    release = [c for c in ordered if c.configuration.lower() == "release"]
    if release:
        ordered = release

    if not ordered:
        return None

    if pinned_framework:
        pinned_version = parse_tfm_version(pinned_framework)
        if pinned_version is not None:
            for cfg in ordered:
                if pinned_version >= _version_key(cfg):
                    return cfg

    return ordered[0]


def resolve_project(project: ProjectContext, config: Configuration) -> ResolvedProject:
    """Resolve framework, output folder and assembly name for one run.

    RULES:
    - Raises ConfigValidationError for unsupported target frameworks
    - See module docstring for the selection rules

    Args:
        project: The project and its known configurations.
        config: User options (pinned framework, custom runtime, publish mode).

    Returns:
        ResolvedProject with absolute paths.
    """
    pinned = (config.overridden_target_framework or "").strip() or None
    selected = select_configuration(project.configurations, pinned)

    if pinned:
        target_framework = pinned
    else:
        target_framework = selected.target_framework if selected is not None else None
        if not target_framework:
            target_framework = FALLBACK_TARGET_FRAMEWORK
        _check_framework_supported(target_framework, config)

    project_dir = project.project_dir
    output_path = (selected.output_path if selected is not None else None) or "bin"
    folder = OUTPUT_FOLDER_NAME + ("_published" if config.use_publish_for_reload else "")
    output_dir = Path(output_path) / folder
    if not output_dir.is_absolute():
        output_dir = project_dir / output_dir

    assembly_name = (selected.assembly_name if selected is not None else None) or project.project_name

    resolved = ResolvedProject(
        project_path=Path(project.project_path).resolve(),
        project_dir=project_dir,
        configuration=selected.configuration if selected is not None else "Release",
        target_framework=target_framework,
        target_framework_pinned=pinned is not None,
        output_dir=output_dir,
        assembly_name=assembly_name,
    )
    logger.info(
        "Resolved project %s: %s %s -> %s",
        resolved.project_path, resolved.configuration, resolved.target_framework, resolved.output_dir,
    )
    return resolved


def _check_framework_supported(target_framework: str, config: Configuration) -> None:
    version = parse_tfm_version(target_framework)
    major = version[0] if version is not None else None

    if major is None or major < 6:
        raise ConfigValidationError(
            "Only net6.0 (and newer) apps are supported.\n"
            "Make sure <TargetFramework>net6.0</TargetFramework> is set in your csproj."
        )

    if major < 7 and not config.use_custom_runtime:
        raise ConfigValidationError(
            "Only net7.0 (and newer) apps are supported with non-locally built dotnet/runtime.\n"
            "Make sure <TargetFramework>net7.0</TargetFramework> is set in your csproj."
        )


def target_framework_args(resolved: ResolvedProject, config: Configuration) -> list[str]:
    """Return ["-f", tfm], or [] when the user asked not to guess the framework."""
    if config.dont_guess_target_framework and not resolved.target_framework_pinned:
        return []
    return ["-f", resolved.target_framework]


def load_project(project_path: str | Path) -> ProjectContext:
    """Read an SDK-style project file into a ProjectContext.

    WHY: Outside an IDE there is no project system to ask for evaluated
    properties. For SDK-style projects the handful jitscope needs can be
    read straight from the XML.

    HOW: Collects TargetFramework/TargetFrameworks, AssemblyName and
    OutputPath from every PropertyGroup (last one wins, as in MSBuild),
    then emits one ProjectConfiguration per Release/Debug x framework.

    RULES:
    - Unconditional property groups only; Condition attributes are ignored
    - Default OutputPath is bin/<Configuration>/<TargetFramework>/
    - Raises FileNotFoundError for a missing project file and ValueError
      for malformed XML
    """
    path = Path(project_path)
    if not path.is_file():
        raise FileNotFoundError("Project file not found: {}".format(path))

    try:
        root = ET.parse(str(path)).getroot()
    except ET.ParseError as exc:
        raise ValueError("Cannot parse project file {}: {}".format(path, exc)) from exc

    properties: dict[str, str] = {}
    for group in root.iter():
        if _local_name(group.tag) != "PropertyGroup" or group.get("Condition"):
            continue
        for prop in group:
            if prop.text and prop.text.strip():
                properties[_local_name(prop.tag)] = prop.text.strip()

    frameworks_text = properties.get("TargetFrameworks") or properties.get("TargetFramework") or ""
    frameworks = [f.strip() for f in frameworks_text.split(";") if f.strip()]
    if not frameworks:
        frameworks = [None]

    configurations: list[ProjectConfiguration] = []
    for name in _KNOWN_CONFIGURATIONS:
        for tfm in frameworks:
            output_path = properties.get("OutputPath")
            if output_path is None:
                output_path = str(Path("bin") / name / (tfm or ""))
            configurations.append(ProjectConfiguration(
                configuration=name,
                target_framework=tfm,
                output_path=output_path.replace("\\", "/"),
                assembly_name=properties.get("AssemblyName"),
            ))

    return ProjectContext(project_path=str(path), configurations=configurations)


def _local_name(tag: str) -> str:
    # Old-style projects put every element in the msbuild XML namespace
    return tag.rsplit("}", 1)[-1]
