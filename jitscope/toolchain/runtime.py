"""Layout of a locally built dotnet/runtime repository.

WHY: Custom-runtime runs execute against binaries the user built
themselves: a Checked CoreCLR (with CoreRun, crossgen2 and the JIT), a
runtime pack for the framework assemblies, and for NativeAOT the ilc
toolchain. Their locations follow the runtime repo's artifacts layout.

HOW: find_* helpers search the artifacts tree and return None when a
piece is not built. RuntimeLayout carries whatever a run found so the
execute step never searches the disk again.

RULES:
- Directory names use the repo's OS names (windows, osx, linux)
- Checked CoreCLR is preferred; Debug is accepted as a fallback
- Several runtime packs → the lexicographically highest wins
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jitscope.config import executable_name, host_os


@dataclass(frozen=True)
class RuntimeLayout:
    """Directories of a locally built dotnet/runtime used by one run.

    Attributes:
        repo_root: Root of the dotnet/runtime clone.
        checked_dir: artifacts/bin/coreclr/<os>.<arch>.Checked (or .Debug).
        runtime_pack: artifacts/bin/runtime/<tfm>-<os>-Release-<arch>.
        native_aot_dir: Checked directory holding aotsdk/ and ilc/.
    """

    repo_root: Path | None = None
    checked_dir: Path | None = None
    runtime_pack: Path | None = None
    native_aot_dir: Path | None = None


# ---------------------------------------------------------------------------
# Runtime layout lookup
# ---------------------------------------------------------------------------


def build_script() -> str:
    """The repo build entry point for the host OS, for error messages."""
    return "build.cmd" if host_os() == "windows" else "./build.sh"


def find_checked_coreclr(repo_root: Path, arch: str) -> Path | None:
    """Return the Checked CoreCLR directory for arch, falling back to Debug."""
    base = repo_root / "artifacts" / "bin" / "coreclr"
    for flavor in ("Checked", "Debug"):
        candidate = base / "{}.{}.{}".format(host_os(), arch, flavor)
        if candidate.is_dir():
            return candidate
    return None


def find_runtime_pack(repo_root: Path, arch: str) -> Path | None:
    """Return the newest Release runtime pack for arch, or None."""
    base = repo_root / "artifacts" / "bin" / "runtime"
    if not base.is_dir():
        return None
    pattern = "*-{}-Release-{}".format(host_os(), arch)
    candidates = sorted((p for p in base.glob(pattern) if p.is_dir()), reverse=True)
    return candidates[0] if candidates else None


def find_native_aot_dir(repo_root: Path, arch: str) -> Path | None:
    """Return the Checked CoreCLR directory if it holds both aotsdk/ and ilc/."""
    candidate = repo_root / "artifacts" / "bin" / "coreclr" / "{}.{}.Checked".format(host_os(), arch)
    if (candidate / "aotsdk").is_dir() and (candidate / "ilc").is_dir():
        return candidate
    return None


def core_run_path(layout: RuntimeLayout) -> Path:
    """Path of the CoreRun host inside the checked CoreCLR directory."""
    if layout.checked_dir is None:
        raise ValueError("CoreRun requires a checked CoreCLR directory")
    name = "CoreRun.exe" if host_os() == "windows" else "corerun"
    return layout.checked_dir / name


def dotnet_script_path(layout: RuntimeLayout) -> Path:
    """Path of the repo-local dotnet wrapper script (dotnet.cmd / dotnet.sh)."""
    if layout.repo_root is None:
        raise ValueError("The dotnet script requires a local runtime repository")
    return layout.repo_root / ("dotnet.cmd" if host_os() == "windows" else "dotnet.sh")


def ilc_path(layout: RuntimeLayout) -> Path:
    """Path of the ilc compiler inside the NativeAOT toolchain directory."""
    if layout.native_aot_dir is None:
        raise ValueError("ilc requires a NativeAOT toolchain directory")
    return layout.native_aot_dir / "ilc" / executable_name("ilc")

