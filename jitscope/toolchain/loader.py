"""Loader helper app: build once per SDK, copy next to the target assembly.

WHY: To get a listing without running the user's Main(), a tiny helper
app loads the target assembly and asks the JIT to compile just the
selected members. It has to target the same framework as the user's
project and is rebuilt whenever jitscope or the installed SDK changes.

HOW: The C# sources ship as package data (jitscope/templates). The first
run for a (jitscope version, target framework, SDK version) triple
writes them to a cache directory under the temp folder and runs
'dotnet build -c Release'. The resulting dll and runtimeconfig.json are
copied into the output folder of the user's build.

RULES:
- Destination already has both files → nothing to do
- Cache already has both files → copy only, no build
- Unparseable 'dotnet --version' output → a random folder name (no reuse)
- Build without the expected binaries → ToolInvocationError with the
  build output
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from collections.abc import Callable
from importlib import resources
from pathlib import Path

from jitscope import __version__
from jitscope.config import DOTNET_EXECUTABLE, LOADER_NAME
from jitscope.runner import CancellationToken, ProcessInvocation, ProcessRunner
from jitscope.toolchain.errors import ToolInvocationError

logger = logging.getLogger(__name__)

_TEMPLATE_PACKAGE = "jitscope.templates"


def read_template(name: str) -> str:
    """Read a bundled template, e.g. "JitscopeLoader.csproj.template"."""
    return resources.files(_TEMPLATE_PACKAGE).joinpath(name).read_text(encoding="utf-8")


class LoaderAppManager:
    """Builds and caches the loader app.

    RULES:
    - cache_root defaults to the system temp directory
    - All processes go through the shared ProcessRunner
    """

    def __init__(
        self,
        runner: ProcessRunner,
        cache_root: str | Path | None = None,
        dotnet: str = DOTNET_EXECUTABLE,
    ) -> None:
        self._runner = runner
        self._cache_root = Path(cache_root) if cache_root is not None else Path(tempfile.gettempdir())
        self._dotnet = dotnet

    async def loader_dir(self, target_framework: str, token: CancellationToken | None = None) -> Path:
        """Cache directory for this jitscope version, framework and SDK."""
        result = await self._runner.run(
            ProcessInvocation(self._dotnet, ("--version",), cancellation=token)
        )
        logger.info("dotnet --version: %s (%s)", result.stdout, result.stderr)
        if token is not None:
            token.raise_if_cancelled()

        sdk_version = result.stdout.strip()
        if not sdk_version or not sdk_version[0].isdigit():
            sdk_version = uuid.uuid4().hex

        folder = "{}_{}_{}".format(__version__, target_framework, sdk_version)
        return self._cache_root / LOADER_NAME / folder

    async def ensure_copied_to(
        self,
        target_framework: str,
        destination: str | Path,
        token: CancellationToken | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> None:
        """Make sure the loader dll and runtimeconfig.json sit in destination.

        Args:
            target_framework: Framework of the user's project, e.g. net8.0.
            destination: Output folder of the user's build.
            token: Cancellation token for the run.
            on_status: Optional progress callback.

        Raises:
            ToolInvocationError: destination is missing or the build failed.
            RunCancelled: the run was cancelled.
        """
        status = on_status or (lambda message: None)
        destination = Path(destination)
        if not destination.is_dir():
            raise ToolInvocationError("ERROR: destination directory was not found: {}".format(destination))

        dll_name = LOADER_NAME + ".dll"
        json_name = LOADER_NAME + ".runtimeconfig.json"
        if (destination / dll_name).is_file() and (destination / json_name).is_file():
            return

        status("Getting SDK version...")
        directory = await self.loader_dir(target_framework, token)
        out_dir = directory / "out"
        out_dll = out_dir / dll_name
        out_json = out_dir / json_name

        if not (out_dll.is_file() and out_json.is_file()):
            status("Building '{}' project...".format(LOADER_NAME))
            await self._build(directory, target_framework, out_dll, out_json, token)

        if token is not None:
            token.raise_if_cancelled()
        shutil.copyfile(out_dll, destination / dll_name)
        shutil.copyfile(out_json, destination / json_name)

    async def _build(
        self,
        directory: Path,
        target_framework: str,
        out_dll: Path,
        out_json: Path,
        token: CancellationToken | None,
    ) -> None:
        directory.mkdir(parents=True, exist_ok=True)

        cs_file = directory / (LOADER_NAME + ".cs")
        if not cs_file.is_file():
            cs_file.write_text(read_template(LOADER_NAME + ".cs.template"), encoding="utf-8")

        csproj = directory / (LOADER_NAME + ".csproj")
        if not csproj.is_file():
            content = read_template(LOADER_NAME + ".csproj.template").replace("%tfm%", target_framework)
            csproj.write_text(content, encoding="utf-8")

        if token is not None:
            token.raise_if_cancelled()

        result = await self._runner.run(
            ProcessInvocation(
                self._dotnet,
                ("build", "-c", "Release"),
                working_directory=str(directory),
                cancellation=token,
            )
        )
        if token is not None:
            token.raise_if_cancelled()

        if not out_dll.is_file() or not out_json.is_file():
            raise ToolInvocationError(
                "ERROR: 'dotnet build' did not produce expected binaries ('{}' and '{}'):\n{}\n\n{}".format(
                    out_dll, out_json, result.stdout, result.stderr
                )
            )
