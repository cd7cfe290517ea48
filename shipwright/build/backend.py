"""Native build backends.

A backend turns a prepared :class:`~shipwright.build.builder.BuildDescriptor`
into an artifact. The default backend packages a Python entry point with
PyInstaller, run as a child process through the command runner.
"""

from __future__ import annotations

import abc
import os
import pathlib
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import aiofiles
import structlog

from shipwright.build.config import BuildOption
from shipwright.build.utils import collect_resources, version_text
from shipwright.core.command import CommandResult, CommandRunner
from shipwright.core.environment import PlatformType
from shipwright.utils.exceptions import CommandError
from shipwright.utils.files import normalize_path, path_join

if TYPE_CHECKING:
    from shipwright.build.builder import BuildDescriptor

SYMBOLS_SUFFIX = "_Symbols"


@dataclass
class BuildSettings:
    """Settings surface written during the prepare stage.

    Attributes:
        platform: Target platform the settings belong to
        bundle_version: Application version
        build_number: Build code
        version_code: Integer build code for platforms that need one
        scripts_only: Only rebuild scripts
        export_project: Export a native project instead of an artifact
        debug_symbol_level: Amount of debug symbols to generate
        debug_symbol_format: Packaging of generated debug symbols
    """
    platform: PlatformType
    bundle_version: str = ""
    build_number: str = ""
    version_code: Optional[int] = None
    scripts_only: bool = False
    export_project: bool = False
    debug_symbol_level: str = "none"
    debug_symbol_format: str = "none"


@dataclass
class BuildOutcome:
    """Result of a native build step."""
    succeeded: bool
    artifact: str = ""
    symbols: str = ""
    error: Optional[str] = None
    command: Optional[CommandResult] = None
    extras: Dict[str, Any] = field(default_factory=dict)


class PlatformBackend(abc.ABC):
    """Native build step for one or more platforms."""

    name: str = "backend"

    def settings_for(self, platform: PlatformType) -> BuildSettings:
        """Create the settings surface for ``platform``."""
        return BuildSettings(platform=platform)

    def artifact_path(self, output: str, name: str, platform: PlatformType, options: BuildOption) -> str:
        """Path of the artifact produced for ``name`` in ``output``."""
        return path_join(output, f"{name}{platform.artifact_suffix}")

    def executable_path(self, descriptor: "BuildDescriptor") -> str:
        """Path of the program to launch for a produced artifact."""
        return descriptor.file

    def symbols_path(self, descriptor: "BuildDescriptor") -> str:
        """Directory holding the debug symbols of a build, existing or not."""
        return path_join(descriptor.output, f"{descriptor.name}{SYMBOLS_SUFFIX}")

    @abc.abstractmethod
    async def build(self, descriptor: "BuildDescriptor", settings: BuildSettings) -> BuildOutcome:
        """Produce the artifact at ``descriptor.file``.

        Failures are returned in the outcome, not raised.
        """


class PyInstallerBackend(PlatformBackend):
    """Packages a Python entry point with PyInstaller.

    The PyInstaller work directory (analysis tables, warnings and cross
    reference reports) is kept next to the artifact as its symbol set.

    Attributes:
        entry_point: Main script of the application
        hidden_imports: Modules to include that may not be detected
        icon_path: Application icon
        resources_dir: Directory scanned for data files to bundle
        python: Interpreter used to run PyInstaller
    """

    name = "pyinstaller"

    def __init__(
            self,
            runner: CommandRunner,
            entry_point: str = "main.py",
            hidden_imports: Optional[List[str]] = None,
            icon_path: Optional[str] = None,
            resources_dir: Optional[str] = None,
            python: Optional[str] = None,
            logger: Any = None,
    ) -> None:
        self._runner = runner
        self.entry_point = entry_point
        self.hidden_imports = list(hidden_imports or [])
        self.icon_path = icon_path
        self.resources_dir = resources_dir
        self.python = python or sys.executable
        self._logger = logger or structlog.get_logger("pyinstaller")

    @classmethod
    def from_config(
            cls,
            section: Optional[Dict[str, Any]],
            runner: CommandRunner,
            project_path: str,
            logger: Any = None,
    ) -> "PyInstallerBackend":
        """Create the backend from the ``build.backend`` configuration section.

        Relative paths are resolved against the project.
        """
        section = section or {}

        def resolve(value: Optional[str]) -> Optional[str]:
            if not value:
                return None
            return value if os.path.isabs(value) else path_join(project_path, value)

        return cls(
            runner,
            entry_point=resolve(section.get("entry_point")) or path_join(project_path, "main.py"),
            hidden_imports=section.get("hidden_imports") or [],
            icon_path=resolve(section.get("icon_path")),
            resources_dir=resolve(section.get("resources_dir")),
            logger=logger,
        )

    def artifact_path(self, output: str, name: str, platform: PlatformType, options: BuildOption) -> str:
        if BuildOption.ONEFILE in options:
            suffix = ".exe" if platform == PlatformType.WINDOWS else ""
            return path_join(output, f"{name}{suffix}")
        if platform == PlatformType.OSX and BuildOption.WINDOWED in options:
            return path_join(output, f"{name}.app")
        return path_join(output, name)

    def executable_path(self, descriptor: "BuildDescriptor") -> str:
        if os.path.isdir(descriptor.file) and not descriptor.file.endswith(".app"):
            suffix = ".exe" if descriptor.platform == PlatformType.WINDOWS else ""
            return path_join(descriptor.file, f"{descriptor.name}{suffix}")
        return descriptor.file

    def arguments(self, descriptor: "BuildDescriptor") -> List[str]:
        """Convert a descriptor to PyInstaller command-line arguments."""
        symbols = self.symbols_path(descriptor)
        args = ["-m", "PyInstaller", "--noconfirm"]
        args.extend(descriptor.options.to_pyinstaller_args())
        args.extend(["--name", descriptor.name])
        args.extend(["--distpath", descriptor.output])
        args.extend(["--workpath", symbols])
        args.extend(["--specpath", symbols])

        if self.icon_path:
            args.extend(["--icon", self.icon_path])

        for module in self.hidden_imports:
            args.extend(["--hidden-import", module])

        if self.resources_dir:
            for src_path, dest_path in collect_resources(self.resources_dir).items():
                args.extend(["--add-data", f"{src_path}{os.pathsep}{dest_path}"])

        args.append(self.entry_point)
        # Further scripts are analysed together with the entry point.
        args.extend(descriptor.scenes)
        return args

    async def build(self, descriptor: "BuildDescriptor", settings: BuildSettings) -> BuildOutcome:
        if not os.path.isfile(self.entry_point):
            return BuildOutcome(False, error=f"Entry point script not found: {self.entry_point}")

        args = self.arguments(descriptor)
        self._logger.info(f"Running PyInstaller for {descriptor.name} ({settings.bundle_version})")
        try:
            result = await self._runner.run(
                self.python, *args, cwd=os.path.dirname(self.entry_point) or None, print_output=True
            )
        except CommandError as e:
            return BuildOutcome(False, error=str(e))

        symbols = self.symbols_path(descriptor)
        if not result.succeeded:
            return BuildOutcome(
                False,
                symbols=symbols,
                error=f"PyInstaller failed with return code {result.code}",
                command=result,
            )

        if not os.path.exists(descriptor.file):
            return BuildOutcome(
                False,
                symbols=symbols,
                error=f"Build failed: Output not found at {descriptor.file}",
                command=result,
            )

        await self._post_process(descriptor, settings)
        return BuildOutcome(True, artifact=normalize_path(descriptor.file), symbols=symbols, command=result)

    async def _post_process(self, descriptor: "BuildDescriptor", settings: BuildSettings) -> None:
        """Write the version file and mark the executable as runnable."""
        artifact = pathlib.Path(descriptor.file)
        version_file = artifact / "version.txt" if artifact.is_dir() else artifact.parent / "version.txt"
        async with aiofiles.open(version_file, "w", encoding="utf-8") as f:
            await f.write(version_text(descriptor.name, settings.bundle_version, settings.build_number))
        self._logger.debug(f"Created version file: {version_file}")

        if descriptor.platform in (PlatformType.LINUX, PlatformType.OSX):
            executable = pathlib.Path(self.executable_path(descriptor))
            if executable.is_file():
                executable.chmod(executable.stat().st_mode | 0o111)
