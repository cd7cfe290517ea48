"""Builder for versioned, platform-specific binaries.

This module contains the :class:`BinaryBuilder` task handler. Run through a
:class:`~shipwright.core.task_pipeline.TaskPipeline`, it derives the build
name, code and output directory from the environment, runs the preferences
preprocessor and the native build backend, and archives the debug symbols of
every build, failed ones included.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional

import structlog

from shipwright.build.backend import BuildSettings, PlatformBackend
from shipwright.build.config import BuildConfig, BuildOption
from shipwright.build.prefs import PrefsPreprocessor
from shipwright.core.command import CommandRunner
from shipwright.core.const_registry import CacheToken, ConstRegistry, constants
from shipwright.core.environment import Environment, PlatformType
from shipwright.core.task_pipeline import TaskHandler, TaskReport
from shipwright.utils.exceptions import BuildAbortError, CommandError
from shipwright.utils.files import normalize_path, path_join, zip_directory

BUILD_ROOT_KEY = "build_root"
DEFAULT_BUILD_DIR = "Builds"
SYMBOL_DIR = "Symbol"
PLACEHOLDER = "X"

_INVALID_IDENTIFIER = re.compile(r"[^A-Za-z0-9_ \-]")


def sanitize_identifier(value: str, length: int = 3) -> str:
    """Uppercased prefix of ``value`` with unsupported characters replaced."""
    return _INVALID_IDENTIFIER.sub(PLACEHOLDER, value or "")[:length].upper()


def name_prefix(environment: Environment) -> str:
    """``{SOL}-{CHA}-{ModeLetter}{LogLevelDigit}`` part of a build name."""
    mode = (environment.mode or "D")[0]
    return (
        f"{sanitize_identifier(environment.solution)}-"
        f"{sanitize_identifier(environment.channel)}-"
        f"{mode}{int(environment.log_level)}"
    )


def next_sequence(directory: str, date: str) -> int:
    """Sequence number following the builds of ``date`` found in ``directory``.

    Every build of that day counts, whatever its name prefix, so build codes
    never repeat within one output directory.
    """
    pattern = re.compile(rf"-{date}(\d+)")
    highest = 0
    if os.path.isdir(directory):
        for entry in os.listdir(directory):
            match = pattern.search(entry)
            if match:
                highest = max(highest, int(match.group(1)))
    return highest + 1


@dataclass(frozen=True)
class BuildDescriptor:
    """Everything derived for one build invocation."""
    root: str
    channel: str
    platform: PlatformType
    name: str
    code: str
    output: str
    file: str
    options: BuildOption = BuildOption.NONE
    scenes: List[str] = field(default_factory=list)

    @property
    def symbol_archive(self) -> str:
        return path_join(self.root, SYMBOL_DIR, self.channel, self.platform.value, f"{self.name}.zip")


class BinaryBuilder(TaskHandler):
    """Builds one binary through prepare, build and finish stages.

    Attributes:
        environment: Build environment the defaults are derived from
        backend: Native build step
        config: Overrides and run settings
        preprocessor: Preferences preprocessor run first in the prepare stage
    """

    def __init__(
            self,
            environment: Environment,
            backend: PlatformBackend,
            config: Optional[BuildConfig] = None,
            preprocessor: Optional[PrefsPreprocessor] = None,
            runner: Optional[CommandRunner] = None,
            registry: ConstRegistry = constants,
            clock: Callable[[], datetime] = datetime.now,
            logger: Any = None,
    ) -> None:
        self.environment = environment
        self.backend = backend
        self.config = config or BuildConfig()
        self.preprocessor = preprocessor
        self._runner = runner or CommandRunner()
        self._registry = registry
        self._root_token: Optional[CacheToken] = None
        self._clock = clock
        self._logger = logger or structlog.get_logger("binary")
        self.descriptor: Optional[BuildDescriptor] = None
        self.settings: Optional[BuildSettings] = None
        self.symbol_archive: str = ""

    @property
    def root(self) -> str:
        """Build root: registry ``build_root``, then configuration, then ``<project>/Builds``."""
        value, self._root_token = self._registry.get_custom(BUILD_ROOT_KEY, None, self._root_token)
        root = value or self.config.root
        if not root:
            return path_join(self.environment.project_path, DEFAULT_BUILD_DIR)
        if not os.path.isabs(root):
            return path_join(self.environment.project_path, root)
        return normalize_path(root)

    @property
    def channel(self) -> str:
        return self.environment.channel

    @property
    def platform(self) -> PlatformType:
        return self.environment.platform

    @property
    def name(self) -> str:
        return self._field("name")

    @property
    def code(self) -> str:
        return self._field("code")

    @property
    def output(self) -> str:
        return self._field("output")

    @property
    def file(self) -> str:
        return self._field("file")

    @property
    def options(self) -> BuildOption:
        return self.descriptor.options if self.descriptor else BuildOption.NONE

    @property
    def scenes(self) -> List[str]:
        return list(self.descriptor.scenes) if self.descriptor else []

    def _field(self, attribute: str) -> str:
        return getattr(self.descriptor, attribute) if self.descriptor else ""

    def default_output(self) -> str:
        return path_join(self.root, self.channel, self.platform.value)

    def describe(self) -> BuildDescriptor:
        """Derive the descriptor of this build without touching the file system."""
        root = self.root
        output = self.config.resolve("output", self, self.default_output)
        output = normalize_path(output if os.path.isabs(output) else path_join(root, output))

        prefix = name_prefix(self.environment)
        date = self._clock().strftime("%Y%m%d")
        stamp = f"{date}{next_sequence(output, date)}"

        name = str(self.config.resolve("name", self, lambda: f"{prefix}-{stamp}"))
        code = str(self.config.resolve("code", self, lambda: stamp))
        options = BuildOption.parse(self.config.resolve("options", self, lambda: BuildOption.NONE))
        scenes = list(self.config.resolve("scenes", self, list))

        return BuildDescriptor(
            root=root,
            channel=self.channel,
            platform=self.platform,
            name=name,
            code=code,
            output=output,
            file=self.backend.artifact_path(output, name, self.platform, options),
            options=options,
            scenes=scenes,
        )

    async def preprocess(self, report: TaskReport) -> None:
        """Prepare stage."""
        if self.preprocessor is not None:
            outcome = await self.preprocessor.run()
            report.extras["prefs"] = outcome
            if not outcome.succeeded:
                report.abort(outcome.error or "Preferences preprocessing failed")
                return

        descriptor = self.describe()
        try:
            os.makedirs(descriptor.output, exist_ok=True)
        except OSError as e:
            raise BuildAbortError(
                f"Cannot create output directory {descriptor.output}: {e}", stage="prepare"
            ) from e

        settings = self.backend.settings_for(descriptor.platform)
        if settings.platform != descriptor.platform:
            raise BuildAbortError(
                f"Build settings target {settings.platform.value}, not {descriptor.platform.value}",
                stage="prepare",
            )
        settings.bundle_version = self.environment.version
        settings.build_number = descriptor.code
        if descriptor.platform == PlatformType.ANDROID:
            settings.version_code = int(descriptor.code) if descriptor.code.isdigit() else None
            settings.debug_symbol_level = "full"
            settings.debug_symbol_format = "zip"
        settings.scripts_only = False
        settings.export_project = False

        self.descriptor = descriptor
        self.settings = settings
        report.extras["descriptor"] = descriptor
        self._logger.info(f"Prepared build {descriptor.name} ({descriptor.code}) into {descriptor.output}")

    async def process(self, report: TaskReport) -> None:
        """Build stage.

        Raises:
            BuildAbortError: If the native build fails or leaves no artifact
        """
        outcome = await self.backend.build(self.descriptor, self.settings)
        report.extras["build"] = outcome
        if not outcome.succeeded:
            raise BuildAbortError(outcome.error or f"Build of {self.name} failed", stage="build")
        if not os.path.exists(self.file):
            raise BuildAbortError(f"Build of {self.name} produced no artifact at {self.file}", stage="build")
        self._logger.info(f"Built {self.file}")

    async def postprocess(self, report: TaskReport) -> None:
        """Finish stage: back up symbols, then optionally run the artifact."""
        if self.descriptor is None:
            return

        self.symbol_archive = self.backup_symbols()
        if self.symbol_archive:
            report.extras["symbols"] = self.symbol_archive

        if self.config.auto_run and not report.failed:
            report.extras["ran"] = await self.run(*self.config.run_args)

    def backup_symbols(self) -> str:
        """Archive the symbol set of this build.

        Returns:
            Path of the archive, or an empty string when nothing was archived
        """
        symbols = self.backend.symbols_path(self.descriptor)
        if not os.path.isdir(symbols):
            self._logger.warning(f"No symbols found for {self.name} at {symbols}")
            return ""

        archive = self.descriptor.symbol_archive
        if not zip_directory(symbols, archive):
            self._logger.error(f"Failed to archive symbols of {self.name} to {archive}")
            return ""
        self._logger.info(f"Archived symbols of {self.name} to {archive}")
        return archive

    async def run(self, *args: str) -> bool:
        """Launch the built artifact.

        Returns:
            Whether the artifact was started and returned, regardless of its exit code
        """
        if self.descriptor is None or not os.path.exists(self.file):
            self._logger.error(f"Nothing to run for {self.name or self.environment.solution}")
            return False

        platform = self.platform
        if platform in (PlatformType.WINDOWS, PlatformType.LINUX):
            executable = self.backend.executable_path(self.descriptor)
            command = [executable, *args]
            cwd = os.path.dirname(executable)
        elif platform == PlatformType.OSX:
            command = ["open", "-W", self.file]
            if args:
                command.extend(["--args", *args])
            cwd = self.output
        elif platform == PlatformType.ANDROID:
            command = ["adb", "install", "-r", self.file]
            cwd = self.output
        else:
            self._logger.warning(f"Running {platform.value} artifacts is not supported")
            return False

        try:
            result = await self._runner.run(command[0], *command[1:], cwd=cwd)
        except CommandError as e:
            self._logger.error(f"Failed to run {self.file}: {e}")
            return False

        self._logger.info(f"{self.name} exited with code {result.code}")
        return True
