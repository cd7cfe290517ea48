"""Build environment metadata.

The environment describes who is building what: the project location, the
solution and channel identifiers, the version, the build mode, the RFC 5424 log
level and the target platform. It is also the ``Env`` namespace used when
preferences are evaluated (``${Env.ProjectPath}``).
"""

from __future__ import annotations

import logging
import os
import platform as platform_module
from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from shipwright.utils.files import normalize_path, path_join


class LogLevel(IntEnum):
    """RFC 5424 severity levels."""
    EMERGENCY = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARN = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7

    def to_logging(self) -> int:
        """Map the severity onto a :mod:`logging` level."""
        if self <= LogLevel.CRITICAL:
            return logging.CRITICAL
        if self == LogLevel.ERROR:
            return logging.ERROR
        if self == LogLevel.WARN:
            return logging.WARNING
        if self == LogLevel.DEBUG:
            return logging.DEBUG
        return logging.INFO

    @classmethod
    def parse(cls, value: Union[int, str, "LogLevel"]) -> "LogLevel":
        """Parse a level given as number, digit string or name."""
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.isdigit():
            return cls(int(text))
        name = text.upper()
        if name == "WARNING":
            name = "WARN"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown log level: {value}") from None


class PlatformType(str, Enum):
    """Target platforms for a build."""
    WINDOWS = "Windows"
    LINUX = "Linux"
    OSX = "OSX"
    ANDROID = "Android"
    IOS = "iOS"
    WEBGL = "WebGL"

    @classmethod
    def current(cls) -> "PlatformType":
        """Resolve the platform the process is running on."""
        system = platform_module.system().lower()
        if system == "windows":
            return cls.WINDOWS
        if system == "darwin":
            return cls.OSX
        return cls.LINUX

    @classmethod
    def parse(cls, value: Union[str, "PlatformType"]) -> "PlatformType":
        """Parse a platform by value or name, case-insensitively."""
        if isinstance(value, PlatformType):
            return value
        text = str(value).strip().lower()
        if text in ("current", ""):
            return cls.current()
        for member in cls:
            if text in (member.value.lower(), member.name.lower()):
                return member
        if text in ("macos", "darwin"):
            return cls.OSX
        raise ValueError(f"Unknown platform: {value}")

    @property
    def artifact_suffix(self) -> str:
        """File suffix of a built artifact on this platform."""
        return {
            PlatformType.WINDOWS: ".exe",
            PlatformType.OSX: ".app",
            PlatformType.ANDROID: ".apk",
        }.get(self, "")


class Environment(BaseModel):
    """Environment of a build invocation.

    Attributes:
        project_path: Root directory of the project being built
        local_path: Per-machine working directory, defaults to ``<project>/Local``
        solution: Solution identifier, defaults to the project directory name
        author: Author of the build
        channel: Distribution channel identifier
        version: Application version
        mode: Build mode, e.g. ``Dev`` or ``Prod``
        log_level: RFC 5424 log level baked into the build
        platform: Target platform
    """

    project_path: str = ""
    local_path: str = ""
    solution: str = ""
    author: str = ""
    channel: str = "Default"
    version: str = "1.0.0"
    mode: str = "Dev"
    log_level: LogLevel = LogLevel.INFO
    platform: PlatformType = Field(default_factory=PlatformType.current)

    # Names usable as ${Env.<Name>}.
    LOOKUP: ClassVar[Dict[str, str]] = {
        "ProjectPath": "project_path",
        "LocalPath": "local_path",
        "Solution": "solution",
        "Author": "author",
        "Channel": "channel",
        "Version": "version",
        "Mode": "mode",
        "Platform": "platform",
        "LogLevel": "log_level",
    }

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        project = normalize_path(data.get("project_path") or os.getcwd())
        data["project_path"] = project
        if not data.get("local_path"):
            data["local_path"] = path_join(project, "Local")
        if not data.get("solution"):
            data["solution"] = os.path.basename(project)
        return data

    @field_validator("local_path")
    @classmethod
    def _normalize_local_path(cls, value: str) -> str:
        return normalize_path(value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _parse_log_level(cls, value: Any) -> LogLevel:
        return LogLevel.parse(value)

    @field_validator("platform", mode="before")
    @classmethod
    def _parse_platform(cls, value: Any) -> PlatformType:
        return PlatformType.parse(value)

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "Environment":
        """Create an environment from the ``environment`` configuration section.

        Empty values fall back to the defaults.
        """
        values: Dict[str, Any] = {}
        for key, value in (section or {}).items():
            if value in (None, "") or key not in cls.model_fields:
                continue
            if key not in ("log_level", "platform") and not isinstance(value, str):
                value = str(value)
            values[key] = value
        return cls(**values)

    def lookup(self, key: str) -> Optional[str]:
        """Resolve ``key`` in the ``Env`` namespace.

        Known environment fields are tried first, then process environment
        variables.

        Returns:
            The string value or None if the key is unknown
        """
        attribute = self.LOOKUP.get(key)
        if attribute is not None:
            value = getattr(self, attribute)
            if isinstance(value, LogLevel):
                return str(int(value))
            if isinstance(value, Enum):
                return str(value.value)
            return str(value)
        return os.environ.get(key)

    def label(self) -> str:
        """Short ``author/channel/version/mode/level`` description."""
        return f"{self.author}/{self.channel}/{self.version}/{self.mode}/{self.log_level.name.title()}"
