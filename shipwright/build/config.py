"""Build configuration for Shipwright builds.

This module contains the build option flags and the configuration model that
lets callers override the derived build name, code, output directory, options
and scenes.
"""

from __future__ import annotations

import enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pydantic

from shipwright.utils.exceptions import ConfigurationError


class BuildOption(enum.IntFlag):
    """Flags passed through to the native build step."""

    NONE = 0
    DEVELOPMENT = 1  # Verbose build log
    ALLOW_DEBUGGING = 2  # Bootloader and import debugging in the artifact
    ONEFILE = 4  # Single executable file instead of a directory
    WINDOWED = 8  # GUI application without a console window
    CLEAN = 16  # Discard caches of previous builds
    NO_UPX = 32  # Never compress binaries with UPX
    STRIP = 64  # Strip symbol tables from binaries

    @classmethod
    def parse(cls, value: Union[int, str, Iterable[str], "BuildOption", None]) -> "BuildOption":
        """Parse flags given as number, name, ``A|B`` string or list of names."""
        if value is None:
            return cls.NONE
        if isinstance(value, BuildOption):
            return value
        if isinstance(value, int):
            return cls(value)
        names = value.split("|") if isinstance(value, str) else list(value)
        options = cls.NONE
        for name in names:
            name = str(name).strip().upper().replace("-", "_")
            if not name:
                continue
            try:
                options |= cls[name]
            except KeyError:
                raise ValueError(f"Unknown build option: {name}") from None
        return options

    def to_pyinstaller_args(self) -> List[str]:
        """Convert the flags to PyInstaller command-line arguments.

        Returns:
            List of command-line arguments for PyInstaller.
        """
        args = ["--onefile" if BuildOption.ONEFILE in self else "--onedir"]
        args.append("--windowed" if BuildOption.WINDOWED in self else "--console")
        if BuildOption.DEVELOPMENT in self:
            args.extend(["--log-level", "DEBUG"])
        if BuildOption.ALLOW_DEBUGGING in self:
            args.extend(["--debug", "all"])
        if BuildOption.CLEAN in self:
            args.append("--clean")
        if BuildOption.NO_UPX in self:
            args.append("--noupx")
        if BuildOption.STRIP in self:
            args.append("--strip")
        return args


NameStrategy = Callable[[Any], str]
ScenesStrategy = Callable[[Any], List[str]]


class BuildConfig(pydantic.BaseModel):
    """Configuration of one binary build.

    Every override accepts either a value or a strategy: a callable receiving
    the builder, evaluated during the prepare stage. Unset overrides fall back
    to the derived defaults.

    Attributes:
        root: Build root directory, defaults to ``<project>/Builds``
        name: Build name override
        code: Version/build code override
        output: Output directory override
        options: Build option flags
        scenes: Ordered scene identifiers passed to the native build
        auto_run: Run the artifact after a successful build
        run_args: Arguments passed to the artifact when it is run
    """

    model_config = pydantic.ConfigDict(arbitrary_types_allowed=True)

    root: Optional[str] = None
    name: Optional[Union[str, NameStrategy]] = None
    code: Optional[Union[str, NameStrategy]] = None
    output: Optional[Union[str, NameStrategy]] = None
    options: Any = None
    scenes: Optional[Union[List[str], ScenesStrategy]] = None
    auto_run: bool = False
    run_args: List[str] = pydantic.Field(default_factory=list)

    @pydantic.field_validator("options", mode="before")
    @classmethod
    def validate_options(cls, v: Any) -> Any:
        """Convert option names to flags."""
        if v is None or callable(v):
            return v
        return BuildOption.parse(v)

    @pydantic.field_validator("root", "code", mode="before")
    @classmethod
    def validate_text(cls, v: Any) -> Any:
        """Accept numbers where text is expected."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    def resolve(self, field: str, builder: Any, default: Callable[[], Any]) -> Any:
        """Resolve an override for ``builder``.

        Args:
            field: Name of the override field
            builder: Builder passed to strategies
            default: Factory of the derived default

        Returns:
            The override value, the strategy result, or the default
        """
        value = getattr(self, field)
        if value is None:
            return default()
        if callable(value):
            value = value(builder)
            if value is None:
                return default()
        return value

    @classmethod
    def from_config(cls, section: Optional[Dict[str, Any]]) -> "BuildConfig":
        """Create a BuildConfig from the ``build`` configuration section.

        Raises:
            ConfigurationError: If the section holds invalid values
        """
        section = section or {}
        values = {
            key: section.get(key)
            for key in ("root", "auto_run", "options", "scenes", "run_args")
            if section.get(key) not in (None, "")
        }
        if not values.get("scenes"):
            values.pop("scenes", None)
        try:
            return cls(**values)
        except (pydantic.ValidationError, ValueError) as e:
            raise ConfigurationError(f"Invalid build configuration: {e}", config_key="build") from e
