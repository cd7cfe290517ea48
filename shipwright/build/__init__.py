"""Build system for Shipwright.

This package turns the build environment into versioned, platform-specific
artifacts.

Modules:
    builder: Binary builder task handler and build naming
    backend: Native build backends and the build settings surface
    config: Build options and override configuration
    prefs: Preferences store and its build-time preprocessing
    utils: Utility functions for the build process
"""

from __future__ import annotations

from shipwright.build.backend import BuildOutcome, BuildSettings, PlatformBackend, PyInstallerBackend
from shipwright.build.builder import BinaryBuilder, BuildDescriptor
from shipwright.build.config import BuildConfig, BuildOption
from shipwright.build.prefs import Preferences, PrefsCipher, PrefsPreprocessor, PreprocessOutcome, parse_key

__all__ = [
    "BinaryBuilder",
    "BuildConfig",
    "BuildDescriptor",
    "BuildOption",
    "BuildOutcome",
    "BuildSettings",
    "PlatformBackend",
    "Preferences",
    "PrefsCipher",
    "PrefsPreprocessor",
    "PreprocessOutcome",
    "PyInstallerBackend",
    "parse_key",
]
