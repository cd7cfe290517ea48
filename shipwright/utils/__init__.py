"""Utility functions and classes for Shipwright."""

from shipwright.utils.exceptions import (
    ApplicationError,
    BuildAbortError,
    BuildError,
    CommandError,
    CommandSpawnError,
    ConfigurationError,
    ManagerError,
    ManagerInitializationError,
    ManagerShutdownError,
    PreferencesError,
    ShipwrightError,
    TaskError,
    UnresolvedReferenceError,
)
