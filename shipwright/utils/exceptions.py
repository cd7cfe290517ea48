from __future__ import annotations

from typing import Any, Dict, Optional


class ShipwrightError(Exception):
    """Base exception for all Shipwright errors."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            **kwargs: Additional error information
        """
        self.message = message
        details: Dict[str, Any] = dict(kwargs.pop("details", None) or {})
        details.update({key: value for key, value in kwargs.items() if value is not None})
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        """String representation."""
        return f"{self.message}"


class ApplicationError(ShipwrightError):
    """Exception raised for application-related errors."""

    pass


class ManagerError(ShipwrightError):
    """Base exception for manager-related errors."""

    def __init__(self, message: str, manager_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize manager error.

        Args:
            message: Error message
            manager_name: Name of the affected manager
            **kwargs: Additional error information
        """
        super().__init__(message, manager_name=manager_name, **kwargs)
        self.manager_name = manager_name

    def __str__(self) -> str:
        """String representation."""
        if self.manager_name:
            return f"{self.message} (Manager: {self.manager_name})"
        return super().__str__()


class ManagerInitializationError(ManagerError):
    """Exception raised when a manager fails to initialize."""

    pass


class ManagerShutdownError(ManagerError):
    """Exception raised when a manager fails to shut down cleanly."""

    pass


class ConfigurationError(ShipwrightError):
    """Exception raised for configuration-related errors."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a ConfigurationError.

        Args:
            message: A descriptive error message.
            config_key: The configuration key that caused the error.
            **kwargs: Additional error information.
        """
        super().__init__(message, config_key=config_key, **kwargs)
        self.config_key = config_key


class CommandError(ShipwrightError):
    """Exception raised when an external command cannot be handled."""

    def __init__(self, message: str, command: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a CommandError.

        Args:
            message: A descriptive error message.
            command: The binary that was being invoked.
            **kwargs: Additional error information.
        """
        super().__init__(message, command=command, **kwargs)
        self.command = command


class CommandSpawnError(CommandError):
    """Exception raised when a binary cannot be launched at all.

    A command that starts and exits with a non-zero code is not an error; it is
    reported through ``CommandResult.code``.
    """

    pass


class TaskError(ShipwrightError):
    """Error related to task pipeline usage."""

    def __init__(self, message: str, task_name: Optional[str] = None, **kwargs: Any) -> None:
        """
        Initialize task error.

        Args:
            message: Error message
            task_name: Name of the affected task
            **kwargs: Additional error information
        """
        super().__init__(message, task_name=task_name, **kwargs)
        self.task_name = task_name

    def __str__(self) -> str:
        """String representation."""
        if self.task_name:
            return f"{self.message} (Task: {self.task_name})"
        return super().__str__()


class BuildError(ShipwrightError):
    """Exception raised for errors during the build process."""

    pass


class BuildAbortError(BuildError):
    """Exception raised when the packaging operation must be aborted.

    Raised for missing, empty or corrupt preference sources, output directory
    creation failures and native build failures.
    """

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a BuildAbortError.

        Args:
            message: A descriptive error message.
            stage: The pipeline stage that aborted.
            **kwargs: Additional error information.
        """
        super().__init__(message, stage=stage, **kwargs)
        self.stage = stage


class PreferencesError(ShipwrightError):
    """Exception raised when a preferences store cannot be read or written."""

    def __init__(self, message: str, file: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize a PreferencesError.

        Args:
            message: A descriptive error message.
            file: The preferences file involved.
            **kwargs: Additional error information.
        """
        super().__init__(message, file=file, **kwargs)
        self.file = file


class UnresolvedReferenceError(PreferencesError):
    """Exception raised when a ``${Namespace.Key}`` reference has no value."""

    def __init__(self, message: str, reference: Optional[str] = None, **kwargs: Any) -> None:
        """Initialize an UnresolvedReferenceError.

        Args:
            message: A descriptive error message.
            reference: The reference path that failed to resolve.
            **kwargs: Additional error information.
        """
        super().__init__(message, reference=reference, **kwargs)
        self.reference = reference
