"""Unit tests for the exceptions module."""

import pytest

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


def test_shipwright_error():
    """Test the base ShipwrightError class."""
    error = ShipwrightError("Test error message")
    assert str(error) == "Test error message"
    assert error.message == "Test error message"
    assert error.details == {}

    # Details and keyword information are merged, None values dropped
    error = ShipwrightError("Test with details", details={"key": "value"}, number=123, empty=None)
    assert error.details == {"key": "value", "number": 123}


def test_manager_error():
    """Test the ManagerError class."""
    error = ManagerError("Manager error message")
    assert str(error) == "Manager error message"
    assert "manager_name" not in error.details

    error = ManagerError("Manager error with name", manager_name="TestManager")
    assert error.details["manager_name"] == "TestManager"
    assert str(error) == "Manager error with name (Manager: TestManager)"


def test_manager_error_subclasses():
    assert issubclass(ManagerInitializationError, ManagerError)
    assert issubclass(ManagerShutdownError, ManagerError)
    error = ManagerInitializationError("Init failed", manager_name="config_manager")
    assert error.manager_name == "config_manager"


def test_configuration_error():
    error = ConfigurationError("Bad value", config_key="build.options")
    assert error.config_key == "build.options"
    assert error.details["config_key"] == "build.options"


def test_command_errors():
    error = CommandSpawnError("Failed to launch git", command="git")
    assert isinstance(error, CommandError)
    assert error.command == "git"


def test_task_error():
    assert str(TaskError("Report reused")) == "Report reused"
    assert str(TaskError("Report reused", task_name="Binary")) == "Report reused (Task: Binary)"


def test_build_abort_error():
    error = BuildAbortError("No artifact", stage="build")
    assert isinstance(error, BuildError)
    assert error.stage == "build"
    assert error.details == {"stage": "build"}


def test_preferences_errors():
    error = UnresolvedReferenceError("Unresolved reference ${Env.X}", reference="Env.X", file="Prefs.json")
    assert isinstance(error, PreferencesError)
    assert error.reference == "Env.X"
    assert error.file == "Prefs.json"
    assert error.details == {"reference": "Env.X", "file": "Prefs.json"}


@pytest.mark.parametrize(
    "error_class",
    [ApplicationError, ConfigurationError, CommandError, TaskError, BuildError, PreferencesError],
)
def test_all_errors_are_shipwright_errors(error_class):
    with pytest.raises(ShipwrightError):
        raise error_class("failure")
