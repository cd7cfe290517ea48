"""Unit tests for the build environment."""

import logging

import pytest
from pydantic import ValidationError

from shipwright.core.environment import Environment, LogLevel, PlatformType


class TestLogLevel:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (3, LogLevel.ERROR),
            ("7", LogLevel.DEBUG),
            ("info", LogLevel.INFO),
            ("Warning", LogLevel.WARN),
            (LogLevel.NOTICE, LogLevel.NOTICE),
        ],
    )
    def test_parse(self, value, expected):
        assert LogLevel.parse(value) == expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            LogLevel.parse("loud")

    def test_to_logging(self):
        assert LogLevel.EMERGENCY.to_logging() == logging.CRITICAL
        assert LogLevel.ERROR.to_logging() == logging.ERROR
        assert LogLevel.WARN.to_logging() == logging.WARNING
        assert LogLevel.NOTICE.to_logging() == logging.INFO
        assert LogLevel.DEBUG.to_logging() == logging.DEBUG


class TestPlatformType:
    def test_parse(self):
        assert PlatformType.parse("android") == PlatformType.ANDROID
        assert PlatformType.parse("OSX") == PlatformType.OSX
        assert PlatformType.parse("macos") == PlatformType.OSX
        assert PlatformType.parse("current") == PlatformType.current()

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown platform"):
            PlatformType.parse("Amiga")

    def test_artifact_suffix(self):
        assert PlatformType.WINDOWS.artifact_suffix == ".exe"
        assert PlatformType.ANDROID.artifact_suffix == ".apk"
        assert PlatformType.LINUX.artifact_suffix == ""


class TestEnvironment:
    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        environment = Environment()

        assert environment.project_path == tmp_path.as_posix()
        assert environment.local_path == (tmp_path / "Local").as_posix()
        assert environment.solution == tmp_path.name
        assert environment.channel == "Default"
        assert environment.log_level == LogLevel.INFO
        assert environment.platform == PlatformType.current()

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Environment(log_level="loud")

    def test_from_config(self, project_dir):
        environment = Environment.from_config(
            {
                "project_path": str(project_dir),
                "solution": "",
                "author": None,
                "version": 2,
                "log_level": "Debug",
                "platform": "Windows",
                "unknown": "ignored",
            }
        )

        assert environment.solution == "Solution"
        assert environment.author == ""
        assert environment.version == "2"
        assert environment.log_level == LogLevel.DEBUG
        assert environment.platform == PlatformType.WINDOWS

    def test_lookup(self, environment, monkeypatch):
        monkeypatch.setenv("SHIPWRIGHT_LOOKUP_TEST", "from-process")

        assert environment.lookup("ProjectPath") == environment.project_path
        assert environment.lookup("Channel") == "Channel"
        assert environment.lookup("LogLevel") == "3"
        assert environment.lookup("Platform") == "Linux"
        assert environment.lookup("SHIPWRIGHT_LOOKUP_TEST") == "from-process"

    def test_label(self, environment):
        assert environment.label() == "Tester/Channel/1.2.3/Debug/Error"
