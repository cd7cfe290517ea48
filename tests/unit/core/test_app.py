"""Unit tests for the ApplicationCore."""

from pathlib import Path

import pytest

from shipwright.build.backend import PyInstallerBackend
from shipwright.build.builder import BinaryBuilder
from shipwright.build.prefs import Preferences, PrefsCipher
from shipwright.core.app import ApplicationCore
from shipwright.core.environment import LogLevel, PlatformType
from shipwright.utils.exceptions import ApplicationError

pytestmark = pytest.mark.usefixtures("clean_env", "restore_root_logger")


@pytest.mark.asyncio
async def test_app_core_initialization(temp_config_file: str, project_dir: Path) -> None:
    """Test initializing the application core."""
    app = ApplicationCore(config_path=temp_config_file)
    await app.initialize()

    assert app.is_initialized()
    assert app.get_manager("config_manager") is app.config
    assert app.get_manager("logging_manager") is app.logging
    assert app.get_manager("missing") is None

    environment = app.environment
    assert environment.project_path == project_dir.as_posix()
    assert environment.channel == "Channel"
    assert environment.log_level == LogLevel.ERROR
    assert environment.platform == PlatformType.LINUX

    status = app.status()
    assert status["initialized"] is True
    assert status["environment"] == "Tester/Channel/1.2.3/Debug/Error"
    assert set(status["managers"]) == {"config_manager", "logging_manager"}

    await app.shutdown()
    assert not app.is_initialized()


@pytest.mark.asyncio
async def test_overrides(temp_config_file: str) -> None:
    app = ApplicationCore(
        config_path=temp_config_file,
        overrides={"environment.channel": "Beta", "build.auto_run": True},
    )
    await app.initialize()

    assert app.environment.channel == "Beta"
    assert app.create_builder().config.auto_run is True
    await app.shutdown()


@pytest.mark.asyncio
async def test_initialization_failure(tmp_path: Path) -> None:
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("build:\n  options: ONEFILE\n")

    app = ApplicationCore(config_path=str(config_file))
    with pytest.raises(ApplicationError, match="Failed to initialize application"):
        await app.initialize()
    assert not app.is_initialized()


def test_access_before_initialization() -> None:
    app = ApplicationCore()
    with pytest.raises(ApplicationError):
        _ = app.environment
    with pytest.raises(ApplicationError):
        _ = app.config


@pytest.mark.asyncio
async def test_create_builder(temp_config_file: str, project_dir: Path) -> None:
    app = ApplicationCore(config_path=temp_config_file)
    await app.initialize()

    builder = app.create_builder()

    assert isinstance(builder, BinaryBuilder)
    assert isinstance(builder.backend, PyInstallerBackend)
    assert builder.backend.entry_point == (project_dir / "main.py").as_posix()
    assert builder.preprocessor.source == (project_dir / "Local" / "Prefs.json").as_posix()
    assert app.create_builder(preprocess=False).preprocessor is None
    await app.shutdown()


@pytest.mark.asyncio
async def test_build_without_entry_point(temp_config_file: str, project_dir: Path, prefs_file: Path) -> None:
    app = ApplicationCore(config_path=temp_config_file)
    await app.initialize()

    report = await app.build()

    assert report.failed
    assert report.aborted
    assert "Entry point script not found" in report.error
    assert app.pipeline.get_report(report.task_id) is report
    await app.shutdown()


@pytest.mark.asyncio
async def test_preprocess(temp_config_file: str, project_dir: Path, prefs_file: Path) -> None:
    app = ApplicationCore(config_path=temp_config_file)
    await app.initialize()

    outcome = await app.preprocess()

    assert outcome.succeeded
    snapshot = Preferences(outcome.snapshot_path, PrefsCipher("test-secret"))
    snapshot.read()
    assert snapshot.get("project") == project_dir.as_posix()
    await app.shutdown()


@pytest.mark.asyncio
async def test_title_monitor(temp_config_file: str, prefs_file: Path) -> None:
    app = ApplicationCore(config_path=temp_config_file)
    await app.initialize()

    monitor = app.title_monitor()

    assert monitor.render("Solution") == "Solution"
    await app.shutdown()
