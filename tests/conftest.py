"""Pytest configuration and fixtures for Shipwright tests."""

import json
import logging
import os
import stat
from pathlib import Path
from typing import Any, Callable, Dict, Generator

import pytest
import structlog
import yaml

from shipwright.core.environment import Environment, PlatformType


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create an empty project directory."""
    project = tmp_path / "Solution"
    (project / "Local").mkdir(parents=True)
    return project


@pytest.fixture
def environment(project_dir: Path) -> Environment:
    """Create a build environment rooted at the temporary project."""
    return Environment(
        project_path=str(project_dir),
        solution="Solution",
        author="Tester",
        channel="Channel",
        version="1.2.3",
        mode="Debug",
        log_level=3,
        platform=PlatformType.LINUX,
    )


@pytest.fixture
def prefs_file(project_dir: Path) -> Path:
    """Create a preferences source with evaluated, constant and editor keys."""
    path = project_dir / "Local" / "Prefs.json"
    path.write_text(
        json.dumps(
            {
                "project": "${Env.ProjectPath}",
                "test_const_key@Const": "${Env.ProjectPath}",
                "editor_only@Editor": "secret",
                "count": 3,
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def temp_config_file(tmp_path: Path, project_dir: Path) -> str:
    """Create a temporary configuration file for testing."""
    test_config: Dict[str, Any] = {
        "environment": {
            "project_path": str(project_dir),
            "solution": "Solution",
            "author": "Tester",
            "channel": "Channel",
            "version": "1.2.3",
            "mode": "Debug",
            "log_level": 3,
            "platform": "Linux",
        },
        "logging": {
            "level": "DEBUG",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "DEBUG"},
        },
        "prefs": {"secret": "test-secret"},
    }
    path = tmp_path / "shipwright.yaml"
    with path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(test_config, f)
    return str(path)


@pytest.fixture
def script_dir(tmp_path: Path) -> Path:
    """Directory holding small executable shell scripts."""
    directory = tmp_path / "bin"
    directory.mkdir()
    return directory


@pytest.fixture
def make_script(script_dir: Path) -> Callable[[str, str], Path]:
    """Factory writing executable bash scripts into the script directory."""

    def factory(name: str, body: str) -> Path:
        path = script_dir / name
        path.write_text(f"#!/usr/bin/env bash\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return factory


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Shipwright overrides from the process environment."""
    for name in list(os.environ):
        if name.startswith("SHIPWRIGHT_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def restore_root_logger() -> Generator[None, None, None]:
    """Restore the root logger and structlog after a manager reconfigured them."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()
