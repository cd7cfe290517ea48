"""Tests for the shipwright command-line interface."""

import sys

import pytest

from shipwright.build.prefs import Preferences, PrefsCipher
from shipwright.main import _overrides, create_parser, main

pytestmark = pytest.mark.usefixtures("clean_env", "restore_root_logger")


def test_no_command(capsys):
    assert main([]) == 1
    assert "usage: shipwright" in capsys.readouterr().out


def test_overrides():
    args = create_parser().parse_args(["--debug", "build", "--channel", "Beta", "--run"])
    assert _overrides(args) == {
        "logging.level": "DEBUG",
        "logging.console.level": "DEBUG",
        "environment.channel": "Beta",
        "build.auto_run": True,
    }


def test_run_arguments():
    args = create_parser().parse_args(["run", "--cwd", "tools", "git", "status", "--short"])
    assert args.bin == "git"
    assert args.args == ["status", "--short"]
    assert args.cwd == "tools"


@pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")
def test_find(make_script, script_dir, capsys):
    make_script("tool", "exit 0")

    assert main(["find", "tool", str(script_dir)]) == 0
    assert capsys.readouterr().out.strip() == (script_dir / "tool").as_posix()

    assert main(["find", "missing", str(script_dir)]) == 1
    assert "missing not found" in capsys.readouterr().err


@pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")
def test_run_returns_exit_code(temp_config_file, make_script):
    script = make_script("exit4", "exit 4")
    assert main(["--config", temp_config_file, "run", "--quiet", str(script)]) == 4


def test_run_spawn_error(temp_config_file, script_dir, capsys):
    assert main(["--config", temp_config_file, "run", str(script_dir / "missing")]) == 1
    assert "Error running" in capsys.readouterr().err


def test_prefs_command(temp_config_file, prefs_file, project_dir, capsys):
    assert main(["--config", temp_config_file, "prefs", "--channel", "Beta"]) == 0

    target = project_dir / "Local" / "Build" / "Prefs.bin"
    assert f"Wrote {target.as_posix()}" in capsys.readouterr().out
    snapshot = Preferences(target, PrefsCipher("test-secret"))
    snapshot.read()
    assert snapshot.get("project") == project_dir.as_posix()


def test_prefs_command_failure(temp_config_file, capsys):
    assert main(["--config", temp_config_file, "prefs"]) == 1
    assert "Preferences preprocessing failed" in capsys.readouterr().err


def test_build_command_failure(temp_config_file, prefs_file, capsys):
    assert main(["--config", temp_config_file, "build"]) == 1
    assert "Entry point script not found" in capsys.readouterr().err


def test_invalid_config(tmp_path, capsys):
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("command:\n  terminate_timeout: -1\n")

    assert main(["--config", str(config_file), "status"]) == 1
    assert "Error: Failed to initialize application" in capsys.readouterr().err
