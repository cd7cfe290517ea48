"""Command-line interface for Shipwright.

This module provides the ``shipwright`` command for building binaries,
preprocessing preferences, locating and running external programs and
showing the project status line.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional

from shipwright.core.app import ApplicationCore
from shipwright.core.command import CommandRunner
from shipwright.utils.exceptions import ShipwrightError


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.debug:
        overrides["logging.level"] = "DEBUG"
        overrides["logging.console.level"] = "DEBUG"
    for option, key in (
            ("channel", "environment.channel"),
            ("mode", "environment.mode"),
            ("platform", "environment.platform"),
    ):
        value = getattr(args, option, None)
        if value:
            overrides[key] = value
    if getattr(args, "run", False):
        overrides["build.auto_run"] = True
    return overrides


async def _start(args: argparse.Namespace) -> ApplicationCore:
    app = ApplicationCore(config_path=args.config, overrides=_overrides(args))
    await app.initialize()
    return app


async def build_command(args: argparse.Namespace) -> int:
    """Handle the build command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    app = await _start(args)
    try:
        builder = app.create_builder(preprocess=not args.skip_prefs)
        report = await app.build(builder)
        if report.failed:
            print(f"Build failed: {report.error}", file=sys.stderr)
            return 1

        print(f"Built {builder.name} ({builder.code}): {builder.file}")
        if builder.symbol_archive:
            print(f"Symbols: {builder.symbol_archive}")
        if "ran" in report.extras and not report.extras["ran"]:
            print(f"Could not run {builder.file}", file=sys.stderr)
        return 0
    finally:
        await app.shutdown()


async def prefs_command(args: argparse.Namespace) -> int:
    """Handle the prefs command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    app = await _start(args)
    try:
        outcome = await app.preprocess()
        if not outcome.succeeded:
            print(f"Preferences preprocessing failed: {outcome.error}", file=sys.stderr)
            return 1

        print(f"Wrote {outcome.snapshot_path}")
        if outcome.stripped:
            print(f"Stripped: {', '.join(outcome.stripped)}")
        return 0
    finally:
        await app.shutdown()


async def find_command(args: argparse.Namespace) -> int:
    """Handle the find command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    path = CommandRunner.find(args.name, *args.paths)
    if not path:
        print(f"{args.name} not found", file=sys.stderr)
        return 1
    print(path)
    return 0


async def run_command(args: argparse.Namespace) -> int:
    """Handle the run command.

    Args:
        args: Command-line arguments

    Returns:
        The exit code of the program, 1 if it could not be run
    """
    app = await _start(args)
    try:
        result = await app.runner.run(
            args.bin,
            *args.args,
            cwd=args.cwd,
            print_output=not args.quiet,
            progress=args.progress,
        )
    except ShipwrightError as e:
        print(f"Error running {args.bin}: {e}", file=sys.stderr)
        return 1
    finally:
        await app.shutdown()

    if result.cancelled:
        return 1
    return result.code


async def status_command(args: argparse.Namespace) -> int:
    """Handle the status command.

    Args:
        args: Command-line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    app = await _start(args)
    try:
        monitor = app.title_monitor()
        await monitor.refresh()
        print(monitor.render(args.base or app.environment.solution))
        return 0
    finally:
        await app.shutdown()


COMMANDS = {
    "build": build_command,
    "prefs": prefs_command,
    "find": find_command,
    "run": run_command,
    "status": status_command,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipwright",
        description="Shipwright build automation",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("--config", "-c", help="Configuration file (default: shipwright.yaml)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    build_parser = subparsers.add_parser("build", help="Build a binary")
    build_parser.add_argument("--channel", help="Distribution channel")
    build_parser.add_argument("--mode", help="Build mode, e.g. Dev or Prod")
    build_parser.add_argument("--platform", help="Target platform")
    build_parser.add_argument("--run", action="store_true", help="Run the artifact after building")
    build_parser.add_argument("--skip-prefs", action="store_true", help="Do not preprocess preferences")

    prefs_parser = subparsers.add_parser("prefs", help="Write the build-time preferences snapshot")
    prefs_parser.add_argument("--channel", help="Distribution channel")
    prefs_parser.add_argument("--mode", help="Build mode, e.g. Dev or Prod")

    find_parser = subparsers.add_parser("find", help="Find an executable in the given directories")
    find_parser.add_argument("name", help="Executable name")
    find_parser.add_argument("paths", nargs="*", help="Directories to search")

    run_parser = subparsers.add_parser("run", help="Run a program and stream its output")
    run_parser.add_argument("bin", help="Program to run")
    run_parser.add_argument("args", nargs=argparse.REMAINDER, help="Program arguments")
    run_parser.add_argument("--cwd", help="Working directory")
    run_parser.add_argument("--quiet", "-q", action="store_true", help="Do not print program output")
    run_parser.add_argument("--progress", action="store_true", help="Track progress per output line")

    status_parser = subparsers.add_parser("status", help="Show the preferences and git status line")
    status_parser.add_argument("--base", help="Leading text of the status line")

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for the command-line interface.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    command = COMMANDS.get(parsed.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        return asyncio.run(command(parsed))
    except ShipwrightError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
