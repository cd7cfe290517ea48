"""Asynchronous execution of external programs.

The command runner locates executables in explicit search directories and runs
them as child processes, streaming their output line by line. Every call owns
its own process and buffers, so any number of runs may be awaited concurrently.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import psutil
import structlog

from shipwright.utils.exceptions import CommandSpawnError
from shipwright.utils.files import PathLike, normalize_path

WINDOWS_EXECUTABLE_SUFFIXES = (".exe", ".cmd", ".bat", ".com")
WINDOWS_SCRIPT_SUFFIXES = (".cmd", ".bat")
STREAM_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command invocation.

    Attributes:
        code: Exit code of the process
        output: Stdout and stderr lines in arrival order, trailing whitespace trimmed
        error: Stderr lines only, trailing whitespace trimmed
        cancelled: Whether the process was terminated through cancellation
    """
    code: int
    output: str = ""
    error: str = ""
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.code == 0 and not self.cancelled


@dataclass
class CommandProgress:
    """Progress of a running command, advanced once per output line."""
    command: str
    lines: int = 0
    percent: int = 0
    message: str = ""
    updated_at: float = field(default_factory=time.time)

    def advance(self, line: str) -> None:
        self.lines += 1
        self.percent = min(99, self.percent + 1)
        self.message = line
        self.updated_at = time.time()

    def complete(self) -> None:
        self.percent = 100
        self.updated_at = time.time()


ProgressCallback = Callable[[CommandProgress], Any]


class CommandRunner:
    """Finds and runs external programs.

    Attributes:
        encoding: Encoding used to decode process output
        terminate_timeout: Seconds to wait after terminating a cancelled process
            before killing it
    """

    def __init__(
            self,
            logger: Any = None,
            encoding: str = "utf-8",
            terminate_timeout: float = 5.0,
    ) -> None:
        self._logger = logger or structlog.get_logger("command")
        self.encoding = encoding
        self.terminate_timeout = terminate_timeout

    @staticmethod
    def find(name: str, *search_paths: PathLike) -> str:
        """Find an executable named ``name`` in the given directories.

        The process-wide ``PATH`` is not consulted. On Windows the file must carry
        an executable suffix; when ``name`` has none, the known suffixes are tried
        in order. Elsewhere the file must be executable.

        Args:
            name: Executable name
            *search_paths: Directories to search, in order

        Returns:
            Normalized absolute path of the first match, or an empty string
        """
        if not name:
            return ""

        windows = sys.platform == "win32"
        candidates = [name]
        if windows:
            suffix = os.path.splitext(name)[1].lower()
            if not suffix:
                candidates = [name + ext for ext in WINDOWS_EXECUTABLE_SUFFIXES]
            elif suffix not in WINDOWS_EXECUTABLE_SUFFIXES:
                return ""

        for directory in search_paths:
            if not directory:
                continue
            for candidate in candidates:
                path = os.path.join(os.fspath(directory), candidate)
                if not os.path.isfile(path):
                    continue
                if windows or os.access(path, os.X_OK):
                    return normalize_path(path)
        return ""

    async def run(
            self,
            bin: str,
            *args: str,
            cwd: Optional[PathLike] = None,
            print_output: bool = True,
            progress: bool = False,
            env: Optional[Mapping[str, str]] = None,
            cancel_event: Optional[asyncio.Event] = None,
            on_progress: Optional[ProgressCallback] = None,
    ) -> CommandResult:
        """Run ``bin`` with ``args`` and capture its output.

        A non-zero exit code is returned in the result, never raised.

        Args:
            bin: Path or name of the binary
            *args: Command-line arguments
            cwd: Working directory, defaults to the current directory
            print_output: Forward each output line to the logger
            progress: Track progress, one step per output line
            env: Variables merged over the current process environment
            cancel_event: Setting this event terminates the process
            on_progress: Receives the progress after every step

        Returns:
            The command result

        Raises:
            CommandSpawnError: If the binary cannot be launched
        """
        argv = self._argv(bin, args)
        workdir = os.fspath(cwd) if cwd else os.getcwd()
        process_env: Optional[Dict[str, str]] = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=workdir,
                env=process_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise CommandSpawnError(f"Failed to launch {bin}: {e}", command=bin) from e

        self._logger.debug(f"Started {' '.join(argv)} (pid {process.pid}) in {workdir}")

        combined: List[str] = []
        errors: List[str] = []
        tracker = CommandProgress(command=bin) if progress or on_progress else None

        def report() -> None:
            if on_progress is not None:
                on_progress(tracker)
            elif progress:
                self._logger.debug(f"{bin}: {tracker.percent}% {tracker.message}")

        async def pump(stream: asyncio.StreamReader, is_error: bool) -> None:
            while True:
                raw = await stream.readline()
                if not raw:
                    break
                line = raw.decode(self.encoding, errors="replace").rstrip("\r\n")
                combined.append(line)
                if is_error:
                    errors.append(line)
                if print_output:
                    if is_error:
                        self._logger.warning(line)
                    else:
                        self._logger.info(line)
                if tracker is not None:
                    tracker.advance(line)
                    report()

        readers = asyncio.ensure_future(
            asyncio.gather(pump(process.stdout, False), pump(process.stderr, True))
        )
        waiter: Optional[asyncio.Future] = None
        cancelled = False
        try:
            if cancel_event is not None:
                waiter = asyncio.ensure_future(cancel_event.wait())
                done, _ = await asyncio.wait({readers, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if waiter in done and not readers.done():
                    cancelled = True
                    self._logger.info(f"Cancelling {bin} (pid {process.pid})")
                    await self._terminate(process)
            await readers
            code = await process.wait()
        except asyncio.CancelledError:
            readers.cancel()
            await self._terminate(process)
            raise
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()

        if tracker is not None:
            tracker.complete()
            report()

        self._logger.debug(f"{bin} exited with code {code}")
        return CommandResult(
            code=code,
            output="\n".join(combined).rstrip(),
            error="\n".join(errors).rstrip(),
            cancelled=cancelled,
        )

    @staticmethod
    def _argv(bin: str, args: Sequence[str]) -> List[str]:
        argv = [bin, *[str(arg) for arg in args]]
        if sys.platform == "win32" and os.path.splitext(bin)[1].lower() in WINDOWS_SCRIPT_SUFFIXES:
            argv = ["cmd.exe", "/c", *argv]
        return argv

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate a process and its descendants, killing what survives."""
        if process.returncode is not None:
            return

        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.Error:
            children = []

        for child in children:
            with contextlib.suppress(psutil.Error):
                child.terminate()
        with contextlib.suppress(ProcessLookupError):
            process.terminate()

        try:
            await asyncio.wait_for(process.wait(), timeout=self.terminate_timeout)
        except asyncio.TimeoutError:
            self._logger.warning(f"Process {process.pid} ignored terminate, killing it")
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()

        for child in children:
            with contextlib.suppress(psutil.Error):
                if child.is_running():
                    child.kill()
