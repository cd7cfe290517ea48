"""Status line describing the active preferences and the git checkout.

The state is owned by a :class:`TitleMonitor`; rendering is a pure function of
that state so the line can be shown in a terminal title, a prompt or the
``shipwright status`` command alike.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from shipwright.core.command import CommandRunner
from shipwright.core.environment import Environment
from shipwright.utils.exceptions import CommandError, PreferencesError
from shipwright.utils.files import PathLike

REFRESHING_MARK = "⟳"
PUSH_MARK = "↑"
PULL_MARK = "↓"


@dataclass
class TitleState:
    """Cached status of the preferences store and the git checkout."""
    prefs_label: str = ""
    git_branch: str = ""
    git_push_count: int = 0
    git_pull_count: int = 0
    git_dirty_count: int = 0
    is_refreshing: bool = False


def render(base: str, state: TitleState) -> str:
    """Render the status line.

    Examples:
        ``Unity - [Prefs: Me/Default/1.0.0/Dev/Info] - [Git*: main ↑2 ↓3]``
    """
    parts = [base]
    if state.prefs_label:
        parts.append(state.prefs_label)
    if state.git_branch:
        dirty = "*" if state.git_dirty_count > 0 else ""
        counts = ""
        if state.is_refreshing:
            counts = f" {REFRESHING_MARK}"
        else:
            if state.git_push_count > 0:
                counts += f" {PUSH_MARK}{state.git_push_count}"
            if state.git_pull_count > 0:
                counts += f" {PULL_MARK}{state.git_pull_count}"
        parts.append(f"[Git{dirty}: {state.git_branch}{counts}]")
    return " - ".join(parts)


def prefs_label(environment: Environment, prefs_file: Optional[PathLike]) -> str:
    """Describe the environment, starred when the preferences store is missing or empty."""
    from shipwright.build.prefs import Preferences

    dirty = "*"
    if prefs_file:
        store = Preferences()
        try:
            if store.read(prefs_file) and store.keys():
                dirty = ""
        except PreferencesError:
            pass
    return f"[Prefs{dirty}: {environment.label()}]"


class TitleMonitor:
    """Owns a :class:`TitleState` and refreshes it from git and the preferences store."""

    def __init__(
            self,
            runner: CommandRunner,
            environment: Environment,
            prefs_file: Optional[PathLike] = None,
            cwd: Optional[PathLike] = None,
            logger: Any = None,
    ) -> None:
        self._runner = runner
        self._environment = environment
        self._prefs_file = prefs_file
        self._cwd = cwd or environment.project_path
        self._logger = logger or structlog.get_logger("title")
        self.state = TitleState()

    def render(self, base: str) -> str:
        return render(base, self.state)

    async def refresh(self) -> bool:
        """Refresh the cached state.

        Returns:
            False if a refresh was already in progress, True otherwise
        """
        if self.state.is_refreshing:
            return False

        self.state.is_refreshing = True
        try:
            self.state.prefs_label = prefs_label(self._environment, self._prefs_file)

            branch = await self._git("rev-parse", "--abbrev-ref", "HEAD")
            if branch is None:
                self.state.git_branch = ""
                self.state.git_dirty_count = 0
                self.state.git_push_count = 0
                self.state.git_pull_count = 0
                return True

            self.state.git_branch = branch

            status = await self._git("status", "--porcelain")
            self.state.git_dirty_count = len([line for line in (status or "").splitlines() if line.strip()])

            push, pull = 0, 0
            counts = await self._git("rev-list", "--left-right", "--count", "HEAD...@{upstream}")
            if counts:
                fields = counts.split()
                if len(fields) == 2 and all(field.isdigit() for field in fields):
                    push, pull = int(fields[0]), int(fields[1])
            self.state.git_push_count = push
            self.state.git_pull_count = pull
            return True
        finally:
            self.state.is_refreshing = False

    async def _git(self, *args: str) -> Optional[str]:
        try:
            result = await self._runner.run("git", *args, cwd=self._cwd, print_output=False)
        except CommandError as e:
            self._logger.debug(f"git unavailable: {e}")
            return None
        if result.code != 0:
            return None
        return result.output.strip()
