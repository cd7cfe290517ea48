"""Utility functions for the Shipwright build system.

This module contains the resource collection and metadata helpers used by the
native build backends.
"""

from __future__ import annotations

import os
import pathlib
import platform
import re
from typing import Dict, List, Optional, Union

DEFAULT_RESOURCE_PATTERNS = [
    "**/*.png", "**/*.jpg", "**/*.ico", "**/*.css", "**/*.json", "**/*.yaml", "**/*.yml",
]
DEFAULT_EXCLUDE_PATTERNS = [
    "**/__pycache__/**", "**/*.pyc", "**/*.pyo", "**/*.pyd", "**/*.py", ".git/**",
]


def get_application_version() -> str:
    """Get the version of Shipwright itself.

    Returns:
        Version string of the package.
    """
    from shipwright.__version__ import __version__
    return __version__


def fnmatch_to_regex(pattern: str) -> str:
    """Convert a fnmatch/glob pattern to a regex pattern.

    ``**/`` matches any number of leading directories, including none.

    Args:
        pattern: Fnmatch/glob pattern

    Returns:
        Regex pattern string
    """
    regex = ""
    index = 0
    while index < len(pattern):
        if pattern.startswith("**/", index):
            regex += "(?:.*/)?"
            index += 3
        elif pattern.startswith("**", index):
            regex += ".*"
            index += 2
        elif pattern[index] == "*":
            regex += "[^/]*"
            index += 1
        elif pattern[index] == "?":
            regex += "[^/]"
            index += 1
        else:
            regex += re.escape(pattern[index])
            index += 1
    return f"^{regex}$"


def collect_resources(
        base_dir: Union[str, pathlib.Path],
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None
) -> Dict[pathlib.Path, str]:
    """Collect resource files that need to be bundled with the artifact.

    Args:
        base_dir: Base directory to search for resources
        include_patterns: List of glob patterns for files to include
        exclude_patterns: List of glob patterns for files to exclude

    Returns:
        Dictionary mapping file paths to their destination directory in the package
    """
    base_dir = pathlib.Path(base_dir)
    include_regexes = [re.compile(fnmatch_to_regex(p)) for p in include_patterns or DEFAULT_RESOURCE_PATTERNS]
    exclude_regexes = [re.compile(fnmatch_to_regex(p)) for p in exclude_patterns or DEFAULT_EXCLUDE_PATTERNS]

    resources: Dict[pathlib.Path, str] = {}
    if not base_dir.is_dir():
        return resources

    for root, dirs, files in os.walk(base_dir):
        dirs.sort()
        root_path = pathlib.Path(root)
        rel_path = root_path.relative_to(base_dir)

        for file in sorted(files):
            rel_file = (rel_path / file).as_posix()
            included = any(regex.match(rel_file) for regex in include_regexes)
            excluded = any(regex.match(rel_file) for regex in exclude_regexes)
            if included and not excluded:
                resources[root_path / file] = rel_path.as_posix()

    return resources


def version_text(name: str, version: str, code: str) -> str:
    """Contents of the ``version.txt`` written next to an artifact."""
    return (
        f"{name} v{version} ({code})\n"
        f"Built on: {platform.system()} {platform.release()}\n"
        f"Python: {platform.python_version()}\n"
        f"Shipwright: {get_application_version()}\n"
    )
