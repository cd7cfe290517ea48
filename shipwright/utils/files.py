"""File helpers shared by the command runner, the build descriptor and the CLI.

Paths returned from this module are normalized: absolute, collapsed and using
forward slashes on every platform.
"""

from __future__ import annotations

import contextlib
import os
import pathlib
import zipfile
from typing import Iterable, List, Optional, Union

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

PathLike = Union[str, os.PathLike]


def normalize_path(path: PathLike) -> str:
    """Return an absolute, collapsed path using forward slashes.

    Args:
        path: Path to normalize

    Returns:
        Normalized path string, or an empty string for an empty path
    """
    if not path:
        return ""
    return os.path.normpath(os.path.abspath(os.fspath(path))).replace("\\", "/")


def path_join(*parts: PathLike) -> str:
    """Join path fragments and normalize the result."""
    return normalize_path(os.path.join(*[os.fspath(part) for part in parts]))


def collect_files(
        directory: PathLike,
        files: Optional[List[str]] = None,
        exclude_extensions: Iterable[str] = (),
) -> List[str]:
    """Collect all files below a directory.

    Args:
        directory: Directory to walk
        files: Optional list to append results to
        exclude_extensions: File extensions (with dot) to skip

    Returns:
        The list of normalized file paths, sorted within each directory
    """
    files = files if files is not None else []
    excluded = {ext.lower() for ext in exclude_extensions}
    if not os.path.isdir(directory):
        return files

    for root, dirs, names in os.walk(directory):
        dirs.sort()
        for name in sorted(names):
            if os.path.splitext(name)[1].lower() in excluded:
                continue
            files.append(path_join(root, name))
    return files


@retry(
    retry=retry_if_exception_type(PermissionError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    reraise=True,
)
def _write_archive(source: pathlib.Path, destination: pathlib.Path) -> None:
    with zipfile.ZipFile(destination, "w", zipfile.ZIP_DEFLATED) as zf:
        for root, _, names in os.walk(source):
            root_path = pathlib.Path(root)
            for name in names:
                file_path = root_path / name
                if file_path == destination:
                    continue
                zf.write(file_path, file_path.relative_to(source))


def zip_directory(source: PathLike, destination: PathLike) -> bool:
    """Compress a directory into a ZIP archive.

    Args:
        source: Directory to compress
        destination: Path of the archive to create; parent directories are created

    Returns:
        True if the archive was written, False otherwise
    """
    source_path = pathlib.Path(source)
    destination_path = pathlib.Path(destination)
    if not source_path.is_dir():
        return False

    try:
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        _write_archive(source_path.resolve(), destination_path.resolve())
    except (OSError, zipfile.BadZipFile):
        with contextlib.suppress(OSError):
            destination_path.unlink()
        return False
    return True
