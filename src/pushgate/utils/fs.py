"""
pushgate — filesystem utilities

File: src/pushgate/utils/fs.py
Last updated: 2026-10-19

Purpose
- Atomic writes for run artifacts (merged coverage reports, run summaries, git hooks).
- Guarded deletion for stale coverage dumps: nothing outside the repository root is touched.
"""

from __future__ import annotations

import contextlib
import os
import stat
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "ensure_directory",
    "make_executable",
    "remove_within",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``.

    The write strategy is:
    1. create temp file in the same directory,
    2. write + flush + fsync file data,
    3. replace target via ``os.replace``.
    """

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)
    if not target_parent.is_dir():
        raise NotADirectoryError(f"{target_parent!s} is not a directory")

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)
    payload = data if isinstance(data, bytes) else data.encode(encoding)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def ensure_directory(path: PathLike) -> Path:
    """Create ``path`` (and parents) when missing and return it resolved."""

    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory.resolve()


def make_executable(path: PathLike) -> None:
    """Add user/group/other execute bits to ``path``."""

    target = Path(path)
    mode = target.stat().st_mode
    target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def remove_within(path: PathLike, root: PathLike) -> bool:
    """
    Delete the regular file or symlink ``path`` if it lives inside ``root``.

    Returns ``False`` when the file is already gone. Raises ``ValueError`` for
    paths that resolve outside ``root`` and ``IsADirectoryError`` for directories.
    """

    workspace = Path(root).resolve(strict=True)
    target = Path(path)
    try:
        candidate = target.parent.resolve(strict=True) / target.name
    except FileNotFoundError:
        return False
    if not _is_relative_to(candidate, workspace):
        raise ValueError(f"refusing to delete path outside {workspace!s}: {target!s}")

    if target.is_dir() and not target.is_symlink():
        raise IsADirectoryError(f"refusing to delete directory: {target!s}")

    try:
        target.unlink()
    except FileNotFoundError:
        return False
    return True


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True


def _fsync_directory(path: Path) -> None:
    """
    Best-effort directory fsync for metadata durability after ``os.replace``.

    Some platforms/filesystems do not support fsync on directories.
    """

    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
