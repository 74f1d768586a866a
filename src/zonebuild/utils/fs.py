"""
zonebuild — filesystem utilities

File: src/zonebuild/utils/fs.py

Purpose
- Durable replacement of small state files (planner memo, generated configs).

Functional requirements
- Writes go to a temp file in the destination directory and replace the target in one step,
  so an interrupted run never leaves a truncated memo behind.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "read_text_if_exists",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically replace ``path`` with ``data``.

    The parent directory is created when missing. The temp file is fsynced before
    ``os.replace`` and the directory entry is fsynced afterwards where supported.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    payload = data.encode(encoding) if isinstance(data, str) else data

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())

        os.replace(temp_path, target)
        _fsync_directory(target_parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def read_text_if_exists(path: PathLike, *, encoding: str = "utf-8") -> str | None:
    """Return file contents, or ``None`` when ``path`` does not exist."""

    target = Path(path)
    try:
        return target.read_text(encoding=encoding)
    except FileNotFoundError:
        return None


def _fsync_directory(path: Path) -> None:
    # Not every filesystem supports fsync on a directory descriptor.
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
