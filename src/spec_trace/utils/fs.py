"""
spec-trace — filesystem utilities

File: src/spec_trace/utils/fs.py

Purpose
- Atomic text writes for derived documents so an interrupted run never leaves
  a truncated ``plan.yml`` or ``tasks.yml`` behind.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = ["atomic_write_text"]


def atomic_write_text(path: PathLike, text: str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``text`` to ``path``.

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

    try:
        # newline="" keeps "\n" endings on every platform.
        with os.fdopen(fd, "w", encoding=encoding, newline="") as file_handle:
            file_handle.write(text)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise

