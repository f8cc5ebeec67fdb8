"""
Atomic file writing with fsync so a crash never leaves a half-written PEM.

Pattern:
  1. Write to a temporary file in the same directory
  2. Apply the final permissions and fsync
  3. Rename atomically (atomic on POSIX filesystems)
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_text(
    path: Path,
    content: str,
    encoding: str = "utf-8",
    mode: Optional[int] = None,
) -> None:
    """
    Atomically write text to *path*, optionally chmod-ing it to *mode*.

    The permissions are set on the temp file before the rename, so the
    target never exists with looser permissions than requested.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory as the target keeps the rename on one filesystem
    fd, temp_path = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )

    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())

        if mode is not None:
            os.chmod(temp_path, mode)

        # On POSIX, overwrites the destination
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
