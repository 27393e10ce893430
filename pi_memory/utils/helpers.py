"""Filesystem helpers shared by the session and memory layers."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path

_UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def ensure_dir(path: Path) -> Path:
    """Create *path* (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_filename(name: str) -> str:
    """Replace characters that are not portable in file names."""
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip()
    return cleaned or "_"


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write *content* to *path* via temp file + rename.

    Readers never observe a half-written file: the data is flushed and
    fsynced into a sibling temp file which then replaces the target.
    """
    ensure_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.tmp-", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_append_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Append *content* with a single write followed by flush + fsync."""
    ensure_dir(path.parent)
    with open(path, "a", encoding=encoding) as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
