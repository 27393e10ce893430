from pathlib import Path

import pytest

from pi_memory.errors import StoreError
from pi_memory.memory.io import MemoryIO
from pi_memory.utils.helpers import atomic_append_text, atomic_write_text, safe_filename


def test_atomic_write_text_creates_and_overwrites_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "sample.txt"
    atomic_write_text(path, "v1\n", encoding="utf-8")
    assert path.read_text(encoding="utf-8") == "v1\n"

    atomic_write_text(path, "v2\n", encoding="utf-8")
    assert path.read_text(encoding="utf-8") == "v2\n"


def test_atomic_write_text_leaves_no_temp_files(tmp_path: Path) -> None:
    path = tmp_path / "memory.md"
    atomic_write_text(path, "# Project Memory\n")
    atomic_write_text(path, "# Project Memory\n\n## Invariants\n")
    assert [p.name for p in tmp_path.iterdir()] == ["memory.md"]


def test_atomic_write_text_keeps_old_content_when_rename_fails(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "memory.md"
    atomic_write_text(path, "old\n")

    def _boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("pi_memory.utils.helpers.os.replace", _boom)
    with pytest.raises(OSError):
        atomic_write_text(path, "new\n")

    assert path.read_text(encoding="utf-8") == "old\n"
    assert [p.name for p in tmp_path.iterdir()] == ["memory.md"]


def test_atomic_append_text_appends_content(tmp_path: Path) -> None:
    path = tmp_path / "append.txt"
    atomic_append_text(path, "line1\n", encoding="utf-8")
    atomic_append_text(path, "line2\n", encoding="utf-8")
    assert path.read_text(encoding="utf-8") == "line1\nline2\n"


def test_memory_io_wraps_write_failures_as_retryable_store_error(tmp_path: Path, monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise OSError("read-only file system")

    monkeypatch.setattr("pi_memory.memory.io.atomic_write_text", _boom)
    with pytest.raises(StoreError) as exc_info:
        MemoryIO.write_text(tmp_path / "x.md", "text")
    assert exc_info.value.retryable is True


def test_memory_io_read_returns_default_for_missing_file(tmp_path: Path) -> None:
    assert MemoryIO.read_text(tmp_path / "missing.md", "fallback") == "fallback"


def test_safe_filename_replaces_unportable_characters() -> None:
    assert safe_filename('a/b:c*d?"e') == "a_b_c_d__e"
    assert safe_filename("   ") == "_"
