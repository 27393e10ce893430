import json
from pathlib import Path

import pytest

from pi_memory.errors import EntryNotFoundError, InvalidParentError, StoreError
from pi_memory.session.entries import custom_entry, message_entry
from pi_memory.session.store import InMemoryEntryStore, JsonlEntryStore


class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


def _lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


class TestAppend:
    def test_assigns_unique_ids_and_indexes_children(self) -> None:
        store = InMemoryEntryStore()
        root = store.append(message_entry("user", "hi"))
        a = store.append(message_entry("assistant", "hello", parent_id=root))
        b = store.append(message_entry("assistant", "hey", parent_id=root))

        assert len({root, a, b}) == 3
        assert [e.id for e in store.children(root)] == [a, b]
        assert [e.id for e in store.roots()] == [root]
        assert store.get(a).parent_id == root

    def test_invalid_parent_is_rejected_and_nothing_is_persisted(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        store = JsonlEntryStore(path, session_id="s1")
        store.append(message_entry("user", "hi"))
        before = path.read_text(encoding="utf-8")

        with pytest.raises(InvalidParentError) as exc_info:
            store.append(message_entry("assistant", "orphan", parent_id="nope"))

        assert exc_info.value.parent_id == "nope"
        assert len(store) == 1
        assert path.read_text(encoding="utf-8") == before

    def test_child_timestamp_never_precedes_parent(self) -> None:
        clock = _Clock(2000.0)
        store = InMemoryEntryStore(clock=clock)
        parent = store.append(message_entry("user", "hi"))
        clock.now = 1500.0  # wall clock stepped backwards
        child = store.append(message_entry("assistant", "hello", parent_id=parent))
        assert store.get(child).timestamp >= store.get(parent).timestamp

    def test_idempotency_key_returns_existing_id(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        store = JsonlEntryStore(path, session_id="s1")
        first = store.append(message_entry("user", "hi", idempotency_key="turn-1"))
        second = store.append(message_entry("user", "hi", idempotency_key="turn-1"))

        assert first == second
        assert len(store) == 1
        assert len([r for r in _lines(path) if r["_type"] == "entry"]) == 1

    def test_get_unknown_id_raises(self) -> None:
        with pytest.raises(EntryNotFoundError):
            InMemoryEntryStore().get("missing")

    def test_failed_write_leaves_index_untouched(self, tmp_path: Path, monkeypatch) -> None:
        store = JsonlEntryStore(tmp_path / "s.jsonl", session_id="s1")

        def _boom(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr("pi_memory.session.store.atomic_append_text", _boom)
        with pytest.raises(StoreError) as exc_info:
            store.append(message_entry("user", "hi"))
        assert exc_info.value.retryable is True
        assert len(store) == 0


class TestJsonlReplay:
    def test_reload_reproduces_entries_and_leaf(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        store = JsonlEntryStore(path, session_id="s1", cwd="/work")
        root = store.append(message_entry("user", "hi"), move_leaf=True)
        reply = store.append(message_entry("assistant", "hello", parent_id=root), move_leaf=True)
        store.append(custom_entry("bookmark", {"n": 1}, parent_id=reply))
        store.set_leaf(root)

        reopened = JsonlEntryStore(path)
        assert reopened.session_id == "s1"
        assert reopened.header["cwd"] == "/work"
        assert [e.id for e in reopened.all()] == [e.id for e in store.all()]
        assert reopened.get(reply).text == "hello"
        assert reopened.get(reply).parent_id == root
        assert reopened.leaf_id == root

    def test_first_line_is_session_header(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        JsonlEntryStore(path, session_id="abc")
        header = _lines(path)[0]
        assert header["_type"] == "session"
        assert header["id"] == "abc"
        assert header["version"] == 1

    def test_torn_trailing_line_is_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        store = JsonlEntryStore(path, session_id="s1")
        root = store.append(message_entry("user", "hi"), move_leaf=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"_type": "entry", "id": "torn", "kind": "mess')

        reopened = JsonlEntryStore(path)
        assert [e.id for e in reopened.all()] == [root]

        # The next append starts on a fresh line and survives another reload.
        reply = reopened.append(message_entry("assistant", "hello", parent_id=root), move_leaf=True)
        again = JsonlEntryStore(path)
        assert [e.id for e in again.all()] == [root, reply]
        assert again.leaf_id == reply

    def test_entry_with_unknown_parent_is_dropped_on_load(self, tmp_path: Path) -> None:
        path = tmp_path / "s.jsonl"
        store = JsonlEntryStore(path, session_id="s1")
        root = store.append(message_entry("user", "hi"))
        with open(path, "a", encoding="utf-8") as f:
            record = {"_type": "entry", "id": "x1", "parentId": "ghost", "kind": "message", "timestamp": 1.0}
            f.write(json.dumps(record) + "\n")

        reopened = JsonlEntryStore(path)
        assert [e.id for e in reopened.all()] == [root]

    def test_set_leaf_to_unknown_entry_raises(self, tmp_path: Path) -> None:
        store = JsonlEntryStore(tmp_path / "s.jsonl", session_id="s1")
        with pytest.raises(EntryNotFoundError):
            store.set_leaf("missing")
