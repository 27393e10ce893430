"""Append-only entry stores backing a session's conversation tree."""

from __future__ import annotations

import json
import os
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from pi_memory.errors import EntryNotFoundError, InvalidParentError, StoreError
from pi_memory.logging import get_logger
from pi_memory.session.entries import Entry, NewEntry
from pi_memory.utils.helpers import atomic_append_text, ensure_dir

logger = get_logger(__name__)

SESSION_FILE_VERSION = 1


def generate_id(existing_ids: set[str] | dict[str, Any]) -> str:
    """Generate a unique 8-hex-char id, checking for collisions."""
    for _ in range(100):
        candidate = uuid.uuid4().hex[:8]
        if candidate not in existing_ids:
            return candidate
    return uuid.uuid4().hex


class EntryStore(ABC):
    """Contract for the durable, append-only log of one session.

    Entries are never updated or deleted. The only other mutable state is
    the leaf pointer, which records where the conversation continues.
    """

    @abstractmethod
    def append(self, entry: NewEntry, *, move_leaf: bool = False) -> str:
        """Append *entry* and return its assigned id."""

    @abstractmethod
    def find(self, entry_id: str) -> Entry | None:
        """Return the entry or None."""

    @abstractmethod
    def children(self, entry_id: str) -> list[Entry]:
        """Direct children of *entry_id* in insertion order."""

    @abstractmethod
    def all(self) -> list[Entry]:
        """Every entry in append order."""

    @property
    @abstractmethod
    def leaf_id(self) -> str | None:
        """Current leaf pointer, if one has been set."""

    @abstractmethod
    def set_leaf(self, entry_id: str | None) -> None:
        """Move the leaf pointer without appending an entry."""

    def get(self, entry_id: str) -> Entry:
        entry = self.find(entry_id)
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def __contains__(self, entry_id: object) -> bool:
        return isinstance(entry_id, str) and self.find(entry_id) is not None

    def __len__(self) -> int:
        return len(self.all())

    def roots(self) -> list[Entry]:
        return [e for e in self.all() if e.parent_id is None]


class InMemoryEntryStore(EntryStore):
    """Entry store kept entirely in memory; also the index for durable stores."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: list[Entry] = []
        self._by_id: dict[str, Entry] = {}
        self._children: dict[str, list[str]] = {}
        self._by_idempotency_key: dict[str, str] = {}
        self._leaf_id: str | None = None

    def append(self, entry: NewEntry, *, move_leaf: bool = False) -> str:
        if entry.idempotency_key and entry.idempotency_key in self._by_idempotency_key:
            existing_id = self._by_idempotency_key[entry.idempotency_key]
            logger.debug("entry_append_deduplicated", entry_id=existing_id, key=entry.idempotency_key)
            return existing_id

        parent: Entry | None = None
        if entry.parent_id is not None:
            parent = self._by_id.get(entry.parent_id)
            if parent is None:
                raise InvalidParentError(entry.parent_id)

        timestamp = self._clock()
        if parent is not None and parent.timestamp > timestamp:
            timestamp = parent.timestamp
        stored = Entry.from_new(entry, entry_id=generate_id(self._by_id), timestamp=timestamp)

        # Durable write first: a failure here leaves the index untouched.
        self._persist_entry(stored, move_leaf=move_leaf)
        self._index(stored)
        if move_leaf:
            self._leaf_id = stored.id
        return stored.id

    def find(self, entry_id: str) -> Entry | None:
        return self._by_id.get(entry_id)

    def children(self, entry_id: str) -> list[Entry]:
        return [self._by_id[cid] for cid in self._children.get(entry_id, [])]

    def all(self) -> list[Entry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def leaf_id(self) -> str | None:
        return self._leaf_id

    def set_leaf(self, entry_id: str | None) -> None:
        if entry_id is not None and entry_id not in self._by_id:
            raise EntryNotFoundError(entry_id)
        self._persist_leaf(entry_id)
        self._leaf_id = entry_id

    def _index(self, entry: Entry) -> None:
        self._entries.append(entry)
        self._by_id[entry.id] = entry
        if entry.parent_id is not None:
            self._children.setdefault(entry.parent_id, []).append(entry.id)
        if entry.idempotency_key:
            self._by_idempotency_key[entry.idempotency_key] = entry.id

    def _persist_entry(self, entry: Entry, *, move_leaf: bool) -> None:
        """Hook for durable subclasses; in-memory stores keep nothing on disk."""

    def _persist_leaf(self, entry_id: str | None) -> None:
        """Hook for durable subclasses."""


class JsonlEntryStore(InMemoryEntryStore):
    """
    Entry store persisted as one append-only JSONL file per session.

    Line 1 is the session header. Every following line is either an entry
    record (``_type: entry``) or a leaf-pointer record (``_type: leaf``).
    Each append is a single write followed by flush + fsync, so a crash can
    at worst leave one torn trailing line, which replay skips.
    """

    def __init__(
        self,
        path: Path,
        *,
        session_id: str | None = None,
        cwd: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(clock=clock)
        self.path = path
        self.header: dict[str, Any] = {}
        self._needs_newline = False
        if path.exists():
            self._load()
        else:
            self._create(session_id or uuid.uuid4().hex[:8], cwd or os.getcwd())

    @property
    def session_id(self) -> str:
        return str(self.header.get("id", self.path.stem))

    @property
    def created_at(self) -> datetime:
        raw = self.header.get("created_at")
        if raw:
            try:
                return datetime.fromisoformat(raw)
            except ValueError:
                pass
        return datetime.fromtimestamp(self.path.stat().st_mtime)

    def _create(self, session_id: str, cwd: str) -> None:
        self.header = {
            "_type": "session",
            "id": session_id,
            "version": SESSION_FILE_VERSION,
            "cwd": cwd,
            "created_at": datetime.now().isoformat(),
        }
        ensure_dir(self.path.parent)
        self._write_line(self.header)
        logger.debug("session_file_created", session_id=session_id, path=str(self.path))

    def _load(self) -> None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to read session file {self.path}: {e}", retryable=True) from e

        lines = raw.split("\n")
        self._needs_newline = bool(raw) and not raw.endswith("\n")
        last_index = len(lines) - 1
        skipped = 0
        for idx, line in enumerate(lines):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                skipped += 1
                logger.warning(
                    "session_line_unreadable",
                    path=str(self.path),
                    line_no=idx + 1,
                    torn_tail=(idx == last_index),
                )
                continue
            record_type = record.get("_type")
            if record_type == "session":
                self.header = record
            elif record_type == "leaf":
                leaf_id = record.get("leafId")
                if leaf_id is None or leaf_id in self._by_id:
                    self._leaf_id = leaf_id
            elif record_type == "entry":
                try:
                    entry = Entry.from_record(record)
                except (KeyError, ValueError):
                    skipped += 1
                    logger.warning("session_entry_invalid", path=str(self.path), line_no=idx + 1)
                    continue
                if entry.parent_id is not None and entry.parent_id not in self._by_id:
                    skipped += 1
                    logger.warning("session_entry_orphaned", path=str(self.path), entry_id=entry.id)
                    continue
                self._index(entry)
                if record.get("setsLeaf"):
                    self._leaf_id = entry.id
        logger.debug(
            "session_file_loaded",
            path=str(self.path),
            entries=len(self._entries),
            skipped=skipped,
            leaf_id=self._leaf_id,
        )

    def _write_line(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False) + "\n"
        if self._needs_newline:
            line = "\n" + line
        try:
            atomic_append_text(self.path, line)
        except OSError as e:
            raise StoreError(f"Failed to append to {self.path}: {e}", retryable=True) from e
        self._needs_newline = False

    def _persist_entry(self, entry: Entry, *, move_leaf: bool) -> None:
        record = entry.to_record()
        if move_leaf:
            record["setsLeaf"] = True
        self._write_line(record)

    def _persist_leaf(self, entry_id: str | None) -> None:
        self._write_line({"_type": "leaf", "leafId": entry_id})
