"""Session management for conversation trees."""

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from pi_memory.errors import StoreError
from pi_memory.logging import get_logger
from pi_memory.session.entries import ContentBlock, MessageRole, message_entry
from pi_memory.session.store import JsonlEntryStore
from pi_memory.session.tree import TreeNavigator
from pi_memory.utils.helpers import ensure_dir, safe_filename

logger = get_logger(__name__)


@dataclass
class Session:
    """
    A conversation session.

    Stores its entries in an append-only JSONL file. Branches live in the
    same file; ``leaf_id`` says which one the conversation continues from.
    """

    id: str
    path: Path
    store: JsonlEntryStore
    navigator: TreeNavigator
    created_at: datetime = field(default_factory=datetime.now)
    cwd: str | None = None

    @property
    def leaf_id(self) -> str | None:
        leaf = self.navigator.leaf()
        return leaf.id if leaf else None

    def add_message(
        self,
        role: MessageRole,
        content: str | list[ContentBlock],
        *,
        idempotency_key: str | None = None,
    ) -> str:
        """Append a message under the current leaf."""
        return self.navigator.append(message_entry(role, content, idempotency_key=idempotency_key))

    def message_count(self) -> int:
        return sum(1 for e in self.store.all() if e.kind == "message")


class SessionManager:
    """
    Manages conversation sessions.

    Sessions are stored as JSONL files in the sessions directory.
    """

    def __init__(self, workspace: Path, sessions_dir: Path | None = None):
        self.workspace = workspace
        self.sessions_dir = ensure_dir(sessions_dir or (self.workspace / ".pi" / "sessions"))
        self._cache: dict[str, Session] = {}

    def _get_session_path(self, session_id: str) -> Path:
        """Get the file path for a session."""
        return self.sessions_dir / f"{safe_filename(session_id)}.jsonl"

    def create(self, session_id: str | None = None) -> Session:
        """Start a new session file."""
        session_id = session_id or uuid.uuid4().hex[:8]
        path = self._get_session_path(session_id)
        if path.exists():
            raise StoreError(f"Session already exists: {session_id}")
        session = self._wrap(JsonlEntryStore(path, session_id=session_id, cwd=str(self.workspace)))
        self._cache[session.id] = session
        logger.info("session_created", session_id=session.id)
        return session

    def get_or_create(self, session_id: str) -> Session:
        """
        Get an existing session or create a new one.

        Args:
            session_id: Session identifier (file stem).

        Returns:
            The session.
        """
        if session_id in self._cache:
            return self._cache[session_id]
        if self._get_session_path(session_id).exists():
            return self.open(session_id)
        return self.create(session_id)

    def open(self, session: str | Path) -> Session:
        """Open a session by id or by file path."""
        if isinstance(session, Path) or str(session).endswith(".jsonl"):
            path = Path(session)
        else:
            if session in self._cache:
                return self._cache[session]
            path = self._get_session_path(session)
        if not path.exists():
            raise StoreError(f"Session file not found: {path}")

        started = time.perf_counter()
        opened = self._wrap(JsonlEntryStore(path))
        self._cache[opened.id] = opened
        logger.debug(
            "session_opened",
            session_id=opened.id,
            entry_count=len(opened.store),
            leaf_id=opened.leaf_id,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return opened

    def leaf_of(self, session_id: str) -> str | None:
        return self.get_or_create(session_id).leaf_id

    def latest(self) -> Session | None:
        """Open the most recently updated session, if any."""
        sessions = self.list_sessions()
        return self.open(Path(sessions[0]["path"])) if sessions else None

    def invalidate(self, session_id: str) -> None:
        """Remove a session from the in-memory cache."""
        self._cache.pop(session_id, None)

    @staticmethod
    def _wrap(store: JsonlEntryStore) -> Session:
        return Session(
            id=store.session_id,
            path=store.path,
            store=store,
            navigator=TreeNavigator(store),
            created_at=store.created_at,
            cwd=store.header.get("cwd"),
        )

    def list_sessions(self) -> list[dict[str, Any]]:
        """
        List all sessions.

        Returns:
            List of session info dicts, most recently updated first.
        """
        sessions = []

        for path in self.sessions_dir.glob("*.jsonl"):
            try:
                # Read just the header line
                with open(path, encoding="utf-8") as f:
                    first_line = f.readline().strip()
                if not first_line:
                    continue
                data = json.loads(first_line)
            except (OSError, json.JSONDecodeError):
                logger.warning("session_header_unreadable", path=str(path))
                continue
            if data.get("_type") != "session":
                continue
            sessions.append({
                "id": data.get("id") or path.stem,
                "created_at": data.get("created_at"),
                "updated_at": datetime.fromtimestamp(path.stat().st_mtime).isoformat(),
                "path": str(path),
            })

        return sorted(sessions, key=lambda x: x.get("updated_at", ""), reverse=True)
