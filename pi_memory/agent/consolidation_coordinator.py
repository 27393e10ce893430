"""Coordinate session-scoped finalization work."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class ConsolidationCoordinator:
    """Per-session locks plus the cancel signal of the run holding each lock."""

    def __init__(self) -> None:
        # Holders plus waiters per session; a lock is only dropped at zero.
        self.in_progress: dict[str, int] = {}
        self.locks: dict[str, asyncio.Lock] = {}
        self.cancel_events: dict[str, asyncio.Event] = {}

    def get_lock(self, session_id: str) -> asyncio.Lock:
        lock = self.locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self.locks[session_id] = lock
        return lock

    def prune_lock(self, session_id: str, lock: asyncio.Lock) -> None:
        """Drop lock entry if nobody holds or awaits it; batch-clean when dict grows large."""
        if not lock.locked() and session_id not in self.in_progress:
            self.locks.pop(session_id, None)
        if len(self.locks) > 100:
            stale = [k for k, v in self.locks.items() if not v.locked() and k not in self.in_progress]
            for key in stale:
                del self.locks[key]

    def is_running(self, session_id: str) -> bool:
        return session_id in self.in_progress

    def cancel(self, session_id: str) -> bool:
        """Signal the in-flight run for *session_id*; False when nothing runs."""
        event = self.cancel_events.get(session_id)
        if event is None or event.is_set():
            return False
        event.set()
        return True

    async def run_exclusive(
        self,
        session_id: str,
        work: Callable[[asyncio.Event], Awaitable[T]],
    ) -> T:
        """Run *work* under the per-session lock, handing it a fresh cancel event."""
        lock = self.get_lock(session_id)
        self.in_progress[session_id] = self.in_progress.get(session_id, 0) + 1
        try:
            async with lock:
                cancel = asyncio.Event()
                self.cancel_events[session_id] = cancel
                try:
                    return await work(cancel)
                finally:
                    if self.cancel_events.get(session_id) is cancel:
                        del self.cancel_events[session_id]
        finally:
            remaining = self.in_progress[session_id] - 1
            if remaining:
                self.in_progress[session_id] = remaining
            else:
                del self.in_progress[session_id]
            self.prune_lock(session_id, lock)
