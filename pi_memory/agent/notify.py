"""User-facing notifications with duplicate coalescing."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Literal

from pi_memory.logging import get_logger

logger = get_logger(__name__)

Level = Literal["info", "warning", "error"]


@dataclass(frozen=True)
class Notification:
    message: str
    level: Level
    timestamp: float


class Notifier:
    """
    Deliver notifications to the host UI, at most once per window.

    Rapid repeated triggers that fail the same way produce one message
    rather than a cascade. ``status`` holds the transient progress line.
    """

    def __init__(
        self,
        sink: Callable[[Notification], None] | None = None,
        *,
        coalesce_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.coalesce_seconds = coalesce_seconds
        self._clock = clock
        self._last_sent: dict[tuple[str, str], float] = {}
        self.history: list[Notification] = []
        self.status: str | None = None

    def notify(self, message: str, level: Level = "info") -> bool:
        """Return False when an identical notification was sent within the window."""
        now = self._clock()
        key = (level, message)
        last = self._last_sent.get(key)
        if last is not None and now - last < self.coalesce_seconds:
            logger.debug("notification_coalesced", level=level, message=message)
            return False
        self._last_sent[key] = now
        note = Notification(message=message, level=level, timestamp=now)
        self.history.append(note)
        if self.sink is not None:
            self.sink(note)
        log = logger.error if level == "error" else logger.warning if level == "warning" else logger.info
        log("notification", level=level, message=message)
        return True

    def set_status(self, text: str | None) -> None:
        self.status = text
