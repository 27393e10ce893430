"""Exception taxonomy for the session log and memory pipeline."""

from __future__ import annotations


class PiMemoryError(Exception):
    """Base class for all pi-memory errors."""


class StoreError(PiMemoryError):
    """Durable backing failed to read or append.

    ``retryable`` is True for I/O failures where repeating the same call
    (with the same idempotency key) is safe.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class InvalidParentError(StoreError):
    """Append referenced a parent id that does not exist in the session."""

    def __init__(self, parent_id: str) -> None:
        super().__init__(f"Parent entry not found: {parent_id}")
        self.parent_id = parent_id


class EntryNotFoundError(StoreError):
    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Entry not found: {entry_id}")
        self.entry_id = entry_id


class ParseError(PiMemoryError):
    """No usable section could be extracted from a completion response."""


class CompletionError(PiMemoryError):
    """A completion call failed (network, provider or empty response)."""


class FinalizationCancelled(PiMemoryError):
    """The caller's cancellation signal fired during a completion call."""


class ConfigError(PiMemoryError):
    """No model or API key could be resolved, or config is unreadable."""
