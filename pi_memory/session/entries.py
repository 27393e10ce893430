"""Typed entries of the append-only session log."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal, TypeAlias

EntryKind: TypeAlias = Literal["message", "summary", "label", "custom"]
MessageRole: TypeAlias = Literal["user", "assistant", "tool_result"]

ENTRY_KINDS: frozenset[str] = frozenset({"message", "summary", "label", "custom"})
MESSAGE_ROLES: frozenset[str] = frozenset({"user", "assistant", "tool_result"})


@dataclass(frozen=True)
class ContentBlock:
    """One block of message content: text or an inline image."""

    type: Literal["text", "image"] = "text"
    text: str = ""
    data: str = ""  # base64 payload for images
    mime_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        if self.type == "image":
            return {"type": "image", "data": self.data, "mimeType": self.mime_type}
        return {"type": "text", "text": self.text}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentBlock:
        if data.get("type") == "image":
            return cls(type="image", data=data.get("data", ""), mime_type=data.get("mimeType", ""))
        return cls(type="text", text=str(data.get("text", "")))


@dataclass(frozen=True)
class NewEntry:
    """An entry that has not been appended yet (no id, no timestamp)."""

    kind: EntryKind
    parent_id: str | None = None
    role: MessageRole | None = None
    content: tuple[ContentBlock, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    label: str | None = None
    target_id: str | None = None
    custom_type: str | None = None
    idempotency_key: str | None = None

    def with_parent(self, parent_id: str | None) -> NewEntry:
        return replace(self, parent_id=parent_id)


@dataclass(frozen=True)
class Entry:
    """
    An immutable record of the session log.

    ``parent_id`` links the entry to the one it follows; several entries
    may share a parent (branches).
    """

    id: str
    kind: EntryKind
    timestamp: float
    parent_id: str | None = None
    role: MessageRole | None = None
    content: tuple[ContentBlock, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    label: str | None = None
    target_id: str | None = None
    custom_type: str | None = None
    idempotency_key: str | None = None

    @classmethod
    def from_new(cls, new: NewEntry, *, entry_id: str, timestamp: float) -> Entry:
        return cls(
            id=entry_id,
            kind=new.kind,
            timestamp=timestamp,
            parent_id=new.parent_id,
            role=new.role,
            content=new.content,
            data=dict(new.data),
            label=new.label,
            target_id=new.target_id,
            custom_type=new.custom_type,
            idempotency_key=new.idempotency_key,
        )

    @property
    def text(self) -> str:
        """Concatenated text blocks of a message entry."""
        return "\n".join(b.text for b in self.content if b.type == "text" and b.text)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "_type": "entry",
            "id": self.id,
            "parentId": self.parent_id,
            "kind": self.kind,
            "timestamp": self.timestamp,
        }
        if self.role is not None:
            record["role"] = self.role
        if self.content:
            record["content"] = [b.to_dict() for b in self.content]
        if self.data:
            record["data"] = self.data
        if self.label is not None:
            record["label"] = self.label
        if self.target_id is not None:
            record["targetId"] = self.target_id
        if self.custom_type is not None:
            record["customType"] = self.custom_type
        if self.idempotency_key is not None:
            record["idempotencyKey"] = self.idempotency_key
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Entry:
        kind = record.get("kind")
        if kind not in ENTRY_KINDS:
            raise ValueError(f"unknown entry kind: {kind!r}")
        return cls(
            id=str(record["id"]),
            kind=kind,
            timestamp=float(record.get("timestamp") or 0.0),
            parent_id=record.get("parentId"),
            role=record.get("role"),
            content=tuple(ContentBlock.from_dict(b) for b in record.get("content") or ()),
            data=dict(record.get("data") or {}),
            label=record.get("label"),
            target_id=record.get("targetId"),
            custom_type=record.get("customType"),
            idempotency_key=record.get("idempotencyKey"),
        )


def _as_blocks(content: str | list[ContentBlock] | tuple[ContentBlock, ...]) -> tuple[ContentBlock, ...]:
    if isinstance(content, str):
        return (ContentBlock(type="text", text=content),)
    return tuple(content)


def message_entry(
    role: MessageRole,
    content: str | list[ContentBlock] | tuple[ContentBlock, ...],
    *,
    parent_id: str | None = None,
    idempotency_key: str | None = None,
) -> NewEntry:
    if role not in MESSAGE_ROLES:
        raise ValueError(f"unknown message role: {role!r}")
    return NewEntry(
        kind="message",
        parent_id=parent_id,
        role=role,
        content=_as_blocks(content),
        idempotency_key=idempotency_key,
    )


def summary_entry(
    summary: dict[str, Any], *, parent_id: str | None = None, idempotency_key: str | None = None
) -> NewEntry:
    return NewEntry(kind="summary", parent_id=parent_id, data=dict(summary), idempotency_key=idempotency_key)


def label_entry(target_id: str, name: str) -> NewEntry:
    return NewEntry(kind="label", parent_id=target_id, target_id=target_id, label=name)


def custom_entry(custom_type: str, data: dict[str, Any] | None = None, *, parent_id: str | None = None) -> NewEntry:
    return NewEntry(kind="custom", parent_id=parent_id, custom_type=custom_type, data=dict(data or {}))
