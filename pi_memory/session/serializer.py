"""Turn a path of entries into LLM messages or a flat transcript."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from pi_memory.session.entries import Entry

MESSAGE_SEPARATOR = "\n\n---\n\n"
# A bare "---" line inside a message would read as a separator.
_RULE_LINE_RE = re.compile(r"^---$", re.MULTILINE)

_TRANSCRIPT_ROLE_NAMES = {"user": "user", "assistant": "assistant", "tool_result": "tool"}
_LLM_ROLE_NAMES = {"user": "user", "assistant": "assistant", "tool_result": "tool"}


@dataclass(frozen=True)
class TruncationPolicy:
    """Byte and line budget for tool-result content."""

    max_bytes: int = 500
    max_lines: int = 40

    def apply(self, text: str) -> str:
        lines = text.split("\n")
        notes: list[str] = []
        if self.max_lines > 0 and len(lines) > self.max_lines:
            notes.append(f"{len(lines) - self.max_lines} lines")
            text = "\n".join(lines[: self.max_lines])
        encoded = text.encode("utf-8")
        if self.max_bytes > 0 and len(encoded) > self.max_bytes:
            notes.append(f"{len(encoded) - self.max_bytes} bytes")
            text = encoded[: self.max_bytes].decode("utf-8", errors="ignore")
        if not notes:
            return text
        return f"{text}\n[... truncated {', '.join(notes)}]"


class ConversationSerializer:
    """Pure conversion of entry paths; the same path always yields the same output."""

    def __init__(self, policy: TruncationPolicy | None = None) -> None:
        self.policy = policy or TruncationPolicy()

    def serialize(self, path: Iterable[Entry]) -> list[dict[str, Any]]:
        """Role-tagged content blocks for a completion call."""
        messages: list[dict[str, Any]] = []
        for entry in path:
            if entry.kind != "message" or entry.role is None:
                continue
            blocks: list[dict[str, Any]] = []
            for block in entry.content:
                if block.type == "image":
                    blocks.append(block.to_dict())
                elif entry.role == "tool_result":
                    blocks.append({"type": "text", "text": self.policy.apply(block.text)})
                else:
                    blocks.append({"type": "text", "text": block.text})
            messages.append({"role": _LLM_ROLE_NAMES[entry.role], "content": blocks})
        return messages

    def to_transcript(self, path: Iterable[Entry]) -> str:
        """Flat ``[role]\\ntext`` blocks joined by :data:`MESSAGE_SEPARATOR`.

        Bare ``---`` lines inside a message are rewritten to ``- - -`` so the
        separator only ever appears between messages.
        """
        parts: list[str] = []
        for message in self.serialize(path):
            text = "\n".join(
                b["text"] if b["type"] == "text" else "[image]"
                for b in message["content"]
                if b["type"] != "text" or b["text"]
            )
            if not text.strip():
                continue
            role = _TRANSCRIPT_ROLE_NAMES.get(message["role"], message["role"])
            parts.append(f"[{role}]\n{_RULE_LINE_RE.sub('- - -', text)}")
        return MESSAGE_SEPARATOR.join(parts)

    def render_for_humans(self, path: Iterable[Entry]) -> str:
        """Readable dump including summaries, labels and custom entries."""
        lines: list[str] = []
        for entry in path:
            if entry.kind == "message":
                role = _TRANSCRIPT_ROLE_NAMES.get(entry.role or "", entry.role or "?")
                body = entry.text
                if entry.role == "tool_result":
                    body = self.policy.apply(body)
                lines.append(f"[{role}] {body}")
            elif entry.kind == "summary":
                narrative = str(entry.data.get("narrative") or "").strip()
                lines.append(f"[summary] {narrative}")
            elif entry.kind == "label":
                lines.append(f"[label] {entry.label} -> {entry.target_id}")
            else:
                lines.append(f"[custom:{entry.custom_type}]")
        return "\n".join(lines)
