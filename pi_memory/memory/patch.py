"""Categorized deltas produced by finalization and applied to project memory."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from typing import Any, Iterator

# (field name, camelCase key, section heading) in document order.
CATEGORIES: tuple[tuple[str, str, str], ...] = (
    ("invariants", "invariants", "Invariants"),
    ("contracts", "contracts", "Contracts"),
    ("decisions", "decisions", "Decisions"),
    ("active_workstreams", "activeWorkstreams", "Active Workstreams"),
    ("known_issues", "knownIssues", "Known Issues"),
    ("debug_playbook", "debugPlaybook", "Debug Playbook"),
)
SECTION_HEADINGS: tuple[str, ...] = tuple(heading for _, _, heading in CATEGORIES)

_HEADING_TO_FIELD = {re.sub(r"[^a-z]", "", heading.lower()): name for name, _, heading in CATEGORIES}

_RATIONALE_MARKER = " because "
_WS_RE = re.compile(r"\s+")


def category_for_heading(heading: str) -> str | None:
    """Map a heading such as ``Active Workstreams`` or ``active_workstreams`` to a field name."""
    return _HEADING_TO_FIELD.get(re.sub(r"[^a-z]", "", heading.lower()))


def dedup_key(item: str) -> str:
    """
    Normalized identity of a memory bullet.

    Lowercased, whitespace-collapsed text up to the first period, cut again
    at the first " because ", so the same fact restated with a different
    justification keys identically. Other connectives such as "since" are
    kept: "fails since X" and "fails since Y" are different facts.
    """
    text = _WS_RE.sub(" ", item.strip().lower())
    text = text.split(".", 1)[0]
    text = f" {text} ".split(_RATIONALE_MARKER, 1)[0]
    return text.strip(" ,;:")


@dataclass
class MemoryPatch:
    invariants: list[str] = field(default_factory=list)
    contracts: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)
    active_workstreams: list[str] = field(default_factory=list)
    known_issues: list[str] = field(default_factory=list)
    debug_playbook: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MemoryPatch:
        """Accept snake_case or camelCase keys; non-list values are ignored."""
        data = data or {}
        kwargs: dict[str, list[str]] = {}
        for name, camel, _ in CATEGORIES:
            raw = data.get(name, data.get(camel))
            if isinstance(raw, str):
                raw = [raw]
            if not isinstance(raw, list):
                continue
            kwargs[name] = [str(item).strip() for item in raw if str(item).strip()]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, list[str]]:
        return {camel: list(getattr(self, name)) for name, camel, _ in CATEGORIES}

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def items(self) -> Iterator[tuple[str, list[str]]]:
        """(section heading, items) in canonical document order."""
        for name, _, heading in CATEGORIES:
            yield heading, getattr(self, name)
