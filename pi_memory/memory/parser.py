"""Parse the structured markdown returned by finalization and merge calls."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

import json_repair

from pi_memory.errors import ParseError
from pi_memory.logging import get_logger
from pi_memory.memory.patch import MemoryPatch, category_for_heading

logger = get_logger(__name__)

HEADER_SYNTH_CHARS = 240

_HEADING_RE = re.compile(r"^\s{0,3}(#{1,4})\s+(.+?)\s*#*\s*$")
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*?)\s*$")
_FENCE_RE = re.compile(r"^```[\w-]*[ \t]*\n(.*?)\n?```$", re.DOTALL)
_ANY_FENCE_RE = re.compile(r"```[\w-]*[ \t]*\n(.*?)\n?```", re.DOTALL)
_PLACEHOLDERS = frozenset({"", "-", "none", "n/a", "na", "(none)", "nothing", "no changes", "nothing new"})

_SECTION_NAMES = {
    "session header": "header",
    "header": "header",
    "session summary": "narrative",
    "summary": "narrative",
    "narrative": "narrative",
    "memory patch": "memory_patch",
    "retrieval tags": "retrieval_tags",
    "tags": "retrieval_tags",
    "next steps": "next_steps",
}


@dataclass
class FinalizationOutput:
    header: str
    narrative: str
    memory_patch: MemoryPatch = field(default_factory=MemoryPatch)
    retrieval_tags: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        has_text = self.header or self.narrative or self.retrieval_tags or self.next_steps
        return not has_text and self.memory_patch.is_empty()


def _normalize_heading(title: str) -> str:
    title = re.sub(r"[*_`:]", "", title).strip().lower()
    return re.sub(r"\s+", " ", title)


def _is_placeholder(item: str) -> bool:
    return item.strip().strip(".").strip().lower() in _PLACEHOLDERS


def _bullet(line: str) -> str | None:
    m = _BULLET_RE.match(line)
    if not m:
        return None
    item = m.group(1).strip()
    return None if _is_placeholder(item) else item


def _unwrap_fence(text: str) -> str:
    stripped = text.strip()
    m = _FENCE_RE.match(stripped)
    return m.group(1).strip() if m else stripped


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            out.append(item)
    return out


def _split_tags(lines: list[str]) -> list[str]:
    tags: list[str] = []
    for line in lines:
        if not line.strip():
            continue
        item = _bullet(line)
        if item is None:
            if _BULLET_RE.match(line):
                continue
            item = line
        for part in item.split(","):
            tag = part.strip().strip("`").lstrip("#").strip()
            if tag and not _is_placeholder(tag):
                tags.append(tag)
    return _dedupe(tags)


def _list_items(lines: list[str]) -> list[str]:
    return [item for item in (_bullet(line) for line in lines) if item]


def _parse_sections(text: str) -> dict[str, list[str]]:
    """Group lines by known ``##`` section; raises ParseError when none is found."""
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in text.splitlines():
        m = _HEADING_RE.match(line)
        if m and len(m.group(1)) <= 2:
            current = _SECTION_NAMES.get(_normalize_heading(m.group(2)))
            if current is not None:
                sections.setdefault(current, [])
            continue
        if current is not None:
            sections[current].append(line)
    if not sections:
        raise ParseError("no recognizable sections in finalization output")
    return sections


def _parse_patch(lines: list[str]) -> MemoryPatch:
    buckets: dict[str, list[str]] = {}
    category: str | None = None
    for line in lines:
        m = _HEADING_RE.match(line)
        if m:
            category = category_for_heading(_normalize_heading(m.group(2)))
            continue
        if category is None:
            continue
        item = _bullet(line)
        if item:
            buckets.setdefault(category, []).append(item)
    return MemoryPatch(**{name: _dedupe(items) for name, items in buckets.items()})


def synthesize_header(narrative: str, next_steps: list[str]) -> str:
    """Header for outputs that omitted one: narrative lead plus next steps."""
    lead = " ".join(narrative.split())
    if len(lead) > HEADER_SYNTH_CHARS:
        lead = lead[:HEADER_SYNTH_CHARS].rstrip() + "..."
    lines = [f"- Summary: {lead}"] if lead else []
    if next_steps:
        lines.append(f"- Next Steps: {'; '.join(next_steps)}")
    return "\n".join(lines)


def _from_sections(sections: dict[str, list[str]]) -> FinalizationOutput:
    narrative = "\n".join(sections.get("narrative", [])).strip()
    next_steps = _dedupe(_list_items(sections.get("next_steps", [])))
    header = "\n".join(sections.get("header", [])).strip()
    if not header:
        header = synthesize_header(narrative, next_steps)
    return FinalizationOutput(
        header=header,
        narrative=narrative,
        memory_patch=_parse_patch(sections.get("memory_patch", [])),
        retrieval_tags=_split_tags(sections.get("retrieval_tags", [])),
        next_steps=next_steps,
    )


def _as_str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip() and not _is_placeholder(str(v))]


def _from_json(text: str) -> FinalizationOutput | None:
    """Decode the legacy JSON shape (``sessionSummary``, ``memoryPatch``, ...)."""
    candidate = text
    if not candidate.lstrip().startswith("{"):
        m = _ANY_FENCE_RE.search(text)
        if not m or not m.group(1).lstrip().startswith("{"):
            return None
        candidate = m.group(1)
    data = json_repair.loads(candidate)
    if not isinstance(data, dict):
        return None
    narrative = str(data.get("sessionSummary") or data.get("narrative") or data.get("summary") or "").strip()
    if not narrative and not data.get("memoryPatch"):
        return None
    next_steps = _dedupe(_as_str_list(data.get("nextSteps")))
    header = data.get("header")
    if isinstance(header, dict):
        header = "\n".join(f"- {k}: {v}" for k, v in header.items() if v)
    header = str(header or "").strip() or synthesize_header(narrative, next_steps)
    tags: list[str] = []
    for tag in _as_str_list(data.get("retrievalTags")):
        tags.extend(t.strip() for t in tag.split(",") if t.strip())
    return FinalizationOutput(
        header=header,
        narrative=narrative,
        memory_patch=MemoryPatch.from_dict(data.get("memoryPatch") if isinstance(data.get("memoryPatch"), dict) else None),
        retrieval_tags=_dedupe(tags),
        next_steps=next_steps,
    )


def parse_finalization_output(text: str) -> FinalizationOutput:
    """
    Parse a finalization or merge response into :class:`FinalizationOutput`.

    Never raises. Missing sections contribute nothing. When no section
    heading matches, a JSON-looking reply is decoded leniently, and
    anything else becomes the narrative as-is.
    """
    body = _unwrap_fence(text)
    try:
        return _from_sections(_parse_sections(body))
    except ParseError:
        logger.warning("finalization_output_unstructured", chars=len(body))

    legacy = _from_json(body)
    if legacy is not None:
        return legacy
    return FinalizationOutput(header=synthesize_header(body, []), narrative=body)
