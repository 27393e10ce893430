"""Memory file I/O with atomic semantics and markdown section helpers."""

from __future__ import annotations

import re
from pathlib import Path

from pi_memory.errors import StoreError
from pi_memory.utils.helpers import atomic_write_text

_H2_HEADING_RE = re.compile(r"^##\s+(.+?)\s*#*\s*$")

Section = tuple[str, list[str]]


class MemoryIO:
    """Thin I/O adapter so the memory store can be tested against a temp dir."""

    @staticmethod
    def read_text(path: Path, default: str = "", *, encoding: str = "utf-8") -> str:
        if not path.exists():
            return default
        try:
            return path.read_text(encoding=encoding)
        except OSError as e:
            raise StoreError(f"Failed to read {path}: {e}", retryable=True) from e

    @staticmethod
    def write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
        try:
            atomic_write_text(path, content, encoding=encoding)
        except OSError as e:
            raise StoreError(f"Failed to write {path}: {e}", retryable=True) from e


def parse_markdown_h2_sections(text: str) -> tuple[list[str], list[Section]]:
    """Split *text* on ``## `` headings into preamble lines and ordered sections.

    A heading that repeats is folded into its first occurrence.
    """
    preamble: list[str] = []
    bodies: dict[str, list[str]] = {}
    order: list[str] = []
    current: str | None = None
    in_fence = False
    for raw_line in text.splitlines():
        if raw_line.lstrip().startswith("```"):
            in_fence = not in_fence
        m = None if in_fence else _H2_HEADING_RE.match(raw_line)
        if m:
            current = m.group(1).strip()
            if current not in bodies:
                bodies[current] = []
                order.append(current)
            continue
        if current is None:
            preamble.append(raw_line)
        else:
            bodies[current].append(raw_line)
    return preamble, [(heading, bodies[heading]) for heading in order]


def render_markdown_h2_sections(preamble: list[str], sections: list[Section]) -> str:
    """Inverse of :func:`parse_markdown_h2_sections`, one blank line between blocks."""
    parts: list[str] = []
    head = "\n".join(preamble).strip("\n")
    if head:
        parts.append(head)
    for heading, lines in sections:
        body = "\n".join(lines).strip("\n")
        parts.append(f"## {heading}\n{body}" if body else f"## {heading}")
    rendered = "\n\n".join(parts).rstrip()
    return rendered + ("\n" if rendered else "")
