"""Rolling project memory: a markdown document with six fixed sections."""

from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from pi_memory.errors import CompletionError
from pi_memory.logging import get_logger
from pi_memory.memory import prompts
from pi_memory.memory.io import MemoryIO, Section, parse_markdown_h2_sections, render_markdown_h2_sections
from pi_memory.memory.patch import SECTION_HEADINGS, MemoryPatch, dedup_key

if TYPE_CHECKING:
    from pi_memory.memory.completion import Completer

logger = get_logger(__name__)

PROJECT_MEMORY_FILE = "project_current.md"
ARCHIVE_DIR = "archive"
EPOCH_COUNTER_FILE = "epoch_counter"
MEMORY_TITLE = "# Project Memory"

SECTION_COMMENTS: dict[str, str] = {
    "Invariants": "<!-- Core assumptions that must remain true -->",
    "Contracts": "<!-- Interface contracts and API boundaries -->",
    "Decisions": "<!-- Architectural decisions with rationale -->",
    "Active Workstreams": "<!-- Current work in progress -->",
    "Known Issues": "<!-- Bugs, limitations, and technical debt -->",
    "Debug Playbook": "<!-- Solutions to recurring problems -->",
}

PROJECT_MEMORY_TEMPLATE = (
    f"{MEMORY_TITLE}\n\n"
    + "\n\n".join(f"## {heading}\n{SECTION_COMMENTS[heading]}" for heading in SECTION_HEADINGS)
    + "\n"
)

_CANONICAL = {heading.lower(): heading for heading in SECTION_HEADINGS}
_EPOCH_FILE_RE = re.compile(r"^epoch-(\d+)\.md$")
_BULLET_RE = re.compile(r"^\s*[-*+]\s+(.*\S)\s*$")


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def _canonical_heading(heading: str) -> str | None:
    return _CANONICAL.get(re.sub(r"\s+", " ", heading.strip().lower()))


def _repair(text: str) -> tuple[list[str], dict[str, list[str]], bool]:
    """Parse *text* into title lines and canonical section bodies.

    Headings are matched case-insensitively. A heading outside the fixed
    six is demoted to ``###`` inside the section before it. Missing sections
    come back with their template comment. The flag says whether anything
    had to change.
    """
    preamble, sections = parse_markdown_h2_sections(text)
    bodies: dict[str, list[str]] = {}
    seen: list[str] = []
    changed = False
    for heading, lines in sections:
        canonical = _canonical_heading(heading)
        if canonical is None:
            target = seen[-1] if seen else SECTION_HEADINGS[0]
            bodies.setdefault(target, []).extend(["", f"### {heading}", *lines])
            changed = True
            continue
        if canonical != heading or canonical in seen:
            changed = True
        if canonical not in seen:
            seen.append(canonical)
        bodies.setdefault(canonical, []).extend(lines)
    if seen != [h for h in SECTION_HEADINGS if h in seen]:
        changed = True
    for heading in SECTION_HEADINGS:
        if heading not in bodies:
            bodies[heading] = [SECTION_COMMENTS[heading]]
            changed = True
    if not any(line.strip() for line in preamble):
        preamble = [MEMORY_TITLE]
        changed = True
    return preamble, bodies, changed


def _render(preamble: list[str], bodies: dict[str, list[str]]) -> str:
    ordered: list[Section] = [(heading, bodies[heading]) for heading in SECTION_HEADINGS]
    return render_markdown_h2_sections(preamble, ordered)


def ensure_sections(text: str) -> str:
    """Return *text* with exactly the six fixed headers, in canonical order."""
    preamble, bodies, changed = _repair(text)
    return _render(preamble, bodies) if changed else text


def _insertion_index(lines: list[str]) -> int:
    """Index of the first content line after a section's leading comments."""
    in_comment = False
    after_comments = 0
    for idx, line in enumerate(lines):
        stripped = line.strip()
        if in_comment:
            if "-->" in stripped:
                in_comment = False
                after_comments = idx + 1
            continue
        if not stripped:
            continue
        if stripped.startswith("<!--"):
            in_comment = "-->" not in stripped
            after_comments = idx + 1
            continue
        return idx
    return after_comments


def apply_memory_patch(text: str, patch: MemoryPatch) -> str:
    """
    Merge *patch* into the memory document *text* and return the result.

    Each item is keyed with :func:`dedup_key`; items whose key already
    exists in the section, or appeared earlier in the same patch, are
    skipped. Novel items go right after the section's leading comment,
    ahead of existing bullets. Applying the same patch twice is a no-op;
    when nothing is inserted, *text* comes back as-is, unrepaired.
    """
    preamble, bodies, _ = _repair(text)
    inserted = False
    for heading, items in patch.items():
        if not items:
            continue
        lines = bodies[heading]
        seen = {
            dedup_key(m.group(1))
            for m in (_BULLET_RE.match(line) for line in lines)
            if m
        }
        fresh: list[str] = []
        for item in items:
            item = " ".join(item.split())
            key = dedup_key(item)
            if not key or key in seen:
                continue
            seen.add(key)
            fresh.append(f"- {item}")
        if fresh:
            idx = _insertion_index(lines)
            bodies[heading] = lines[:idx] + fresh + lines[idx:]
            inserted = True
    return _render(preamble, bodies) if inserted else text


@dataclass
class CompactionResult:
    epoch: int
    archive_path: Path
    tokens_before: int
    tokens_after: int


class ProjectMemoryStore:
    """
    ``project_current.md`` under the project's memory directory.

    Every write goes through temp file + rename, so a crash leaves either
    the old or the new document, never a mix.
    """

    def __init__(self, memory_dir: Path, *, max_tokens: int = 4000, target_tokens: int = 2000) -> None:
        self.memory_dir = memory_dir
        self.memory_file = memory_dir / PROJECT_MEMORY_FILE
        self.archive_dir = memory_dir / ARCHIVE_DIR
        self.max_tokens = max_tokens
        self.target_tokens = target_tokens
        self._io = MemoryIO()

    def read(self) -> str:
        return self._io.read_text(self.memory_file, PROJECT_MEMORY_TEMPLATE)

    def write(self, text: str) -> str:
        """Repair the section layout of *text* and store it."""
        repaired = ensure_sections(text)
        self._io.write_text(self.memory_file, repaired)
        return repaired

    def has_content(self) -> bool:
        """False while the document is still the bare template."""
        text = self.read()
        if text == PROJECT_MEMORY_TEMPLATE:
            return False
        _, bodies, _ = _repair(text)
        comments = set(SECTION_COMMENTS.values())
        return any(
            line.strip() and line.strip() not in comments
            for lines in bodies.values()
            for line in lines
        )

    def apply_patch(self, patch: MemoryPatch) -> str:
        current = self.read()
        updated = apply_memory_patch(current, patch)
        if updated != current or not self.memory_file.exists():
            self.write(updated)
            logger.info("project_memory_patched", chars_before=len(current), chars_after=len(updated))
        return updated

    def _next_epoch(self) -> int:
        """Counter file, reconciled with archives already on disk."""
        counter_path = self.archive_dir / EPOCH_COUNTER_FILE
        last = 0
        raw = self._io.read_text(counter_path).strip()
        if raw.isdigit():
            last = int(raw)
        if self.archive_dir.exists():
            for path in self.archive_dir.iterdir():
                m = _EPOCH_FILE_RE.match(path.name)
                if m:
                    last = max(last, int(m.group(1)))
        return last + 1

    async def compact_if_needed(
        self,
        completer: Completer,
        cancel: asyncio.Event | None = None,
    ) -> CompactionResult | None:
        """
        Rewrite the document via one completion call when it is over budget.

        The pre-compaction text is archived to ``archive/epoch-NNN.md`` only
        after the rewrite succeeded; a failed or blank rewrite leaves the
        memory and the archive untouched.

        Raises:
            CompletionError: the call failed or returned a blank document.
            FinalizationCancelled: *cancel* fired during the call.
        """
        memory = self.read()
        tokens_before = estimate_tokens(memory)
        if tokens_before <= self.max_tokens:
            return None

        logger.info("project_memory_compacting", tokens=tokens_before, budget=self.max_tokens)
        rewritten = await completer.complete(
            prompts.COMPACTION_SYSTEM_PROMPT,
            prompts.build_compaction_prompt(memory, self.target_tokens),
            max_tokens=prompts.COMPACTION_MAX_TOKENS,
            cancel=cancel,
        )
        rewritten = rewritten.strip()
        if rewritten.startswith("```"):
            rewritten = re.sub(r"^```[\w-]*\n?|\n?```$", "", rewritten).strip()
        if not rewritten:
            raise CompletionError("compaction returned an empty document")

        epoch = self._next_epoch()
        archive_path = self.archive_dir / f"epoch-{epoch:03d}.md"
        self._io.write_text(archive_path, memory)
        self._io.write_text(self.archive_dir / EPOCH_COUNTER_FILE, f"{epoch}\n")
        compacted = self.write(rewritten + "\n")
        result = CompactionResult(
            epoch=epoch,
            archive_path=archive_path,
            tokens_before=tokens_before,
            tokens_after=estimate_tokens(compacted),
        )
        logger.info(
            "project_memory_compacted",
            epoch=epoch,
            tokens_before=result.tokens_before,
            tokens_after=result.tokens_after,
        )
        return result
