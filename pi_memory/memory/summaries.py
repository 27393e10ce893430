"""Per-session summaries written by finalization."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pi_memory.logging import get_logger
from pi_memory.memory.io import MemoryIO
from pi_memory.memory.patch import MemoryPatch
from pi_memory.utils.helpers import safe_filename

if TYPE_CHECKING:
    from pi_memory.memory.parser import FinalizationOutput

logger = get_logger(__name__)


@dataclass
class SessionSummary:
    session_id: str
    timestamp: str
    header: str
    narrative: str
    memory_patch: MemoryPatch = field(default_factory=MemoryPatch)
    retrieval_tags: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)

    @classmethod
    def from_output(cls, session_id: str, output: FinalizationOutput) -> SessionSummary:
        return cls(
            session_id=session_id,
            timestamp=datetime.now().isoformat(),
            header=output.header,
            narrative=output.narrative,
            memory_patch=output.memory_patch,
            retrieval_tags=list(output.retrieval_tags),
            next_steps=list(output.next_steps),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "timestamp": self.timestamp,
            "header": self.header,
            "narrative": self.narrative,
            "memoryPatch": self.memory_patch.to_dict(),
            "retrievalTags": list(self.retrieval_tags),
            "nextSteps": list(self.next_steps),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionSummary:
        # Older summary files stored the narrative under "summary".
        return cls(
            session_id=str(data.get("sessionId") or data.get("session_id") or ""),
            timestamp=str(data.get("timestamp") or ""),
            header=str(data.get("header") or ""),
            narrative=str(data.get("narrative") or data.get("summary") or ""),
            memory_patch=MemoryPatch.from_dict(data.get("memoryPatch") or data.get("memory_patch")),
            retrieval_tags=[str(t) for t in data.get("retrievalTags") or data.get("retrieval_tags") or []],
            next_steps=[str(s) for s in data.get("nextSteps") or data.get("next_steps") or []],
        )

    def render(self) -> str:
        """Markdown view used by ``/summarize`` and the CLI."""
        parts = ["## Session Header", self.header.strip() or "(none)", "", "## Session Summary", self.narrative.strip()]
        if self.next_steps:
            parts += ["", "## Next Steps", *(f"- {step}" for step in self.next_steps)]
        if self.retrieval_tags:
            parts += ["", "## Retrieval Tags", ", ".join(self.retrieval_tags)]
        patch_lines = [
            f"### {heading}\n" + "\n".join(f"- {item}" for item in items)
            for heading, items in self.memory_patch.items()
            if items
        ]
        if patch_lines:
            parts += ["", "## Memory Patch", "\n\n".join(patch_lines)]
        return "\n".join(parts).rstrip() + "\n"


class SessionSummaryStore:
    """``summaries/<session_id>.json``; a new finalization overwrites the file."""

    def __init__(self, summaries_dir: Path) -> None:
        self.summaries_dir = summaries_dir
        self._io = MemoryIO()

    def path_for(self, session_id: str) -> Path:
        return self.summaries_dir / f"{safe_filename(session_id)}.json"

    def write(self, summary: SessionSummary) -> Path:
        path = self.path_for(summary.session_id)
        self._io.write_text(path, json.dumps(summary.to_dict(), indent=2, ensure_ascii=False) + "\n")
        logger.debug("session_summary_written", session_id=summary.session_id, path=str(path))
        return path

    def read(self, session_id: str) -> SessionSummary | None:
        return self._read_path(self.path_for(session_id))

    def latest(self, *, exclude: str | None = None) -> SessionSummary | None:
        """Most recently written summary, optionally skipping one session."""
        if not self.summaries_dir.exists():
            return None
        paths = sorted(self.summaries_dir.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        for path in paths:
            summary = self._read_path(path)
            if summary is not None and summary.session_id != exclude:
                return summary
        return None

    def _read_path(self, path: Path) -> SessionSummary | None:
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("session_summary_unreadable", path=str(path))
            return None
        if not isinstance(data, dict):
            logger.warning("session_summary_unreadable", path=str(path))
            return None
        return SessionSummary.from_dict(data)
