"""System-prompt additions carrying project memory and the resume brief."""

from __future__ import annotations

from pi_memory.memory.project import ProjectMemoryStore

MEMORY_GUIDANCE = (
    "Use the project_memory as your source of truth for project context, constraints, and decisions."
)


class MemoryContextBuilder:
    """
    Build the memory block appended to the agent's system prompt.

    The resume brief is shown on the first turn only; later calls return
    project memory alone.
    """

    def __init__(self, memory: ProjectMemoryStore, resume_brief: str = "") -> None:
        self.memory = memory
        self._resume_brief = resume_brief

    def set_resume_brief(self, brief: str) -> None:
        self._resume_brief = brief

    def build(self) -> str:
        parts: list[str] = []
        if self.memory.has_content():
            parts.append(f"<project_memory>\n{self.memory.read().strip()}\n</project_memory>")
        if self._resume_brief:
            parts.append(f"<resume_brief>\n{self._resume_brief.strip()}\n</resume_brief>")
            self._resume_brief = ""
        if not parts:
            return ""
        parts.append(MEMORY_GUIDANCE)
        return "\n\n".join(parts)

    def extend_system_prompt(self, system_prompt: str) -> str:
        addition = self.build()
        return f"{system_prompt}\n\n{addition}" if addition else system_prompt
