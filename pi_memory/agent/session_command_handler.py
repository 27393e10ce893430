"""Slash commands that operate on the session's memory lifecycle."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from pi_memory.errors import StoreError
from pi_memory.logging import get_logger
from pi_memory.session.manager import Session

if TYPE_CHECKING:
    from pi_memory.agent.lifecycle import FinalizeOutcome, SessionLifecycleController

logger = get_logger(__name__)

Editor = Callable[[str, str], Awaitable[str | None]]

HELP_TEXT = (
    "π memory commands:\n"
    "/end — Finalize the session and exit\n"
    "/checkpoint — Save a summary and update project memory without ending\n"
    "/summarize — Show a summary of the session without saving anything\n"
    "/memory — Show project memory\n"
    "/memory edit — Edit project memory\n"
    "/stop — Cancel a running finalization\n"
    "/help — Show available commands"
)


@dataclass
class CommandReply:
    content: str
    shutdown: bool = False


class SessionCommandHandler:
    """Handle slash commands that finalize, summarize or edit memory."""

    def __init__(self, *, lifecycle: SessionLifecycleController, editor: Editor | None = None) -> None:
        self.lifecycle = lifecycle
        self.editor = editor

    async def handle(self, text: str, session: Session) -> CommandReply | None:
        """Return command response if handled, else None."""
        parts = text.strip().split()
        if not parts:
            return None
        cmd = parts[0].lower()
        args = [a.lower() for a in parts[1:]]

        if cmd == "/help":
            return CommandReply(HELP_TEXT)
        if cmd == "/end":
            outcome = await self.lifecycle.end(session)
            return CommandReply(self._describe(outcome, done="Session finalized."), shutdown=True)
        if cmd == "/checkpoint":
            outcome = await self.lifecycle.checkpoint(session)
            return CommandReply(self._describe(outcome, done="Checkpoint saved."))
        if cmd == "/summarize":
            return await self._handle_summarize(session)
        if cmd == "/memory":
            if args[:1] == ["edit"]:
                return await self._handle_memory_edit()
            return CommandReply(self.lifecycle.memory.read())
        if cmd == "/stop":
            return self._handle_stop(session)
        return None

    @staticmethod
    def _describe(outcome: FinalizeOutcome, *, done: str) -> str:
        if outcome.status == "finalized":
            text = done
            if outcome.compaction is not None:
                text += f" Memory compacted (epoch {outcome.compaction.epoch} archived)."
            return text
        if outcome.status == "skipped":
            return "Nothing to summarize yet; session marked finalized."
        if outcome.status == "cancelled":
            return "Finalization cancelled."
        return f"Finalization failed: {outcome.error}. It will be retried on the next trigger."

    async def _handle_summarize(self, session: Session) -> CommandReply:
        outcome = await self.lifecycle.summarize(session)
        if outcome.summary is not None:
            return CommandReply(outcome.summary.render())
        if outcome.status == "skipped":
            return CommandReply("Not enough conversation to summarize yet.")
        if outcome.status == "cancelled":
            return CommandReply("Summarize cancelled.")
        return CommandReply(f"Summarize failed: {outcome.error}")

    async def _handle_memory_edit(self) -> CommandReply:
        memory = self.lifecycle.memory.read()
        if self.editor is None:
            return CommandReply("No editor available; showing project memory.\n\n" + memory)
        edited = await self.editor("Project Memory", memory)
        if not edited or edited == memory:
            return CommandReply("Project memory unchanged.")
        try:
            self.lifecycle.memory.write(edited)
        except StoreError:
            logger.exception("/memory edit failed")
            return CommandReply("Failed to save project memory. Please try again.")
        self.lifecycle.notifier.notify("Project memory updated")
        return CommandReply("Project memory updated.")

    def _handle_stop(self, session: Session) -> CommandReply:
        if self.lifecycle.cancel(session.id):
            return CommandReply("⏹ Stopping finalization.")
        return CommandReply("No active finalization to stop.")
