"""Session lifecycle: when to finalize, and what finalizing commits."""

from __future__ import annotations

import asyncio
import json
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Literal

from pi_memory.agent.consolidation_coordinator import ConsolidationCoordinator
from pi_memory.agent.memory_context import MemoryContextBuilder
from pi_memory.agent.notify import Notifier
from pi_memory.config.schema import Config
from pi_memory.errors import CompletionError, ConfigError, FinalizationCancelled, StoreError
from pi_memory.logging import get_logger
from pi_memory.memory.completion import Completer
from pi_memory.memory.finalization import SkippedFinalization, SummarizationEngine
from pi_memory.memory.io import MemoryIO
from pi_memory.memory.project import CompactionResult, ProjectMemoryStore, estimate_tokens
from pi_memory.memory.summaries import SessionSummary, SessionSummaryStore
from pi_memory.session.entries import Entry, summary_entry
from pi_memory.session.manager import Session, SessionManager
from pi_memory.session.serializer import ConversationSerializer, TruncationPolicy

logger = get_logger(__name__)

SESSION_STATE_FILE = "session_state.json"

Trigger = Literal["end", "checkpoint", "shutdown", "idle"]
OutcomeStatus = Literal["finalized", "summarized", "skipped", "failed", "cancelled"]


class LifecycleState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


@dataclass
class SessionState:
    active_session_id: str | None = None
    session_file: str | None = None
    last_event_ts: float = 0.0
    finalized: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "activeSessionId": self.active_session_id,
            "sessionFile": self.session_file,
            "lastEventTs": self.last_event_ts,
            "finalized": self.finalized,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        return cls(
            active_session_id=data.get("activeSessionId"),
            session_file=data.get("sessionFile"),
            last_event_ts=float(data.get("lastEventTs") or 0.0),
            finalized=bool(data.get("finalized", True)),
        )


class SessionStateStore:
    """``session_state.json``; a missing or corrupt file reads as idle and finalized."""

    def __init__(self, memory_dir: Path) -> None:
        self.path = memory_dir / SESSION_STATE_FILE
        self._io = MemoryIO()

    def read(self) -> SessionState:
        raw = self._io.read_text(self.path)
        if not raw.strip():
            return SessionState()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("session_state_unreadable", path=str(self.path))
            return SessionState()
        if not isinstance(data, dict):
            logger.warning("session_state_unreadable", path=str(self.path))
            return SessionState()
        return SessionState.from_dict(data)

    def write(self, state: SessionState) -> None:
        self._io.write_text(self.path, json.dumps(state.to_dict(), indent=2) + "\n")


@dataclass
class FinalizeOutcome:
    status: OutcomeStatus
    summary: SessionSummary | None = None
    compaction: CompactionResult | None = None
    error: str | None = None
    completion_calls: int = 0


@dataclass
class StartupReport:
    recovered: FinalizeOutcome | None = None
    notice: str | None = None
    previous_summary: SessionSummary | None = None
    resume_brief: str = ""


class SessionLifecycleController:
    """
    Decide when a session is finalized and commit the results.

    One controller per project directory. Finalization runs through the
    coordinator so at most one run per session is in flight, and any
    engine, config or store failure is turned into "stay unfinalized,
    notify once" instead of propagating to the host.
    """

    def __init__(
        self,
        workspace: Path,
        config: Config | None = None,
        *,
        sessions: SessionManager | None = None,
        completer_factory: Callable[[], Completer] | None = None,
        notifier: Notifier | None = None,
        coordinator: ConsolidationCoordinator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.workspace = workspace
        self.config = config or Config()
        mem_cfg = self.config.memory
        self.memory_dir = mem_cfg.memory_path(workspace)
        self.sessions = sessions or SessionManager(workspace, mem_cfg.sessions_path(workspace))
        self.state_store = SessionStateStore(self.memory_dir)
        self.memory = ProjectMemoryStore(
            self.memory_dir,
            max_tokens=mem_cfg.project_memory_max_tokens,
            target_tokens=mem_cfg.compaction_target_tokens,
        )
        self.summaries = SessionSummaryStore(self.memory_dir / "summaries")
        self.serializer = ConversationSerializer(
            TruncationPolicy(self.config.tool_output.max_bytes, self.config.tool_output.max_lines)
        )
        self.notifier = notifier or Notifier(coalesce_seconds=mem_cfg.notify_coalesce_seconds)
        self.coordinator = coordinator or ConsolidationCoordinator()
        self.context = MemoryContextBuilder(self.memory)
        self._completer_factory = completer_factory or (lambda: Completer.from_config(self.config.provider))
        self._completer: Completer | None = None
        self._clock = clock
        self.phase = LifecycleState.IDLE

    def _engine(self) -> SummarizationEngine:
        """Raises ConfigError when no model or API key is available."""
        if self._completer is None:
            self._completer = self._completer_factory()
        return SummarizationEngine(self._completer, self.config.memory)

    def _progress(self, stage: str, index: int, total: int) -> None:
        text = f"{stage} {index}/{total}..." if total > 1 else f"{stage}..."
        self.notifier.set_status(text)

    # ------------------------------------------------------------------
    # Startup and turns
    # ------------------------------------------------------------------

    async def start(self, session: Session) -> StartupReport:
        """Recover an abandoned previous session and prepare the resume brief."""
        prev = self.state_store.read()
        report = StartupReport()

        if prev.active_session_id and not prev.finalized and prev.active_session_id != session.id:
            idle_for = self._clock() - prev.last_event_ts
            if idle_for > self.config.memory.idle_threshold_seconds:
                previous = self._open_previous(prev)
                if previous is not None:
                    logger.info("previous_session_recovering", session_id=prev.active_session_id, idle_s=round(idle_for))
                    report.recovered = await self.finalize(previous, "idle")
                    if report.recovered.status == "finalized":
                        self.notifier.notify("Previous session finalized")
            else:
                report.notice = "Previous session still active. Use /checkpoint to save progress."
                self.notifier.notify(report.notice)

        if report.recovered is not None and report.recovered.summary is not None:
            report.previous_summary = report.recovered.summary
        elif prev.active_session_id:
            report.previous_summary = self.summaries.read(prev.active_session_id)
        if report.previous_summary is None:
            report.previous_summary = self.summaries.latest(exclude=session.id)

        if self.memory.has_content() or report.previous_summary is not None:
            try:
                engine = self._engine()
            except ConfigError as e:
                self.notifier.notify(f"No model/API key available for resume brief: {e}", "warning")
            else:
                report.resume_brief = await engine.resume_brief(self.memory.read(), report.previous_summary)
        self.context.set_resume_brief(report.resume_brief)

        state = self.state_store.read()
        if state.active_session_id == session.id:
            self.phase = LifecycleState.FINALIZED if state.finalized else LifecycleState.ACTIVE
        else:
            self.phase = LifecycleState.IDLE
        return report

    def _open_previous(self, prev: SessionState) -> Session | None:
        try:
            if prev.session_file and Path(prev.session_file).exists():
                return self.sessions.open(Path(prev.session_file))
            return self.sessions.open(str(prev.active_session_id))
        except StoreError as e:
            logger.warning("previous_session_unavailable", session_id=prev.active_session_id, error=str(e))
            self.notifier.notify(f"Previous session could not be opened: {e}", "warning")
            return None

    def record_event(self, session: Session) -> None:
        """Note a turn: Idle/Finalized -> Active, or Active -> Active."""
        state = self.state_store.read()
        now = self._clock()
        if state.active_session_id == session.id and not state.finalized:
            state.last_event_ts = now
        else:
            if state.active_session_id not in (None, session.id) and not state.finalized:
                logger.warning("previous_session_left_unfinalized", session_id=state.active_session_id)
            state = SessionState(
                active_session_id=session.id,
                session_file=str(session.path),
                last_event_ts=now,
                finalized=False,
            )
        self.state_store.write(state)
        self.phase = LifecycleState.ACTIVE

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def finalize(
        self,
        session: Session,
        trigger: Trigger,
        *,
        cancel: asyncio.Event | None = None,
    ) -> FinalizeOutcome:
        """Summarize *session* and commit summary, summary entry, patch and state."""

        async def work(run_cancel: asyncio.Event) -> FinalizeOutcome:
            async with _linked(cancel, run_cancel):
                return await self._finalize_locked(session, trigger, run_cancel)

        return await self.coordinator.run_exclusive(session.id, work)

    async def _finalize_locked(self, session: Session, trigger: Trigger, cancel: asyncio.Event) -> FinalizeOutcome:
        previous_phase = self.phase
        self.phase = LifecycleState.FINALIZING
        self.notifier.set_status("checkpoint..." if trigger == "checkpoint" else "finalizing...")
        logger.info("finalization_started", session_id=session.id, trigger=trigger)
        try:
            path = session.navigator.active_path()
            conversation = self.serializer.to_transcript(path)
            engine = self._engine()
            result = await engine.finalize(conversation, self.memory.read(), cancel=cancel, progress=self._progress)

            if isinstance(result, SkippedFinalization):
                self._mark_finalized(session, trigger)
                self.phase = previous_phase if trigger == "idle" else LifecycleState.FINALIZED
                return FinalizeOutcome(status="skipped")

            if cancel.is_set():
                raise FinalizationCancelled("cancelled before commit")
            summary = SessionSummary.from_output(session.id, result.output)
            # apply_patch is idempotent; the summary entry is keyed per conversation state.
            self.memory.apply_patch(summary.memory_patch)
            self.summaries.write(summary)
            session.navigator.append(
                summary_entry(summary.to_dict(), idempotency_key=_summary_key(session.id, path))
            )
            compaction = await self._compact(engine.completer, cancel)
            self._mark_finalized(session, trigger)
            self.phase = previous_phase if trigger == "idle" else LifecycleState.FINALIZED
        except FinalizationCancelled:
            self.phase = previous_phase
            logger.info("finalization_cancelled", session_id=session.id, trigger=trigger)
            self.notifier.notify("Finalization cancelled", "warning")
            return FinalizeOutcome(status="cancelled")
        except (CompletionError, ConfigError, StoreError) as e:
            self.phase = previous_phase if previous_phase != LifecycleState.FINALIZED else LifecycleState.ACTIVE
            logger.warning("finalization_failed", session_id=session.id, trigger=trigger, error=str(e))
            self.notifier.notify(f"Finalization failed: {e}", "error")
            return FinalizeOutcome(status="failed", error=str(e))
        finally:
            self.notifier.set_status(None)

        message = "Checkpoint saved" if trigger == "checkpoint" else "Session finalized and memory updated"
        self.notifier.notify(message)
        return FinalizeOutcome(
            status="finalized",
            summary=summary,
            compaction=compaction,
            completion_calls=result.completion_calls,
        )

    async def _compact(self, completer: Completer, cancel: asyncio.Event) -> CompactionResult | None:
        """Compaction failure never undoes a committed finalization."""
        try:
            result = await self.memory.compact_if_needed(completer, cancel)
        except CompletionError as e:
            self.notifier.notify(f"Memory compaction failed: {e}", "error")
            return None
        except FinalizationCancelled:
            logger.info("compaction_cancelled")
            return None
        if result is not None:
            self.notifier.notify(f"Memory compacted. Epoch {result.epoch} archived.")
        return result

    def _mark_finalized(self, session: Session, trigger: Trigger) -> None:
        state = self.state_store.read()
        if trigger == "checkpoint":
            # Stays the active session; the next turn flips finalized back.
            state = SessionState(
                active_session_id=session.id,
                session_file=str(session.path),
                last_event_ts=state.last_event_ts if state.active_session_id == session.id else self._clock(),
                finalized=True,
            )
        elif state.active_session_id in (None, session.id):
            state = SessionState(last_event_ts=self._clock(), finalized=True)
        else:
            # Another session became active meanwhile; its record stays.
            logger.info("session_finalized", session_id=session.id, trigger=trigger, state_owner=state.active_session_id)
            return
        self.state_store.write(state)
        logger.info("session_finalized", session_id=session.id, trigger=trigger)

    async def summarize(self, session: Session, *, cancel: asyncio.Event | None = None) -> FinalizeOutcome:
        """Dry run of the engine over the active path; nothing is written."""

        async def work(run_cancel: asyncio.Event) -> FinalizeOutcome:
            async with _linked(cancel, run_cancel):
                conversation = self.serializer.to_transcript(session.navigator.active_path())
                try:
                    self.notifier.set_status("summarizing...")
                    result = await self._engine().finalize(
                        conversation, self.memory.read(), cancel=run_cancel, progress=self._progress
                    )
                except FinalizationCancelled:
                    return FinalizeOutcome(status="cancelled")
                except (CompletionError, ConfigError) as e:
                    self.notifier.notify(f"Summarize failed: {e}", "error")
                    return FinalizeOutcome(status="failed", error=str(e))
                finally:
                    self.notifier.set_status(None)
                if isinstance(result, SkippedFinalization):
                    return FinalizeOutcome(status="skipped")
                return FinalizeOutcome(
                    status="summarized",
                    summary=SessionSummary.from_output(session.id, result.output),
                    completion_calls=result.completion_calls,
                )

        return await self.coordinator.run_exclusive(session.id, work)

    async def end(self, session: Session) -> FinalizeOutcome:
        return await self.finalize(session, "end")

    async def checkpoint(self, session: Session) -> FinalizeOutcome:
        return await self.finalize(session, "checkpoint")

    async def shutdown(self, session: Session) -> FinalizeOutcome | None:
        """Finalize on process exit unless the session is already finalized."""
        state = self.state_store.read()
        if state.active_session_id != session.id or state.finalized:
            return None
        return await self.finalize(session, "shutdown")

    def cancel(self, session_id: str) -> bool:
        return self.coordinator.cancel(session_id)

    def status(self, session: Session | None = None) -> dict[str, Any]:
        state = self.state_store.read()
        memory = self.memory.read()
        info: dict[str, Any] = {
            "phase": self.phase.value,
            "active_session_id": state.active_session_id,
            "session_file": state.session_file,
            "last_event_ts": state.last_event_ts,
            "finalized": state.finalized,
            "memory_tokens": estimate_tokens(memory),
            "memory_budget": self.memory.max_tokens,
        }
        if session is not None:
            info["session_id"] = session.id
            info["finalizing"] = self.coordinator.is_running(session.id)
        return info


def _summary_key(session_id: str, path: list[Entry]) -> str:
    """One summary entry per conversation state, however often finalize is retried."""
    last = next((e.id for e in reversed(path) if e.kind == "message"), "empty")
    return f"summary:{session_id}:{last}"


@asynccontextmanager
async def _linked(outer: asyncio.Event | None, inner: asyncio.Event) -> AsyncIterator[None]:
    """Forward an optional caller-supplied cancel event to the run's own event."""
    if outer is None or outer.is_set():
        if outer is not None:
            inner.set()
        yield
        return

    async def relay() -> None:
        await outer.wait()
        inner.set()

    task = asyncio.ensure_future(relay())
    try:
        yield
    finally:
        task.cancel()
