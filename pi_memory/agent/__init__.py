"""Session lifecycle orchestration."""

from pi_memory.agent.consolidation_coordinator import ConsolidationCoordinator
from pi_memory.agent.lifecycle import (
    FinalizeOutcome,
    LifecycleState,
    SessionLifecycleController,
    SessionState,
    SessionStateStore,
    StartupReport,
)
from pi_memory.agent.memory_context import MemoryContextBuilder
from pi_memory.agent.notify import Notifier
from pi_memory.agent.session_command_handler import CommandReply, SessionCommandHandler

__all__ = [
    "CommandReply",
    "ConsolidationCoordinator",
    "FinalizeOutcome",
    "LifecycleState",
    "MemoryContextBuilder",
    "Notifier",
    "SessionCommandHandler",
    "SessionLifecycleController",
    "SessionState",
    "SessionStateStore",
    "StartupReport",
]
