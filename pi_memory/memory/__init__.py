"""Session summaries and rolling project memory."""

from pi_memory.memory.completion import Completer
from pi_memory.memory.finalization import (
    CompletedFinalization,
    SkippedFinalization,
    SummarizationEngine,
    split_into_chunks,
    word_count,
)
from pi_memory.memory.parser import FinalizationOutput, parse_finalization_output
from pi_memory.memory.patch import MemoryPatch, dedup_key
from pi_memory.memory.project import (
    PROJECT_MEMORY_TEMPLATE,
    CompactionResult,
    ProjectMemoryStore,
    apply_memory_patch,
    estimate_tokens,
)
from pi_memory.memory.summaries import SessionSummary, SessionSummaryStore

__all__ = [
    "CompactionResult",
    "CompletedFinalization",
    "Completer",
    "FinalizationOutput",
    "MemoryPatch",
    "PROJECT_MEMORY_TEMPLATE",
    "ProjectMemoryStore",
    "SessionSummary",
    "SessionSummaryStore",
    "SkippedFinalization",
    "SummarizationEngine",
    "apply_memory_patch",
    "dedup_key",
    "estimate_tokens",
    "parse_finalization_output",
    "split_into_chunks",
    "word_count",
]
