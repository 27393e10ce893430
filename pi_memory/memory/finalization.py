"""Summarization engine: direct or chunk-then-merge finalization."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Literal

from pi_memory.config.schema import MemoryConfig
from pi_memory.errors import CompletionError
from pi_memory.logging import get_logger
from pi_memory.memory import prompts
from pi_memory.memory.completion import Completer
from pi_memory.memory.parser import FinalizationOutput, parse_finalization_output
from pi_memory.memory.summaries import SessionSummary
from pi_memory.session.serializer import MESSAGE_SEPARATOR

logger = get_logger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class SkippedFinalization:
    """Too little conversation to be worth summarizing."""

    reason: str
    word_count: int


@dataclass
class CompletedFinalization:
    output: FinalizationOutput
    mode: Literal["direct", "chunked"]
    completion_calls: int


FinalizationResult = SkippedFinalization | CompletedFinalization


def word_count(text: str) -> int:
    return len(text.split())


def split_into_chunks(conversation: str, chunk_size: int, separator: str = MESSAGE_SEPARATOR) -> list[str]:
    """
    Group messages into chunks of at most *chunk_size* characters.

    Splits only on *separator*, so a message is never cut in two; a single
    message longer than *chunk_size* becomes a chunk of its own. Joining
    the chunks with *separator* gives back *conversation* exactly.
    """
    if not conversation:
        return []
    chunks: list[str] = []
    current: list[str] = []
    current_len = 0
    for message in conversation.split(separator):
        added = len(message) + (len(separator) if current else 0)
        if current and current_len + added > chunk_size:
            chunks.append(separator.join(current))
            current, current_len = [message], len(message)
        else:
            current.append(message)
            current_len += added
    if current:
        chunks.append(separator.join(current))
    return chunks


class SummarizationEngine:
    """
    Turn a serialized conversation into one :class:`FinalizationOutput`.

    The engine only reads project memory text handed to it and returns
    results; persisting summaries and patches is the caller's job, so a
    failed or cancelled run leaves nothing behind.
    """

    def __init__(self, completer: Completer, config: MemoryConfig | None = None) -> None:
        self.completer = completer
        self.config = config or MemoryConfig()

    async def finalize(
        self,
        conversation: str,
        project_memory: str,
        *,
        cancel: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> FinalizationResult:
        """
        Raises:
            CompletionError: any summarize or merge call failed.
            FinalizationCancelled: *cancel* fired before the final call returned.
        """
        words = word_count(conversation)
        if words < self.config.min_finalization_words:
            logger.info("finalization_skipped", word_count=words, threshold=self.config.min_finalization_words)
            return SkippedFinalization(reason="conversation too short", word_count=words)

        started = time.perf_counter()
        if len(conversation) <= self.config.max_direct_chars:
            if progress:
                progress("finalizing", 1, 1)
            text = await self.completer.complete(
                prompts.FINALIZATION_SYSTEM_PROMPT,
                prompts.build_finalization_prompt(project_memory, conversation),
                max_tokens=prompts.FINALIZATION_MAX_TOKENS,
                cancel=cancel,
            )
            mode: Literal["direct", "chunked"] = "direct"
            calls = 1
        else:
            text, calls = await self._chunked(conversation, project_memory, cancel=cancel, progress=progress)
            mode = "chunked"

        output = parse_finalization_output(text)
        # Partial output is kept; only a reply with nothing in it fails.
        if output.is_empty():
            raise CompletionError("finalization response contained no usable content")
        logger.info(
            "finalization_completed",
            mode=mode,
            completion_calls=calls,
            word_count=words,
            elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return CompletedFinalization(output=output, mode=mode, completion_calls=calls)

    async def _chunked(
        self,
        conversation: str,
        project_memory: str,
        *,
        cancel: asyncio.Event | None,
        progress: ProgressCallback | None,
    ) -> tuple[str, int]:
        chunks = split_into_chunks(conversation, self.config.chunk_size_chars)
        total = len(chunks)
        logger.info("finalization_chunked", chunk_count=total, chars=len(conversation))

        summaries: list[str] = []
        for i, chunk in enumerate(chunks):
            if progress:
                progress("summarizing", i + 1, total)
            summaries.append(
                await self.completer.complete(
                    prompts.CHUNK_SYSTEM_PROMPT,
                    prompts.build_chunk_prompt(chunk, i, total),
                    max_tokens=prompts.CHUNK_MAX_TOKENS,
                    cancel=cancel,
                )
            )
            logger.debug("chunk_summarized", chunk=i + 1, chunk_count=total, chars=len(chunk))

        if progress:
            progress("merging", total, total)
        merged = await self.completer.complete(
            prompts.FINALIZATION_SYSTEM_PROMPT,
            prompts.build_merge_prompt(summaries, project_memory),
            max_tokens=prompts.FINALIZATION_MAX_TOKENS,
            cancel=cancel,
        )
        return merged, total + 1

    async def resume_brief(
        self,
        project_memory: str,
        previous: SessionSummary | None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Short ``## Resume Brief``; returns "" when the call fails."""
        try:
            return await self.completer.complete(
                prompts.RESUME_SYSTEM_PROMPT,
                prompts.build_resume_prompt(project_memory, previous),
                max_tokens=prompts.RESUME_MAX_TOKENS,
                cancel=cancel,
            )
        except CompletionError as e:
            logger.warning("resume_brief_failed", error=str(e))
            return ""
