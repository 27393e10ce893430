import asyncio

import pytest

from pi_memory.config.schema import MemoryConfig
from pi_memory.errors import CompletionError, FinalizationCancelled
from pi_memory.memory.finalization import CompletedFinalization, SkippedFinalization, SummarizationEngine
from pi_memory.memory.project import PROJECT_MEMORY_TEMPLATE
from pi_memory.memory.summaries import SessionSummary
from pi_memory.session.serializer import MESSAGE_SEPARATOR

FINAL_OUTPUT = """## Session Header
- Goals: speed up session loading

## Session Summary
Replaced the linear scan with an index.

## Memory Patch
### Decisions
- Index entries by id on load

## Retrieval Tags
- session-store

## Next Steps
- Measure startup time
"""


def _conversation(messages: int = 4, words: int = 40) -> str:
    return MESSAGE_SEPARATOR.join(f"[user]\n{'word ' * words}".strip() for _ in range(messages))


def _long_conversation() -> str:
    messages = [(f"[assistant]\nreply {i} " + "lorem ipsum " * 993)[:993] for i in range(200)]
    return MESSAGE_SEPARATOR.join(messages)


@pytest.mark.asyncio
async def test_short_conversation_is_skipped_without_calls(make_completer) -> None:
    completer = make_completer([])
    engine = SummarizationEngine(completer, MemoryConfig())

    conversation = MESSAGE_SEPARATOR.join(["[user]\nexplain the bug", "[assistant]\nit's a null deref in parse()"])
    result = await engine.finalize(conversation, PROJECT_MEMORY_TEMPLATE)

    assert isinstance(result, SkippedFinalization)
    assert result.word_count < 100
    assert completer.calls == 0


@pytest.mark.asyncio
async def test_direct_finalization_uses_one_call(make_completer) -> None:
    completer = make_completer([FINAL_OUTPUT])
    engine = SummarizationEngine(completer, MemoryConfig())
    conversation = _conversation()

    result = await engine.finalize(conversation, "# Project Memory\n\n## Invariants\n- keep it simple\n")

    assert isinstance(result, CompletedFinalization)
    assert result.mode == "direct"
    assert result.completion_calls == 1
    assert result.output.memory_patch.decisions == ["Index entries by id on load"]
    prompt = completer.provider.prompts()[0]
    assert "- keep it simple" in prompt
    assert conversation in prompt
    assert "## Memory Patch" in prompt


@pytest.mark.asyncio
async def test_long_conversation_is_chunked_then_merged(make_completer) -> None:
    replies = [f"chunk summary {i}" for i in range(7)] + [FINAL_OUTPUT]
    completer = make_completer(replies)
    engine = SummarizationEngine(completer, MemoryConfig())
    stages: list[tuple[str, int, int]] = []

    result = await engine.finalize(
        _long_conversation(),
        PROJECT_MEMORY_TEMPLATE,
        progress=lambda stage, i, n: stages.append((stage, i, n)),
    )

    assert isinstance(result, CompletedFinalization)
    assert result.mode == "chunked"
    assert result.completion_calls == 8
    assert completer.calls == 8
    prompts = completer.provider.prompts()
    assert "Chunk 1 of 7:" in prompts[0]
    assert "Chunk 7 of 7:" in prompts[6]
    assert "### Chunk 1\nchunk summary 0" in prompts[7]
    assert "### Chunk 7\nchunk summary 6" in prompts[7]
    assert stages[0] == ("summarizing", 1, 7)
    assert stages[-1] == ("merging", 7, 7)


@pytest.mark.asyncio
async def test_chunk_failure_raises_completion_error(make_completer) -> None:
    completer = make_completer(["chunk summary 0", RuntimeError("timeout")])
    engine = SummarizationEngine(completer, MemoryConfig())

    with pytest.raises(CompletionError):
        await engine.finalize(_long_conversation(), PROJECT_MEMORY_TEMPLATE)
    assert completer.calls == 2


@pytest.mark.asyncio
async def test_cancel_before_merge_stops_the_run(make_completer) -> None:
    cancel = asyncio.Event()

    async def _third_chunk(_messages):
        cancel.set()
        return "chunk summary 2"

    completer = make_completer(["chunk summary 0", "chunk summary 1", _third_chunk])
    engine = SummarizationEngine(completer, MemoryConfig())

    with pytest.raises(FinalizationCancelled):
        await engine.finalize(_long_conversation(), PROJECT_MEMORY_TEMPLATE, cancel=cancel)
    assert len(completer.provider.calls) == 3


@pytest.mark.asyncio
async def test_empty_structured_output_is_a_failure(make_completer) -> None:
    completer = make_completer(["## Session Summary\n\n## Memory Patch\n"])
    engine = SummarizationEngine(completer, MemoryConfig())

    with pytest.raises(CompletionError):
        await engine.finalize(_conversation(), PROJECT_MEMORY_TEMPLATE)


@pytest.mark.asyncio
async def test_resume_brief_includes_previous_next_steps(make_completer) -> None:
    completer = make_completer(["## Resume Brief\n**Current Goals**: ship it"])
    engine = SummarizationEngine(completer)
    previous = SessionSummary(
        session_id="s0",
        timestamp="2026-01-01T00:00:00",
        header="- Goals: x",
        narrative="Did the groundwork.",
        next_steps=["Wire the CLI"],
    )

    brief = await engine.resume_brief("# Project Memory\n", previous)

    assert brief.startswith("## Resume Brief")
    prompt = completer.provider.prompts()[0]
    assert "Did the groundwork." in prompt
    assert "- Wire the CLI" in prompt


@pytest.mark.asyncio
async def test_resume_brief_failure_returns_empty(make_completer) -> None:
    engine = SummarizationEngine(make_completer([RuntimeError("offline")]))
    assert await engine.resume_brief("# Project Memory\n", None) == ""


@pytest.mark.asyncio
async def test_header_only_output_is_kept(make_completer) -> None:
    reply = "## Session Header\n- Goal: fix parse()\n\n## Next Steps\n- add test\n\n## Retrieval Tags\nparser, bug"
    engine = SummarizationEngine(make_completer([reply]), MemoryConfig())

    result = await engine.finalize(_conversation(messages=5), PROJECT_MEMORY_TEMPLATE)

    assert isinstance(result, CompletedFinalization)
    assert result.output.header == "- Goal: fix parse()"
    assert result.output.narrative == ""
    assert result.output.memory_patch.is_empty()
    assert result.output.next_steps == ["add test"]
    assert result.output.retrieval_tags == ["parser", "bug"]
