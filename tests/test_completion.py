import asyncio

import pytest

from pi_memory.errors import CompletionError, FinalizationCancelled
from pi_memory.providers.base import LLMResponse


@pytest.mark.asyncio
async def test_complete_returns_stripped_text(make_completer) -> None:
    completer = make_completer(["  summary text \n"])
    out = await completer.complete("system", "prompt", max_tokens=128)

    assert out == "summary text"
    assert completer.calls == 1
    call = completer.provider.calls[0]
    assert call["max_tokens"] == 128
    assert call["model"] == "test/model"
    assert [m["role"] for m in call["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_content_blocks_are_flattened(make_completer) -> None:
    reply = LLMResponse(content=[{"type": "text", "text": "part one"}, {"type": "text", "text": "part two"}])
    completer = make_completer([reply])
    assert await completer.complete("s", "p") == "part one\npart two"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [
        LLMResponse(content="Error calling LLM: rate limited", finish_reason="error"),
        RuntimeError("connection reset"),
        "   ",
        LLMResponse(content=None),
    ],
)
async def test_failures_become_completion_error(make_completer, reply) -> None:
    completer = make_completer([reply])
    with pytest.raises(CompletionError):
        await completer.complete("s", "p")


@pytest.mark.asyncio
async def test_already_cancelled_makes_no_call(make_completer) -> None:
    completer = make_completer(["unused"])
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(FinalizationCancelled):
        await completer.complete("s", "p", cancel=cancel)
    assert completer.provider.calls == []


@pytest.mark.asyncio
async def test_cancel_during_call_aborts_it(make_completer) -> None:
    started = asyncio.Event()
    aborted = asyncio.Event()

    async def _block(_messages):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            aborted.set()
            raise
        return "never"

    completer = make_completer([_block])
    cancel = asyncio.Event()
    task = asyncio.create_task(completer.complete("s", "p", cancel=cancel))
    await started.wait()
    cancel.set()

    with pytest.raises(FinalizationCancelled):
        await task
    assert aborted.is_set()
