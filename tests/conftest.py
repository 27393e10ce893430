from typing import Any, Callable

import pytest

from pi_memory.memory.completion import Completer
from pi_memory.providers.base import LLMProvider, LLMResponse


class ScriptedProvider(LLMProvider):
    """Returns queued replies in order and records every call.

    A queued ``Exception`` is raised, an ``LLMResponse`` is returned as-is,
    and a callable is awaited with the call's messages.
    """

    def __init__(self, replies: list[Any]) -> None:
        super().__init__(api_key="test-key")
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    async def chat(self, messages, model=None, max_tokens=4096, temperature=0.7) -> LLMResponse:
        self.calls.append({"messages": messages, "model": model, "max_tokens": max_tokens})
        if not self.replies:
            raise AssertionError("unexpected completion call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = await reply(messages)
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(content=reply)

    def get_default_model(self) -> str:
        return "test/model"

    def prompts(self) -> list[str]:
        return [call["messages"][-1]["content"] for call in self.calls]


@pytest.fixture
def make_completer() -> Callable[[list[Any]], Completer]:
    def _make(replies: list[Any]) -> Completer:
        return Completer(ScriptedProvider(replies))

    return _make
