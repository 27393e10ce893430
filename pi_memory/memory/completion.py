"""Text completion on top of an LLM provider, with cancellation."""

from __future__ import annotations

import asyncio
from typing import Any

from pi_memory.config.schema import ProviderConfig
from pi_memory.errors import CompletionError, FinalizationCancelled
from pi_memory.logging import get_logger
from pi_memory.providers.base import LLMProvider
from pi_memory.providers.resolver import make_provider

logger = get_logger(__name__)


class Completer:
    """
    ``complete(prompt) -> text`` over an :class:`LLMProvider`.

    Every summarize, merge, compaction and resume call goes through here, so
    this is the single place where provider errors become
    :class:`CompletionError` and a fired cancel event becomes
    :class:`FinalizationCancelled`.
    """

    def __init__(self, provider: LLMProvider, model: str | None = None, *, temperature: float = 0.2) -> None:
        self.provider = provider
        self.model = model or provider.get_default_model()
        self.temperature = temperature
        self.calls = 0

    @classmethod
    def from_config(cls, config: ProviderConfig) -> Completer:
        """Raises ConfigError when no model or key can be resolved."""
        return cls(make_provider(config), config.model)

    async def complete(
        self,
        system_prompt: str,
        prompt: str,
        *,
        max_tokens: int = 2048,
        cancel: asyncio.Event | None = None,
    ) -> str:
        if cancel is not None and cancel.is_set():
            raise FinalizationCancelled("cancelled before completion call")

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        self.calls += 1
        call = asyncio.ensure_future(
            self.provider.chat(
                messages=messages,
                model=self.model,
                max_tokens=max_tokens,
                temperature=self.temperature,
            )
        )
        waiter: asyncio.Future[Any] | None = None
        try:
            if cancel is not None:
                waiter = asyncio.ensure_future(cancel.wait())
                await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
                if not call.done():
                    call.cancel()
                    await asyncio.gather(call, return_exceptions=True)
                    logger.info("completion_cancelled", model=self.model)
                    raise FinalizationCancelled("cancelled during completion call")
            else:
                await asyncio.wait({call})
        finally:
            if waiter is not None and not waiter.done():
                waiter.cancel()
            if not call.done():
                call.cancel()

        try:
            response = call.result()
        except Exception as e:
            raise CompletionError(f"completion call failed: {e}") from e

        if response.is_error:
            raise CompletionError(response.text() or "completion call failed")
        text = response.text().strip()
        if not text:
            raise CompletionError("completion returned no text")
        logger.debug("completion_done", model=self.model, chars=len(text), usage=response.usage or None)
        return text
