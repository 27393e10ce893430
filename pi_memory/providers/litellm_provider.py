"""LiteLLM provider implementation for multi-provider support."""

import asyncio
import logging
import os
import time
from typing import Any

import litellm
from litellm import acompletion

from pi_memory.config.schema import ResilienceConfig
from pi_memory.logging import get_logger, mask_secret
from pi_memory.providers.base import LLMProvider, LLMResponse
from pi_memory.providers.registry import find_by_model

logger = get_logger("pi_memory.providers.litellm")


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Summarization, merge and compaction calls all go through :meth:`chat`,
    which never raises: failures come back as ``finish_reason="error"``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-5",
        extra_headers: dict[str, str] | None = None,
        resilience_config: ResilienceConfig | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}

        # Resilience: timeout / retry / circuit-breaker
        self._resilience = resilience_config
        self._consecutive_failures: int = 0
        self._circuit_open_until: float = 0.0

        if api_key:
            self._setup_env(api_key, default_model)
            logger.info("provider_initialized", model=default_model, api_key=mask_secret(api_key))

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers
        litellm.drop_params = True

    def _setup_env(self, api_key: str, model: str) -> None:
        """Export the key under the env var LiteLLM expects for this model."""
        spec = find_by_model(model)
        if spec and spec.env_key:
            os.environ.setdefault(spec.env_key, api_key)

    def _resolve_model(self, model: str) -> str:
        """Resolve model name by applying the provider's LiteLLM prefix."""
        spec = find_by_model(model)
        if spec and spec.litellm_prefix and not model.startswith(f"{spec.litellm_prefix}/"):
            model = f"{spec.litellm_prefix}/{model}"
        return model

    @staticmethod
    def _sanitize_empty_content(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Replace empty string content, which several providers reject."""
        out = []
        for msg in messages:
            if msg.get("content") == "":
                msg = {**msg, "content": "(empty)"}
            out.append(msg)
        return out

    def _check_circuit_breaker(self) -> str | None:
        """Return an error message if the circuit is open, else None."""
        rc = self._resilience
        if not rc or rc.circuit_breaker_threshold <= 0:
            return None
        if self._consecutive_failures < rc.circuit_breaker_threshold:
            return None
        now = time.monotonic()
        if now < self._circuit_open_until:
            return (
                f"Circuit breaker open: {self._consecutive_failures} consecutive failures. "
                f"Retry after {int(self._circuit_open_until - now)}s cooldown."
            )
        # Cooldown expired → half-open: allow one trial attempt
        return None

    def _record_result(self, success: bool) -> None:
        """Update circuit-breaker counters after a call."""
        rc = self._resilience
        if not rc or rc.circuit_breaker_threshold <= 0:
            return
        if success:
            self._consecutive_failures = 0
            self._circuit_open_until = 0.0
        else:
            self._consecutive_failures += 1
            if self._consecutive_failures >= rc.circuit_breaker_threshold:
                self._circuit_open_until = time.monotonic() + rc.circuit_breaker_cooldown
                logger.warning(
                    "circuit_breaker_opened",
                    failures=self._consecutive_failures,
                    cooldown=rc.circuit_breaker_cooldown,
                )

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model identifier (e.g., 'anthropic/claude-sonnet-4-5').
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            LLMResponse with content, or an error response.
        """
        model = self._resolve_model(model or self.default_model)

        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._sanitize_empty_content(messages),
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        # Pass api_key directly as well as via env vars
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers

        if logging.getLogger("pi_memory").isEnabledFor(logging.DEBUG):
            logger.debug(
                "litellm_request",
                model=model,
                max_tokens=kwargs["max_tokens"],
                prompt_chars=sum(len(str(m.get("content") or "")) for m in messages),
            )

        try:
            cb_error = self._check_circuit_breaker()
            if cb_error:
                return LLMResponse(content=f"Error calling LLM: {cb_error}", finish_reason="error")

            rc = self._resilience
            if rc:
                kwargs["request_timeout"] = rc.timeout
                kwargs["num_retries"] = rc.max_retries

            # asyncio.wait_for safety net on top of LiteLLM's own timeout
            safety_timeout = (rc.timeout + 30) if rc else None
            coro = acompletion(**kwargs)
            if safety_timeout:
                response = await asyncio.wait_for(coro, timeout=safety_timeout)
            else:
                response = await coro

            self._record_result(True)
            return self._parse_response(response)
        except asyncio.TimeoutError:
            self._record_result(False)
            logger.error("llm_call_timeout", model=model)
            return LLMResponse(
                content="Error calling LLM: request timed out",
                finish_reason="error",
            )
        except Exception as e:
            self._record_result(False)
            error_msg = str(e)
            # Mask any API keys that may appear in exception messages
            if self.api_key and self.api_key in error_msg:
                error_msg = error_msg.replace(self.api_key, mask_secret(self.api_key))
            logger.error("llm_call_failed", model=model, error=error_msg)
            return LLMResponse(
                content=f"Error calling LLM: {error_msg}",
                finish_reason="error",
            )

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
