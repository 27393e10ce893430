"""Resolve the configured model and credentials into a provider."""

from __future__ import annotations

import os

from pi_memory.config.schema import ProviderConfig
from pi_memory.errors import ConfigError
from pi_memory.logging import get_logger
from pi_memory.providers.litellm_provider import LiteLLMProvider
from pi_memory.providers.registry import find_by_model

logger = get_logger(__name__)


def resolve_api_key(config: ProviderConfig) -> str | None:
    """Configured key first (with ``$VAR`` expansion), then the provider's env var."""
    key = config.resolved_api_key
    if key and not key.startswith("$"):
        return key
    spec = find_by_model(config.model)
    if spec and spec.env_key:
        return os.environ.get(spec.env_key) or None
    return None


def make_provider(config: ProviderConfig) -> LiteLLMProvider:
    """
    Build the provider used for every summarization call.

    Raises:
        ConfigError: when no model is configured or no API key can be found.
    """
    if not config.model:
        raise ConfigError("No model configured for memory finalization")
    api_key = resolve_api_key(config)
    if not api_key and not config.api_base:
        raise ConfigError(f"No API key available for model {config.model}")
    logger.debug("provider_resolved", model=config.model, has_api_base=bool(config.api_base))
    return LiteLLMProvider(
        api_key=api_key,
        api_base=config.api_base,
        default_model=config.model,
        extra_headers=config.extra_headers,
        resilience_config=config.resilience,
    )
