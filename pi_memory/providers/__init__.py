"""LLM provider abstraction module."""

from pi_memory.providers.base import LLMProvider, LLMResponse
from pi_memory.providers.litellm_provider import LiteLLMProvider
from pi_memory.providers.resolver import make_provider

__all__ = ["LLMProvider", "LLMResponse", "LiteLLMProvider", "make_provider"]
