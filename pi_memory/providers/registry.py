"""Provider registry: which env var holds the key for which model family."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    keywords: tuple[str, ...]
    env_key: str
    litellm_prefix: str = ""


PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec(name="anthropic", keywords=("anthropic", "claude"), env_key="ANTHROPIC_API_KEY"),
    ProviderSpec(name="openai", keywords=("openai", "gpt"), env_key="OPENAI_API_KEY"),
    ProviderSpec(name="gemini", keywords=("gemini",), env_key="GEMINI_API_KEY", litellm_prefix="gemini"),
    ProviderSpec(name="openrouter", keywords=("openrouter",), env_key="OPENROUTER_API_KEY", litellm_prefix="openrouter"),
    ProviderSpec(name="deepseek", keywords=("deepseek",), env_key="DEEPSEEK_API_KEY", litellm_prefix="deepseek"),
    ProviderSpec(name="groq", keywords=("groq",), env_key="GROQ_API_KEY", litellm_prefix="groq"),
)


def find_by_model(model: str) -> ProviderSpec | None:
    """Match a provider by explicit ``prefix/`` first, then by keyword."""
    lower = model.lower()
    if "/" in lower:
        prefix = lower.split("/", 1)[0].replace("-", "_")
        for spec in PROVIDERS:
            if spec.name == prefix:
                return spec
    for spec in PROVIDERS:
        if any(kw in lower for kw in spec.keywords):
            return spec
    return None
