"""Configuration schema using Pydantic."""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ENV_REF_RE = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _resolve_env(value: str) -> str:
    """Expand a ``$VAR`` or ``${VAR}`` reference; leave anything else untouched."""
    if not value:
        return value
    m = _ENV_REF_RE.match(value.strip())
    if not m:
        return value
    return os.environ.get(m.group(1), value)


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResilienceConfig(Base):
    """Timeout, retry and circuit-breaker settings for completion calls."""

    timeout: int = 120
    max_retries: int = 3
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown: int = 60


class ProviderConfig(Base):
    """LLM provider used for summarization, merge and compaction calls."""

    model: str = "anthropic/claude-sonnet-4-5"
    api_key: str = ""
    api_base: str | None = None
    extra_headers: dict[str, str] | None = None
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)

    @property
    def resolved_api_key(self) -> str:
        return _resolve_env(self.api_key)


class MemoryConfig(Base):
    """Thresholds for finalization, chunking and project-memory compaction."""

    memory_dir: str = ".pi/memory"
    sessions_dir: str = ".pi/sessions"
    min_finalization_words: int = 100
    max_direct_chars: int = 50_000
    chunk_size_chars: int = 30_000
    project_memory_max_tokens: int = 4000
    compaction_target_tokens: int = 2000
    idle_threshold_seconds: int = 30 * 60
    notify_coalesce_seconds: float = 5.0

    def memory_path(self, workspace: Path) -> Path:
        return workspace / self.memory_dir

    def sessions_path(self, workspace: Path) -> Path:
        return workspace / self.sessions_dir


class ToolOutputConfig(Base):
    """Truncation budget applied to tool-result content."""

    max_bytes: int = 500
    max_lines: int = 40


class LoggingConfig(Base):
    json_output: bool = True
    level: str = "INFO"


class Config(Base):
    """Root configuration for pi-memory."""

    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    tool_output: ToolOutputConfig = Field(default_factory=ToolOutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
