import json
from pathlib import Path

import pytest

from pi_memory.config.loader import get_config_path, load_config
from pi_memory.errors import ConfigError


def test_missing_file_returns_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "absent.json")
    assert config.memory.min_finalization_words == 100
    assert config.memory.max_direct_chars == 50_000
    assert config.memory.chunk_size_chars == 30_000
    assert config.memory.project_memory_max_tokens == 4000
    assert config.memory.compaction_target_tokens == 2000
    assert config.memory.idle_threshold_seconds == 1800
    assert config.tool_output.max_bytes == 500
    assert config.tool_output.max_lines == 40


def test_camel_and_snake_case_keys(tmp_path: Path) -> None:
    path = tmp_path / "memory.json"
    path.write_text(
        json.dumps(
            {
                "provider": {"model": "openai/gpt-4o-mini", "apiBase": "http://localhost:4000"},
                "memory": {"chunkSizeChars": 1000, "min_finalization_words": 5, "memoryDir": "mem"},
                "logging": {"jsonOutput": False, "level": "DEBUG"},
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.provider.model == "openai/gpt-4o-mini"
    assert config.provider.api_base == "http://localhost:4000"
    assert config.memory.chunk_size_chars == 1000
    assert config.memory.min_finalization_words == 5
    assert config.memory.memory_path(tmp_path) == tmp_path / "mem"
    assert config.logging.json_output is False


@pytest.mark.parametrize("content", ["{not json", '{"memory": {"chunkSizeChars": "lots"}}'])
def test_invalid_config_raises_config_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "memory.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


def test_default_config_path_is_under_home(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(Path, "home", lambda: tmp_path)
    assert get_config_path() == tmp_path / ".pi" / "agent" / "memory.json"
