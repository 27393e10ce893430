import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import pi_memory.cli.commands as commands_module
from pi_memory.cli.commands import app
from pi_memory.config.schema import Config, LoggingConfig
from pi_memory.session.manager import SessionManager

FINAL_OUTPUT = """## Session Summary
Split the store into JSONL and in-memory variants.

## Memory Patch
### Invariants
- Session files are append-only

## Next Steps
- Benchmark replay
"""

runner = CliRunner()


@pytest.fixture
def project(tmp_path: Path, monkeypatch) -> Path:
    quiet = Config(logging=LoggingConfig(level="CRITICAL"))
    monkeypatch.setattr(commands_module, "load_config", lambda path=None: quiet)
    return tmp_path


def _use_completer(monkeypatch, completer) -> None:
    class _Factory:
        @staticmethod
        def from_config(_config):
            return completer

    monkeypatch.setattr(commands_module, "Completer", _Factory)


def _session(project: Path, session_id: str = "s1"):
    session = SessionManager(project, project / ".pi" / "sessions").create(session_id)
    session.add_message("user", "split the store " * 30)
    session.add_message("assistant", "done splitting " * 30)
    return session


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "pi-memory v" in result.output


def test_memory_shows_template(project: Path) -> None:
    result = runner.invoke(app, ["memory", "--project", str(project)])
    assert result.exit_code == 0
    assert "## Invariants" in result.output
    assert "## Debug Playbook" in result.output


def test_memory_edit_writes_changes(project: Path, monkeypatch) -> None:
    monkeypatch.setattr(
        commands_module.typer,
        "edit",
        lambda text, extension=".md": text.replace("## Contracts\n", "## Contracts\n- CLI exit code 1 on failure\n"),
    )
    result = runner.invoke(app, ["memory", "--edit", "--project", str(project)])

    assert result.exit_code == 0
    assert "Project memory updated." in result.output
    memory_file = project / ".pi" / "memory" / "project_current.md"
    assert "- CLI exit code 1 on failure" in memory_file.read_text(encoding="utf-8")


def test_tree_marks_leaf_and_labels(project: Path) -> None:
    session = _session(project)
    root = session.navigator.active_path()[0]
    session.navigator.label_entry(root.id, "start")

    result = runner.invoke(app, ["tree", "--project", str(project), "--session", "s1"])

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].startswith(f"  {root.id} [user] split the store")
    assert lines[0].endswith("(start)")
    assert lines[1].startswith(f"  * {session.leaf_id} [assistant]")


def test_summarize_prints_summary(project: Path, monkeypatch, make_completer) -> None:
    _session(project)
    _use_completer(monkeypatch, make_completer([FINAL_OUTPUT]))

    result = runner.invoke(app, ["summarize", "--project", str(project)])

    assert result.exit_code == 0, result.output
    assert "Split the store into JSONL" in result.output
    assert not (project / ".pi" / "memory" / "project_current.md").exists()


def test_finalize_updates_memory(project: Path, monkeypatch, make_completer) -> None:
    _session(project)
    _use_completer(monkeypatch, make_completer([FINAL_OUTPUT]))

    result = runner.invoke(app, ["finalize", "--project", str(project), "--session", "s1"])

    assert result.exit_code == 0, result.output
    assert "Session finalized and memory updated" in result.output
    assert "s1.json" in result.output
    memory = (project / ".pi" / "memory" / "project_current.md").read_text(encoding="utf-8")
    assert "- Session files are append-only" in memory


def test_finalize_without_credentials_fails(project: Path, monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    _session(project)

    result = runner.invoke(app, ["finalize", "--project", str(project)])

    assert result.exit_code == 1
    assert "Finalization failed" in result.output


def test_status_reports_budget(project: Path) -> None:
    result = runner.invoke(app, ["status", "--project", str(project)])
    assert result.exit_code == 0
    info = json.loads(result.output)
    assert info["memory_budget"] == 4000
    assert info["finalized"] is True


def test_missing_session_exits_with_error(project: Path) -> None:
    result = runner.invoke(app, ["tree", "--project", str(project)])
    assert result.exit_code == 1
