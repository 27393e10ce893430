"""CLI commands for inspecting and finalizing pi sessions."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from pi_memory import __logo__, __version__
from pi_memory.agent.lifecycle import FinalizeOutcome, SessionLifecycleController
from pi_memory.agent.notify import Notification, Notifier
from pi_memory.config.loader import load_config
from pi_memory.errors import ConfigError, StoreError
from pi_memory.logging import setup_logging
from pi_memory.memory.completion import Completer
from pi_memory.session.manager import Session
from pi_memory.session.tree import TreeNode

app = typer.Typer(
    name="pi-memory",
    help=f"{__logo__} pi-memory - session summaries and project memory",
    no_args_is_help=True,
)

ProjectOption = typer.Option(Path("."), "--project", "-p", help="Project directory")
ConfigOption = typer.Option(None, "--config", "-c", help="Config file (default ~/.pi/agent/memory.json)")
SessionOption = typer.Option(None, "--session", "-s", help="Session id or .jsonl path (default: latest)")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{__logo__} pi-memory v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """pi-memory - session summaries and project memory."""


def _echo_notification(note: Notification) -> None:
    prefix = {"warning": "[warn] ", "error": "[error] "}.get(note.level, "")
    typer.echo(f"{prefix}{note.message}")


def _controller(project: Path, config_path: Path | None) -> SessionLifecycleController:
    try:
        config = load_config(config_path)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    setup_logging(json_output=config.logging.json_output, level=config.logging.level)
    return SessionLifecycleController(
        project.resolve(),
        config,
        completer_factory=lambda: Completer.from_config(config.provider),
        notifier=Notifier(_echo_notification, coalesce_seconds=config.memory.notify_coalesce_seconds),
    )


def _open_session(controller: SessionLifecycleController, session: str | None) -> Session:
    try:
        if session:
            return controller.sessions.open(Path(session) if session.endswith(".jsonl") else session)
        latest = controller.sessions.latest()
    except StoreError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    if latest is None:
        typer.echo(f"No sessions found in {controller.sessions.sessions_dir}", err=True)
        raise typer.Exit(1)
    return latest


def _exit_on_failure(outcome: FinalizeOutcome) -> None:
    if outcome.status in ("failed", "cancelled"):
        raise typer.Exit(1)


@app.command()
def memory(
    edit: bool = typer.Option(False, "--edit", "-e", help="Open project memory in $EDITOR"),
    project: Path = ProjectOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show or edit project memory."""
    controller = _controller(project, config)
    text = controller.memory.read()
    if not edit:
        typer.echo(text, nl=False)
        return
    edited = typer.edit(text, extension=".md")
    if edited is None or edited == text:
        typer.echo("Project memory unchanged.")
        return
    controller.memory.write(edited)
    typer.echo("Project memory updated.")


@app.command()
def summarize(
    session: Optional[str] = SessionOption,
    project: Path = ProjectOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Summarize a session without writing anything."""
    controller = _controller(project, config)
    target = _open_session(controller, session)
    outcome = asyncio.run(controller.summarize(target))
    if outcome.summary is not None:
        typer.echo(outcome.summary.render(), nl=False)
        return
    if outcome.status == "skipped":
        typer.echo("Not enough conversation to summarize yet.")
        return
    _exit_on_failure(outcome)


@app.command()
def finalize(
    session: Optional[str] = SessionOption,
    checkpoint: bool = typer.Option(False, "--checkpoint", help="Keep the session active afterwards"),
    project: Path = ProjectOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Finalize a session: write its summary and update project memory."""
    controller = _controller(project, config)
    target = _open_session(controller, session)
    outcome = asyncio.run(controller.finalize(target, "checkpoint" if checkpoint else "end"))
    if outcome.status == "skipped":
        typer.echo("Not enough conversation to summarize; session marked finalized.")
    elif outcome.summary is not None:
        typer.echo(f"Summary: {controller.summaries.path_for(target.id)}")
    _exit_on_failure(outcome)


@app.command()
def status(
    session: Optional[str] = SessionOption,
    project: Path = ProjectOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Show session state and memory budget."""
    controller = _controller(project, config)
    target = _open_session(controller, session) if session else None
    typer.echo(json.dumps(controller.status(target), indent=2))


def _render_tree(nodes: list[TreeNode], leaf_id: str | None, depth: int = 0) -> list[str]:
    lines: list[str] = []
    for node in nodes:
        entry = node.entry
        if entry.kind == "message":
            text = " ".join(entry.text.split())
            desc = f"[{entry.role}] {text[:60] + '...' if len(text) > 60 else text}"
        elif entry.kind == "summary":
            desc = "[summary]"
        else:
            desc = f"[{entry.custom_type or entry.kind}]"
        marker = "* " if entry.id == leaf_id else "  "
        labels = f" ({', '.join(node.labels)})" if node.labels else ""
        lines.append(f"{'  ' * depth}{marker}{entry.id} {desc}{labels}")
        lines.extend(_render_tree(node.children, leaf_id, depth + 1))
    return lines


@app.command()
def tree(
    session: Optional[str] = SessionOption,
    project: Path = ProjectOption,
    config: Optional[Path] = ConfigOption,
) -> None:
    """Print a session's entry tree; the current leaf is marked with *."""
    controller = _controller(project, config)
    target = _open_session(controller, session)
    lines = _render_tree(target.navigator.tree(), target.leaf_id)
    typer.echo("\n".join(lines) if lines else "(empty session)")


if __name__ == "__main__":
    app()
