"""Inspect stored sessions."""

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from medico.cli.console import console, dim, error, get_config

session_app = typer.Typer(help="Inspect stored sessions")


def register(app: typer.Typer) -> None:
    """Register the session command group."""
    app.add_typer(session_app, name="session")


@session_app.command("show")
def show(
    session_id: Annotated[str, typer.Argument(help="Session id")],
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file",
        ),
    ] = None,
) -> None:
    """Show a stored session and its transcript."""
    from medico.errors import StoreError
    from medico.sessions import FileSessionStore

    config = get_config(config_path)
    store = FileSessionStore(config.sessions.path)
    try:
        session = asyncio.run(store.load(session_id))
    except StoreError as e:
        error(str(e))
        raise typer.Exit(1) from None
    if session is None:
        error(f"Session not found: {session_id}")
        raise typer.Exit(1)

    console.print(f"[bold]{session.id}[/bold] ({session.capability})")
    dim(f"state: {session.state.value}  turns: {session.turn_count}")
    if session.summary:
        console.print(f"Summary: {session.summary}")

    table = Table(title="Transcript")
    table.add_column("#", style="dim")
    table.add_column("Input")
    table.add_column("Output")
    for index, turn in enumerate(session.transcript, start=1):
        flag = " [yellow](recovered)[/yellow]" if turn.recovered else ""
        table.add_row(str(index), _compact(turn.input), _compact(turn.output) + flag)
    console.print(table)


@session_app.command("list")
def list_sessions(
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file",
        ),
    ] = None,
) -> None:
    """List stored session ids."""
    from medico.sessions import FileSessionStore

    config = get_config(config_path)
    ids = FileSessionStore(config.sessions.path).list_ids()
    if not ids:
        dim("No sessions stored")
        return
    for session_id in ids:
        console.print(session_id)


def _compact(value: dict, limit: int = 120) -> str:
    text = json.dumps(value, ensure_ascii=False)
    return text if len(text) <= limit else text[:limit] + "…"
