"""Invoke a capability from the command line."""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Any

import typer

from medico.cli.console import console, dim, error, get_config, warning


def _parse_input(raw: str) -> dict[str, Any]:
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        error(f"--input is not valid JSON: {e.msg}")
        raise typer.Exit(1) from None
    if not isinstance(value, dict):
        error("--input must be a JSON object")
        raise typer.Exit(1)
    return value


def register(app: typer.Typer) -> None:
    """Register the invoke command."""

    @app.command()
    def invoke(
        name: Annotated[str, typer.Argument(help="Capability name")],
        input_json: Annotated[
            str,
            typer.Option(
                "--input",
                "-i",
                help="Capability input as a JSON object",
            ),
        ] = "{}",
        session_id: Annotated[
            str | None,
            typer.Option(
                "--session",
                "-s",
                help="Session id to continue (stateful capabilities)",
            ),
        ] = None,
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Invoke a capability and print its result."""
        from medico.client import create_client
        from medico.errors import CapabilityConfigError, CapabilityNotFoundError, TemplateError

        input_value = _parse_input(input_json)
        config = get_config(config_path)
        try:
            client = create_client(config)
        except (CapabilityConfigError, TemplateError) as e:
            error(f"Invalid capability definition: {e}")
            raise typer.Exit(1) from None

        try:
            outcome = asyncio.run(client.call(name, input_value, session_id))
        except CapabilityNotFoundError as e:
            error(str(e))
            raise typer.Exit(1) from None

        if outcome.session_id:
            state = outcome.state.value if outcome.state else "unknown"
            dim(f"session: {outcome.session_id} ({state})")

        if not outcome.ok:
            error(outcome.error or "")
            raise typer.Exit(1)

        if outcome.recovered:
            warning("Best-effort result: " + "; ".join(outcome.notes))
        console.print_json(json.dumps(outcome.data, ensure_ascii=False))
