"""Main CLI application."""

from typing import Annotated

import typer

from medico.cli.commands import capabilities, invoke, session

app = typer.Typer(
    name="medico",
    help="Medico - capability invocation for medical study tools",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging",
        ),
    ] = False,
) -> None:
    """Configure logging for every command."""
    from medico.logging import configure_logging

    configure_logging(level="DEBUG" if verbose else None, use_rich=True, log_to_file=True)


@app.command()
def paths() -> None:
    """Show where Medico keeps its config, sessions and logs."""
    from medico.cli.console import console
    from medico.config.paths import get_all_paths

    for label, path in get_all_paths().items():
        marker = "" if path.exists() else "  (missing)"
        console.print(f"{label:<13} {path}{marker}", markup=False)


capabilities.register(app)
invoke.register(app)
session.register(app)


if __name__ == "__main__":
    app()
