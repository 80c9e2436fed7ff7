"""List registered capabilities."""

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from medico.cli.console import console, error, get_config


def register(app: typer.Typer) -> None:
    """Register the capabilities command."""

    @app.command()
    def capabilities(
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """List registered capabilities."""
        from medico.client import create_registry
        from medico.errors import CapabilityConfigError, TemplateError

        config = get_config(config_path)
        try:
            registry = create_registry(config)
        except (CapabilityConfigError, TemplateError) as e:
            error(f"Invalid capability definition: {e}")
            raise typer.Exit(1) from None

        table = Table(title="Capabilities")
        table.add_column("Name", style="cyan")
        table.add_column("Stateful")
        table.add_column("Fallbacks")
        table.add_column("Cache")
        table.add_column("Description", style="dim")

        for capability in registry.definitions():
            table.add_row(
                capability.name,
                "yes" if capability.stateful else "no",
                ", ".join(f.label for f in capability.fallbacks) or "-",
                f"{capability.cache.ttl_seconds}s" if capability.cache else "-",
                capability.description,
            )

        console.print(table)
