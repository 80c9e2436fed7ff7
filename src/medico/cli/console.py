"""Console output and config loading shared by CLI commands."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from rich.console import Console
from rich.theme import Theme

if TYPE_CHECKING:
    from medico.config.models import MedicoConfig

console = Console(
    theme=Theme({"error": "bold red", "warning": "yellow", "muted": "dim"}),
    highlight=False,
)


def error(msg: str) -> None:
    console.print(msg, style="error", markup=False)


def warning(msg: str) -> None:
    console.print(msg, style="warning", markup=False)


def dim(msg: str) -> None:
    console.print(msg, style="muted", markup=False)


def get_config(config_path: Path | None = None) -> MedicoConfig:
    """Load configuration, falling back to defaults when no file exists.

    An explicit path that does not exist, or an invalid file, exits with 1.
    """
    from pydantic import ValidationError

    from medico.config import ConfigError, get_default_config, load_config

    try:
        return load_config(config_path)
    except FileNotFoundError as e:
        if config_path is None:
            dim("No config file found, using defaults")
            return get_default_config()
        error(str(e))
    except (ConfigError, ValidationError, ValueError) as e:
        error(f"Invalid configuration: {e}")
    raise typer.Exit(1)
