"""CLI command modules."""

from medico.cli.commands import capabilities, invoke, session

__all__ = [
    "capabilities",
    "invoke",
    "session",
]
