"""alertsmith CLI - Command line interface for alertsmith."""

from __future__ import annotations

from alertsmith.cli.commands import cli, setup_logging
from alertsmith.cli.output import CLIOutput


def main() -> None:
    """Main entry point for the alertsmith CLI."""
    cli()


__all__ = [
    "main",
    "cli",
    "setup_logging",
    "CLIOutput",
]
