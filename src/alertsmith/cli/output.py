"""Rich console output for the alertsmith CLI.

Example:
    >>> from alertsmith.cli.output import CLIOutput
    >>> output = CLIOutput()
    >>> output.emit_success("recompiled and executed in 12ms")
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from alertsmith.alerts import AlertSet
from alertsmith.errors import AlertsmithError

BANNER = r"""
       __          __                 _ __  __
  ____ _/ /__  _____/ /________ ___  (_) /_/ /_
 / __ `/ / _ \/ ___/ __/ ___/ __ `__ \/ / __/ __ \
/ /_/ / /  __/ /  / /_(__  ) / / / / / / /_/ / / /
\__,_/_/\___/_/   \__/____/_/ /_/ /_/_/\__/_/ /_/
"""


class CLIOutput:
    """Operator-facing messages and result tables."""

    def __init__(self, console: Console | None = None, verbose: bool = False) -> None:
        self.console = console or Console()
        self.verbose = verbose

    def emit_banner(self) -> None:
        self.console.print(Text(BANNER, style="bold magenta"))

    def emit_info(self, message: str) -> None:
        self.console.print(f"[cyan]{escape(message)}[/cyan]")

    def emit_success(self, message: str) -> None:
        self.console.print(f"[green]{escape(message)}[/green]")

    def emit_warning(self, message: str) -> None:
        self.console.print(f"[yellow]{escape(message)}[/yellow]")

    def emit_error(self, error: BaseException | str) -> None:
        """Print an error; alertsmith errors get their suggestions in verbose mode."""
        if isinstance(error, AlertsmithError) and self.verbose:
            self.console.print(f"[red]{escape(error.format_verbose())}[/red]")
        else:
            self.console.print(f"[red]{escape(str(error))}[/red]")

    def alerts_table(self, alert_set: AlertSet) -> None:
        """Print the alerts of a cycle as a table."""
        if not alert_set.alerts:
            self.console.print("[dim]No alerts[/dim]")
            return

        table = Table(title=f"Alerts ({len(alert_set)})", show_header=True, header_style="bold")
        table.add_column("Extension", style="cyan")
        table.add_column("Title")
        table.add_column("Comment", style="dim")

        for alert in alert_set.alerts:
            table.add_row(
                escape(str(alert.get("extension", ""))),
                escape(str(alert.get("title", ""))),
                escape(str(alert.get("comment", "") or "")),
            )

        self.console.print(table)
        if alert_set.elapsed_ms is not None:
            self.console.print(f"[dim]Executed in {alert_set.elapsed_ms:.0f}ms[/dim]")

    def properties_table(self, properties: Mapping[str, Mapping[str, Any]]) -> None:
        """Print each extension's exported config."""
        table = Table(title="Extensions", show_header=True, header_style="bold")
        table.add_column("Name", style="cyan")
        table.add_column("Title")
        table.add_column("Description", style="dim")
        table.add_column("Params")

        for name, config in properties.items():
            params = config.get("params") or {}
            table.add_row(
                escape(name),
                escape(str(config.get("title", ""))),
                escape(str(config.get("description", ""))),
                escape(", ".join(str(p) for p in params)) if isinstance(params, Mapping) else "",
            )

        self.console.print(table)

    def records_table(self, records: Mapping[str, Any]) -> None:
        """Print persisted records keyed by extension name."""
        if not records:
            self.console.print("[dim]No persisted records[/dim]")
            return

        table = Table(title="Persisted records", show_header=True, header_style="bold")
        table.add_column("Extension", style="cyan")
        table.add_column("Value")

        for name, value in records.items():
            table.add_row(escape(name), escape(json.dumps(value, default=str)))

        self.console.print(table)
