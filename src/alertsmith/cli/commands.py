"""CLI commands for alertsmith."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import webbrowser
from pathlib import Path
from typing import Any

import click

from alertsmith.alerts import CurrentAlerts
from alertsmith.cli.output import CLIOutput
from alertsmith.config import AlertsmithConfig, load_config
from alertsmith.errors import AlertsmithError, PersistenceError
from alertsmith.live import HotReloadPipeline, ViewerHub, create_app, serve
from alertsmith.persistence import JsonFileStore
from alertsmith.runner import ExtensionRunner
from alertsmith.sandbox import SandboxBuilder, get_properties, get_whitelist, is_allowed
from alertsmith.sources import load_extensions

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _fail(output: CLIOutput, error: BaseException | str) -> None:
    output.emit_error(error)
    sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--config", "-c", type=click.Path(exists=True), help="Path to config file")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config: str | None) -> None:
    """alertsmith - sandboxed alert extensions with live preview."""
    ctx.ensure_object(dict)
    output = CLIOutput(verbose=verbose)

    try:
        config_obj = load_config(config)
    except AlertsmithError as e:
        _fail(output, e)
    if verbose:
        config_obj.verbose = True
    output.verbose = config_obj.verbose

    ctx.obj["config"] = config_obj
    ctx.obj["verbose"] = config_obj.verbose
    ctx.obj["output"] = output

    setup_logging(config_obj.verbose)


@cli.command()
@click.option("--host", default=None, help="Host to bind (overrides config)")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (overrides config)")
@click.option("--no-browser", is_flag=True, help="Do not open the preview in a browser")
@click.pass_context
def live(ctx: click.Context, host: str | None, port: int | None, no_browser: bool) -> None:
    """Serve the live preview and recompile on every change."""
    config: AlertsmithConfig = ctx.obj["config"]
    output: CLIOutput = ctx.obj["output"]
    if host:
        config.host = host
    if port:
        config.port = port
    if no_browser:
        config.open_browser = False

    try:
        asyncio.run(_live(config, output))
    except KeyboardInterrupt:
        output.emit_warning("Live mode stopped")


async def _live(config: AlertsmithConfig, output: CLIOutput) -> None:
    runner = ExtensionRunner.from_config(config)
    current = CurrentAlerts()
    try:
        current.replace(await runner.compute(cycle=0))
    except AlertsmithError as e:
        output.emit_error(e)
        output.emit_warning("Starting with no alerts; fix the error and save to recompile")

    hub = ViewerHub()
    pipeline = HotReloadPipeline(runner, hub, current, console=output.console)
    app = create_app(current, hub)
    watcher = pipeline.watch([Path(config.watch_root)], config.debounce_delay)

    output.emit_banner()
    output.emit_info(f"Live preview at {config.url}")
    if config.open_browser:
        try:
            webbrowser.open(config.url)
        except webbrowser.Error as e:
            logger.debug(f"Could not open browser: {e}")

    try:
        await serve(app, config.host, config.port)
    finally:
        watcher.stop()
        await pipeline.stop(timeout=5)


@cli.command()
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
@click.pass_context
def run(ctx: click.Context, output_format: str) -> None:
    """Run every extension once and print the alerts."""
    config: AlertsmithConfig = ctx.obj["config"]
    output: CLIOutput = ctx.obj["output"]

    runner = ExtensionRunner.from_config(config)
    try:
        alert_set = asyncio.run(runner.compute())
    except AlertsmithError as e:
        _fail(output, e)

    if output_format == "json":
        click.echo(json.dumps(alert_set.to_payload(), indent=2, default=str))
    else:
        output.alerts_table(alert_set)


@cli.command()
@click.pass_context
def info(ctx: click.Context) -> None:
    """Show the exported config of every extension."""
    config: AlertsmithConfig = ctx.obj["config"]
    output: CLIOutput = ctx.obj["output"]

    async def collect() -> dict[str, dict[str, Any]]:
        builder = SandboxBuilder(get_whitelist(config.whitelist_path))
        return {
            extension.name: await get_properties(extension, builder)
            for extension in load_extensions(config.extensions_path)
        }

    try:
        properties = asyncio.run(collect())
    except AlertsmithError as e:
        _fail(output, e)

    if not properties:
        output.emit_warning(f"No extensions found in {config.extensions_path}")
        return
    output.properties_table(properties)


@cli.command()
@click.argument("capability")
@click.pass_context
def check(ctx: click.Context, capability: str) -> None:
    """Report whether CAPABILITY may be required by extensions."""
    config: AlertsmithConfig = ctx.obj["config"]
    output: CLIOutput = ctx.obj["output"]

    try:
        whitelist = get_whitelist(config.whitelist_path)
    except AlertsmithError as e:
        _fail(output, e)

    if is_allowed(whitelist, capability):
        output.emit_success(f"{capability} is allowed")
    else:
        _fail(output, f"{capability} is not whitelisted")


@cli.group()
def db() -> None:
    """Inspect or clear persisted extension records."""


@db.command("read")
@click.argument("name", required=False)
@click.pass_context
def db_read(ctx: click.Context, name: str | None) -> None:
    """Print the persisted record of NAME, or of every extension."""
    config: AlertsmithConfig = ctx.obj["config"]
    output: CLIOutput = ctx.obj["output"]
    store = JsonFileStore(config.store_path)

    try:
        if name is None:
            output.records_table(store.read_all())
            return
        value = store.get(name)
    except (OSError, ValueError) as e:
        _fail(output, PersistenceError(f"Failed to read {store.path}: {e}", cause=e))

    if value is None:
        output.emit_warning(f"No record for {name}")
        return
    click.echo(json.dumps(value, indent=2, default=str))


@db.command("clear")
@click.argument("name")
@click.pass_context
def db_clear(ctx: click.Context, name: str) -> None:
    """Drop the persisted record of NAME."""
    config: AlertsmithConfig = ctx.obj["config"]
    output: CLIOutput = ctx.obj["output"]
    store = JsonFileStore(config.store_path)

    try:
        store.clear(name)
    except (OSError, ValueError) as e:
        _fail(output, PersistenceError(f"Failed to clear {name} in {store.path}: {e}", cause=e))
    output.emit_success(f"Cleared record for {name}")
