"""Online patch commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
import structlog
from rich.console import Console
from rich.table import Table

from hytale_tools.commands.instance import load_loader, loader_option
from hytale_tools.commands.progress import RichProgressSink
from hytale_tools.core.config import AppConfig
from hytale_tools.core.errors import HytaleToolsError
from hytale_tools.core.installer import GameInstaller
from hytale_tools.core.progress import ProgressReporter
from hytale_tools.core.types import PatchTarget

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract context objects from Click context."""
    config = ctx.obj["config"]
    console = ctx.obj["console"]
    verbose = ctx.obj.get("verbose", False)
    debug = ctx.obj.get("debug", False)
    return config, console, verbose, debug


server_option = click.option("--server", is_flag=True, help="Target the server instead of the client")


@click.group("patch", short_help="Manage online patches.")
def patch_group() -> None:
    """Enable, disable and inspect online executable patches.

    Online patches replace the client or server executable of an installed
    instance. The official executable is backed up and can be restored at
    any time.
    """
    pass


@patch_group.command("enable")
@click.argument("instance_id")
@loader_option
@server_option
@click.pass_context
def enable(ctx: click.Context, instance_id: str, loader_path: Path, server: bool) -> None:
    """Apply the configured online patch to INSTANCE_ID."""
    config, console, verbose, debug = _get_context_objects(ctx)
    target = PatchTarget.SERVER if server else PatchTarget.CLIENT

    try:
        loader = load_loader(loader_path)
        with RichProgressSink(console, verbose=verbose) as sink:
            installer = GameInstaller.from_config(config, instance_id, ProgressReporter(sink))
            outcome = installer.enable_online_patch(loader, target)
    except (HytaleToolsError, OSError, ValueError) as e:
        logger.error("patch_enable_failed", instance=instance_id, target=str(target), error=str(e))
        console.print(f"[red]Error enabling {target} patch: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        print(json.dumps({"target": str(target), "result": str(outcome.result), "url": outcome.url}, indent=2))
    else:
        console.print(f"{target} patch: [cyan]{outcome.result}[/cyan]")


@patch_group.command("disable")
@click.argument("instance_id")
@server_option
@click.pass_context
def disable(ctx: click.Context, instance_id: str, server: bool) -> None:
    """Restore the official executable of INSTANCE_ID."""
    config, console, verbose, debug = _get_context_objects(ctx)
    target = PatchTarget.SERVER if server else PatchTarget.CLIENT

    try:
        with RichProgressSink(console, verbose=verbose) as sink:
            installer = GameInstaller.from_config(config, instance_id, ProgressReporter(sink))
            result = installer.disable_online_patch(target)
    except (HytaleToolsError, OSError) as e:
        logger.error("patch_disable_failed", instance=instance_id, target=str(target), error=str(e))
        console.print(f"[red]Error disabling {target} patch: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        print(json.dumps({"target": str(target), "result": str(result)}, indent=2))
    else:
        console.print(f"{target} patch: [cyan]{result}[/cyan]")


@patch_group.command("status")
@click.argument("instance_id")
@loader_option
@click.pass_context
def status(ctx: click.Context, instance_id: str, loader_path: Path) -> None:
    """Show online patch status of INSTANCE_ID."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        loader = load_loader(loader_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error reading loader configuration: {e}[/red]")
        sys.exit(1)

    installer = GameInstaller.from_config(config, instance_id)
    patcher = installer.patcher
    configs = {
        PatchTarget.CLIENT: loader.client_patch(installer.resolver.os_name),
        PatchTarget.SERVER: loader.server,
    }
    statuses = {
        target: patcher.status(patcher.executable_for(target), patch_config)
        for target, patch_config in configs.items()
    }

    if config.output_format == "json":
        print(
            json.dumps(
                {
                    str(target): {
                        "available": s.available,
                        "enabled": s.enabled,
                        "downloaded": s.downloaded,
                    }
                    for target, s in statuses.items()
                },
                indent=2,
            )
        )
        return

    table = Table(title=f"Online patches of {instance_id}", show_header=True)
    table.add_column("Target", style="cyan")
    table.add_column("Available")
    table.add_column("Enabled")
    table.add_column("Downloaded")
    for target, s in statuses.items():
        table.add_row(str(target), str(s.available), str(s.enabled), str(s.downloaded))
    console.print(table)
