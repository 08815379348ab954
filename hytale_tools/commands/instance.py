"""Instance install, inspection and cleanup commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from hytale_tools.commands.progress import RichProgressSink
from hytale_tools.core.checker import check_installation, clean_installation, get_patch_health
from hytale_tools.core.config import AppConfig
from hytale_tools.core.errors import HytaleToolsError
from hytale_tools.core.installer import GameInstaller
from hytale_tools.core.progress import ProgressReporter
from hytale_tools.core.types import InstanceSource, LoaderConfig

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract context objects from Click context."""
    config = ctx.obj["config"]
    console = ctx.obj["console"]
    verbose = ctx.obj.get("verbose", False)
    debug = ctx.obj.get("debug", False)
    return config, console, verbose, debug


def _output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def load_loader(path: Path) -> LoaderConfig:
    """Read a loader configuration JSON file."""
    return LoaderConfig.model_validate_json(path.read_text(encoding="utf-8"))


loader_option = click.option(
    "--loader",
    "-l",
    "loader_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Loader configuration JSON file",
)


@click.command()
@click.argument("instance_id")
@loader_option
@click.option("--files-url", help="Instance control plane URL serving auxiliary files")
@click.option("--token", help="Bearer token for the control plane")
@click.option("--password", help="Instance password for the control plane")
@click.pass_context
def install(
    ctx: click.Context,
    instance_id: str,
    loader_path: Path,
    files_url: str | None,
    token: str | None,
    password: str | None,
) -> None:
    """Install or update INSTANCE_ID to the loader's build."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        loader = load_loader(loader_path)
        with RichProgressSink(console, verbose=verbose) as sink:
            installer = GameInstaller.from_config(config, instance_id, ProgressReporter(sink))
            manifest = installer.install(loader)
            downloaded = 0
            if files_url:
                source = InstanceSource(id=instance_id, url=files_url, token=token, password=password)
                downloaded = installer.download_files(source)
    except (HytaleToolsError, OSError, ValueError) as e:
        logger.error("install_failed", instance=instance_id, error=str(e))
        console.print(f"[red]Error installing {instance_id}: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json({"manifest": manifest.model_dump(mode="json"), "files_downloaded": downloaded})
        return

    console.print(f"[green]Installed {instance_id} at build {manifest.build_index}[/green]")
    if manifest.runtime_version:
        console.print(f"Runtime: {manifest.runtime_version}")
    if manifest.client_patch:
        console.print(f"Client patch: {manifest.client_patch.url}")
    if manifest.server_patch:
        console.print(f"Server patch: {manifest.server_patch.url}")
    if files_url:
        console.print(f"Files downloaded: {downloaded}")


@click.command()
@click.argument("instance_id")
@loader_option
@click.pass_context
def plan(ctx: click.Context, instance_id: str, loader_path: Path) -> None:
    """Show what install would do for INSTANCE_ID."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        loader = load_loader(loader_path)
        update_plan = GameInstaller.from_config(config, instance_id).plan(loader)
    except (HytaleToolsError, OSError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json(
            {
                "flow": str(update_plan.flow),
                "current": update_plan.current,
                "target": update_plan.target,
                "steps": [list(step) for step in update_plan.steps],
            }
        )
        return

    console.print(f"Flow: [cyan]{update_plan.flow}[/cyan] ({update_plan.current} -> {update_plan.target})")
    for step in update_plan.steps:
        console.print(f"  patch {step.from_build} -> {step.to_build}")


@click.command()
@click.argument("instance_id")
@click.option("--build", "-b", "build_index", type=int, help="Expected build index")
@click.pass_context
def check(ctx: click.Context, instance_id: str, build_index: int | None) -> None:
    """Check which parts of INSTANCE_ID are installed."""
    config, console, verbose, debug = _get_context_objects(ctx)
    result = check_installation(config.resolver(), instance_id, build_index)

    if config.output_format == "json":
        _output_json(
            {
                "client_installed": result.client_installed,
                "server_installed": result.server_installed,
                "runtime_installed": result.runtime_installed,
                "is_complete": result.is_complete,
                "build_index": result.build_index,
                "needs_update": result.needs_update,
            }
        )
        return

    table = Table(title=f"Instance {instance_id}", show_header=True)
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_row("Build", str(result.build_index))
    table.add_row("Client", "installed" if result.client_installed else "missing")
    table.add_row("Server", "installed" if result.server_installed else "missing")
    table.add_row("Runtime", "installed" if result.runtime_installed else "missing")
    table.add_row("Complete", "yes" if result.is_complete else "no")
    if build_index is not None:
        table.add_row("Needs update", "yes" if result.needs_update else "no")
    console.print(table)


@click.command()
@click.argument("instance_id")
@click.option("--build", "-b", "build_index", type=int, required=True, help="Expected build index")
@click.option("--client-hash", help="Expected SHA256 of the client executable")
@click.pass_context
def health(ctx: click.Context, instance_id: str, build_index: int, client_hash: str | None) -> None:
    """Hash-check the client of INSTANCE_ID."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        result = get_patch_health(config.resolver(), instance_id, build_index, client_hash)
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json(
            {
                "status": str(result.status),
                "patched": result.patched,
                "outdated": result.outdated,
                "needs_repair": result.needs_repair,
                "current_build_index": result.current_build_index,
                "expected_build_index": result.expected_build_index,
            }
        )
        return

    colors = {"healthy": "green", "outdated": "yellow", "needs_repair": "red", "not_installed": "dim"}
    color = colors.get(str(result.status), "white")
    console.print(f"Status: [{color}]{result.status}[/{color}]")
    if verbose:
        console.print(f"Current build: {result.current_build_index}")
        console.print(f"Expected build: {result.expected_build_index}")
        console.print(f"Patched: {result.patched}")


@click.command()
@click.argument("instance_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def clean(ctx: click.Context, instance_id: str, yes: bool) -> None:
    """Delete the game files of INSTANCE_ID (user data is kept)."""
    config, console, verbose, debug = _get_context_objects(ctx)

    if not yes:
        click.confirm(f"Delete all game files of {instance_id}?", abort=True)

    try:
        removed = clean_installation(config.resolver(), instance_id)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error cleaning {instance_id}: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json({"removed": [str(path) for path in removed]})
        return

    console.print(f"[green]Removed {len(removed)} item(s)[/green]")
    if verbose:
        for path in removed:
            console.print(f"  {path}")


@click.command()
@click.argument("instance_id")
@click.option(
    "--signature",
    "-s",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Patch signature file (.pwr.sig)",
)
@click.pass_context
def verify(ctx: click.Context, instance_id: str, signature: Path) -> None:
    """Verify the game tree of INSTANCE_ID against a signature."""
    config, console, verbose, debug = _get_context_objects(ctx)

    try:
        with RichProgressSink(console, verbose=verbose) as sink:
            ok = GameInstaller.from_config(config, instance_id, ProgressReporter(sink)).verify(signature)
    except HytaleToolsError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json({"valid": ok})
    elif ok:
        console.print("[green]Game files match the signature[/green]")
    else:
        console.print("[red]Game files do not match the signature[/red]")

    if not ok:
        sys.exit(1)
