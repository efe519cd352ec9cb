"""
plughost CLI - plugin administration and host server.

Usage:
    plughost --dir ./plugins discover
    plughost list
    plughost enable soundboard
    plughost disable soundboard
    plughost delete soundboard
    plughost check
    plughost serve --port 3000

``enable`` and ``disable`` only change the persisted state; a running host
picks the change up on its next start. Use the host's admin API to change a
running host.
"""

import asyncio
import logging
from typing import List, Optional, Tuple
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import HostConfig
from .manager import PluginManager
from .manifest import PluginManifest, discover_plugin_dirs, read_manifest


def configure_logging(console: Console, verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def find_manifests(manager: PluginManager) -> List[Tuple[Path, PluginManifest]]:
    """Every plugin directory with a valid manifest."""
    found = []
    for directory in discover_plugin_dirs(manager.root):
        manifest = read_manifest(directory, manager.config.manifest_filename)
        if manifest is not None:
            found.append((directory, manifest))
    return found


def find_manifest(manager: PluginManager, plugin_id: str) -> Optional[PluginManifest]:
    for _, manifest in find_manifests(manager):
        if manifest.id == plugin_id:
            return manifest
    return None


@click.group()
@click.option("--dir", "-d", "plugin_dir", default=None, help="Plugins directory")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, plugin_dir, verbose):
    """plughost - plugin runtime for the live-event companion server."""
    ctx.ensure_object(dict)
    console = Console()
    configure_logging(console, verbose)
    try:
        config = HostConfig.from_env(plugins_dir=plugin_dir)
    except ValidationError as e:
        console.print(f"[red]✗ Invalid configuration:[/red] {escape(str(e))}")
        ctx.exit(2)
    ctx.obj["config"] = config
    ctx.obj["manager"] = PluginManager(config)
    ctx.obj["console"] = console


@main.command()
@click.pass_context
def discover(ctx):
    """Discover plugin directories and their manifests."""
    manager = ctx.obj["manager"]
    console = ctx.obj["console"]

    directories = discover_plugin_dirs(manager.root)
    if not directories:
        console.print("[yellow]No plugins discovered[/yellow]")
        return

    console.print(Panel.fit(
        f"[bold green]Discovered {len(directories)} plugin directories[/bold green]",
        title="Plugin Discovery"
    ))

    for directory in directories:
        manifest = read_manifest(directory, manager.config.manifest_filename)
        if manifest is None:
            console.print(f"  [red]✗[/red] {directory.name} [dim](invalid manifest)[/dim]")
        else:
            console.print(f"  [green]•[/green] {manifest.id} [dim]({directory.name})[/dim]")


@main.command("list")
@click.pass_context
def list_plugins(ctx):
    """List plugins with their persisted state."""
    manager = ctx.obj["manager"]
    console = ctx.obj["console"]

    found = find_manifests(manager)
    if not found:
        console.print("[yellow]No plugins found[/yellow]")
        return

    table = Table(title="Plugins")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Version", style="green")
    table.add_column("Enabled")
    table.add_column("Reloads", justify="right")
    table.add_column("Last loaded", style="dim")

    for directory, manifest in found:
        entry = manager.store.get(manifest.id)
        enabled = manager.store.resolve_enabled(manifest.id, manifest.enabled)
        table.add_row(
            manifest.id,
            manifest.name,
            manifest.version,
            "[green]yes[/green]" if enabled else "[yellow]no[/yellow]",
            str(entry.get("reloadCount", 0)),
            entry.get("loadedAt") or "-",
        )

    console.print(table)


@main.command()
@click.argument("plugin_id")
@click.pass_context
def enable(ctx, plugin_id):
    """Mark a plugin enabled for the next start."""
    manager = ctx.obj["manager"]
    console = ctx.obj["console"]

    if find_manifest(manager, plugin_id) is None:
        console.print(f"[red]✗ Plugin not found: {plugin_id}[/red]")
        ctx.exit(1)

    if manager.store.update(plugin_id, enabled=True):
        console.print(f"[green]✓ Enabled plugin: {plugin_id}[/green]")
    else:
        console.print(f"[red]✗ Failed to save state for: {plugin_id}[/red]")
        ctx.exit(1)


@main.command()
@click.argument("plugin_id")
@click.pass_context
def disable(ctx, plugin_id):
    """Mark a plugin disabled for the next start."""
    manager = ctx.obj["manager"]
    console = ctx.obj["console"]

    if manager.store.update(plugin_id, enabled=False):
        console.print(f"[yellow]○ Disabled plugin: {plugin_id}[/yellow]")
    else:
        console.print(f"[red]✗ Failed to save state for: {plugin_id}[/red]")
        ctx.exit(1)


@main.command()
@click.argument("plugin_id")
@click.confirmation_option(prompt="Delete the plugin directory and its state?")
@click.pass_context
def delete(ctx, plugin_id):
    """Delete a plugin directory and its persisted state."""
    manager = ctx.obj["manager"]
    console = ctx.obj["console"]

    if asyncio.run(manager.delete_plugin(plugin_id)):
        console.print(f"[yellow]○ Deleted plugin: {plugin_id}[/yellow]")
    else:
        console.print(f"[red]✗ Failed to delete plugin: {plugin_id}[/red]")
        ctx.exit(1)


@main.command()
@click.pass_context
def check(ctx):
    """Load every plugin, report the outcome, then unload them."""
    manager = ctx.obj["manager"]
    console = ctx.obj["console"]

    async def _check():
        summary = await manager.load_all_plugins()
        loaded = manager.list_plugins()
        routes = len(manager.route_report())
        subscriptions = manager.live_events.list_events()
        await manager.shutdown()
        return summary, loaded, routes, subscriptions

    summary, loaded, routes, subscriptions = asyncio.run(_check())

    console.print(Panel.fit(f"""
[bold]Plugin Check[/bold]

  Loaded:   [green]{summary.loaded}[/green]
  Disabled: [yellow]{summary.disabled}[/yellow]
  Failed:   [red]{summary.failed}[/red]

  Routes registered: [cyan]{routes}[/cyan]
  Plugins dir: {manager.root}
""", title="plughost", border_style="cyan"))

    for plugin in loaded:
        console.print(f"  [green]✓[/green] {plugin['name']} ({plugin['id']}) v{plugin['version']}")

    for event, count in sorted(subscriptions.items()):
        console.print(f"  [dim]live event[/dim] {event}: {count} subscriber(s)")

    if summary.failed:
        ctx.exit(1)


@main.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=3000, show_default=True, type=int)
@click.pass_context
def serve(ctx, host, port):
    """Run the host server."""
    import uvicorn

    from .app import create_app

    app = create_app(ctx.obj["manager"])
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
