"""Main entry point for the resale-photos CLI.

Provides a Typer-based CLI for inspecting and maintaining the photo URL
cache: resolving storage paths, invalidating entries, and clearing the
cache on account switch.
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import aiosqlite
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from resale_photos import __version__
from resale_photos.cache import ImageUrlCache
from resale_photos.config import CacheConfig, ensure_config_exists, get_config_path
from resale_photos.errors import PhotoCacheError, StoreUnavailableError
from resale_photos.logging_config import get_logger, setup_logging
from resale_photos.storage.store import PersistentStore

console = Console()
logger = get_logger("cli")

app = typer.Typer(
    name="resale-photos",
    help="Photo URL cache tools for the reseller back office",
    rich_markup_mode="rich",
)


def version_callback(value: bool) -> None:
    """Callback for --version flag."""
    if value:
        console.print(f"resale-photos version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """resale-photos: photo URL cache tools.

    ## Commands

    * [bold cyan]resolve[/bold cyan] - Resolve storage paths to URLs
    * [bold cyan]invalidate[/bold cyan] - Drop cached URLs for storage paths
    * [bold cyan]clear[/bold cyan] - Drop every cached URL
    * [bold cyan]status[/bold cyan] - Show cache configuration and size
    * [bold cyan]config[/bold cyan] - Show or change configuration
    """
    pass


def load_config(config_path: Optional[Path]) -> CacheConfig:
    """Load configuration and start session logging.

    Args:
        config_path: Explicit config file, or None for the default location

    Returns:
        Loaded configuration

    Raises:
        typer.Exit: If the config file is missing or invalid
    """
    try:
        config = CacheConfig.load(config_path) if config_path else ensure_config_exists()
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error loading config: {e}[/red]")
        raise typer.Exit(1)

    setup_logging(config.log_dir)
    return config


def build_cache(config: CacheConfig) -> ImageUrlCache:
    """Create a cache from config, exiting with an error message on failure."""
    problems = config.validate()
    if problems:
        for problem in problems:
            console.print(f"[red]Config error: {problem}[/red]")
        raise typer.Exit(1)

    try:
        return ImageUrlCache.from_config(config)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def run_on_store(config: CacheConfig, action: Callable[[PersistentStore], Awaitable[None]]) -> None:
    """Run a maintenance action against the persistent tier.

    No resolver is built, so this works whatever the storage settings are.

    Raises:
        typer.Exit: If the store cannot be opened or the action fails
    """
    if not config.persistent:
        console.print("[yellow]Persistent cache is disabled; nothing stored to drop[/yellow]")
        return

    async def run() -> None:
        store = PersistentStore(config.db_path)
        try:
            await action(store)
        finally:
            await store.close()

    try:
        asyncio.run(run())
    except (StoreUnavailableError, aiosqlite.Error) as e:
        logger.error(f"URL store maintenance failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command("resolve")
def resolve_paths(
    paths: List[str] = typer.Argument(..., help="Storage paths to resolve"),
    preload: bool = typer.Option(
        False,
        "--preload",
        "-p",
        help="Also fetch each photo to warm up HTTP caches",
    ),
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
) -> None:
    """Resolve storage paths to fetchable URLs."""
    config = load_config(config_path)
    cache = build_cache(config)

    async def run() -> list[str]:
        async with cache:
            if preload:
                return await cache.preload(paths)
            return await cache.resolve_many(paths)

    try:
        urls = asyncio.run(run())
    except PhotoCacheError as e:
        logger.error(f"Resolve failed: {e}")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Resolved URLs")
    table.add_column("Path", style="cyan")
    table.add_column("URL", style="green", overflow="fold")
    for path, url in zip(paths, urls):
        table.add_row(path, url)
    console.print(table)

    stats = cache.stats
    console.print(
        f"[dim]memory hits: {stats.memory_hits}, store hits: {stats.store_hits}, "
        f"resolver calls: {stats.resolver_calls}[/dim]"
    )


@app.command("invalidate")
def invalidate_paths(
    paths: List[str] = typer.Argument(..., help="Storage paths to drop"),
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
) -> None:
    """Drop cached URLs for storage paths."""
    config = load_config(config_path)

    async def drop(store: PersistentStore) -> None:
        for path in paths:
            await store.delete(path)

    run_on_store(config, drop)
    console.print(f"[green]Invalidated {len(paths)} path(s)[/green]")


@app.command("clear")
def clear_cache(
    confirm: bool = typer.Option(
        False,
        "--confirm",
        help="Confirm dropping every cached URL (required)",
    ),
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
) -> None:
    """Drop every cached URL, e.g. after switching accounts."""
    if not confirm:
        console.print("[yellow]This drops every cached URL. Re-run with --confirm.[/yellow]")
        raise typer.Exit(1)

    config = load_config(config_path)
    run_on_store(config, lambda store: store.clear())
    console.print("[green]URL cache cleared[/green]")


@app.command("status")
def show_status(
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
) -> None:
    """Show cache configuration and persisted entry count."""
    config = load_config(config_path)

    info_table = Table(title="URL Cache")
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="green")

    info_table.add_row("Resolver", config.resolver)
    info_table.add_row("Bucket", config.bucket)
    info_table.add_row("TTL", f"{config.ttl_seconds}s")
    info_table.add_row("Persistent", "Yes" if config.persistent else "No")
    info_table.add_row("Database Path", str(config.db_path))

    if config.persistent and config.db_path.exists():
        async def count() -> int:
            store = PersistentStore(config.db_path)
            try:
                return await store.count()
            finally:
                await store.close()

        try:
            info_table.add_row("Stored Entries", f"{asyncio.run(count()):,}")
        except StoreUnavailableError as e:
            info_table.add_row("Stored Entries", f"[red]unavailable ({e})[/red]")
    else:
        info_table.add_row("Stored Entries", "[dim]0[/dim]")

    console.print(info_table)

    for problem in config.validate():
        console.print(f"[yellow]Warning: {problem}[/yellow]")


@app.command()
def config(
    action: str = typer.Argument(
        ...,
        help="Action to perform (show, set, path)",
    ),
    key: str = typer.Argument(
        None,
        help="Configuration key (for set action)",
    ),
    value: str = typer.Argument(
        None,
        help="Configuration value (for set action)",
    ),
    config_path: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
) -> None:
    """Manage configuration.

    Examples:
        resale-photos config show
        resale-photos config set cache.ttl_seconds 1800
        resale-photos config path
    """
    path = config_path or get_config_path()

    if action == "show":
        cfg = load_config(config_path)
        panel = Panel.fit(
            f"[cyan]TTL:[/cyan] {cfg.ttl_seconds}s\n"
            f"[cyan]Database Path:[/cyan] {cfg.db_path}\n"
            f"[cyan]Persistent:[/cyan] {cfg.persistent}\n"
            f"[cyan]Resolver:[/cyan] {cfg.resolver}\n"
            f"[cyan]Storage URL:[/cyan] {cfg.storage_url or '[dim]not set[/dim]'}\n"
            f"[cyan]Bucket:[/cyan] {cfg.bucket}\n"
            f"[cyan]R2 Endpoint:[/cyan] {cfg.r2_endpoint_url or '[dim]not set[/dim]'}\n"
            f"[cyan]Presign Expiry:[/cyan] {cfg.presign_expires}s\n"
            f"[cyan]Preload Timeout:[/cyan] {cfg.preload_timeout}s\n"
            f"[cyan]Log Directory:[/cyan] {cfg.log_dir}",
            title="Configuration",
            border_style="green",
        )
        console.print(panel)

    elif action == "set":
        if not key or value is None:
            console.print("[red]Usage: resale-photos config set <key> <value>[/red]")
            raise typer.Exit(1)

        cfg = load_config(config_path)
        try:
            cfg.set(key, value)
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1)
        cfg.save(path)
        console.print(f"[green]Set {key} = {value}[/green]")

    elif action == "path":
        console.print(str(path))

    else:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Valid actions: show, set, path")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
