"""Main CLI entry point for databridge.

Provides command-line inspection and cleanup of a databridge cache directory.
"""

import sys
from pathlib import Path
from typing import Optional

import click
import orjson
from rich.console import Console
from rich.table import Table

from databridge.cache.store import CacheStore
from databridge.config import DEFAULT_CACHE_DIR
from databridge.errors import CacheReadError
from databridge.timestamps import elapsed_seconds, is_ttl_valid

# Global console for Rich output
console = Console()


def format_age(seconds: float) -> str:
    """Format an age in seconds as a short human-readable string.

    Examples:
        >>> format_age(42)
        '42s'
        >>> format_age(3900)
        '1h 5m'
    """
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


def resolve_entry_path(store: CacheStore, entry: str) -> Path:
    """Resolve an entry argument as a path, falling back to the cache dir."""
    path = Path(entry)
    if path.exists() or path.is_absolute():
        return path
    return store.cache_dir / entry


@click.group()
@click.option(
    "--cache-dir",
    "-C",
    type=click.Path(file_okay=False),
    envvar="DATABRIDGE_CACHE_DIR",
    default=DEFAULT_CACHE_DIR,
    show_default=True,
    help="Cache directory (or DATABRIDGE_CACHE_DIR env var)",
)
@click.pass_context
def cli(ctx, cache_dir):
    """databridge CLI - Inspect and clean up the fetch cache."""
    ctx.ensure_object(dict)
    ctx.obj["store"] = CacheStore(cache_dir)


@cli.command("list")
@click.option(
    "--ttl",
    type=click.IntRange(min=0),
    default=None,
    help="Mark entries older than this many seconds as stale",
)
@click.pass_context
def list_entries(ctx, ttl: Optional[int]):
    """List cache entries with their age.

    Example:
        databridge list
        databridge -C ./cache list --ttl 600
    """
    try:
        store: CacheStore = ctx.obj["store"]
        entries = list(store.iter_entries())

        if not entries:
            console.print("[yellow]No cache entries found[/yellow]")
            return

        table = Table(title=f"Cache entries ({len(entries)})")
        table.add_column("File", style="cyan", no_wrap=True)
        table.add_column("Written", style="blue")
        table.add_column("Age", justify="right", style="green")
        if ttl is not None:
            table.add_column("Fresh", justify="center")

        for path, entry in entries:
            timestamp = entry["timestamp"]
            row = [path.name, timestamp[:19], format_age(elapsed_seconds(timestamp))]
            if ttl is not None:
                fresh = is_ttl_valid(timestamp, ttl)
                row.append("[green]yes[/green]" if fresh else "[red]no[/red]")
            table.add_row(*row)

        console.print(table)

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("show")
@click.argument("entry")
@click.pass_context
def show_entry(ctx, entry):
    """Show one cache entry.

    ENTRY is a cache file path, or a file name inside the cache directory.

    Example:
        databridge show forecast-3f2a...e9.json
    """
    try:
        store: CacheStore = ctx.obj["store"]
        path = resolve_entry_path(store, entry)
        cached = store.load_entry(path)

        console.print(f"\n[bold cyan]Entry: {path.name}[/bold cyan]")
        console.print(f"[bold]Written:[/bold] {cached['timestamp']}")
        console.print(f"[bold]Age:[/bold] {format_age(elapsed_seconds(cached['timestamp']))}")
        console.print("[bold]Data:[/bold]")
        console.print_json(orjson.dumps(cached["data"]).decode())

    except CacheReadError as e:
        console.print(f"[red]✗[/red] {e}", style="red")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


@cli.command("clear")
@click.option(
    "--older-than",
    type=click.IntRange(min=0),
    default=None,
    help="Only delete entries written more than this many seconds ago",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def clear_entries(ctx, older_than: Optional[int], yes: bool):
    """Delete cache entries.

    Example:
        databridge clear -y
        databridge clear --older-than 86400
    """
    try:
        store: CacheStore = ctx.obj["store"]

        if not yes:
            scope = (
                f"older than {format_age(older_than)}" if older_than is not None else "all"
            )
            if not click.confirm(f"Delete {scope} cache entries in {store.cache_dir}?"):
                console.print("[yellow]Cancelled[/yellow]")
                return

        removed = store.clear(older_than=older_than)
        console.print(f"[green]✓[/green] Removed {removed} cache entries")

    except Exception as e:
        console.print(f"[red]✗[/red] Error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    cli()
