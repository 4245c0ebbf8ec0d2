"""Archive cache CLI commands for phpext."""

import typer
from rich.console import Console
from rich.table import Table

from cli.phpext.output import print_info, print_success

console = Console()

cache_app = typer.Typer(
    name="cache",
    help="Inspect and clear the downloaded archive cache.",
    no_args_is_help=True,
)


def get_cache():
    """Get the archive cache."""
    from extensions.cache import PackageCache
    from pipeline.config import get_config

    return PackageCache(get_config().paths.cache_path)


@cache_app.command("list")
def list_cache() -> None:
    """List cached archives."""
    cache = get_cache()
    entries = cache.entries()

    if not entries:
        print_info(f"Cache is empty ({cache.root})")
        return

    table = Table(title="Cached Archives")
    table.add_column("Provider", style="green")
    table.add_column("Package", style="cyan")
    table.add_column("Version")
    table.add_column("Size", justify="right")
    table.add_column("SHA-256")

    for entry in entries:
        provider, package, version = entry.key
        table.add_row(provider, package, version, f"{entry.size / 1024:.1f}K", entry.sha256[:16])

    console.print(table)


@cache_app.command("clear")
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove every cached archive."""
    cache = get_cache()
    if not yes and not typer.confirm(f"Remove all archives under {cache.root}?"):
        raise typer.Exit(0)
    removed = cache.clear()
    print_success(f"Removed {removed} cached archives")
