"""phpext CLI.

Main command-line interface for building PHP extensions.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.panel import Panel
from rich.table import Table

from cli.phpext.output import (
    console,
    print_error,
    print_info,
    print_success,
    print_warning,
)

app = typer.Typer(
    name="phpext",
    help="phpext - build and install PHP extensions for installed runtimes",
    no_args_is_help=True,
)

# Config sub-app
config_app = typer.Typer(
    name="config",
    help="Manage configuration settings.",
)
app.add_typer(config_app, name="config")

# Register command sub-apps
from cli.commands.cache import cache_app
from cli.commands.extensions import extensions_app

app.add_typer(extensions_app, name="ext")
app.add_typer(cache_app, name="cache")


@app.callback()
def main_callback(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to phpext.toml (default: search upwards from cwd)",
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show debug logs"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show warnings and errors"),
) -> None:
    """Load configuration and set up logging."""
    from pipeline.config import get_config, reload_config

    if config_file is not None:
        if not config_file.exists():
            print_error(f"Config file not found: {config_file}")
            raise typer.Exit(1)
        config = reload_config(config_file)
    else:
        config = get_config()

    level = config.log_level.upper()
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "WARNING"

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.command()
def status() -> None:
    """Show environment status.

    Displays configured paths, the active runtime and available runtimes.
    """
    from extensions.runtime import list_runtimes
    from pipeline.config import find_config_file, get_config

    console.print(Panel("[bold]phpext Status[/bold]", border_style="cyan"))

    config_path = find_config_file()
    if config_path:
        print_info(f"Config file: {config_path}")
    else:
        print_warning("No phpext.toml found (using defaults)")

    config = get_config()

    console.print("\n[bold]Paths[/bold]")
    print_info(f"Runtimes: {config.paths.runtimes_path}")
    print_info(f"Cache: {config.paths.cache_path}")
    print_info(f"Build: {config.paths.build_path}")

    console.print("\n[bold]Runtimes[/bold]")
    runtimes = list_runtimes(config.paths.runtimes_path)
    if not runtimes:
        print_warning("No runtimes found")
    for name in runtimes:
        marker = " [green](active)[/green]" if name == config.runtime.active else ""
        console.print(f"  - {name}{marker}")
    if not config.runtime.active:
        print_info("No active runtime (set PHPEXT_RUNTIME or [runtime] active)")


@config_app.command("show")
def config_show(
    section: Optional[str] = typer.Argument(
        None,
        help="Config section to show (paths, fetch, build, providers, runtime, recipes)",
    ),
) -> None:
    """Show current configuration.

    Examples:
        phpext config show
        phpext config show build
    """
    from pipeline.config import find_config_file, get_config

    config_path = find_config_file()
    if config_path:
        print_info(f"Config file: {config_path}")
    else:
        print_warning("No phpext.toml found (using defaults)")

    config = get_config()
    section_map = {
        "paths": config.paths,
        "fetch": config.fetch,
        "build": config.build,
        "providers": config.providers,
        "runtime": config.runtime,
        "recipes": config.recipes,
    }

    if section:
        section_lower = section.lower()
        if section_lower not in section_map:
            print_error(f"Unknown section: {section}")
            print_info(f"Available: {', '.join(section_map.keys())}")
            raise typer.Exit(1)
        sections = [(section_lower, section_map[section_lower])]
    else:
        sections = list(section_map.items())

    for name, section_config in sections:
        console.print(f"\n[bold][{name}][/bold]")
        table = Table(show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in vars(section_config).items():
            if key == "github_token" and value:
                value = "********"
            table.add_row(key, str(value))
        console.print(table)


@config_app.command("init")
def config_init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing phpext.toml",
    ),
) -> None:
    """Create a default phpext.toml file.

    Example:
        phpext config init
        phpext config init --force
    """
    from pipeline.config import CONFIG_FILENAME

    config_path = Path.cwd() / CONFIG_FILENAME

    if config_path.exists() and not force:
        print_warning(f"Config file already exists: {config_path}")
        print_info("Use --force to overwrite")
        raise typer.Exit(1)

    default_config = '''# phpext configuration
# Auto-generated by 'phpext config init'

log_level = "INFO"

[paths]
# Runtimes live under <home>/php/<version>
home = "~/.phpext"

[runtime]
# Version directory under <home>/php, e.g. "8.2"
active = ""

[fetch]
timeout = 60
retries = 3

[build]
# 0 = number of CPUs
jobs = 0
configure_timeout = 600
build_timeout = 1800
keep_source = false

[providers]
default = "pecl"
pecl_url = "https://pecl.php.net"

[recipes]
# Extra recipes (YAML with a `recipes:` list)
file = ""
builtin = true
'''

    config_path.write_text(default_config)
    print_success(f"Created config file: {config_path}")


@app.command()
def version() -> None:
    """Show phpext version."""
    from cli.phpext import __version__

    console.print(f"phpext v{__version__}")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
