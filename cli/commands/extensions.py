"""Extension CLI commands for phpext.

Build, install and manage extensions of an installed PHP runtime.
"""

from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from cli.phpext.output import (
    print_error,
    print_info,
    print_install_result,
    print_success,
)

console = Console()

extensions_app = typer.Typer(
    name="ext",
    help="Build, install and manage runtime extensions.",
    no_args_is_help=True,
)

RUNTIME_OPTION = typer.Option(
    None,
    "--runtime",
    "-r",
    help="Runtime version (default: the active runtime)",
)


def get_runtime(version: Optional[str]):
    """Resolve the target runtime, defaulting to the active one."""
    from extensions.runtime import RuntimeNotFoundError, TargetRuntime
    from pipeline.config import get_config

    config = get_config()
    try:
        if version:
            return TargetRuntime.discover(config.paths.runtimes_path, version)
        return TargetRuntime.active(config)
    except RuntimeNotFoundError as e:
        print_error(str(e))
        raise typer.Exit(1)


def get_manager():
    """Get extension manager."""
    from extensions.errors import RecipeError
    from extensions.installer import ExtensionManager

    try:
        return ExtensionManager()
    except RecipeError as e:
        print_error(f"Cannot load recipes: {e}")
        raise typer.Exit(1)


@extensions_app.command("install")
def install(
    names: List[str] = typer.Argument(..., help="Extension name(s), e.g. apcu xdebug"),
    version: Optional[str] = typer.Option(
        None,
        "--version",
        "-v",
        help="Version, 'latest', 'stable' or a VCS ref",
    ),
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Provider: pecl|github|bitbucket|local",
    ),
    package: Optional[str] = typer.Option(
        None,
        "--package",
        help="Upstream package (owner/repo or a local path)",
    ),
    runtime: Optional[str] = RUNTIME_OPTION,
    with_options: List[str] = typer.Option(
        [],
        "--with",
        "-w",
        help="Extra ./configure option (repeatable), e.g. --with=--enable-apcu-debug",
    ),
    jobs: Optional[int] = typer.Option(None, "--jobs", "-j", help="Parallel make jobs"),
    force_fetch: bool = typer.Option(
        False,
        "--force-fetch",
        help="Ignore the cached archive and download again",
    ),
    keep_source: bool = typer.Option(
        False,
        "--keep-source",
        help="Keep extracted sources after a successful build",
    ),
) -> None:
    """Build and install extensions into a runtime.

    Examples:
        phpext ext install apcu
        phpext ext install xdebug --version 3.3.1 -r 8.2
        phpext ext install swoole --provider github --package swoole/swoole-src -v master
    """
    from extensions.installer import InstallOptions, InstallRequest

    target = get_runtime(runtime)
    manager = get_manager()
    options = InstallOptions(
        version=version,
        provider=provider,
        package=package,
        configure_options=list(with_options),
        jobs=jobs,
        force_fetch=force_fetch,
        keep_source=keep_source or None,
    )

    failed = 0
    if len(names) == 1:
        results = [manager.install_extension(names[0], target, options)]
    else:
        if package:
            print_error("--package applies to a single extension")
            raise typer.Exit(1)
        requests = [InstallRequest(name, target, options) for name in names]
        results = manager.install_many(requests)

    for result in results:
        print_install_result(result)
        if not result.succeeded:
            failed += 1

    if failed:
        raise typer.Exit(1)


@extensions_app.command("list")
def list_extensions(runtime: Optional[str] = RUNTIME_OPTION) -> None:
    """List extensions registered with a runtime.

    Examples:
        phpext ext list
        phpext ext list -r 8.1
    """
    target = get_runtime(runtime)
    entries = get_manager().list_installed(target)

    if not entries:
        console.print(f"[yellow]No extensions installed for {target.version}[/yellow]")
        console.print("[dim]Install extensions with: phpext ext install <name>[/dim]")
        return

    table = Table(title=f"Extensions for PHP {target.version}")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Type", style="green")
    table.add_column("Enabled")
    table.add_column("Provider")
    table.add_column("Installed")

    for entry in entries:
        table.add_row(
            entry.name,
            entry.version,
            "zend" if entry.zend else "extension",
            "[green]yes[/green]" if entry.enabled else "[dim]no[/dim]",
            entry.provider,
            entry.installed_at[:19],
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(entries)} extensions[/dim]")


@extensions_app.command("show")
def show(
    name: str = typer.Argument(..., help="Extension name"),
    runtime: Optional[str] = RUNTIME_OPTION,
) -> None:
    """Show details of an installed extension."""
    target = get_runtime(runtime)
    entry = get_manager().get_installed(name, target)

    if not entry:
        print_error(f"Extension '{name}' is not installed for {target.version}")
        raise typer.Exit(1)

    console.print(f"\n[bold cyan]{entry.name}[/bold cyan] v{entry.version}")
    console.print(f"  Artifact: {entry.artifact}")
    console.print(f"  Load as: {'zend_extension' if entry.zend else 'extension'}")
    console.print(f"  Enabled: {entry.enabled}")
    console.print(f"  Provider: {entry.provider}")
    console.print(f"  Installed: {entry.installed_at}")
    if entry.ini_settings:
        console.print("\n[bold]Settings[/bold]")
        for key, value in entry.ini_settings.items():
            console.print(f"  {key} = {value}")


@extensions_app.command("enable")
def enable(
    name: str = typer.Argument(..., help="Extension name to enable"),
    runtime: Optional[str] = RUNTIME_OPTION,
) -> None:
    """Enable a disabled extension."""
    target = get_runtime(runtime)
    if get_manager().enable(name, target):
        print_success(f"Enabled extension: {name}")
    else:
        print_error(f"Extension '{name}' not found")
        raise typer.Exit(1)


@extensions_app.command("disable")
def disable(
    name: str = typer.Argument(..., help="Extension name to disable"),
    runtime: Optional[str] = RUNTIME_OPTION,
) -> None:
    """Disable an extension without uninstalling."""
    target = get_runtime(runtime)
    if get_manager().disable(name, target):
        print_success(f"Disabled extension: {name}")
    else:
        print_error(f"Extension '{name}' not found")
        raise typer.Exit(1)


@extensions_app.command("uninstall")
def uninstall(
    name: str = typer.Argument(..., help="Extension name to uninstall"),
    runtime: Optional[str] = RUNTIME_OPTION,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip confirmation",
    ),
) -> None:
    """Uninstall an extension."""
    target = get_runtime(runtime)
    manager = get_manager()

    entry = manager.get_installed(name, target)
    if not entry:
        print_error(f"Extension '{name}' is not installed")
        raise typer.Exit(1)

    if not yes:
        if not typer.confirm(f"Uninstall {name} v{entry.version} from PHP {target.version}?"):
            raise typer.Exit(0)

    if manager.uninstall(name, target):
        print_success(f"Uninstalled: {name}")
    else:
        print_error(f"Failed to uninstall: {name}")
        raise typer.Exit(1)


@extensions_app.command("clean")
def clean(
    name: Optional[str] = typer.Argument(None, help="Extension name (omit for all)"),
) -> None:
    """Remove work directories left by failed builds."""
    removed = get_manager().clean(name)
    print_info(f"Removed {removed} work directories")


@extensions_app.command("recipes")
def recipes() -> None:
    """List known build recipes."""
    factory = get_manager().factory

    table = Table(title="Build Recipes")
    table.add_column("Name", style="cyan")
    table.add_column("Provider")
    table.add_column("Package")
    table.add_column("Runtime")
    table.add_column("Configure options")

    for recipe in factory.recipes():
        bounds = f"{recipe.min_runtime or '*'} - {recipe.max_runtime or '*'}"
        table.add_row(
            recipe.name + (" [dim](zend)[/dim]" if recipe.zend else ""),
            recipe.provider,
            recipe.package,
            bounds,
            " ".join(recipe.configure_options) or "-",
        )

    console.print(table)
    console.print("[dim]Extensions without a recipe are built with the generic recipe.[/dim]")
