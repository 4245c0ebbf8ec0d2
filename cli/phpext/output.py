"""Rich console output utilities for the phpext CLI."""

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from schemas.install_result import InstallResult, InstallStage, StageStatus

console = Console()
error_console = Console(stderr=True)

# Install stages in order
INSTALL_STAGES = [
    (InstallStage.RESOLVE, "Resolve"),
    (InstallStage.FETCH, "Fetch"),
    (InstallStage.CONFIGURE, "Configure"),
    (InstallStage.BUILD, "Build"),
    (InstallStage.INSTALL, "Install"),
]

# Lines of captured output shown for a failed stage
OUTPUT_TAIL_LINES = 25


def render_stages(result: InstallResult) -> Text:
    """Render the install stages as a single line."""
    statuses = {record.stage: record.status for record in result.stages}
    parts = []
    for i, (stage, label) in enumerate(INSTALL_STAGES):
        status = statuses.get(stage)
        if status == StageStatus.COMPLETED:
            parts.append(f"[green]✓ {label}[/green]")
        elif status == StageStatus.FAILED:
            parts.append(f"[red]✗ {label}[/red]")
        elif status == StageStatus.CANCELLED:
            parts.append(f"[yellow]■ {label}[/yellow]")
        else:
            parts.append(f"[dim]○ {label}[/dim]")

        if i < len(INSTALL_STAGES) - 1:
            parts.append(" [green]→[/green] " if status == StageStatus.COMPLETED else " [dim]→[/dim] ")

    return Text.from_markup("".join(parts))


def print_install_result(result: InstallResult) -> None:
    """Print the outcome of one install, with the failing output tail."""
    console.print(render_stages(result))

    if result.succeeded:
        cached = " [dim](cached archive)[/dim]" if result.from_cache else ""
        print_success(f"{result.extension} {result.version} → {result.artifact_path}{cached}")
        return

    print_error(f"{result.extension}: {result.stage.value} {result.status.value} ({result.error_kind})")
    error_console.print(f"  {result.message}")

    record = result.failed_stage_record
    if record and record.commands:
        error_console.print(f"\n[bold]Reproduce with:[/bold]\n  {record.commands[-1]}")
    if record and record.output:
        tail = "\n".join(record.output.rstrip().splitlines()[-OUTPUT_TAIL_LINES:])
        error_console.print(
            Panel(tail, title=f"{result.stage.value} output (last {OUTPUT_TAIL_LINES} lines)", border_style="red")
        )
    if result.source_path:
        print_info(f"Sources kept for inspection: {result.source_path}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]→[/blue] {message}")


def print_key_value(key: str, value: Any, key_style: str = "bold") -> None:
    """Print a key-value pair."""
    console.print(f"[{key_style}]{key}:[/{key_style}] {value}")


def print_config(config: dict[str, Any]) -> None:
    """Print configuration as a table."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")

    for key, value in sorted(config.items()):
        table.add_row(key, str(value))

    console.print(table)
