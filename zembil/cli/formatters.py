"""
Functions for formatting and displaying data in the console using Rich.
"""

from collections.abc import Sequence
from pathlib import Path

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from zembil.models.config import CacheConfig
from zembil.models.package import PackageRecord
from zembil.models.queue import QueueEntry, QueueStats, QueueStatus
from zembil.models.stats import CacheStats, CleanupReport, SyncResult
from zembil.utils.formatting import format_duration, format_size, format_timestamp

STATUS_STYLES = {
    QueueStatus.PENDING: "yellow",
    QueueStatus.DOWNLOADING: "cyan",
    QueueStatus.COMPLETED: "green",
    QueueStatus.FAILED: "red",
    QueueStatus.CANCELLED: "dim",
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "NotFoundError": [
            "• Check the package name and version for typos.",
            "• List what is cached with `zembil cache list`.",
            "• Queue the package with `zembil queue add` and run `zembil sync`.",
        ],
        "UnsupportedManagerError": [
            "• Supported package managers are npm, pip and maven.",
            "• Pass the manager explicitly with `--manager`.",
        ],
        "DuplicateError": [
            "• The package is already waiting in the queue.",
            "• Inspect the queue with `zembil queue list`.",
        ],
        "StorageError": [
            "• Check free disk space and permissions of the cache directory.",
            "• Run `zembil cache cleanup` to reclaim orphaned files.",
        ],
        "UpstreamError": [
            "• The package registry may be temporarily unavailable.",
            "• Check your internet connection and try again later.",
        ],
        "ConfigurationError": [
            "• Review the file with `zembil config show`.",
            "• Recreate a default configuration with `zembil init --force`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -v for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config: CacheConfig):
    """Displays the effective configuration."""
    console = Console()
    content = f"cache_dir = {config.cache_dir}\n"
    for key in sorted(CacheConfig.get_ini_keys()):
        value = getattr(config, key)
        if key == "max_size":
            value = f"{value} ({format_size(value)})"
        content += f"{key} = {value}\n"

    source = config_path if config_path.is_file() else f"{config_path}, not created yet"
    console.print(
        Panel(
            escape(content.strip()),
            title=f"Configuration ([dim]{escape(str(source))}[/dim])",
            border_style="cyan",
        )
    )


def print_queue_table(entries: Sequence[QueueEntry]):
    """Displays queue entries in processing order."""
    console = Console()
    if not entries:
        console.print("[dim]The download queue is empty.[/dim]")
        return

    table = Table(title="Download Queue", box=box.ROUNDED)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Package", style="cyan")
    table.add_column("Manager")
    table.add_column("Priority", justify="right")
    table.add_column("Status")
    table.add_column("Queued")
    table.add_column("Error", style="red")

    for entry in entries:
        style = STATUS_STYLES.get(entry.status, "white")
        table.add_row(
            entry.id[:8],
            escape(entry.spec),
            entry.manager.value,
            str(entry.priority),
            f"[{style}]{entry.status.value}[/{style}]",
            format_timestamp(entry.queued_at),
            escape(entry.error or ""),
        )
    console.print(table)


def print_queue_status(stats: QueueStats):
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column(justify="right")
    table.add_row("Pending:", f"[yellow]{stats.pending}[/yellow]")
    table.add_row("Downloading:", f"[cyan]{stats.downloading}[/cyan]")
    table.add_row("Completed:", f"[green]{stats.completed}[/green]")
    table.add_row("Failed:", f"[red]{stats.failed}[/red]")
    table.add_row("Total:", str(stats.total))
    console.print(Panel(table, title="[bold]Queue Status[/bold]", expand=False))


def print_package_table(records: Sequence[PackageRecord], title: str = "Cached Packages"):
    """Displays cached package records."""
    console = Console()
    if not records:
        console.print("[dim]No cached packages found.[/dim]")
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Package", style="cyan")
    table.add_column("Version")
    table.add_column("Manager")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Docs", justify="center")
    table.add_column("Examples", justify="center")
    table.add_column("Cached")

    for record in records:
        table.add_row(
            escape(record.name),
            escape(record.version),
            record.manager.value,
            format_size(record.size),
            "✓" if record.docs_path else "",
            "✓" if record.examples_path else "",
            format_timestamp(record.cached_at),
        )
    console.print(table)


def print_package_info(record: PackageRecord):
    """Displays the full metadata of one cached package."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Manager:", record.manager.value)
    if record.description:
        table.add_row("Description:", escape(record.description))
    if record.license:
        table.add_row("License:", escape(record.license))
    if record.homepage:
        table.add_row("Homepage:", escape(record.homepage))
    if record.repository:
        table.add_row("Repository:", escape(record.repository))
    table.add_row("Size:", format_size(record.size))
    table.add_row("Checksum:", f"[dim]sha256:{record.checksum}[/dim]")
    table.add_row("Cached:", format_timestamp(record.cached_at))
    table.add_row("Artifact:", f"[dim]{escape(record.artifact_path)}[/dim]")
    table.add_row("Documentation:", "✓ Cached" if record.docs_path else "✗ None")
    table.add_row("Examples:", "✓ Cached" if record.examples_path else "✗ None")

    for label, dependencies in (
        ("Dependencies:", record.dependencies),
        ("Dev Dependencies:", record.dev_dependencies),
        ("Peer Dependencies:", record.peer_dependencies),
    ):
        if dependencies:
            table.add_row(
                label,
                escape("\n".join(f"{n} {v}" for n, v in sorted(dependencies.items()))),
            )

    console.print(
        Panel(
            table,
            title=f"[bold]{escape(record.spec)}[/bold]",
            border_style="cyan",
            expand=False,
        )
    )


def print_sync_summary(result: SyncResult, duration_s: float):
    """Displays the final summary of a sync pass."""
    console = Console()

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=16)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Cached:", f"[bold green]{result.downloaded}[/bold green]")
    if result.failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{result.failed}[/bold red]")
    stats_table.add_row("", "")
    stats_table.add_row("Total Size:", f"[cyan]{format_size(result.total_size)}[/cyan]")
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if result.errors:
        stats_table.add_row("", "")
        stats_table.add_row(
            "Errors:", "\n".join(f"[red]{escape(error)}[/red]" for error in result.errors)
        )

    if result.success:
        title = "📦 [bold]Sync Complete![/bold]"
    else:
        title = "⚠ [bold]Sync Finished With Errors[/bold]"
    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style="green" if result.success else "yellow",
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()


def print_stats_panel(stats: CacheStats, max_size: int, queue_stats: QueueStats | None = None):
    """Displays cache statistics against the configured size limit."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    usage = stats.total_size / max_size * 100 if max_size else 0
    usage_style = "red" if usage > 100 else "yellow" if usage > 80 else "green"

    table.add_row("Packages:", f"[green]{stats.total_packages}[/green]")
    table.add_row(
        "Total Size:",
        f"{format_size(stats.total_size)} of {format_size(max_size)} "
        f"([{usage_style}]{usage:.1f}%[/{usage_style}])",
    )
    if stats.total_packages:
        table.add_row("Oldest:", format_timestamp(stats.oldest_cache))
        table.add_row("Newest:", format_timestamp(stats.newest_cache))
    if queue_stats is not None:
        table.add_row(
            "Queue:",
            f"{queue_stats.pending} pending, {queue_stats.failed} failed, "
            f"{queue_stats.completed} completed",
        )

    console.print(Panel(table, title="[bold]Cache Statistics[/bold]", expand=False))


def print_cleanup_report(report: CleanupReport):
    console = Console()
    if not report.total:
        console.print("[green]✓ Cache is consistent. Nothing to clean up.[/green]")
        return
    console.print(
        f"[green]✓ Removed {report.total} orphaned entries[/green] "
        f"[dim]({report.artifacts_removed} artifacts, {report.docs_removed} docs, "
        f"{report.examples_removed} examples, {report.partials_removed} partial copies)"
        "[/dim]"
    )


def print_versions(name: str, versions: Sequence[str], cached: set[str]):
    """Lists published versions, marking the ones already in the cache."""
    console = Console()
    if not versions:
        console.print(f"[yellow]No published versions found for {escape(name)}.[/yellow]")
        return
    table = Table(title=f"Versions of {escape(name)}", box=box.SIMPLE)
    table.add_column("Version", style="cyan")
    table.add_column("Cached", justify="center")
    for version in versions:
        table.add_row(escape(version), "[green]✓[/green]" if version in cached else "")
    console.print(table)
