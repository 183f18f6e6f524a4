"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.rule import Rule

from zembil import __version__
from zembil.core.zembil import Zembil
from zembil.exceptions import ConfigurationError, NotFoundError, ZembilError
from zembil.models.config import CacheConfig, get_default_cache_dir
from zembil.models.package import PackageManager
from zembil.models.queue import QueueStatus
from zembil.storage.config_manager import ConfigManager
from zembil.utils.formatting import parse_size

from .formatters import (
    format_error_with_suggestions,
    print_cleanup_report,
    print_config,
    print_package_info,
    print_package_table,
    print_queue_status,
    print_queue_table,
    print_stats_panel,
    print_sync_summary,
    print_versions,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("zembil")

app = typer.Typer(
    name="zembil",
    help=(
        "An offline package and documentation cache. Queue packages while online,"
        " sync them, then install them anywhere. Use 'zembil <command> --help' for"
        " more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
queue_app = typer.Typer(help="Manage the download queue.", no_args_is_help=True)
cache_app = typer.Typer(help="Inspect and maintain the package cache.", no_args_is_help=True)
config_app = typer.Typer(help="Show or change configuration.", no_args_is_help=True)
app.add_typer(queue_app, name="queue")
app.add_typer(cache_app, name="cache")
app.add_typer(config_app, name="config")

T = TypeVar("T")

MANAGER_OPTION_HELP = "Package manager: " + ", ".join(m.value for m in PackageManager)


def _cache_dir(ctx: typer.Context) -> Path:
    return ctx.obj["cache_dir"]


def _config_manager(ctx: typer.Context) -> ConfigManager:
    return ConfigManager(_cache_dir(ctx) / "config.ini")


def _load_config(ctx: typer.Context, **overrides: Any) -> CacheConfig:
    return _config_manager(ctx).load_config(overrides)


def _run(
    ctx: typer.Context,
    action: Callable[[Zembil], Awaitable[T]],
    **overrides: Any,
) -> T:
    """Runs an async action against an initialized Zembil, rendering known errors."""

    async def _runner() -> T:
        zembil = Zembil(_load_config(ctx, **overrides))
        try:
            await zembil.initialize()
            return await action(zembil)
        finally:
            await zembil.close()

    try:
        return asyncio.run(_runner())
    except ZembilError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


def _version_callback(value: bool):
    if value:
        console.print(f"[bold]zembil[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (debug output).",
    ),
    cache_dir: Path | None = typer.Option(
        None,
        "--cache-dir",
        "-C",
        help="Cache directory (defaults to $ZEMBIL_HOME or ~/.zembil).",
        file_okay=False,
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        is_eager=True,
        callback=_version_callback,
    ),
):
    """zembil offline package cache"""
    logging.getLogger("zembil").setLevel("DEBUG" if verbose >= 1 else "INFO")
    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = (cache_dir or get_default_cache_dir()).expanduser()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration file."
    ),
):
    """Create the cache directory and a default configuration file."""
    config_manager = _config_manager(ctx)
    if config_manager.config_file_path.exists() and not force:
        console.print(
            f"[yellow]Configuration already exists at "
            f"'{escape(str(config_manager.config_file_path))}'. "
            "Use --force to reset it.[/yellow]"
        )
    else:
        try:
            config_manager.save_config()
        except ConfigurationError as e:
            console.print(format_error_with_suggestions(e))
            raise typer.Exit(code=1) from e
        console.print(
            f"[bold green]✓ Configuration saved to "
            f"'{escape(str(config_manager.config_file_path))}'[/bold green]"
        )

    async def _init(zembil: Zembil):
        return None

    _run(ctx, _init)
    console.print(
        f"[green]✓ Cache ready at '{escape(str(_cache_dir(ctx)))}'.[/green] "
        "Try: [cyan]zembil queue add left-pad 1.3.0 --manager npm[/cyan]"
    )


# --- Queue ---------------------------------------------------------------


@queue_app.command("add")
def queue_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name (groupId:artifactId for maven)."),
    version: str = typer.Argument(..., help="Exact version to download."),
    manager: PackageManager = typer.Option(
        PackageManager.NPM, "--manager", "-m", help=MANAGER_OPTION_HELP
    ),
    priority: int = typer.Option(
        0, "--priority", "-p", help="Higher priorities are downloaded first."
    ),
):
    """Queue a package for the next sync."""

    async def _add(zembil: Zembil) -> str:
        return await zembil.add_to_queue(name, version, manager, priority)

    entry_id = _run(ctx, _add)
    console.print(
        f"[green]✓ Queued {escape(name)}@{escape(version)} ({manager.value})[/green] "
        f"[dim]id {entry_id[:8]}[/dim]"
    )


@queue_app.command("list")
def queue_list(
    ctx: typer.Context,
    status: QueueStatus | None = typer.Option(
        None, "--status", "-s", help="Only show entries with this status."
    ),
):
    """List queued downloads in processing order."""

    async def _list(zembil: Zembil):
        return await zembil.queue.list()

    entries = _run(ctx, _list)
    if status is not None:
        entries = [entry for entry in entries if entry.status == status]
    print_queue_table(entries)


@queue_app.command("remove")
def queue_remove(
    ctx: typer.Context,
    entry_id: str = typer.Argument(..., help="Entry id, or a unique prefix of it."),
):
    """Remove an entry from the queue."""

    async def _remove(zembil: Zembil) -> str:
        matches = [e.id for e in await zembil.queue.list() if e.id.startswith(entry_id)]
        if not matches:
            raise NotFoundError(f"No queue entry matches '{entry_id}'.")
        if len(matches) > 1:
            raise NotFoundError(
                f"'{entry_id}' matches {len(matches)} entries; use a longer prefix."
            )
        await zembil.queue.remove(matches[0])
        return matches[0]

    removed = _run(ctx, _remove)
    console.print(f"[green]✓ Removed queue entry {removed[:8]}.[/green]")


@queue_app.command("clear")
def queue_clear(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Bypass the confirmation prompt."),
):
    """Remove every entry from the queue."""
    if not force and not typer.confirm("Remove all entries from the download queue?"):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _clear(zembil: Zembil):
        await zembil.queue.clear()

    _run(ctx, _clear)
    console.print("[green]✓ Download queue cleared.[/green]")


@queue_app.command("status")
def queue_status(ctx: typer.Context):
    """Show how many entries are in each state."""

    async def _status(zembil: Zembil):
        return await zembil.queue.get_status()

    print_queue_status(_run(ctx, _status))


@queue_app.command("prune")
def queue_prune(
    ctx: typer.Context,
    failed: bool = typer.Option(
        False, "--failed", help="Also remove failed entries."
    ),
):
    """Remove completed (and optionally failed) entries."""
    statuses = [QueueStatus.COMPLETED]
    if failed:
        statuses.append(QueueStatus.FAILED)

    async def _prune(zembil: Zembil) -> int:
        return await zembil.queue.prune(statuses)

    removed = _run(ctx, _prune)
    console.print(f"[green]✓ Pruned {removed} queue entr{'y' if removed == 1 else 'ies'}.[/green]")


# --- Sync & install -------------------------------------------------------


@app.command()
def sync(
    ctx: typer.Context,
    no_docs: bool = typer.Option(
        False, "--no-docs", help="Skip documentation for this sync."
    ),
    no_examples: bool = typer.Option(
        False, "--no-examples", help="Skip examples for this sync."
    ),
):
    """Download every pending package in the queue."""
    overrides = {
        "enable_documentation": False if no_docs else None,
        "enable_examples": False if no_examples else None,
    }

    async def _sync(zembil: Zembil):
        return await zembil.sync()

    console.print("[bold cyan]📦 Starting sync session...[/bold cyan]")
    start_time = time.monotonic()
    result = _run(ctx, _sync, **overrides)
    print_sync_summary(result, time.monotonic() - start_time)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def install(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    version: str | None = typer.Option(
        None, "--version", "-V", help="Exact version (default: highest cached)."
    ),
    manager: PackageManager | None = typer.Option(
        None, "--manager", "-m", help=MANAGER_OPTION_HELP
    ),
    target: Path = typer.Option(
        Path("."), "--target", "-t", help="Directory to install into.", file_okay=False
    ),
):
    """Install a package from the cache, without network access."""

    async def _install(zembil: Zembil) -> Path:
        return await zembil.install(name, target, version, manager)

    _run(ctx, _install)


# --- Cache ----------------------------------------------------------------


@cache_app.command("list")
def cache_list(ctx: typer.Context):
    """List every cached package, newest first."""

    async def _list(zembil: Zembil):
        return await zembil.cache.list()

    print_package_table(_run(ctx, _list))


@cache_app.command("search")
def cache_search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Text to look for in names and descriptions."),
):
    """Search cached packages by name or description."""

    async def _search(zembil: Zembil):
        return await zembil.cache.search(query)

    print_package_table(_run(ctx, _search), title=f"Results for '{escape(query)}'")


@cache_app.command("remove")
def cache_remove(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    version: str = typer.Argument(..., help="Exact version."),
    manager: PackageManager | None = typer.Option(
        None, "--manager", "-m", help=MANAGER_OPTION_HELP
    ),
):
    """Remove a package and its files from the cache."""

    async def _remove(zembil: Zembil) -> bool:
        return await zembil.cache.remove(name, version, manager)

    if _run(ctx, _remove):
        console.print(f"[green]✓ Removed {escape(name)}@{escape(version)} from the cache.[/green]")
    else:
        console.print(f"[yellow]{escape(name)}@{escape(version)} is not cached.[/yellow]")
        raise typer.Exit(code=1)


@cache_app.command("cleanup")
def cache_cleanup(ctx: typer.Context):
    """Delete cached files that no package record refers to."""

    async def _cleanup(zembil: Zembil):
        return await zembil.cache.cleanup()

    print_cleanup_report(_run(ctx, _cleanup))


@cache_app.command("verify")
def cache_verify(
    ctx: typer.Context,
    name: str | None = typer.Argument(None, help="Package name (default: verify all)."),
    version: str | None = typer.Argument(None, help="Exact version."),
):
    """Re-hash cached artifacts and compare them with their recorded checksums."""

    async def _verify(zembil: Zembil) -> list[tuple[str, bool]]:
        records = await zembil.cache.list()
        if name:
            records = [r for r in records if r.name == name and version in (None, r.version)]
            if not records:
                raise NotFoundError(f"Package {name}{'@' + version if version else ''} is not cached.")
        results = []
        for record in records:
            ok = await zembil.cache.verify(record.name, record.version, record.manager)
            results.append((f"{record.spec} ({record.manager.value})", ok))
        return results

    results = _run(ctx, _verify)
    if not results:
        console.print("[dim]No cached packages to verify.[/dim]")
        return
    for label, ok in results:
        mark = "[green]✓[/green]" if ok else "[red]✗ corrupt or missing[/red]"
        console.print(f"  {mark} {escape(label)}")
    if not all(ok for _, ok in results):
        raise typer.Exit(code=1)


@app.command()
def stats(ctx: typer.Context):
    """Show cache and queue statistics."""

    async def _stats(zembil: Zembil):
        return await zembil.get_stats(), await zembil.queue.get_status(), zembil.config

    cache_stats, queue_stats, config = _run(ctx, _stats)
    print_stats_panel(cache_stats, config.max_size, queue_stats)


@app.command()
def vacuum(ctx: typer.Context):
    """Optimize the metadata database."""

    async def _vacuum(zembil: Zembil):
        await zembil.cache.metadata.vacuum()

    console.print("[cyan]Optimizing metadata database...[/cyan]")
    _run(ctx, _vacuum)
    console.print("[green]✓ Database optimized.[/green]")


# --- Reading cached content -------------------------------------------------


@app.command()
def info(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    version: str | None = typer.Option(None, "--version", "-V", help="Exact version."),
    manager: PackageManager | None = typer.Option(
        None, "--manager", "-m", help=MANAGER_OPTION_HELP
    ),
):
    """Show the cached metadata of a package."""

    async def _info(zembil: Zembil):
        record = await zembil.find_cached_package(name, version, manager)
        if record is None:
            raise NotFoundError(f"Package {name} is not cached.")
        return record

    print_package_info(_run(ctx, _info))


@app.command()
def docs(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    version: str | None = typer.Option(None, "--version", "-V", help="Exact version."),
    raw: bool = typer.Option(False, "--raw", help="Print the text without rendering."),
):
    """Read the cached documentation of a package."""

    async def _docs(zembil: Zembil):
        return await zembil.get_documentation(name, version)

    text = _run(ctx, _docs)
    if text is None:
        console.print(f"[yellow]No documentation cached for {escape(name)}.[/yellow]")
        raise typer.Exit(code=1)
    if raw:
        console.print(text, markup=False, highlight=False)
    else:
        console.print(Markdown(text))


@app.command()
def examples(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    version: str | None = typer.Option(None, "--version", "-V", help="Exact version."),
):
    """Read the cached examples of a package."""

    async def _examples(zembil: Zembil):
        return await zembil.get_examples(name, version)

    texts = _run(ctx, _examples)
    if not texts:
        console.print(f"[yellow]No examples cached for {escape(name)}.[/yellow]")
        raise typer.Exit(code=1)
    for index, text in enumerate(texts, start=1):
        console.print(Rule(f"Example {index}"))
        console.print(Markdown(text))


@app.command()
def versions(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    manager: PackageManager = typer.Option(
        PackageManager.NPM, "--manager", "-m", help=MANAGER_OPTION_HELP
    ),
):
    """List the versions a registry publishes for a package (needs network)."""

    async def _versions(zembil: Zembil):
        published = await zembil.list_versions(name, manager)
        cached = {
            r.version
            for r in await zembil.cache.metadata.list_by_name(name)
            if r.manager == manager
        }
        return published, cached

    published, cached = _run(ctx, _versions)
    print_versions(name, published, cached)


# --- Configuration ----------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Display the effective configuration."""
    config_manager = _config_manager(ctx)
    try:
        config = config_manager.load_config()
    except ConfigurationError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    print_config(config_manager.config_file_path, config)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Configuration key, e.g. max_size."),
    value: str = typer.Argument(..., help="New value. Sizes accept units like 5GB."),
):
    """Change a single configuration value."""
    if key == "max_size":
        try:
            value = str(parse_size(value))
        except ValueError as e:
            console.print(f"[red]✗ {escape(str(e))}[/red]")
            raise typer.Exit(code=1) from e
    try:
        config = _config_manager(ctx).set_value(key, value)
    except ConfigurationError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    console.print(f"[green]✓ {key} = {escape(str(getattr(config, key)))}[/green]")
