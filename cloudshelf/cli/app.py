"""
Typer commands for managing the cloudshelf library and cache.
"""

import asyncio
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from cloudshelf import __version__
from cloudshelf.core.service import CloudCacheService
from cloudshelf.exceptions import CloudShelfError
from cloudshelf.models.config import CacheConfig
from cloudshelf.models.library import SourceType
from cloudshelf.provider.eviction import SubprocessEvictionBackend
from cloudshelf.provider.probe import FileProviderProbe
from cloudshelf.server.audio import start_audio_server
from cloudshelf.storage.config_manager import ConfigManager
from cloudshelf.storage.library import LibraryDatabase
from cloudshelf.utils.formatting import format_size, parse_size

from .formatters import (
    print_cache_stats,
    print_config,
    print_detected_roots,
    print_eviction_result,
    print_prefetch_results,
    print_sources_table,
    print_track_status,
    print_tracks_table,
)

console = Console()

logging.basicConfig(
    level="WARNING",
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
log = logging.getLogger("cloudshelf")

app = typer.Typer(
    name="cloudshelf",
    help=(
        "Keeps a music library on cloud storage within a local disk budget."
        " Use 'cloudshelf <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "cloudshelf"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config() -> CacheConfig:
    return ConfigManager(CONFIG_FILE).load_config()


def _run_with_service(func):
    """Runs an async function with a fully wired service, closing it afterwards."""

    async def _runner():
        async with CloudCacheService(_load_config()) as service:
            return await func(service)

    return asyncio.run(_runner())


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for info, -vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """CloudShelf cache manager CLI"""
    if version:
        console.print(f"[bold]cloudshelf[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "WARNING"
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 1:
        log_level = "INFO"
    logging.getLogger("cloudshelf").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]cloudshelf init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        print_config(CONFIG_FILE, _load_config())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    cloud_dir: str | None = typer.Option(
        None,
        "--cloud-dir",
        help="Folder holding the provider's per-account mounts.",
    ),
    max_size: str | None = typer.Option(
        None, "--max-size", help="Cache budget, e.g. '8G' or '500MB'."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing configuration file."
    ),
):
    """Create a configuration file with default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings: dict[str, object] = {}
    if cloud_dir:
        settings["cloud_storage_dir"] = str(Path(cloud_dir).expanduser())
    if max_size:
        try:
            settings["max_cache_size"] = parse_size(max_size)
        except ValueError as e:
            raise typer.BadParameter(str(e), param_hint="--max-size") from e

    ConfigManager(CONFIG_FILE).save_new_config(settings)
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")

    config = _load_config()
    probe = FileProviderProbe(
        config.cloud_storage_dir,
        prefix=config.provider_prefix,
        suffix=config.provider_suffix,
    )
    roots = probe.detect_cloud_sources()
    if roots:
        console.print(
            f"[green]✓ Found {len(roots)} cloud folder(s); they will be registered"
            " on first use.[/green]"
        )
    else:
        console.print(
            f"[yellow]No cloud folders found under '{config.cloud_storage_dir}'."
            "[/yellow]"
        )
    console.print("Next: [cyan]cloudshelf add <music folder>[/cyan]")


@app.command()
def detect():
    """List cloud provider folders present on this machine."""

    async def _detect(service: CloudCacheService):
        roots = service.detect_cloud_sources()
        registered = {source.root_path for source in await service.list_sources()}
        print_detected_roots(roots, registered)

    _run_with_service(_detect)


@app.command()
def sources():
    """Show registered storage sources, registering new cloud folders first."""

    async def _sources(service: CloudCacheService):
        await service.sync_cloud_sources()
        print_sources_table(await service.list_sources())

    _run_with_service(_sources)


@app.command(name="add-source")
def add_source(
    root_path: str = typer.Argument(..., help="Root folder of the source."),
    label: str | None = typer.Option(None, "--label", "-l", help="Display name."),
    source_type: SourceType | None = typer.Option(
        None,
        "--type",
        "-t",
        case_sensitive=False,
        help="Source type. Detected from the path when omitted.",
    ),
    account: str | None = typer.Option(
        None, "--account", help="Cloud account the folder belongs to."
    ),
):
    """Register a local or cloud storage root."""

    async def _add(service: CloudCacheService):
        source = await service.add_source(root_path, source_type, label, account)
        console.print(
            f"[green]✓ Registered {source.type.value} source[/green] "
            f"[dim]{source.root_path}[/dim] ({source.id})"
        )

    _run_with_service(_add)


@app.command(name="remove-source")
def remove_source(source_id: str = typer.Argument(..., help="ID of the source.")):
    """Unregister a storage source. Its tracks stay in the library."""

    async def _remove(service: CloudCacheService):
        return await service.remove_source(source_id)

    if not _run_with_service(_remove):
        console.print(f"[red]✗ No storage source with id '{source_id}'.[/red]")
        raise typer.Exit(code=1)
    console.print("[green]✓ Storage source removed.[/green]")


@app.command()
def add(
    paths: list[str] = typer.Argument(  # noqa: B008
        ..., help="Audio files or folders to add to the library."
    ),
):
    """Add audio files to the library."""

    async def _add(service: CloudCacheService):
        await service.sync_cloud_sources()
        return await service.add_tracks(paths)

    added = _run_with_service(_add)
    if not added:
        console.print("[yellow]No audio files were added.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Added {len(added)} tracks to the library.[/green]")


@app.command()
def tracks():
    """List library tracks and where their data lives."""

    async def _tracks(service: CloudCacheService):
        return await service.library.get_tracks()

    print_tracks_table(_run_with_service(_tracks))


@app.command()
def stats():
    """Show cache usage against the configured budget."""

    async def _stats(service: CloudCacheService):
        return await service.get_cache_stats()

    print_cache_stats(_run_with_service(_stats))


@app.command(name="set-limit")
def set_limit(
    size: str = typer.Argument(..., help="New cache budget, e.g. '8G' or '500MB'."),
):
    """Change the cache budget and apply it right away."""
    try:
        max_size = parse_size(size)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="SIZE") from e

    ConfigManager(CONFIG_FILE).update_setting("max_cache_size", max_size)
    console.print(f"[green]✓ Cache limit set to {format_size(max_size)}.[/green]")

    async def _apply(service: CloudCacheService):
        service.set_cache_limit(max_size)
        return await service.evict_cache()

    print_eviction_result(_run_with_service(_apply))


@app.command()
def pin(track_id: str = typer.Argument(..., help="ID of the track.")):
    """Keep a track on disk regardless of the cache budget."""

    async def _pin(service: CloudCacheService):
        await service.pin_track(track_id)

    _run_with_service(_pin)
    console.print(f"[green]✓ Pinned {track_id}.[/green]")


@app.command()
def unpin(track_id: str = typer.Argument(..., help="ID of the track.")):
    """Make a pinned track evictable again."""

    async def _unpin(service: CloudCacheService):
        await service.unpin_track(track_id)

    _run_with_service(_unpin)
    console.print(f"[green]✓ Unpinned {track_id}.[/green]")


@app.command()
def evict():
    """Run one eviction sweep now."""

    async def _evict(service: CloudCacheService):
        return await service.evict_cache()

    print_eviction_result(_run_with_service(_evict))


@app.command(name="download")
def download_command(track_id: str = typer.Argument(..., help="ID of the track.")):
    """Download a cloud-only track and wait until it is on disk."""

    async def _download(service: CloudCacheService):
        return await service.request_track_download(track_id)

    with console.status(f"[cyan]Downloading {track_id}...[/cyan]"):
        available = _run_with_service(_download)
    if not available:
        console.print(f"[red]✗ Track {track_id} is not available yet.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Track {track_id} is available.[/green]")


@app.command()
def prefetch(
    track_ids: list[str] = typer.Argument(  # noqa: B008
        ..., help="IDs of the tracks to fetch ahead of playback."
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Wait until the downloads have finished."
    ),
):
    """Start downloads for upcoming tracks."""

    async def _prefetch(service: CloudCacheService):
        results = await service.prefetch_tracks(track_ids)
        if wait:
            await service.downloads.wait_all()
        return results

    print_prefetch_results(_run_with_service(_prefetch))


@app.command()
def status(track_id: str = typer.Argument(..., help="ID of the track.")):
    """Show whether a track is on disk, downloading or cloud-only."""

    async def _status(service: CloudCacheService):
        return await service.get_track_status(track_id)

    print_track_status(track_id, _run_with_service(_status))


@app.command()
def fetch(
    path: str = typer.Argument(..., help="Absolute path of a file to materialize."),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Seconds to wait (defaults to read_timeout)."
    ),
):
    """Make a file available on disk, failing if it does not arrive in time."""
    file_path = str(Path(path).expanduser().absolute())

    async def _fetch(service: CloudCacheService):
        await service.ensure_materialized(file_path, timeout)

    with console.status(f"[cyan]Waiting for {Path(file_path).name}...[/cyan]"):
        _run_with_service(_fetch)
    console.print(f"[green]✓ Available:[/green] {file_path}")


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Interface to bind."),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind."),
):
    """Run the cache service with the local audio server until interrupted."""

    async def _serve(service: CloudCacheService):
        result = await service.start()
        if result.evicted:
            print_eviction_result(result)
        runner, bound_port = await start_audio_server(
            service,
            host or service.config.server_host,
            port if port is not None else service.config.server_port,
        )
        console.print(
            f"[bold cyan]Serving on http://{host or service.config.server_host}:"
            f"{bound_port}[/bold cyan] [dim](Ctrl+C to stop)[/dim]"
        )
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    _run_with_service(_serve)


@app.command()
def vacuum():
    """Optimize the library database."""

    async def _vacuum(service: CloudCacheService):
        console.print("[cyan]Optimizing library database...[/cyan]")
        return await service.library.vacuum()

    if _run_with_service(_vacuum):
        console.print("[green]✓ Database optimized.[/green]")
    else:
        console.print("[red]✗ Optimization failed.[/red]")


@app.command()
def diagnose():
    """Diagnose common configuration and provider issues."""
    console.print("\n[bold cyan]Running diagnostics...[/bold cyan]\n")
    issues_found = False
    if CONFIG_FILE.is_file():
        console.print(f"[green]✓[/] Config file exists at: [dim]{CONFIG_FILE}[/dim]")
    else:
        console.print(
            "[red]✗ Config file not found.[/] Run [cyan]cloudshelf init[/cyan]."
        )
        raise typer.Exit(code=1)

    try:
        config = _load_config()
        console.print("[green]✓[/] Configuration file is valid and can be loaded.")
    except CloudShelfError as e:
        console.print(f"[red]✗ Configuration validation failed: {e}[/red]")
        raise typer.Exit(code=1) from e

    if os.path.isdir(config.cloud_storage_dir):
        console.print(
            f"[green]✓[/] Cloud storage folder exists: [dim]{config.cloud_storage_dir}[/dim]"
        )
    else:
        console.print(
            f"[red]✗ Cloud storage folder missing:[/] {config.cloud_storage_dir}"
        )
        issues_found = True

    probe = FileProviderProbe(
        config.cloud_storage_dir,
        prefix=config.provider_prefix,
        suffix=config.provider_suffix,
    )
    roots = probe.detect_cloud_sources()
    if roots:
        for root in roots:
            console.print(f"[green]✓[/] {config.provider_name} account: {root.account}")
    else:
        console.print(
            f"[yellow]⚠ No {config.provider_name} folders found.[/yellow]"
        )
        issues_found = True

    helper_path = SubprocessEvictionBackend(config.evict_helper).resolve_helper()
    if helper_path:
        console.print(f"[green]✓[/] Eviction helper found: [dim]{helper_path}[/dim]")
    else:
        console.print(
            f"[red]✗ Eviction helper '{config.evict_helper}' not found.[/] "
            "Cached files cannot be released."
        )
        issues_found = True

    try:
        LibraryDatabase(config.library_path)
        console.print(
            f"[green]✓[/] Library database is usable: [dim]{config.library_path}[/dim]"
        )
    except CloudShelfError as e:
        console.print(f"[red]✗ {e}[/red]")
        issues_found = True

    console.print()
    if not issues_found:
        console.print(
            "[bold green]✓ All checks passed! Your setup looks good.[/bold green]\n"
        )
    else:
        console.print(
            "[bold red]✗ Some issues were found. "
            "Please review the messages above.[/bold red]\n"
        )
        raise typer.Exit(code=1)
