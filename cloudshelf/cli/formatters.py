"""
Rich renderers for cloudshelf command output and error panels.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cloudshelf.models.config import CacheConfig
from cloudshelf.models.library import (
    CacheStats,
    CloudRoot,
    EvictionResult,
    StorageSource,
    SyncStatus,
    Track,
)
from cloudshelf.utils.formatting import format_size


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `cloudshelf init` to create a configuration file.",
            "• Check the values with `cloudshelf --show-config`.",
        ],
        "MaterializationTimeoutError": [
            "• The cloud provider may be offline or paused.",
            "• Check that the sync client is running and signed in.",
            "• Retry later, or raise `read_timeout` in the configuration.",
        ],
        "TrackNotFoundError": [
            "• List the library with `cloudshelf tracks`.",
            "• Add files with `cloudshelf add <path>`.",
        ],
        "DuplicateSourceError": [
            "• List registered sources with `cloudshelf sources`.",
            "• Remove the old one first with `cloudshelf remove-source <id>`.",
        ],
        "LibraryError": [
            "• Check that the database directory is writable.",
            "• Set `database_path` in the configuration to another location.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
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
    """Displays the current configuration."""
    console = Console()
    content = ""
    for key in sorted(CacheConfig.get_ini_keys()):
        value = getattr(config, key)
        if key == "max_cache_size":
            value = f"{value} ({format_size(value)})"
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_cache_stats(stats: CacheStats):
    """Displays cache usage against the budget."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column(justify="right")

    usage_color = "green"
    if stats.usage_ratio > 1:
        usage_color = "red"
    elif stats.usage_ratio > 0.9:
        usage_color = "yellow"

    table.add_row("Total Tracks:", str(stats.total_tracks))
    table.add_row("Cached Tracks:", str(stats.cached_tracks))
    table.add_row("Cloud-only Tracks:", str(stats.cloud_only_tracks))
    table.add_row("Pinned Tracks:", str(stats.pinned_tracks))
    table.add_row(
        "Cache Usage:",
        f"[{usage_color}]{format_size(stats.cached_bytes)}[/{usage_color}]"
        f" / {format_size(stats.max_size_bytes)}"
        f" ({stats.usage_ratio:.0%})",
    )
    table.add_row("Pinned Size:", format_size(stats.pinned_bytes))

    console.print(
        Panel(table, title="[bold]Cache Statistics[/bold]", border_style="cyan", expand=False)
    )


def print_sources_table(sources: list[StorageSource]):
    """Displays registered storage sources."""
    console = Console()
    if not sources:
        console.print("[yellow]No storage sources registered.[/yellow]")
        return

    table = Table(title="Storage Sources", box=box.ROUNDED)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Type", style="cyan")
    table.add_column("Label")
    table.add_column("Root Path", style="dim")
    table.add_column("Added", style="dim")
    for source in sources:
        table.add_row(
            source.id,
            source.type.value,
            source.label or "-",
            source.root_path,
            source.added_at or "-",
        )
    console.print(table)


def print_detected_roots(roots: list[CloudRoot], registered: set[str]):
    """Displays cloud provider folders found on disk."""
    console = Console()
    if not roots:
        console.print("[yellow]No cloud storage folders detected.[/yellow]")
        return

    table = Table(title="Detected Cloud Folders", box=box.ROUNDED)
    table.add_column("Account", style="cyan")
    table.add_column("Path", style="dim")
    table.add_column("Registered", justify="center")
    for root in roots:
        mark = "[green]✓[/green]" if root.path in registered else "[dim]✗[/dim]"
        table.add_row(root.account, root.path, mark)
    console.print(table)


def print_eviction_result(result: EvictionResult):
    console = Console()
    if result.evicted == 0:
        console.print("[green]✓ Cache is within budget; nothing evicted.[/green]")
        return
    console.print(
        f"[green]✓ Evicted {result.evicted} files, "
        f"freed {format_size(result.freed_bytes)}.[/green]"
    )


def print_track_status(track_id: str, status: dict[str, Any]):
    """Displays where a single track's data currently lives."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Track:", track_id)
    table.add_row("File:", f"[dim]{status['file_path']}[/dim]")
    table.add_row("Sync Status:", str(status["sync_status"]))
    table.add_row(
        "Available:", "[green]✓ Yes[/green]" if status["available"] else "[yellow]✗ No[/yellow]"
    )
    table.add_row("Downloading:", "Yes" if status["downloading"] else "No")
    table.add_row("Pinned:", "Yes" if status["pinned"] else "No")
    console.print(table)


def print_prefetch_results(results: dict[str, str]):
    console = Console()
    colors = {"cached": "green", "local": "green", "downloading": "cyan", "not_found": "red"}
    for track_id, state in results.items():
        color = colors.get(state, "white")
        console.print(f"  [{color}]{state:<12}[/{color}] {track_id}")


def print_tracks_table(tracks: list[Track]):
    """Displays library tracks with their cache state."""
    console = Console()
    if not tracks:
        console.print("[yellow]The library is empty.[/yellow]")
        return

    status_colors = {
        SyncStatus.LOCAL: "white",
        SyncStatus.CACHED: "green",
        SyncStatus.DOWNLOADING: "cyan",
        SyncStatus.CLOUD_ONLY: "yellow",
    }
    table = Table(title=f"Library ({len(tracks)} tracks)", box=box.ROUNDED)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Status")
    table.add_column("Pin", justify="center")
    table.add_column("Size", justify="right")
    table.add_column("Last Accessed", style="dim")
    table.add_column("File")
    for track in tracks:
        color = status_colors.get(track.sync_status, "white")
        table.add_row(
            track.id,
            f"[{color}]{track.sync_status.value}[/{color}]",
            "📌" if track.pinned else "",
            format_size(track.file_size),
            track.last_accessed or "-",
            Path(track.file_path).name,
        )
    console.print(table)
