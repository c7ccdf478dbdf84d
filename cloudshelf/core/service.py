"""
The process-wide service object tying the probe, source registry, download
coordinator and cache manager together. One instance is created at startup and
shared by the CLI, the audio server and any other front end.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path

import aiofiles

from cloudshelf.exceptions import MaterializationTimeoutError, TrackNotFoundError
from cloudshelf.models.config import CacheConfig
from cloudshelf.models.library import (
    CacheStats,
    CloudRoot,
    EvictionResult,
    SourceType,
    StorageSource,
    SyncStatus,
    Track,
)
from cloudshelf.provider.downloader import DownloadCoordinator
from cloudshelf.provider.eviction import EvictionBackend, SubprocessEvictionBackend
from cloudshelf.provider.probe import FileProviderProbe, MaterializationProbe
from cloudshelf.storage.cache import CacheManager
from cloudshelf.storage.library import LibraryDatabase
from cloudshelf.storage.sources import SourceRegistry, select_owning_source

log = logging.getLogger(__name__)

AUDIO_EXTENSIONS = frozenset(
    {".mp3", ".flac", ".m4a", ".aac", ".ogg", ".opus", ".wav", ".aiff", ".aif", ".alac", ".wma"}
)


class CloudCacheService:
    """Owns all shared cache state and exposes the operations front ends need."""

    def __init__(
        self,
        config: CacheConfig,
        library: LibraryDatabase | None = None,
        probe: MaterializationProbe | None = None,
        backend: EvictionBackend | None = None,
    ):
        self.config = config
        self.library = library or LibraryDatabase(config.library_path)
        self.probe = probe or FileProviderProbe(
            config.cloud_storage_dir,
            prefix=config.provider_prefix,
            suffix=config.provider_suffix,
        )
        self.backend = backend or SubprocessEvictionBackend(
            config.evict_helper, timeout=config.helper_timeout
        )
        self.sources = SourceRegistry(
            self.library, self.probe, provider_name=config.provider_name
        )
        self.downloads = DownloadCoordinator(
            self.probe, self.library, download_timeout=config.download_timeout
        )
        self.cache = CacheManager(
            self.library,
            self.probe,
            self.backend,
            max_size_bytes=config.max_cache_size,
            interval=config.eviction_interval,
            batch_size=config.eviction_batch_size,
        )

    # --- Lifecycle ---

    async def start(self, background_eviction: bool = True) -> EvictionResult:
        """
        Syncs the cloud sources with the folders on disk, runs a first
        eviction sweep and starts the periodic one.
        """
        await self.sync_cloud_sources()
        result = await self.cache.evict()
        if background_eviction:
            await self.cache.start()
        return result

    async def sync_cloud_sources(self) -> list[StorageSource]:
        """
        Registers newly detected cloud folders and migrates tracks that were
        scanned before their folder was known. Returns the new sources.
        """
        new_sources = await self.sources.auto_register_sources()
        new_ids = {source.id for source in new_sources}
        for source in new_sources:
            migrated = await self.sources.migrate_source_tracks(source)
            if migrated > 0:
                log.info(
                    f"Migrated {migrated} existing tracks to source "
                    f'"{source.label}" (sync_status: local → cached)'
                )

        # Tracks added under already-known roots since the last run
        for source in await self.sources.list_sources():
            if source.type is SourceType.CLOUD and source.id not in new_ids:
                migrated = await self.sources.migrate_source_tracks(source)
                if migrated > 0:
                    log.info(
                        f"Migrated {migrated} additional tracks for source "
                        f'"{source.label}"'
                    )
        return new_sources

    async def close(self) -> None:
        await self.cache.stop()
        await self.downloads.cancel_all()

    async def __aenter__(self) -> "CloudCacheService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # --- Storage sources ---

    def detect_cloud_sources(self) -> list[CloudRoot]:
        return self.probe.detect_cloud_sources()

    async def list_sources(self) -> list[StorageSource]:
        return await self.sources.list_sources()

    async def add_source(
        self,
        root_path: str,
        source_type: SourceType | None = None,
        label: str | None = None,
        account: str | None = None,
    ) -> StorageSource:
        source = await self.sources.add_source(root_path, source_type, label, account)
        if source.type is SourceType.CLOUD:
            migrated = await self.sources.migrate_source_tracks(source)
            if migrated > 0:
                self.cache.invalidate_path_index()
                log.info(f"Migrated {migrated} tracks to the new source.")
        return source

    async def remove_source(self, source_id: str) -> bool:
        return await self.sources.remove_source(source_id)

    # --- Cache management ---

    async def get_cache_stats(self) -> CacheStats:
        return await self.cache.get_stats()

    def set_cache_limit(self, max_size_bytes: int) -> None:
        self.cache.set_max_size(max_size_bytes)

    async def pin_track(self, track_id: str) -> None:
        if not await self.library.pin_track(track_id):
            raise TrackNotFoundError(f"No track with id '{track_id}'.")

    async def unpin_track(self, track_id: str) -> None:
        if not await self.library.unpin_track(track_id):
            raise TrackNotFoundError(f"No track with id '{track_id}'.")

    async def evict_cache(self) -> EvictionResult:
        return await self.cache.evict()

    # --- Downloads ---

    async def request_track_download(self, track_id: str) -> bool:
        """
        Makes sure a track's file is on disk, downloading it if needed.
        Returns True once it is available, False if unknown or not ready in time.
        """
        track = await self.library.get_track(track_id)
        if track is None:
            return False
        if not self.probe.is_cloud_backed_path(track.file_path):
            return True
        if await asyncio.to_thread(self.probe.is_materialized, track.file_path):
            await self.library.update_sync_status(track_id, SyncStatus.CACHED)
            return True

        await self.library.update_sync_status(track_id, SyncStatus.DOWNLOADING)
        result = await asyncio.shield(self.downloads.trigger_download(track.file_path))
        if result:
            await self.library.update_sync_status(track_id, SyncStatus.CACHED)
        return result

    async def prefetch_tracks(self, track_ids: list[str]) -> dict[str, str]:
        """Starts background downloads for upcoming tracks without waiting."""
        results: dict[str, str] = {}
        for track_id in track_ids:
            track = await self.library.get_track(track_id)
            if track is None:
                results[track_id] = "not_found"
            elif not self.probe.is_cloud_backed_path(track.file_path):
                results[track_id] = SyncStatus.LOCAL.value
            elif await asyncio.to_thread(self.probe.is_materialized, track.file_path):
                results[track_id] = SyncStatus.CACHED.value
            else:
                self.downloads.trigger_download(track.file_path)
                results[track_id] = SyncStatus.DOWNLOADING.value
        return results

    async def get_track_status(self, track_id: str) -> dict[str, object]:
        track = await self.library.get_track(track_id)
        if track is None:
            raise TrackNotFoundError(f"No track with id '{track_id}'.")
        is_cloud = self.probe.is_cloud_backed_path(track.file_path)
        available = (
            await asyncio.to_thread(self.probe.is_materialized, track.file_path)
            if is_cloud
            else True
        )
        return {
            "file_path": track.file_path,
            "available": available,
            "downloading": self.downloads.is_downloading(track.file_path),
            "sync_status": track.sync_status.value,
            "pinned": track.pinned,
        }

    # --- Streaming & on-demand reads ---

    async def prepare_stream(self, file_path: str) -> bool:
        """
        Gate for every streaming read. Returns True if the file can be served
        now (and records the access). Otherwise schedules a background download
        and returns False so the caller can answer "pending".
        """
        if not self.probe.is_cloud_backed_path(file_path):
            return True
        if not await asyncio.to_thread(self.probe.is_materialized, file_path):
            self.downloads.trigger_download(file_path)
            return False
        await self.cache.touch_by_path(file_path)
        return True

    async def ensure_materialized(self, file_path: str, timeout: float | None = None) -> None:
        """
        Waits until a cloud file is on disk, joining any download already in
        flight for it. The download keeps running if this wait gives up.

        Raises:
            MaterializationTimeoutError: If the file is not available in time.
        """
        if not self.probe.is_cloud_backed_path(file_path):
            return
        if await asyncio.to_thread(self.probe.is_materialized, file_path):
            return
        timeout = timeout if timeout is not None else self.config.read_timeout
        task = self.downloads.trigger_download(file_path)
        try:
            materialized = await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            materialized = False
        if not materialized:
            raise MaterializationTimeoutError(file_path, timeout)

    async def read_file(self, file_path: str, timeout: float | None = None) -> bytes:
        """Reads a whole file, downloading it first when it is cloud-only."""
        await self.ensure_materialized(file_path, timeout)
        async with aiofiles.open(file_path, "rb") as f:
            data = await f.read()
        if self.probe.is_cloud_backed_path(file_path):
            await self.cache.touch_by_path(file_path)
        return data

    # --- Library ---

    async def add_tracks(self, paths: list[str]) -> list[Track]:
        """
        Registers audio files (or every audio file below a directory) as tracks,
        attaching each to its owning source and classifying its sync status.
        """
        files = await asyncio.to_thread(_collect_audio_files, paths)
        sources = await self.sources.list_sources()
        added: list[Track] = []

        for file_path in files:
            try:
                size = (await asyncio.to_thread(os.stat, file_path)).st_size
            except OSError as e:
                log.warning(f"[yellow]Skipping '{file_path}': {e}[/yellow]")
                continue

            if self.probe.is_cloud_backed_path(file_path):
                materialized = await asyncio.to_thread(self.probe.is_materialized, file_path)
                status = SyncStatus.CACHED if materialized else SyncStatus.CLOUD_ONLY
            else:
                status = SyncStatus.LOCAL

            owner = select_owning_source(sources, file_path)
            existing = await self.library.get_track_by_path(file_path)
            track = Track(
                id=existing.id if existing else str(uuid.uuid4()),
                file_path=file_path,
                file_size=size,
                sync_status=status,
                pinned=existing.pinned if existing else False,
                last_accessed=existing.last_accessed if existing else None,
                source_id=owner.id if owner else None,
            )
            if await self.library.add_track(track):
                added.append(track)

        if added:
            self.cache.invalidate_path_index()
            log.info(f"[green]✓ Added {len(added)} tracks to the library.[/green]")
        return added


def _collect_audio_files(paths: list[str]) -> list[str]:
    """Expands directories into the audio files below them, skipping hidden entries."""
    found: list[str] = []
    for raw in paths:
        path = Path(raw).expanduser().absolute()
        if path.is_file():
            if path.suffix.lower() in AUDIO_EXTENSIONS:
                found.append(str(path))
            continue
        if not path.is_dir():
            log.warning(f"[yellow]Not a file or directory: {raw}[/yellow]")
            continue
        for dirpath, dirnames, filenames in os.walk(path):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                if os.path.splitext(name)[1].lower() in AUDIO_EXTENSIONS:
                    found.append(os.path.join(dirpath, name))
    return list(dict.fromkeys(found))
