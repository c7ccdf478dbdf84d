"""
Keeps locally materialized cloud files within a byte budget by evicting the
least recently used, unpinned tracks. Runs periodically in the background and
on demand.
"""

import asyncio
import logging
from contextlib import suppress

from cloudshelf.models.config import DEFAULT_MAX_CACHE_SIZE
from cloudshelf.models.library import CacheStats, EvictionResult, SyncStatus, Track
from cloudshelf.provider.eviction import EvictionBackend
from cloudshelf.provider.probe import MaterializationProbe
from cloudshelf.storage.library import LibraryDatabase
from cloudshelf.utils.formatting import format_size

log = logging.getLogger(__name__)

EVICTION_INTERVAL = 300  # 5 minutes
EVICTION_BATCH_SIZE = 50


class CacheManager:
    """
    Manages the local cache budget with LRU eviction, a periodic sweep task,
    and a path -> track id index for cheap access bookkeeping.
    """

    def __init__(
        self,
        library: LibraryDatabase,
        probe: MaterializationProbe,
        backend: EvictionBackend,
        max_size_bytes: int = DEFAULT_MAX_CACHE_SIZE,
        interval: float = EVICTION_INTERVAL,
        batch_size: int = EVICTION_BATCH_SIZE,
    ):
        """
        Initializes the cache manager.

        Args:
            library: The library database holding track state.
            probe: Oracle used to verify what is actually on disk.
            backend: Performs the actual release of local file data.
            max_size_bytes: The cache budget in bytes.
            interval: Seconds between periodic eviction sweeps.
            batch_size: Maximum number of paths handed to the backend per call.
        """
        self.library = library
        self.probe = probe
        self.backend = backend
        self.max_size_bytes = max_size_bytes
        self.interval = interval
        self.batch_size = batch_size
        self._path_index: dict[str, str] | None = None
        self._eviction_task: asyncio.Task | None = None
        self._evicting = False

    def set_max_size(self, max_size_bytes: int) -> None:
        """Updates the budget. The next sweep applies it."""
        if max_size_bytes < 0:
            raise ValueError("Cache size cannot be negative.")
        self.max_size_bytes = max_size_bytes
        log.debug(f"Cache budget set to {format_size(max_size_bytes)}")

    @property
    def is_evicting(self) -> bool:
        return self._evicting

    # --- Periodic sweep ---

    async def start(self) -> None:
        """Starts the periodic background eviction task."""
        if self._eviction_task is None or self._eviction_task.done():
            self._eviction_task = asyncio.create_task(self._eviction_loop())
            log.debug("Started cache eviction task.")

    async def _eviction_loop(self) -> None:
        """Runs an eviction sweep every interval."""
        while True:
            try:
                await asyncio.sleep(self.interval)
                await self.evict()
            except asyncio.CancelledError:
                log.debug("Cache eviction task cancelled.")
                break
            except Exception as e:
                log.warning(f"Error in cache eviction loop: {e}")

    async def stop(self) -> None:
        """Stops the background eviction task. Safe to call repeatedly."""
        task, self._eviction_task = self._eviction_task, None
        if task and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
            log.debug("Stopped cache eviction task.")

    # --- Access bookkeeping ---

    async def touch(self, track_id: str) -> None:
        """Records that a track was just accessed, for LRU ordering."""
        await self.library.update_last_accessed(track_id)

    async def touch_by_path(self, file_path: str) -> None:
        """
        Records an access by file path. Used on the streaming hot path, so it
        resolves through the in-memory index and never raises.
        """
        try:
            if self._path_index is None:
                await self._rebuild_path_index()
            track_id = self._path_index.get(file_path) if self._path_index else None
            if track_id:
                await self.library.update_last_accessed(track_id)
        except Exception as e:
            log.debug(f"touch_by_path failed for '{file_path}': {e}")

    async def _rebuild_path_index(self) -> None:
        pairs = await self.library.get_track_paths()
        self._path_index = {
            path: track_id
            for path, track_id in pairs
            if self.probe.is_cloud_backed_path(path)
        }
        log.debug(f"Built path index with {len(self._path_index)} cloud tracks.")

    def invalidate_path_index(self) -> None:
        """Drops the path index after bulk track changes (scan, eviction)."""
        self._path_index = None

    # --- Eviction ---

    async def evict(self) -> EvictionResult:
        """
        Evicts least recently used, unpinned cached tracks until the cache fits
        the budget.

        Only evictions confirmed by a fresh materialization check are counted
        and written to the library. Never raises; a sweep that overlaps one
        already in progress does nothing.
        """
        if self._evicting:
            log.debug("Eviction already in progress; skipping overlapping sweep.")
            return EvictionResult()

        self._evicting = True
        result = EvictionResult()
        try:
            await self._evict_over_budget(result)
        except Exception as e:
            log.warning(f"Cache eviction aborted: {e}")
        finally:
            self._evicting = False

        if result.evicted > 0:
            self.invalidate_path_index()
            log.info(
                f"Cache eviction: freed {format_size(result.freed_bytes)} "
                f"({result.evicted} files)"
            )
        return result

    async def _evict_over_budget(self, result: EvictionResult) -> None:
        stats = await self.library.get_cache_stats()
        if stats.cached_bytes <= self.max_size_bytes:
            return

        candidates = await self.library.get_eviction_candidates()
        projected_bytes = stats.cached_bytes
        to_evict: list[Track] = []

        for candidate in candidates:
            if projected_bytes <= self.max_size_bytes:
                break
            projected_bytes -= candidate.file_size

            if not await asyncio.to_thread(self.probe.is_materialized, candidate.file_path):
                # Already evicted out-of-band; only the status is stale
                await self._mark_evicted(candidate, result)
            else:
                to_evict.append(candidate)

        for start in range(0, len(to_evict), self.batch_size):
            await self._evict_batch(to_evict[start : start + self.batch_size], result)

    async def _evict_batch(self, batch: list[Track], result: EvictionResult) -> None:
        try:
            claimed = await self.backend.evict_batch([t.file_path for t in batch])
        except Exception as e:
            log.warning(f"Eviction backend failed on a batch of {len(batch)} files: {e}")
            claimed = {}

        for track in batch:
            still_local = await asyncio.to_thread(
                self.probe.is_materialized, track.file_path
            )
            if still_local:
                if claimed.get(track.file_path):
                    log.warning(
                        f"[yellow]Helper reported '{track.file_path}' evicted, "
                        "but it is still on disk.[/yellow]"
                    )
                continue
            await self._mark_evicted(track, result)

    async def _mark_evicted(self, track: Track, result: EvictionResult) -> None:
        await self.library.update_sync_status(track.id, SyncStatus.CLOUD_ONLY)
        result.evicted += 1
        result.freed_bytes += track.file_size

    async def get_stats(self) -> CacheStats:
        """Returns library cache counters together with the current budget."""
        stats = await self.library.get_cache_stats()
        stats.max_size_bytes = self.max_size_bytes
        return stats
