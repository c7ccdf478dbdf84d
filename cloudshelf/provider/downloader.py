"""
Triggers provider-side downloads of cloud-only files and waits for them to land
on disk, making sure each file is fetched by at most one task at a time.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import suppress
from functools import partial

import aiofiles

from cloudshelf.models.library import SyncStatus
from cloudshelf.provider.probe import MaterializationProbe
from cloudshelf.storage.library import LibraryDatabase

log = logging.getLogger(__name__)

DownloadListener = Callable[[str], None]


class DownloadCoordinator:
    """
    Fetch-on-read download trigger with per-path deduplication.

    Sync clients based on file-provider extensions start fetching a placeholder
    as soon as something reads from it, so a one-byte read is enough to request
    the download. Completion is then detected by polling the probe.
    """

    INITIAL_POLL_INTERVAL = 0.2
    POLL_BACKOFF = 1.5
    MAX_POLL_INTERVAL = 2.0

    def __init__(
        self,
        probe: MaterializationProbe,
        library: LibraryDatabase,
        download_timeout: float = 60.0,
    ):
        self.probe = probe
        self.library = library
        self.download_timeout = download_timeout
        self._active: dict[str, asyncio.Task[bool]] = {}
        self._listeners: list[DownloadListener] = []

    def subscribe(self, listener: DownloadListener) -> None:
        """Registers a callback invoked with the track id of each finished download."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: DownloadListener) -> None:
        with suppress(ValueError):
            self._listeners.remove(listener)

    def is_downloading(self, file_path: str) -> bool:
        return file_path in self._active

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def request_download(self, file_path: str) -> None:
        """
        Reads the first byte of the file to make the provider fetch it.
        Failures are ignored: the provider may start fetching regardless.
        """
        try:
            async with aiofiles.open(file_path, "rb") as f:
                await f.read(1)
        except (OSError, ValueError) as e:
            log.debug(f"Download trigger read failed for '{os.path.basename(file_path)}': {e}")

    async def wait_for_materialization(self, file_path: str, timeout: float) -> bool:
        """
        Polls until the file is materialized or the timeout elapses.

        The poll interval starts at 200ms and grows by 1.5x up to 2s. Never
        sleeps past the deadline.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        interval = self.INITIAL_POLL_INTERVAL

        while True:
            if await asyncio.to_thread(self.probe.is_materialized, file_path):
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * self.POLL_BACKOFF, self.MAX_POLL_INTERVAL)

    def trigger_download(self, file_path: str) -> "asyncio.Task[bool]":
        """
        Starts a fetch-and-poll task for the path, or returns the one already
        running so every concurrent caller shares the same outcome.

        The returned task may be awaited or left to run in the background.
        Callers that might be cancelled should await it through
        ``asyncio.shield`` so other waiters are not affected.
        """
        task = self._active.get(file_path)
        if task is not None:
            log.debug(f"Joining in-flight download for '{os.path.basename(file_path)}'")
            return task

        task = asyncio.create_task(self._fetch_and_wait(file_path))
        self._active[file_path] = task
        task.add_done_callback(partial(self._forget, file_path))
        return task

    def _forget(self, file_path: str, task: "asyncio.Task[bool]") -> None:
        if self._active.get(file_path) is task:
            del self._active[file_path]

    async def _fetch_and_wait(self, file_path: str) -> bool:
        try:
            return await self._fetch_and_update(file_path)
        finally:
            # Free the path for a fresh attempt as soon as this one settles
            self._forget(file_path, asyncio.current_task())

    async def _fetch_and_update(self, file_path: str) -> bool:
        name = os.path.basename(file_path)
        log.debug(f"Requesting download of '{name}'")
        await self.request_download(file_path)
        materialized = await self.wait_for_materialization(
            file_path, self.download_timeout
        )
        if not materialized:
            log.info(
                f"[yellow]Download of '{name}' not finished after "
                f"{self.download_timeout:.0f}s; will retry on next request.[/yellow]"
            )
            return False

        track = await self.library.get_track_by_path(file_path)
        if track is not None:
            await self.library.update_sync_status(track.id, SyncStatus.CACHED)
            self._notify(track.id)
        log.info(f"[green]✓ Downloaded:[/green] {name}")
        return True

    def _notify(self, track_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(track_id)
            except Exception as e:
                log.warning(f"Download listener failed for track {track_id}: {e}")

    async def wait_all(self) -> list[bool]:
        """Waits for every in-flight download and returns their outcomes."""
        tasks = list(self._active.values())
        if not tasks:
            return []
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return [result is True for result in results]

    async def cancel_all(self) -> None:
        """Cancels every in-flight download task."""
        tasks = list(self._active.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        if tasks:
            log.debug(f"Cancelled {len(tasks)} in-flight downloads.")
