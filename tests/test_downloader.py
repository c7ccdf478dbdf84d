"""Tests for DownloadCoordinator triggering, polling and per-path deduplication."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import create_placeholder_file, make_track

from cloudshelf.models.library import SyncStatus
from cloudshelf.provider.downloader import DownloadCoordinator


def _materialize_later(path: str, delay: float):
    """Returns a request_download stand-in that fills the file after a delay."""

    async def _request(file_path: str) -> None:
        async def _fill():
            await asyncio.sleep(delay)
            with open(path, "r+b") as f:
                f.write(b"\x01" * 1024 * 64)

        asyncio.create_task(_fill())

    return _request


class TestRequestDownload:
    @pytest.mark.asyncio
    async def test_reads_first_byte(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "a.flac")
        coordinator = DownloadCoordinator(probe, library)

        await coordinator.request_download(path)

    @pytest.mark.asyncio
    async def test_missing_file_is_ignored(self, probe, library, cloud_root):
        coordinator = DownloadCoordinator(probe, library)

        await coordinator.request_download(str(cloud_root / "missing.flac"))


class TestWaitForMaterialization:
    @pytest.mark.asyncio
    async def test_times_out_after_deadline(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "never.flac")
        coordinator = DownloadCoordinator(probe, library)

        start = time.monotonic()
        result = await coordinator.wait_for_materialization(path, 1.0)
        elapsed = time.monotonic() - start

        assert result is False
        assert 0.9 <= elapsed < 1.6

    @pytest.mark.asyncio
    async def test_returns_immediately_when_present(self, library):
        probe = MagicMock()
        probe.is_materialized.return_value = True
        coordinator = DownloadCoordinator(probe, library)

        start = time.monotonic()
        assert await coordinator.wait_for_materialization("/a.flac", 5.0) is True
        assert time.monotonic() - start < 0.5
        probe.is_materialized.assert_called_once_with("/a.flac")

    @pytest.mark.asyncio
    async def test_backoff_schedule(self, library):
        probe = MagicMock()
        probe.is_materialized.return_value = False
        coordinator = DownloadCoordinator(probe, library)
        sleeps: list[float] = []

        async def fake_sleep(delay):
            sleeps.append(delay)
            # Advance the loop clock without waiting
            loop_time[0] += delay

        loop = asyncio.get_running_loop()
        loop_time = [loop.time()]
        with (
            patch("cloudshelf.provider.downloader.asyncio.sleep", fake_sleep),
            patch.object(loop, "time", lambda: loop_time[0]),
        ):
            result = await coordinator.wait_for_materialization("/a.flac", 6.0)

        assert result is False
        assert sleeps[:5] == pytest.approx([0.2, 0.3, 0.45, 0.675, 1.0125])
        assert max(sleeps) <= 2.0
        assert sum(sleeps) == pytest.approx(6.0)

    @pytest.mark.asyncio
    async def test_detects_file_arriving(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "later.flac")
        coordinator = DownloadCoordinator(probe, library)
        await _materialize_later(path, 0.3)(path)

        assert await coordinator.wait_for_materialization(path, 3.0) is True


class TestTriggerDownload:
    @pytest.mark.asyncio
    async def test_concurrent_triggers_share_one_fetch(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "a" / "b.mp3")
        coordinator = DownloadCoordinator(probe, library, download_timeout=2.0)
        fill = _materialize_later(path, 0.5)
        request = AsyncMock(side_effect=fill)

        with patch.object(coordinator, "request_download", request):
            first = coordinator.trigger_download(path)
            second = coordinator.trigger_download(path)
            assert first is second
            results = await asyncio.gather(first, second)

        assert results == [True, True]
        request.assert_awaited_once_with(path)

    @pytest.mark.asyncio
    async def test_task_removed_after_settling(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "gone.flac")
        coordinator = DownloadCoordinator(probe, library, download_timeout=0.3)

        with patch.object(coordinator, "request_download", AsyncMock()):
            task = coordinator.trigger_download(path)
            assert coordinator.is_downloading(path)
            assert await task is False

        assert not coordinator.is_downloading(path)
        assert coordinator.active_count == 0

    @pytest.mark.asyncio
    async def test_new_attempt_after_failure(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "retry.flac")
        coordinator = DownloadCoordinator(probe, library, download_timeout=0.3)
        request = AsyncMock()

        with patch.object(coordinator, "request_download", request):
            first = coordinator.trigger_download(path)
            await first
            second = coordinator.trigger_download(path)
            await second

        assert first is not second
        assert request.await_count == 2

    @pytest.mark.asyncio
    async def test_success_marks_track_cached_and_notifies(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "song.flac")
        track = make_track(path, sync_status=SyncStatus.DOWNLOADING)
        await library.add_track(track)
        coordinator = DownloadCoordinator(probe, library, download_timeout=2.0)
        finished: list[str] = []
        coordinator.subscribe(finished.append)

        with patch.object(
            coordinator, "request_download", AsyncMock(side_effect=_materialize_later(path, 0.1))
        ):
            assert await coordinator.trigger_download(path) is True

        stored = await library.get_track(track.id)
        assert stored.sync_status is SyncStatus.CACHED
        assert finished == [track.id]

    @pytest.mark.asyncio
    async def test_timeout_leaves_status_untouched(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "slow.flac")
        track = make_track(path, sync_status=SyncStatus.CLOUD_ONLY)
        await library.add_track(track)
        coordinator = DownloadCoordinator(probe, library, download_timeout=0.3)
        finished: list[str] = []
        coordinator.subscribe(finished.append)

        with patch.object(coordinator, "request_download", AsyncMock()):
            assert await coordinator.trigger_download(path) is False

        stored = await library.get_track(track.id)
        assert stored.sync_status is SyncStatus.CLOUD_ONLY
        assert finished == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_download(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "loud.flac")
        await library.add_track(make_track(path, sync_status=SyncStatus.CLOUD_ONLY))
        coordinator = DownloadCoordinator(probe, library, download_timeout=2.0)
        coordinator.subscribe(MagicMock(side_effect=RuntimeError("ui went away")))

        with patch.object(
            coordinator, "request_download", AsyncMock(side_effect=_materialize_later(path, 0.1))
        ):
            assert await coordinator.trigger_download(path) is True

    @pytest.mark.asyncio
    async def test_unsubscribe(self, probe, library):
        coordinator = DownloadCoordinator(probe, library)
        listener = MagicMock()
        coordinator.subscribe(listener)
        coordinator.unsubscribe(listener)
        coordinator.unsubscribe(listener)

        coordinator._notify("track-1")

        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_all(self, probe, library, cloud_root):
        path = create_placeholder_file(cloud_root / "long.flac")
        coordinator = DownloadCoordinator(probe, library, download_timeout=30.0)

        with patch.object(coordinator, "request_download", AsyncMock()):
            task = coordinator.trigger_download(path)
            await asyncio.sleep(0.05)
            await coordinator.cancel_all()

        assert task.cancelled()
        assert coordinator.active_count == 0

    @pytest.mark.asyncio
    async def test_wait_all(self, probe, library, cloud_root):
        paths = [create_placeholder_file(cloud_root / f"{n}.flac") for n in range(2)]
        coordinator = DownloadCoordinator(probe, library, download_timeout=0.3)

        with patch.object(coordinator, "request_download", AsyncMock()):
            for path in paths:
                coordinator.trigger_download(path)
            assert await coordinator.wait_all() == [False, False]

        assert await coordinator.wait_all() == []
