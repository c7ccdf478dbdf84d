"""Tests for SourceRegistry ownership lookup, registration and migration."""

import pytest
from conftest import ACCOUNT, make_track

from cloudshelf.exceptions import DuplicateSourceError
from cloudshelf.models.library import SourceType, StorageSource, SyncStatus
from cloudshelf.storage.sources import SourceRegistry, path_is_under, select_owning_source


def _source(root_path: str, source_id: str | None = None) -> StorageSource:
    return StorageSource(id=source_id or root_path, type=SourceType.LOCAL, root_path=root_path)


class TestPathIsUnder:
    def test_child_path(self):
        assert path_is_under("/music/album/a.flac", "/music")

    def test_root_itself(self):
        assert path_is_under("/music", "/music")

    def test_trailing_separator_on_root(self):
        assert path_is_under("/music/a.flac", "/music/")

    def test_sibling_with_shared_prefix(self):
        assert not path_is_under("/music2/a.flac", "/music")

    def test_filesystem_root(self):
        assert path_is_under("/anything.flac", "/")


class TestSelectOwningSource:
    def test_longest_root_wins(self):
        outer = _source("/music")
        inner = _source("/music/cloud")

        assert select_owning_source([outer, inner], "/music/cloud/a.flac") is inner
        assert select_owning_source([inner, outer], "/music/cloud/a.flac") is inner
        assert select_owning_source([outer, inner], "/music/local/a.flac") is outer

    def test_no_match(self):
        assert select_owning_source([_source("/music")], "/podcasts/a.mp3") is None

    def test_prefix_without_boundary_does_not_match(self):
        assert select_owning_source([_source("/music")], "/musicals/a.flac") is None


class TestSourceRegistry:
    @pytest.mark.asyncio
    async def test_classify(self, library, probe, cloud_root, local_music):
        registry = SourceRegistry(library, probe)

        assert registry.classify(str(cloud_root / "a.flac")) is SourceType.CLOUD
        assert registry.classify(str(local_music / "a.flac")) is SourceType.LOCAL

    @pytest.mark.asyncio
    async def test_add_source_infers_type(self, library, probe, cloud_root, local_music):
        registry = SourceRegistry(library, probe)

        cloud = await registry.add_source(str(cloud_root))
        local = await registry.add_source(str(local_music) + "/", label="Local")

        assert cloud.type is SourceType.CLOUD
        assert local.type is SourceType.LOCAL
        assert local.root_path == str(local_music)
        assert {s.id for s in await registry.list_sources()} == {cloud.id, local.id}

    @pytest.mark.asyncio
    async def test_duplicate_root_rejected(self, library, probe, local_music):
        registry = SourceRegistry(library, probe)
        await registry.add_source(str(local_music))

        with pytest.raises(DuplicateSourceError):
            await registry.add_source(str(local_music))

    @pytest.mark.asyncio
    async def test_remove_source(self, library, probe, local_music):
        registry = SourceRegistry(library, probe)
        source = await registry.add_source(str(local_music))

        assert await registry.remove_source(source.id) is True
        assert await registry.remove_source(source.id) is False
        assert await registry.list_sources() == []

    @pytest.mark.asyncio
    async def test_auto_register_creates_labelled_source(self, library, probe, cloud_root):
        registry = SourceRegistry(library, probe, provider_name="Proton Drive")

        created = await registry.auto_register_sources()

        assert len(created) == 1
        source = created[0]
        assert source.type is SourceType.CLOUD
        assert source.root_path == str(cloud_root)
        assert source.account == ACCOUNT
        assert source.label == f"Proton Drive ({ACCOUNT})"

    @pytest.mark.asyncio
    async def test_auto_register_is_idempotent(self, library, probe, cloud_root):
        registry = SourceRegistry(library, probe)

        assert len(await registry.auto_register_sources()) == 1
        assert await registry.auto_register_sources() == []
        assert len(await registry.list_sources()) == 1

    @pytest.mark.asyncio
    async def test_auto_register_without_provider(self, library, tmp_path):
        from cloudshelf.provider.probe import FileProviderProbe

        registry = SourceRegistry(library, FileProviderProbe(str(tmp_path / "missing")))

        assert await registry.auto_register_sources() == []

    @pytest.mark.asyncio
    async def test_migrate_moves_local_tracks_to_cached(self, library, probe, cloud_root):
        inside = make_track(str(cloud_root / "a.flac"), sync_status=SyncStatus.LOCAL)
        evicted = make_track(str(cloud_root / "b.flac"), sync_status=SyncStatus.CLOUD_ONLY)
        outside = make_track(str(cloud_root) + "-old/c.flac", sync_status=SyncStatus.LOCAL)
        for track in (inside, evicted, outside):
            await library.add_track(track)
        registry = SourceRegistry(library, probe)
        (source,) = await registry.auto_register_sources()

        assert await registry.migrate_source_tracks(source) == 1

        migrated = await library.get_track(inside.id)
        assert migrated.sync_status is SyncStatus.CACHED
        assert migrated.source_id == source.id
        assert (await library.get_track(evicted.id)).sync_status is SyncStatus.CLOUD_ONLY
        assert (await library.get_track(outside.id)).sync_status is SyncStatus.LOCAL

    @pytest.mark.asyncio
    async def test_migrate_ignores_local_sources(self, library, probe, local_music):
        await library.add_track(
            make_track(str(local_music / "a.flac"), sync_status=SyncStatus.LOCAL)
        )
        registry = SourceRegistry(library, probe)
        source = await registry.add_source(str(local_music))

        assert await registry.migrate_source_tracks(source) == 0

    @pytest.mark.asyncio
    async def test_find_owning_source(self, library, probe, cloud_root):
        registry = SourceRegistry(library, probe)
        outer = await registry.add_source(str(cloud_root))
        inner = await registry.add_source(str(cloud_root / "Albums"))

        owner = await registry.find_owning_source(str(cloud_root / "Albums" / "a.flac"))
        assert owner.id == inner.id
        owner = await registry.find_owning_source(str(cloud_root / "Singles" / "b.flac"))
        assert owner.id == outer.id
        assert await registry.find_owning_source("/elsewhere/c.flac") is None
