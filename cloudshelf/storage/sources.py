"""
Maps file paths to the registered storage sources that own them and keeps the
set of cloud sources in step with the provider folders found on disk.
"""

import logging
import os
import uuid

from cloudshelf.exceptions import DuplicateSourceError
from cloudshelf.models.library import SourceType, StorageSource
from cloudshelf.provider.probe import MaterializationProbe
from cloudshelf.storage.library import LibraryDatabase

log = logging.getLogger(__name__)


def path_is_under(file_path: str, root_path: str) -> bool:
    """True if file_path is root_path itself or lies below it."""
    root = root_path.rstrip(os.sep) or os.sep
    if file_path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return file_path.startswith(prefix)


class SourceRegistry:
    """Registry of local and cloud storage roots backed by the library database."""

    def __init__(
        self,
        library: LibraryDatabase,
        probe: MaterializationProbe,
        provider_name: str = "Proton Drive",
    ):
        self.library = library
        self.probe = probe
        self.provider_name = provider_name

    def classify(self, file_path: str) -> SourceType:
        """Determines the source type for a given path."""
        if self.probe.is_cloud_backed_path(file_path):
            return SourceType.CLOUD
        return SourceType.LOCAL

    async def list_sources(self) -> list[StorageSource]:
        return await self.library.get_storage_sources()

    async def add_source(
        self,
        root_path: str,
        source_type: SourceType | None = None,
        label: str | None = None,
        account: str | None = None,
    ) -> StorageSource:
        """
        Registers a new storage root. The type is inferred from the path when
        not given.

        Raises:
            DuplicateSourceError: If a source with the same root path exists.
        """
        root_path = os.path.normpath(os.path.expanduser(root_path))
        source = StorageSource(
            id=str(uuid.uuid4()),
            type=source_type or self.classify(root_path),
            root_path=root_path,
            label=label,
            account=account,
        )
        if not await self.library.add_storage_source(source):
            raise DuplicateSourceError(
                f"A storage source is already registered at '{root_path}'."
            )
        log.info(f"Registered {source.type.value} source '{source.label or root_path}'")
        return source

    async def remove_source(self, source_id: str) -> bool:
        removed = await self.library.remove_storage_source(source_id)
        if removed:
            log.info(f"Removed storage source {source_id}")
        return removed

    async def auto_register_sources(self) -> list[StorageSource]:
        """
        Registers every detected provider folder that is not yet a source.
        Returns only the newly created sources so the caller can migrate
        tracks that were scanned before the folder was known.
        """
        detected = self.probe.detect_cloud_sources()
        if not detected:
            return []

        existing = await self.library.get_storage_sources()
        existing_roots = {source.root_path for source in existing}

        new_sources: list[StorageSource] = []
        for root in detected:
            if root.path in existing_roots:
                continue
            source = StorageSource(
                id=str(uuid.uuid4()),
                type=SourceType.CLOUD,
                root_path=root.path,
                label=f"{self.provider_name} ({root.account})",
                account=root.account,
            )
            if await self.library.add_storage_source(source):
                existing_roots.add(root.path)
                new_sources.append(source)
                log.info(f"[green]✓ Detected new cloud source:[/green] {source.label}")
        return new_sources

    async def migrate_source_tracks(self, source: StorageSource) -> int:
        """Moves tracks under a cloud source from 'local' to 'cached'."""
        if source.type is not SourceType.CLOUD:
            return 0
        return await self.library.migrate_source_sync_status(
            source.root_path, source.id
        )

    async def find_owning_source(self, file_path: str) -> StorageSource | None:
        """Finds the most specific registered source containing the path."""
        sources = await self.library.get_storage_sources()
        return select_owning_source(sources, file_path)


def select_owning_source(
    sources: list[StorageSource], file_path: str
) -> StorageSource | None:
    """Picks the source with the longest root path that contains file_path."""
    best: StorageSource | None = None
    for source in sources:
        if not path_is_under(file_path, source.root_path):
            continue
        if best is None or len(source.root_path) > len(best.root_path):
            best = source
    return best
