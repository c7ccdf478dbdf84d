"""Shared fixtures for the cloudshelf test suite."""

import os
import uuid
from pathlib import Path

import pytest

from cloudshelf.models.config import CacheConfig
from cloudshelf.models.library import SyncStatus, Track
from cloudshelf.provider.eviction import EvictionBackend
from cloudshelf.provider.probe import FileProviderProbe
from cloudshelf.storage.library import LibraryDatabase

ACCOUNT = "user@example.com"

# Large enough to be stored in real blocks on every common filesystem
FILE_SIZE = 64 * 1024


# ============================================================================
# File helpers
# ============================================================================


def create_materialized_file(path: Path, size: int = FILE_SIZE) -> str:
    """Writes a file whose data is fully allocated on disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(os.urandom(size))
    return str(path)


def create_placeholder_file(path: Path, size: int = FILE_SIZE) -> str:
    """Creates a sparse file: full nominal size, no allocated blocks."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()
    os.truncate(path, size)
    return str(path)


def make_placeholder(file_path: str) -> None:
    """Drops the local data of an existing file, keeping its size."""
    size = os.stat(file_path).st_size
    os.truncate(file_path, 0)
    os.truncate(file_path, size)


def make_track(file_path: str, **kwargs) -> Track:
    kwargs.setdefault("file_size", FILE_SIZE)
    kwargs.setdefault("sync_status", SyncStatus.CACHED)
    return Track(id=kwargs.pop("id", str(uuid.uuid4())), file_path=file_path, **kwargs)


# ============================================================================
# Eviction backends
# ============================================================================


class SparseEvictionBackend(EvictionBackend):
    """Evicts by turning files back into sparse placeholders, like the provider would."""

    def __init__(self, lie_about: set[str] | None = None):
        self.calls: list[list[str]] = []
        # Paths reported as evicted without touching the file
        self.lie_about = lie_about or set()

    async def evict_batch(self, paths: list[str]) -> dict[str, bool]:
        self.calls.append(list(paths))
        results = {}
        for path in paths:
            if path not in self.lie_about:
                make_placeholder(path)
            results[path] = True
        return results


class FailingEvictionBackend(EvictionBackend):
    def __init__(self):
        self.calls = 0

    async def evict_batch(self, paths: list[str]) -> dict[str, bool]:
        self.calls += 1
        raise RuntimeError("helper crashed")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cloud_storage_dir(tmp_path) -> Path:
    path = tmp_path / "CloudStorage"
    path.mkdir()
    return path


@pytest.fixture
def cloud_root(cloud_storage_dir) -> Path:
    """A provider mount for a single account."""
    root = cloud_storage_dir / f"ProtonDrive-{ACCOUNT}-folder"
    root.mkdir()
    return root


@pytest.fixture
def local_music(tmp_path) -> Path:
    path = tmp_path / "Music"
    path.mkdir()
    return path


@pytest.fixture
def probe(cloud_storage_dir) -> FileProviderProbe:
    return FileProviderProbe(str(cloud_storage_dir))


@pytest.fixture
def library(tmp_path) -> LibraryDatabase:
    return LibraryDatabase(tmp_path / "config" / "library.sqlite")


@pytest.fixture
def backend() -> SparseEvictionBackend:
    return SparseEvictionBackend()


@pytest.fixture
def config(tmp_path, cloud_storage_dir) -> CacheConfig:
    return CacheConfig(
        config_path=str(tmp_path / "config"),
        cloud_storage_dir=str(cloud_storage_dir),
        download_timeout=1.0,
        read_timeout=1.0,
    )
