"""
Data structures for tracks, storage sources and cache bookkeeping.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SyncStatus(str, Enum):
    """Where a track's bytes currently live."""

    LOCAL = "local"  # Plain local file, never cache-accounted
    DOWNLOADING = "downloading"
    CACHED = "cached"  # Cloud-backed and materialized on disk
    CLOUD_ONLY = "cloud-only"  # Cloud-backed placeholder, no local data


class SourceType(str, Enum):
    """Kind of storage a source root points at."""

    LOCAL = "local"
    CLOUD = "cloud"


@dataclass
class Track:
    """The cache-relevant projection of a library track."""

    id: str
    file_path: str
    file_size: int = 0
    sync_status: SyncStatus = SyncStatus.LOCAL
    pinned: bool = False
    last_accessed: str | None = None
    source_id: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Track":
        return cls(
            id=row["id"],
            file_path=row["file_path"],
            file_size=row["file_size"] or 0,
            sync_status=SyncStatus(row["sync_status"]),
            pinned=bool(row["pinned"]),
            last_accessed=row["last_accessed"],
            source_id=row["source_id"],
        )


@dataclass
class StorageSource:
    """A registered root on the local disk or inside a cloud provider mount."""

    id: str
    type: SourceType
    root_path: str
    label: str | None = None
    account: str | None = None
    added_at: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "StorageSource":
        return cls(
            id=row["id"],
            type=SourceType(row["type"]),
            root_path=row["root_path"],
            label=row["label"],
            account=row["account"],
            added_at=row["added_at"],
        )


@dataclass(frozen=True)
class CloudRoot:
    """A cloud provider folder found on disk."""

    path: str
    account: str


@dataclass
class EvictionResult:
    """Outcome of one eviction sweep. Only verified evictions are counted."""

    evicted: int = 0
    freed_bytes: int = 0


@dataclass
class CacheStats:
    """Library-wide cache counters merged with the current byte budget."""

    total_tracks: int = 0
    cached_tracks: int = 0
    cloud_only_tracks: int = 0
    pinned_tracks: int = 0
    cached_bytes: int = 0
    pinned_bytes: int = 0
    max_size_bytes: int = 0

    @property
    def usage_ratio(self) -> float:
        if self.max_size_bytes <= 0:
            return 0.0
        return self.cached_bytes / self.max_size_bytes
