"""
Data Models Layer.

This package contains the Pydantic configuration model and the dataclasses
that describe tracks, storage sources and cache bookkeeping.
"""

from .config import CacheConfig
from .library import (
    CacheStats,
    CloudRoot,
    EvictionResult,
    SourceType,
    StorageSource,
    SyncStatus,
    Track,
)

__all__ = [
    "CacheConfig",
    "CacheStats",
    "CloudRoot",
    "EvictionResult",
    "SourceType",
    "StorageSource",
    "SyncStatus",
    "Track",
]
