"""
Cloud Provider Layer.

This package talks to the sync provider through the filesystem: detecting
placeholders, triggering downloads and releasing local file data.
"""

from .downloader import DownloadCoordinator
from .eviction import EvictionBackend, SubprocessEvictionBackend
from .probe import FileProviderProbe, MaterializationProbe

__all__ = [
    "DownloadCoordinator",
    "EvictionBackend",
    "FileProviderProbe",
    "MaterializationProbe",
    "SubprocessEvictionBackend",
]
