"""
Storage Layer.

This package handles all data persistence and bookkeeping: the configuration
file, the library database, the storage source registry and the local cache
budget.
"""

from .cache import CacheManager
from .config_manager import ConfigManager
from .library import LibraryDatabase
from .sources import SourceRegistry

__all__ = ["CacheManager", "ConfigManager", "LibraryDatabase", "SourceRegistry"]
