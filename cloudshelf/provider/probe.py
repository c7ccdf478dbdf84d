"""
Detects whether files live inside a cloud provider mount and whether their
content is actually present on local disk.
"""

import logging
import os
from abc import ABC, abstractmethod

from cloudshelf.models.library import CloudRoot

log = logging.getLogger(__name__)

# macOS/BSD st_flags bit for a FileProvider placeholder with no local data
SF_DATALESS = 0x40000000

# Allocated space below this fraction of the nominal size means "placeholder"
MIN_ALLOCATED_RATIO = 0.1


class MaterializationProbe(ABC):
    """Stateless oracle answering cloud-placement questions about file paths."""

    @abstractmethod
    def is_cloud_backed_path(self, file_path: str) -> bool:
        """Returns True if the path lies inside a cloud provider root."""

    @abstractmethod
    def is_materialized(self, file_path: str) -> bool:
        """
        Returns True if the file's bytes are present locally.

        Must never raise: a missing or unreadable file counts as not materialized.
        """

    @abstractmethod
    def detect_cloud_sources(self) -> list[CloudRoot]:
        """Lists the provider roots currently present on disk. Never raises."""


class FileProviderProbe(MaterializationProbe):
    """
    Probe for sync clients that mount one directory per account under a shared
    cloud storage folder, e.g. ``~/Library/CloudStorage/ProtonDrive-me@example.com-folder``.

    Placeholders are recognised by the SF_DATALESS stat flag where the platform
    exposes it, and otherwise by comparing allocated blocks to the file size.
    """

    def __init__(
        self,
        cloud_storage_dir: str,
        prefix: str = "ProtonDrive-",
        suffix: str = "-folder",
    ):
        self.cloud_storage_dir = os.path.normpath(os.path.expanduser(cloud_storage_dir))
        self.prefix = prefix
        self.suffix = suffix

    def is_cloud_backed_path(self, file_path: str) -> bool:
        root = self.cloud_storage_dir + os.sep
        if not file_path.startswith(root):
            return False
        return file_path[len(root) :].startswith(self.prefix)

    def is_materialized(self, file_path: str) -> bool:
        try:
            st = os.stat(file_path)
        except (OSError, ValueError):
            return False

        if getattr(st, "st_flags", 0) & SF_DATALESS:
            return False

        # Sparse allocation is the fallback signal; empty files have nothing to fetch
        blocks = getattr(st, "st_blocks", None)
        if (
            st.st_size > 0
            and blocks is not None
            and blocks * 512 < st.st_size * MIN_ALLOCATED_RATIO
        ):
            return False

        return True

    def account_from_dirname(self, dirname: str) -> str | None:
        """Extracts the account identifier from a provider directory name."""
        if not dirname.startswith(self.prefix):
            return None
        account = dirname[len(self.prefix) :]
        if self.suffix and account.endswith(self.suffix):
            account = account[: -len(self.suffix)]
        return account or None

    def detect_cloud_sources(self) -> list[CloudRoot]:
        roots: list[CloudRoot] = []
        try:
            with os.scandir(self.cloud_storage_dir) as entries:
                for entry in entries:
                    try:
                        if not entry.is_dir():
                            continue
                    except OSError as e:
                        log.debug(f"Skipping unreadable entry '{entry.name}': {e}")
                        continue
                    account = self.account_from_dirname(entry.name)
                    if account is None:
                        continue
                    roots.append(CloudRoot(path=entry.path, account=account))
        except OSError as e:
            log.debug(f"No cloud storage roots under '{self.cloud_storage_dir}': {e}")
            return []
        return sorted(roots, key=lambda r: r.path)
