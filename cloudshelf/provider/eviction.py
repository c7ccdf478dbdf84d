"""
Releases the local data of cloud-backed files through an external helper process.

The helper is invoked as ``<helper> <path> [<path> ...]`` and prints one line per
successfully evicted file, starting with ``OK `` followed by the path. Anything
else (missing binary, nonzero exit, absent line) counts as "not evicted".
"""

import asyncio
import logging
import os
import shutil
from abc import ABC, abstractmethod
from contextlib import suppress

log = logging.getLogger(__name__)

SUCCESS_MARKER = "OK "


class EvictionBackend(ABC):
    """Capability to free the local copy of a batch of files."""

    @abstractmethod
    async def evict_batch(self, paths: list[str]) -> dict[str, bool]:
        """
        Asks the provider to drop local data for every path.

        Returns a mapping of path -> claimed success. Implementations must not
        raise; callers re-verify every claim independently.
        """


class SubprocessEvictionBackend(EvictionBackend):
    """Runs the eviction helper binary once per batch and parses its stdout."""

    def __init__(self, helper: str = "fp-evict", timeout: float = 120.0):
        self.helper = helper
        self.timeout = timeout

    def resolve_helper(self) -> str | None:
        """Returns the helper's executable path, or None if it cannot be found."""
        if os.sep in self.helper or (os.altsep and os.altsep in self.helper):
            path = os.path.expanduser(self.helper)
            return path if os.path.isfile(path) and os.access(path, os.X_OK) else None
        return shutil.which(self.helper)

    async def evict_batch(self, paths: list[str]) -> dict[str, bool]:
        results = dict.fromkeys(paths, False)
        if not paths:
            return results

        helper_path = self.resolve_helper()
        if helper_path is None:
            log.warning(
                f"[yellow]Eviction helper '{self.helper}' not found; "
                f"{len(paths)} files left in place.[/yellow]"
            )
            return results

        try:
            process = await asyncio.create_subprocess_exec(
                helper_path,
                *paths,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            log.warning(f"[yellow]Could not start eviction helper: {e}[/yellow]")
            return results

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            log.warning(
                f"[yellow]Eviction helper timed out after {self.timeout:.0f}s "
                f"on a batch of {len(paths)} files.[/yellow]"
            )
            return results

        if process.returncode != 0:
            log.warning(
                f"[yellow]Eviction helper exited with code {process.returncode}: "
                f"{stderr.decode('utf-8', errors='replace').strip()}[/yellow]"
            )
            return results

        for line in stdout.decode("utf-8", errors="replace").splitlines():
            if not line.startswith(SUCCESS_MARKER):
                continue
            evicted_path = line[len(SUCCESS_MARKER) :].strip()
            if evicted_path in results:
                results[evicted_path] = True
            else:
                log.debug(f"Eviction helper reported unknown path: {evicted_path}")

        log.debug(
            f"Eviction helper claimed {sum(results.values())}/{len(paths)} files."
        )
        return results
