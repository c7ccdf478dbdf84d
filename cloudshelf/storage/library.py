"""
Manages the SQLite database holding tracks and registered storage sources.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Any

from cloudshelf.exceptions import LibraryError
from cloudshelf.models.library import (
    CacheStats,
    StorageSource,
    SyncStatus,
    Track,
)

log = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS tracks (
    id TEXT PRIMARY KEY NOT NULL,
    file_path TEXT NOT NULL UNIQUE,
    file_size INTEGER NOT NULL DEFAULT 0,
    sync_status TEXT NOT NULL DEFAULT 'local',
    pinned INTEGER NOT NULL DEFAULT 0,
    last_accessed TEXT,
    source_id TEXT,
    date_added TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_tracks_sync_status ON tracks(sync_status);

CREATE TABLE IF NOT EXISTS storage_sources (
    id TEXT PRIMARY KEY NOT NULL,
    type TEXT NOT NULL,
    root_path TEXT NOT NULL UNIQUE,
    label TEXT,
    account TEXT,
    added_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

# Matches a path equal to the root or anywhere below it, without LIKE wildcards
_UNDER_ROOT_SQL = "(file_path = :root OR substr(file_path, 1, length(:prefix)) = :prefix)"


def _root_prefix(root_path: str) -> str:
    return root_path if root_path.endswith("/") else root_path + "/"


class LibraryDatabase:
    """
    A SQLite-backed library of tracks and storage sources. Every public
    coroutine runs a single short statement in a worker thread, bounded by a
    small connection semaphore.
    """

    def __init__(self, db_path: Path, pool_size: int = 5):
        self.db_path = Path(db_path)
        self._pool_size = pool_size
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Opens a WAL-mode connection to the library database."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to library database: {e}")
            raise

    def _initialize_db(self) -> None:
        """Creates the tables and indexes if they don't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._get_connection() as conn:
                conn.executescript(SCHEMA_SQL)
                conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise LibraryError(
                f"Failed to initialize library database at '{self.db_path}': {e}"
            ) from e

    async def _run_in_executor(self, func, *args):
        """Runs a blocking query on a worker thread, bounded by the semaphore."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(func, *args)

    def _execute_sync(self, query: str, params: Any = ()) -> int:
        """Runs a single write statement and returns the number of affected rows."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute(query, params)
                conn.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            log.error(f"Library write failed: {e}")
            return 0

    def _fetch_all_sync(self, query: str, params: Any = ()) -> list[sqlite3.Row]:
        try:
            with self._get_connection() as conn:
                return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            log.error(f"Library query failed: {e}")
            return []

    def _fetch_one_sync(self, query: str, params: Any = ()) -> sqlite3.Row | None:
        try:
            with self._get_connection() as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            log.error(f"Library query failed: {e}")
            return None

    # --- Tracks ---

    def _add_track_sync(self, track: Track) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO tracks
                        (id, file_path, file_size, sync_status, pinned,
                         last_accessed, source_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(file_path) DO UPDATE SET
                        file_size = excluded.file_size,
                        sync_status = excluded.sync_status,
                        source_id = excluded.source_id
                    """,
                    (
                        track.id,
                        track.file_path,
                        track.file_size,
                        SyncStatus(track.sync_status).value,
                        int(track.pinned),
                        track.last_accessed,
                        track.source_id,
                    ),
                )
                conn.commit()
            return True
        except sqlite3.Error as e:
            log.error(f"Failed to add track '{track.file_path}': {e}")
            return False

    async def add_track(self, track: Track) -> bool:
        """Inserts a track, or refreshes size/status/source if the path is known."""
        return await self._run_in_executor(self._add_track_sync, track)

    async def get_track(self, track_id: str) -> Track | None:
        row = await self._run_in_executor(
            self._fetch_one_sync, "SELECT * FROM tracks WHERE id = ?", (track_id,)
        )
        return Track.from_row(row) if row else None

    async def get_track_by_path(self, file_path: str) -> Track | None:
        row = await self._run_in_executor(
            self._fetch_one_sync,
            "SELECT * FROM tracks WHERE file_path = ?",
            (file_path,),
        )
        return Track.from_row(row) if row else None

    async def get_tracks(self) -> list[Track]:
        rows = await self._run_in_executor(
            self._fetch_all_sync, "SELECT * FROM tracks ORDER BY file_path"
        )
        return [Track.from_row(row) for row in rows]

    async def remove_track(self, track_id: str) -> bool:
        changed = await self._run_in_executor(
            self._execute_sync, "DELETE FROM tracks WHERE id = ?", (track_id,)
        )
        return changed > 0

    async def get_track_paths(self) -> list[tuple[str, str]]:
        """Returns (file_path, track_id) pairs for every track in the library."""
        rows = await self._run_in_executor(
            self._fetch_all_sync, "SELECT id, file_path FROM tracks"
        )
        return [(row["file_path"], row["id"]) for row in rows]

    # --- Cache Management ---

    async def update_last_accessed(self, track_id: str) -> None:
        await self._run_in_executor(
            self._execute_sync,
            "UPDATE tracks SET last_accessed = strftime('%Y-%m-%d %H:%M:%f', 'now') "
            "WHERE id = ?",
            (track_id,),
        )

    async def update_sync_status(self, track_id: str, status: SyncStatus) -> bool:
        changed = await self._run_in_executor(
            self._execute_sync,
            "UPDATE tracks SET sync_status = ? WHERE id = ?",
            (SyncStatus(status).value, track_id),
        )
        return changed > 0

    async def pin_track(self, track_id: str) -> bool:
        changed = await self._run_in_executor(
            self._execute_sync, "UPDATE tracks SET pinned = 1 WHERE id = ?", (track_id,)
        )
        return changed > 0

    async def unpin_track(self, track_id: str) -> bool:
        changed = await self._run_in_executor(
            self._execute_sync, "UPDATE tracks SET pinned = 0 WHERE id = ?", (track_id,)
        )
        return changed > 0

    async def is_pinned(self, track_id: str) -> bool:
        row = await self._run_in_executor(
            self._fetch_one_sync, "SELECT pinned FROM tracks WHERE id = ?", (track_id,)
        )
        return bool(row and row["pinned"] == 1)

    async def get_eviction_candidates(self) -> list[Track]:
        """Cached, unpinned tracks, least recently accessed (never-accessed) first."""
        rows = await self._run_in_executor(
            self._fetch_all_sync,
            """
            SELECT * FROM tracks
            WHERE sync_status = 'cached' AND pinned = 0
            ORDER BY last_accessed IS NOT NULL, last_accessed ASC, rowid ASC
            """,
        )
        return [Track.from_row(row) for row in rows]

    async def get_cache_stats(self) -> CacheStats:
        row = await self._run_in_executor(
            self._fetch_one_sync,
            """
            SELECT
                COUNT(*) AS total_tracks,
                COALESCE(SUM(CASE WHEN sync_status = 'cached' THEN 1 ELSE 0 END), 0)
                    AS cached_tracks,
                COALESCE(SUM(CASE WHEN sync_status = 'cloud-only' THEN 1 ELSE 0 END), 0)
                    AS cloud_only_tracks,
                COALESCE(SUM(CASE WHEN pinned = 1 THEN 1 ELSE 0 END), 0)
                    AS pinned_tracks,
                COALESCE(SUM(CASE WHEN sync_status = 'cached' THEN file_size ELSE 0 END), 0)
                    AS cached_bytes,
                COALESCE(SUM(CASE WHEN pinned = 1 THEN file_size ELSE 0 END), 0)
                    AS pinned_bytes
            FROM tracks
            """,
        )
        if row is None:
            return CacheStats()
        return CacheStats(
            total_tracks=row["total_tracks"],
            cached_tracks=row["cached_tracks"],
            cloud_only_tracks=row["cloud_only_tracks"],
            pinned_tracks=row["pinned_tracks"],
            cached_bytes=row["cached_bytes"],
            pinned_bytes=row["pinned_bytes"],
        )

    async def migrate_source_sync_status(self, root_path: str, source_id: str) -> int:
        """
        Marks tracks under a cloud root as cached and links them to the source.
        Used once per source for tracks scanned before the root was registered.
        """
        return await self._run_in_executor(
            self._execute_sync,
            f"""
            UPDATE tracks SET sync_status = 'cached', source_id = :source_id
            WHERE sync_status = 'local' AND {_UNDER_ROOT_SQL}
            """,
            {"source_id": source_id, "root": root_path, "prefix": _root_prefix(root_path)},
        )

    # --- Storage Sources ---

    def _add_storage_source_sync(self, source: StorageSource) -> bool:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO storage_sources (id, type, root_path, label, account) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        source.id,
                        source.type.value,
                        source.root_path,
                        source.label,
                        source.account,
                    ),
                )
                conn.commit()
            return True
        except sqlite3.IntegrityError as e:
            log.debug(f"Storage source '{source.root_path}' not added: {e}")
            return False
        except sqlite3.Error as e:
            log.error(f"Failed to add storage source '{source.root_path}': {e}")
            return False

    async def add_storage_source(self, source: StorageSource) -> bool:
        """Persists a source. Returns False if its id or root path already exists."""
        return await self._run_in_executor(self._add_storage_source_sync, source)

    async def get_storage_sources(self) -> list[StorageSource]:
        rows = await self._run_in_executor(
            self._fetch_all_sync, "SELECT * FROM storage_sources ORDER BY added_at, id"
        )
        return [StorageSource.from_row(row) for row in rows]

    async def get_storage_source(self, source_id: str) -> StorageSource | None:
        row = await self._run_in_executor(
            self._fetch_one_sync,
            "SELECT * FROM storage_sources WHERE id = ?",
            (source_id,),
        )
        return StorageSource.from_row(row) if row else None

    async def find_storage_source_by_root(self, root_path: str) -> StorageSource | None:
        row = await self._run_in_executor(
            self._fetch_one_sync,
            "SELECT * FROM storage_sources WHERE root_path = ?",
            (root_path,),
        )
        return StorageSource.from_row(row) if row else None

    async def remove_storage_source(self, source_id: str) -> bool:
        changed = await self._run_in_executor(
            self._execute_sync,
            "DELETE FROM storage_sources WHERE id = ?",
            (source_id,),
        )
        return changed > 0

    # --- Maintenance ---

    def _vacuum_sync(self) -> bool:
        """Rebuilds the database file to reclaim space."""
        try:
            with self._get_connection() as conn:
                conn.execute("VACUUM;")
                conn.execute("ANALYZE;")
                conn.commit()
            log.info("Library database optimized successfully.")
            return True
        except sqlite3.Error as e:
            log.error(f"Database vacuum failed: {e}")
            return False

    async def vacuum(self) -> bool:
        """Compacts the library database."""
        return await self._run_in_executor(self._vacuum_sync)
