"""SQLite-based persistent store for forecast tiles.

This module provides TileStore, which keeps forecast tile slices in SQLite
databases organized by zoom level. Every row is either *local* (downloaded
for offline use) or *remote* (kept by online browsing), and the size/clear
operations take separate id lists for the two scopes.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

from shared.constants import TILE_CACHE_DIR

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

# Stay well below SQLite's bound parameter limit
_ID_CHUNK = 500


def _chunks(ids: Iterable[int]) -> Iterator[list[int]]:
    batch: list[int] = []
    for tile_id in ids:
        batch.append(tile_id)
        if len(batch) >= _ID_CHUNK:
            yield batch
            batch = []
    if batch:
        yield batch


class TileStore:
    """SQLite tile store with separate databases per zoom level.

    Features:
    - Separate SQLite database for each zoom level
    - WAL mode for concurrent reads
    - One lock serializing writers across threads

    Usage:
        store = TileStore(cache_dir)
        store.put(zoom=4, tile_id=tid, date_time=ts, data=blob, local=True)
        size = store.size_of([tid], [], zoom=4)
        store.clear([tid], [], zoom=4)
        store.close()
    """

    def __init__(self, cache_dir: str | Path | None = None) -> None:
        """Initialize tile store.

        Args:
            cache_dir: Directory for database files. Defaults to TILE_CACHE_DIR.
        """
        self.cache_dir = Path(cache_dir or TILE_CACHE_DIR)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._connections: dict[int, sqlite3.Connection] = {}
        self._lock = threading.RLock()
        logger.info('TileStore initialized at %s', self.cache_dir)

    def _get_db_path(self, zoom: int) -> Path:
        return self.cache_dir / f'forecast_zoom_{zoom}.db'

    def _get_connection(self, zoom: int) -> sqlite3.Connection:
        """Get or create a connection for the given zoom level."""
        with self._lock:
            if zoom not in self._connections:
                conn = sqlite3.connect(
                    str(self._get_db_path(zoom)), check_same_thread=False
                )
                conn.execute('PRAGMA journal_mode=WAL')
                conn.execute('PRAGMA synchronous=NORMAL')
                self._init_schema(conn)
                self._connections[zoom] = conn
            return self._connections[zoom]

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript('''
            CREATE TABLE IF NOT EXISTS tiles (
                tile_id INTEGER NOT NULL,
                date_time INTEGER NOT NULL,
                local INTEGER NOT NULL,
                tile_data BLOB NOT NULL,
                fetched_at INTEGER NOT NULL,
                size_bytes INTEGER NOT NULL,
                PRIMARY KEY (tile_id, date_time, local)
            );

            CREATE INDEX IF NOT EXISTS idx_tiles_scope ON tiles(local, tile_id);
        ''')
        conn.commit()

    def put(
        self,
        zoom: int,
        tile_id: int,
        date_time: int,
        data: bytes,
        *,
        local: bool = True,
    ) -> None:
        """Store one forecast slice of one tile, replacing an older copy."""
        now = int(time.time())
        with self._lock:
            conn = self._get_connection(zoom)
            conn.execute(
                '''INSERT OR REPLACE INTO tiles
                   (tile_id, date_time, local, tile_data, fetched_at, size_bytes)
                   VALUES (?, ?, ?, ?, ?, ?)''',
                (tile_id, date_time, int(local), data, now, len(data)),
            )
            conn.commit()

    def get(
        self, zoom: int, tile_id: int, date_time: int, *, local: bool = True
    ) -> bytes | None:
        with self._lock:
            conn = self._get_connection(zoom)
            row = conn.execute(
                '''SELECT tile_data FROM tiles
                   WHERE tile_id = ? AND date_time = ? AND local = ?''',
                (tile_id, date_time, int(local)),
            ).fetchone()
        return None if row is None else row[0]

    def exists(
        self, zoom: int, tile_id: int, date_time: int, *, local: bool = True
    ) -> bool:
        with self._lock:
            conn = self._get_connection(zoom)
            row = conn.execute(
                '''SELECT 1 FROM tiles
                   WHERE tile_id = ? AND date_time = ? AND local = ?''',
                (tile_id, date_time, int(local)),
            ).fetchone()
        return row is not None

    def size_of(
        self,
        local_ids: Iterable[int],
        remote_ids: Iterable[int],
        zoom: int,
    ) -> int:
        """Bytes stored for the given tile ids, summed over all time slices.

        Args:
            local_ids: Tile ids counted in the local (offline) scope.
            remote_ids: Tile ids counted in the remote (online) scope.
            zoom: Zoom level.

        Returns:
            Total size in bytes.
        """
        total = 0
        with self._lock:
            conn = self._get_connection(zoom)
            for local, ids in ((1, local_ids), (0, remote_ids)):
                for batch in _chunks(ids):
                    marks = ','.join('?' * len(batch))
                    row = conn.execute(
                        f'''SELECT COALESCE(SUM(size_bytes), 0) FROM tiles
                            WHERE local = ? AND tile_id IN ({marks})''',
                        (local, *batch),
                    ).fetchone()
                    total += int(row[0])
        return total

    def clear(
        self,
        local_ids: Iterable[int],
        remote_ids: Iterable[int],
        zoom: int,
    ) -> int:
        """Delete every time slice of the given tile ids.

        Returns:
            Number of rows deleted.
        """
        deleted = 0
        with self._lock:
            conn = self._get_connection(zoom)
            for local, ids in ((1, local_ids), (0, remote_ids)):
                for batch in _chunks(ids):
                    marks = ','.join('?' * len(batch))
                    cursor = conn.execute(
                        f'DELETE FROM tiles WHERE local = ? AND tile_id IN ({marks})',
                        (local, *batch),
                    )
                    deleted += cursor.rowcount
            conn.commit()
        logger.info('TileStore: cleared %d rows at zoom %d', deleted, zoom)
        return deleted

    def close(self) -> None:
        """Close all database connections."""
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()
        logger.info('TileStore closed')

    def __enter__(self) -> TileStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
