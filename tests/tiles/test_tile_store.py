"""Tests for TileStore."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from tiles.addressing import pack
from tiles.store import TileStore

ZOOM = 4
T0 = 1_767_225_600_000


@pytest.fixture
def temp_cache_dir():
    """Create temporary directory for cache."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_cache_dir):
    """Create TileStore instance."""
    ts = TileStore(cache_dir=temp_cache_dir)
    yield ts
    ts.close()


class TestTileStore:
    """Tests for TileStore class."""

    def test_init_creates_directory(self, temp_cache_dir):
        """Test that init creates cache directory."""
        cache_dir = temp_cache_dir / 'forecast'
        store = TileStore(cache_dir=cache_dir)
        assert cache_dir.exists()
        store.close()

    def test_put_and_get(self, store):
        """Test basic put and get operations."""
        store.put(ZOOM, pack(1, 2), T0, b'slice')
        assert store.get(ZOOM, pack(1, 2), T0) == b'slice'
        assert store.get(ZOOM, pack(1, 2), T0 + 1) is None

    def test_put_replaces(self, store):
        store.put(ZOOM, pack(1, 2), T0, b'old')
        store.put(ZOOM, pack(1, 2), T0, b'new')
        assert store.get(ZOOM, pack(1, 2), T0) == b'new'

    def test_scopes_are_separate(self, store):
        """Local and remote copies of one slice are distinct rows."""
        store.put(ZOOM, pack(1, 2), T0, b'local', local=True)
        store.put(ZOOM, pack(1, 2), T0, b'remote!', local=False)
        assert store.get(ZOOM, pack(1, 2), T0, local=True) == b'local'
        assert store.get(ZOOM, pack(1, 2), T0, local=False) == b'remote!'

    def test_exists(self, store):
        assert not store.exists(ZOOM, pack(1, 2), T0)
        store.put(ZOOM, pack(1, 2), T0, b'x')
        assert store.exists(ZOOM, pack(1, 2), T0)
        assert not store.exists(ZOOM, pack(1, 2), T0, local=False)

    def test_different_zooms(self, store, temp_cache_dir):
        """Each zoom has its own database file."""
        store.put(3, pack(1, 1), T0, b'z3')
        store.put(4, pack(1, 1), T0, b'z4')
        assert store.get(3, pack(1, 1), T0) == b'z3'
        assert (temp_cache_dir / 'forecast_zoom_3.db').exists()
        assert (temp_cache_dir / 'forecast_zoom_4.db').exists()

    def test_size_of(self, store):
        """Sizes sum every slice of the requested ids in each scope."""
        a, b = pack(1, 1), pack(2, 1)
        store.put(ZOOM, a, T0, b'1234')
        store.put(ZOOM, a, T0 + 1, b'12')
        store.put(ZOOM, b, T0, b'123', local=False)
        assert store.size_of([a], [], ZOOM) == 6
        assert store.size_of([], [b], ZOOM) == 3
        assert store.size_of([a, b], [a, b], ZOOM) == 9
        assert store.size_of([], [], ZOOM) == 0

    def test_clear(self, store):
        """clear deletes every slice of the ids in the given scope only."""
        a, b = pack(1, 1), pack(2, 1)
        store.put(ZOOM, a, T0, b'a')
        store.put(ZOOM, a, T0 + 1, b'a')
        store.put(ZOOM, a, T0, b'a', local=False)
        store.put(ZOOM, b, T0, b'b')
        assert store.clear([a], [], ZOOM) == 2
        assert not store.exists(ZOOM, a, T0)
        assert store.exists(ZOOM, a, T0, local=False)
        assert store.exists(ZOOM, b, T0)

    def test_many_ids(self, store):
        """Id lists longer than one query batch are handled."""
        ids = [pack(x, 0) for x in range(1200)]
        for tile_id in ids:
            store.put(ZOOM, tile_id, T0, b'xy')
        assert store.size_of(ids, [], ZOOM) == 2400
        assert store.clear(ids, [], ZOOM) == 1200
        assert store.size_of(ids, [], ZOOM) == 0

    def test_large_tile_ids(self, store):
        """Ids wider than 32 bits survive SQLite round trips."""
        tile_id = pack(2**31, 2**31 - 1)
        store.put(ZOOM, tile_id, T0, b'big')
        assert store.size_of([tile_id], [], ZOOM) == 3

    def test_context_manager(self, temp_cache_dir):
        with TileStore(temp_cache_dir) as store:
            store.put(ZOOM, 1, T0, b'x')
        assert store._connections == {}
