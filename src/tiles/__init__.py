"""Forecast tile addressing, storage and download.

This module provides:
- pack/unpack_x/unpack_y: 64-bit tile ids from XYZ grid coordinates
- tile_ids_for_bounds: tile ids covering a bounding box at a zoom
- TileStore: SQLite-based tile storage split into local and remote scopes
- ForecastTileEngine: async downloader for one forecast slice of a tile range
"""

from tiles.addressing import (
    pack,
    tile_count_for_bounds,
    tile_ids_for_bounds,
    unpack_x,
    unpack_y,
)
from tiles.engine import ForecastTileEngine, RangeResult
from tiles.store import TileStore

__all__ = [
    'ForecastTileEngine',
    'RangeResult',
    'TileStore',
    'pack',
    'tile_count_for_bounds',
    'tile_ids_for_bounds',
    'unpack_x',
    'unpack_y',
]
