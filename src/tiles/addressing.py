"""Tile addressing: geographic bounds -> XYZ tile ids at a fixed zoom.

A tile id packs the grid coordinates into one 64-bit integer:
x occupies the low 32 bits and y the high 32 bits. Both halves use the
same width, so unpack_x/unpack_y are exact inverses of pack for every
coordinate in [0, 2**32).
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from shared.constants import (
    MERCATOR_MAX_LAT_DEG,
    TILE_COORD_BITS,
    TILE_COORD_MASK,
    WORLD_LNG_HALF_SPAN_DEG,
    XY_EPSILON,
)

if TYPE_CHECKING:
    from domain.models import BBox


def pack(x: int, y: int) -> int:
    """Pack tile coordinates into a tile id."""
    if not (0 <= x <= TILE_COORD_MASK) or not (0 <= y <= TILE_COORD_MASK):
        msg = f'Tile coordinates out of range: x={x}, y={y}'
        raise ValueError(msg)
    return (y << TILE_COORD_BITS) | x


def unpack_x(tile_id: int) -> int:
    return tile_id & TILE_COORD_MASK


def unpack_y(tile_id: int) -> int:
    return (tile_id >> TILE_COORD_BITS) & TILE_COORD_MASK


def _lng_to_tile_x(lng: float, n: int) -> float:
    return (lng + WORLD_LNG_HALF_SPAN_DEG) / (2 * WORLD_LNG_HALF_SPAN_DEG) * n


def _lat_to_tile_y(lat: float, n: int) -> float:
    lat = max(-MERCATOR_MAX_LAT_DEG, min(MERCATOR_MAX_LAT_DEG, lat))
    lat_rad = math.radians(lat)
    return (1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n


def _clamp(v: int, n: int) -> int:
    return max(0, min(n - 1, v))


def grid_bounds(bbox: BBox, zoom: int) -> tuple[list[int], int, int]:
    """
    Tile grid covered by bbox at zoom.

    Returns (xs, y_min, y_max): the x columns in west-to-east order (wrapping
    across the antimeridian when left > right) and the inclusive row range.
    """
    if zoom < 0:
        msg = f'Invalid zoom: {zoom}'
        raise ValueError(msg)
    n = 2**zoom
    x_min = _clamp(math.floor(_lng_to_tile_x(bbox.left, n)), n)
    x_max = _clamp(math.floor(_lng_to_tile_x(bbox.right, n) - XY_EPSILON), n)
    # North edge maps to the smaller row number
    y_min = _clamp(math.floor(_lat_to_tile_y(bbox.top, n)), n)
    y_max = _clamp(math.floor(_lat_to_tile_y(bbox.bottom, n) - XY_EPSILON), n)
    y_max = max(y_min, y_max)

    if bbox.left > bbox.right:
        xs = list(range(x_min, n)) + list(range(0, x_max + 1))
    else:
        xs = list(range(x_min, max(x_min, x_max) + 1))
    return xs, y_min, y_max


def tile_ids_for_bounds(bbox: BBox, zoom: int) -> set[int]:
    """Deterministic set of tile ids covering bbox at zoom."""
    xs, y_min, y_max = grid_bounds(bbox, zoom)
    return {pack(x, y) for y in range(y_min, y_max + 1) for x in xs}


def tile_count_for_bounds(bbox: BBox, zoom: int) -> int:
    xs, y_min, y_max = grid_bounds(bbox, zoom)
    return len(xs) * (y_max - y_min + 1)
