"""Cache size estimation for offline forecast regions.

Two figures are kept per region: local_size, the bytes already stored for
the region's tiles, and projected_update_size, what a full re-download of the
forecast horizon would add. The latter is the TILE_BYTE_BUDGET heuristic,
never a measurement.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from shared.constants import FORECAST_DATES_COUNT, TILE_BYTE_BUDGET

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    from forecast.context import ForecastContext

logger = logging.getLogger(__name__)


def calculate_updates_size(tile_count: int) -> int:
    """Projected bytes for downloading every slice of tile_count tiles."""
    return tile_count * FORECAST_DATES_COUNT * TILE_BYTE_BUDGET


class WholeCacheSizeMemo:
    """Memoized whole-cache sizes, one for local data and one for remote."""

    def __init__(self) -> None:
        self._local = 0
        self._remote = 0
        self._lock = threading.Lock()

    def get(self, local: bool) -> int:
        with self._lock:
            return self._local if local else self._remote

    def set(self, size: int, local: bool) -> None:
        with self._lock:
            if local:
                self._local = size
            else:
                self._remote = size

    def reset(self, local: bool | None = None) -> None:
        """Invalidate one memo, or both when local is None."""
        with self._lock:
            if local is None or local:
                self._local = 0
            if local is None or not local:
                self._remote = 0


class CacheSizeEstimator:
    def __init__(self, ctx: ForecastContext) -> None:
        self.ctx = ctx

    def recompute_sizes(
        self, region_id: str, on_done: Callable[[], None] | None = None
    ) -> Future:
        """
        Reset and recompute the region's sizes on the background pool.

        on_done is posted to the UI context after a successful computation.
        A storage failure fails the returned future and leaves the region
        marked as not calculated.
        """
        info = self.ctx.info
        generation = info.reset_sizes(region_id)

        def _compute() -> None:
            tile_ids = self.ctx.tile_ids(region_id)
            if tile_ids:
                local_size = self.ctx.store.size_of(tile_ids, [], self.ctx.zoom)
                with info.region_lock(region_id):
                    if info.generation(region_id) != generation:
                        # purged or reset while the store was being read
                        logger.debug('Sizes for %s discarded', region_id)
                        return
                    with info.locked(region_id) as entry:
                        entry.local_size = local_size
                        entry.projected_update_size = calculate_updates_size(len(tile_ids))
                        entry.sizes_calculated = True
                logger.debug(
                    'Sizes for %s: local=%d projected=%d',
                    region_id,
                    local_size,
                    calculate_updates_size(len(tile_ids)),
                )
            self.ctx.ui.post(on_done)

        return self.ctx.run_async(_compute, f'sizes:{region_id}')

    def recompute_sizes_if_needed(
        self, region_id: str, on_done: Callable[[], None] | None = None
    ) -> Future | None:
        """Recompute only if the region's sizes are not calculated yet."""
        if self.ctx.info.is_sizes_calculated(region_id):
            self.ctx.ui.post(on_done)
            return None
        return self.recompute_sizes(region_id, on_done)

    def whole_cache_size(
        self, local: bool, on_done: Callable[[int], None] | None = None
    ) -> Future:
        """
        Total bytes over all offline regions, computed once per invalidation.

        The future resolves to the size; on_done receives it in the UI context.
        """

        def _compute() -> int:
            tile_ids = self.ctx.offline_tile_ids()
            size = self.ctx.memo.get(local)
            if size == 0 and (not local or tile_ids):
                size = self.ctx.store.size_of(
                    tile_ids if local else [],
                    [] if local else tile_ids,
                    self.ctx.zoom,
                )
                self.ctx.memo.set(size, local)
            if on_done is not None:
                self.ctx.ui.post(lambda: on_done(size))
            return size

        return self.ctx.run_async(_compute, 'whole-cache-size')
