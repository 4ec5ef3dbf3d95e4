"""Removal of offline forecast data.

Regions may overlap, so a tile can belong to several offline regions.
remove_local_forecast never deletes a tile that another IN_PROGRESS or
FINISHED region still covers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from forecast.sizes import calculate_updates_size

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from concurrent.futures import Future

    from forecast.context import ForecastContext
    from forecast.orchestrator import DownloadOrchestrator

logger = logging.getLogger(__name__)


class CacheEvictor:
    def __init__(self, ctx: ForecastContext, orchestrator: DownloadOrchestrator) -> None:
        self.ctx = ctx
        self.orchestrator = orchestrator

    def clear_cache(self, local_only: bool, region_ids: Iterable[str] = ()) -> Future:
        """
        Clear stored tiles of the given regions in one storage call.

        With local_only and no region ids, every offline region is targeted;
        each target has its local size zeroed and its running cycle stopped.
        """
        ctx = self.ctx
        region_ids = list(region_ids)
        if local_only:
            if not region_ids:
                region_ids = ctx.offline_region_ids()
            for region_id in region_ids:
                ctx.info.discard_local_size(region_id)
                self.orchestrator.prepare_to_stop(region_id)
        ctx.memo.reset()

        tile_ids = ctx.offline_tile_ids(region_ids)
        logger.info(
            'Clearing %s forecast cache: %d regions, %d tiles',
            'local' if local_only else 'remote',
            len(region_ids),
            len(tile_ids),
        )

        def _clear() -> None:
            ctx.store.clear(
                tile_ids if local_only else [],
                [] if local_only else tile_ids,
                ctx.zoom,
            )
            ctx.update_layers()

        return ctx.run_async(_clear, 'clear-cache')

    def remove_local_forecast(
        self,
        region_ids: Iterable[str],
        *,
        refresh_map: bool = True,
        on_settings_removed: Callable[[], None] | None = None,
        on_data_removed: Callable[[], None] | None = None,
    ) -> Future:
        """
        Forget the regions' forecasts and delete tiles no other offline region uses.

        on_settings_removed is called once per region, synchronously, after its
        persisted fields are gone. on_data_removed is posted to the UI context
        once, after the storage clear has finished.
        """
        ctx = self.ctx
        ctx.memo.reset()
        queued: dict[int, None] = {}
        for region_id in region_ids:
            region_tile_ids = ctx.tile_ids(region_id)
            if region_tile_ids is None:
                logger.warning('Remove forecast: unknown region %s', region_id)
                continue
            for tile_id in region_tile_ids:
                if tile_id in queued:
                    continue
                if not ctx.is_contained_in_offline_regions(tile_id, region_id):
                    queued[tile_id] = None
            with ctx.info.region_lock(region_id):
                cycle = self.orchestrator.current_cycle(region_id)
                if cycle is not None:
                    cycle.token.cancel()
                ctx.lifecycle.remove(region_id)
                ctx.info.remove(region_id)
                ctx.info.set_size(
                    region_id, calculate_updates_size(len(region_tile_ids)), local=False
                )
            logger.info('Forecast settings removed: %s', region_id)
            if on_settings_removed is not None:
                on_settings_removed()

        tile_ids = list(queued)

        def _clear() -> None:
            if tile_ids:
                ctx.store.clear(tile_ids, [], ctx.zoom)
            if refresh_map:
                ctx.update_layers()
            ctx.ui.post(on_data_removed)

        return ctx.run_async(_clear, 'remove-local-forecast')
