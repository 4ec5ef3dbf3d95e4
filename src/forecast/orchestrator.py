"""Per-region forecast download cycle.

A cycle issues one engine request per forecast slice without waiting for
any of them. The engine reports every tile of every slice separately, so the
destination is tile count times slice count. Tile callbacks arrive on engine
threads in any order; each one bumps the region's progress counter under the
region lock, and the one that reaches the destination finishes the cycle.
Cancellation is a token handed to every request: the engine stops issuing
transfers for it, and callbacks of a cancelled or superseded cycle are ignored.
"""

from __future__ import annotations

import concurrent.futures
import functools
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from forecast.timeline import forecast_timestamps, start_of_today_ms, utc_now_ms
from shared.constants import FORECAST_DATES_COUNT, LAST_UPDATE_NEVER, DownloadState
from shared.progress import CancelToken

if TYPE_CHECKING:
    from collections.abc import Callable

    from forecast.context import ForecastContext
    from forecast.sizes import CacheSizeEstimator
    from shared.progress import ProgressSink

logger = logging.getLogger(__name__)


@dataclass
class SliceRequest:
    """One engine request: every tile of the region for one forecast slice."""

    date_time: int
    expected: int
    reported: int = 0


@dataclass
class DownloadCycle:
    """One attempt to download every forecast slice of a region."""

    region_id: str
    destination: int
    token: CancelToken
    progress: ProgressSink | None = None
    futures: list[concurrent.futures.Future] = field(default_factory=list)
    completed: bool = False


class DownloadOrchestrator:
    def __init__(
        self,
        ctx: ForecastContext,
        sizes: CacheSizeEstimator,
        *,
        clock: Callable[[], int] = utc_now_ms,
        day_start: Callable[[], int] = start_of_today_ms,
    ) -> None:
        self.ctx = ctx
        self.sizes = sizes
        self._clock = clock
        self._day_start = day_start
        self._cycles: dict[str, DownloadCycle] = {}
        self._cycles_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_cycle(self, region_id: str) -> DownloadCycle | None:
        with self._cycles_lock:
            return self._cycles.get(region_id)

    def get_progress_destination(self, region_id: str) -> int:
        return self.ctx.progress_destination(region_id)

    def can_download(self, region_id: str) -> bool:
        """Feature switch, connectivity and the region's Wi-Fi-only rule."""
        if not self.ctx.feature_active():
            logger.debug('Forecast download for %s refused: feature inactive', region_id)
            return False
        connectivity = self.ctx.connectivity
        if not connectivity.is_online():
            logger.debug('Forecast download for %s refused: offline', region_id)
            return False
        if not connectivity.is_on_wifi() and self.ctx.lifecycle.get_wifi_only(region_id):
            logger.debug('Forecast download for %s refused: Wi-Fi only', region_id)
            return False
        return True

    # ------------------------------------------------------------------
    # Download cycle
    # ------------------------------------------------------------------

    def start_download(self, region_id: str, progress: ProgressSink | None = None) -> bool:
        """
        Start a download cycle for the region.

        Returns whether the region is FINISHED when this call returns. The
        requests are not awaited, so a fresh download normally returns False;
        completion is signalled through the lifecycle state, the progress sink
        and the layer refresh.
        """
        if not self.can_download(region_id):
            return False
        ctx = self.ctx
        region = ctx.catalog.resolve(region_id)
        if region is None:
            logger.warning('Forecast download: unknown region %s', region_id)
            return False
        tile_ids = ctx.tile_ids_for_region(region)
        if not tile_ids:
            logger.warning('Forecast download: region %s covers no tiles', region_id)
            return False
        bbox = ctx.catalog.bounds(region)
        destination = len(tile_ids) * FORECAST_DATES_COUNT

        with ctx.info.region_lock(region_id):
            with self._cycles_lock:
                previous = self._cycles.get(region_id)
                if previous is not None:
                    previous.token.cancel()
                cycle = DownloadCycle(
                    region_id=region_id,
                    destination=destination,
                    token=CancelToken(lambda: not ctx.lifecycle.is_in_progress(region_id)),
                    progress=progress,
                )
                self._cycles[region_id] = cycle
            ctx.info.set_progress(region_id, 0)
            ctx.lifecycle.set_download_state(region_id, DownloadState.IN_PROGRESS)

        logger.info(
            'Forecast download started: %s (%d tiles, %d tile slices)',
            region_id,
            len(tile_ids),
            destination,
        )
        if progress is not None:
            message = f'Downloading {region.display_name} weather forecast'
            ctx.ui.post(lambda: progress.start_task(message, destination))

        for date_time in forecast_timestamps(self._day_start()):
            if cycle.token.cancelled:
                # download was cancelled by the user
                logger.info('Forecast download for %s cancelled while issuing', region_id)
                break
            request = SliceRequest(date_time=date_time, expected=len(tile_ids))
            future = self._issue(cycle, request, bbox)
            cycle.futures.append(future)
            future.add_done_callback(functools.partial(self._on_range_done, cycle, request))

        return ctx.lifecycle.is_finished(region_id)

    def _issue(
        self, cycle: DownloadCycle, request: SliceRequest, bbox
    ) -> concurrent.futures.Future:
        try:
            return self.ctx.engine.fetch_tile_range(
                bbox,
                request.date_time,
                force_refresh=True,
                cancel_token=cycle.token,
                zoom=self.ctx.zoom,
                on_tile_done=functools.partial(self._on_tile_done, cycle, request),
            )
        except Exception as e:
            logger.exception('Engine rejected forecast request for %s', cycle.region_id)
            failed: concurrent.futures.Future = concurrent.futures.Future()
            failed.set_exception(e)
            return failed

    def _is_current(self, cycle: DownloadCycle) -> bool:
        with self._cycles_lock:
            return self._cycles.get(cycle.region_id) is cycle

    def _on_tile_done(
        self,
        cycle: DownloadCycle,
        request: SliceRequest,
        succeeded: bool,
        completed: int = 0,
        total: int = 0,
    ) -> None:
        self._advance(cycle, request, succeeded)

    def _on_range_done(
        self, cycle: DownloadCycle, request: SliceRequest, future: concurrent.futures.Future
    ) -> None:
        # A request that failed as a whole never reported its tiles
        if future.cancelled():
            error: BaseException | None = concurrent.futures.CancelledError()
        else:
            error = future.exception()
        if error is None:
            return
        logger.warning(
            'Forecast request for %s at %d failed: %s',
            cycle.region_id,
            request.date_time,
            error,
        )
        missing = request.expected - request.reported
        if missing > 0:
            self._advance(cycle, request, False, missing)

    def _advance(
        self, cycle: DownloadCycle, request: SliceRequest, succeeded: bool, steps: int = 1
    ) -> None:
        region_id = cycle.region_id
        if not self._is_current(cycle) or cycle.token.cancelled:
            logger.debug('Weather offline forecast download %s : cancel', region_id)
            return

        ctx = self.ctx
        with ctx.info.locked(region_id) as entry:
            request.reported += steps
            # a restart may have swapped the cycle while this callback waited
            if not self._is_current(cycle) or cycle.token.cancelled:
                return
            if cycle.completed or not ctx.lifecycle.is_in_progress(region_id):
                return
            entry.progress = min(cycle.destination, entry.progress + steps)
            downloaded = entry.progress
            finished = downloaded / cycle.destination >= 1.0
            if finished:
                cycle.completed = True
                ctx.lifecycle.set_download_state(region_id, DownloadState.FINISHED)
                ctx.lifecycle.set_last_update(region_id, self._clock())

        if cycle.progress is not None:
            sink = cycle.progress
            remaining = cycle.destination - downloaded
            ctx.ui.post(lambda: sink.remaining(remaining))
        logger.debug(
            'Weather offline forecast download %s : %.1f%% %s',
            region_id,
            100.0 * downloaded / cycle.destination,
            'done' if succeeded else 'error',
        )

        if finished:
            logger.info('Forecast download finished: %s', region_id)
            ctx.memo.reset()
            ctx.update_layers()
            self.sizes.recompute_sizes(region_id)

    def wait(self, region_id: str, timeout: float | None = None) -> bool:
        """Block until every issued request of the current cycle has settled."""
        cycle = self.current_cycle(region_id)
        if cycle is None:
            return True
        _, not_done = concurrent.futures.wait(list(cycle.futures), timeout=timeout)
        return not not_done

    # ------------------------------------------------------------------
    # Stopping
    # ------------------------------------------------------------------

    def prepare_to_stop(self, region_id: str) -> DownloadState:
        """
        Stop the region's cycle if one is running and resolve its state.

        A region that never completed a cycle goes back to UNDEFINED and loses
        its ephemeral entry; one with an earlier successful cycle goes to
        FINISHED with progress at the destination. Returns the resulting state.
        """
        ctx = self.ctx
        ctx.memo.reset(local=True)
        drop_entry = False
        with ctx.info.region_lock(region_id):
            if not ctx.lifecycle.is_in_progress(region_id):
                return ctx.lifecycle.get_download_state(region_id)
            with self._cycles_lock:
                cycle = self._cycles.pop(region_id, None)
            if cycle is not None:
                cycle.token.cancel()
            if ctx.lifecycle.get_last_update(region_id) == LAST_UPDATE_NEVER:
                ctx.lifecycle.set_download_state(region_id, DownloadState.UNDEFINED)
                drop_entry = True
            else:
                ctx.lifecycle.set_download_state(region_id, DownloadState.FINISHED)
                destination = (
                    cycle.destination
                    if cycle is not None
                    else ctx.progress_destination(region_id)
                )
                ctx.info.set_progress(region_id, destination)
            if drop_entry:
                ctx.info.remove(region_id)
        state = ctx.lifecycle.get_download_state(region_id)
        logger.info('Forecast download stopped: %s -> %s', region_id, state.value)
        return state

    def cancel_all(self) -> None:
        """Cancel every running cycle without touching persisted state."""
        with self._cycles_lock:
            cycles = list(self._cycles.values())
        for cycle in cycles:
            cycle.token.cancel()
