"""Offline forecast manager - wires the cache components together."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from forecast.context import ForecastContext
from forecast.eviction import CacheEvictor
from forecast.info_cache import EphemeralInfoCache
from forecast.lifecycle import RegionLifecycleStore, TomlPreferences
from forecast.orchestrator import DownloadOrchestrator
from forecast.sizes import CacheSizeEstimator, WholeCacheSizeMemo
from forecast.timeline import days_between, start_of_today_ms, utc_now_ms
from infrastructure.http.client import resolve_cache_dir
from shared.constants import (
    FORECAST_OUTDATED_DAYS,
    LAST_UPDATE_NEVER,
    DownloadState,
)
from shared.dispatch import UiDispatcher
from tiles.engine import ForecastTileEngine
from tiles.store import TileStore

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from concurrent.futures import Executor, Future

    from domain.models import ForecastSettings
    from forecast.context import (
        ConnectivityProvider,
        DownloadEngine,
        RegionCatalog,
        TileStorage,
    )
    from forecast.info_cache import RegionCacheInfo
    from forecast.lifecycle import PreferenceBackend
    from shared.progress import ProgressSink

logger = logging.getLogger(__name__)


class OfflineForecastManager:
    """
    Entry point for offline forecast downloads and cache management.

    Collaborators not passed in are built from settings: a SQLite TileStore
    and a TOML preference file under the cache dir, an HTTP engine, a
    background thread pool and an immediate UI dispatcher.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: ForecastSettings,
        catalog: RegionCatalog,
        connectivity: ConnectivityProvider,
        *,
        engine: DownloadEngine | None = None,
        store: TileStorage | None = None,
        preferences: PreferenceBackend | None = None,
        executor: Executor | None = None,
        ui: UiDispatcher | None = None,
        refresh_layers: Callable[[], None] | None = None,
        is_feature_active: Callable[[], bool] | None = None,
        clock: Callable[[], int] = utc_now_ms,
        day_start: Callable[[], int] = start_of_today_ms,
    ) -> None:
        self._owned: list[object] = []
        cache_dir = resolve_cache_dir(settings.cache_dir)
        if store is None:
            store = TileStore(cache_dir)
            self._owned.append(store)
        if engine is None:
            engine = ForecastTileEngine(store, settings)  # type: ignore[arg-type]
            self._owned.append(engine)
        if preferences is None:
            preferences = TomlPreferences(cache_dir / settings.preferences_file)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=settings.background_workers,
                thread_name_prefix='forecast-bg',
            )
            self._owned.append(executor)

        self._clock = clock
        self._day_start = day_start
        self.ctx = ForecastContext(
            settings=settings,
            catalog=catalog,
            connectivity=connectivity,
            engine=engine,
            store=store,
            lifecycle=RegionLifecycleStore(preferences),
            info=EphemeralInfoCache(),
            memo=WholeCacheSizeMemo(),
            executor=executor,
            ui=ui or UiDispatcher(immediate=True),
            refresh_layers=refresh_layers,
            is_feature_active=is_feature_active,
        )
        self.sizes = CacheSizeEstimator(self.ctx)
        self.orchestrator = DownloadOrchestrator(
            self.ctx, self.sizes, clock=clock, day_start=day_start
        )
        self.evictor = CacheEvictor(self.ctx, self.orchestrator)

    @property
    def lifecycle(self) -> RegionLifecycleStore:
        return self.ctx.lifecycle

    def info(self, region_id: str) -> RegionCacheInfo | None:
        return self.ctx.info.get(region_id)

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def start_download(self, region_id: str, progress: ProgressSink | None = None) -> bool:
        return self.orchestrator.start_download(region_id, progress)

    def download_forecasts_by_region_ids(self, region_ids: Iterable[str]) -> None:
        for region_id in region_ids:
            self.orchestrator.start_download(region_id)

    def check_and_download_forecasts_by_region_ids(self, region_ids: Iterable[str]) -> list[str]:
        """
        Refresh the regions whose update interval has elapsed.

        Returns the ids for which a download was started.
        """
        connectivity = self.ctx.connectivity
        if not connectivity.is_online():
            return []
        started = []
        lifecycle = self.ctx.lifecycle
        for region_id in region_ids:
            if not connectivity.is_on_wifi() and lifecycle.get_wifi_only(region_id):
                continue
            last_update = lifecycle.get_last_update(region_id)
            seconds_required = lifecycle.get_frequency(region_id).seconds_required
            if self._clock() >= last_update + seconds_required * 1000:
                previous = self.orchestrator.current_cycle(region_id)
                self.orchestrator.start_download(region_id)
                cycle = self.orchestrator.current_cycle(region_id)
                if cycle is not None and cycle is not previous:
                    started.append(region_id)
        return started

    def check_and_stop_download(self, region_id: str) -> DownloadState:
        """
        Stop the region's download and settle its data.

        A region left UNDEFINED has its local data purged; a FINISHED one has
        its sizes recomputed.
        """
        state = self.orchestrator.prepare_to_stop(region_id)
        if state == DownloadState.UNDEFINED:
            self.evictor.remove_local_forecast([region_id])
        elif state == DownloadState.FINISHED:
            self.sizes.recompute_sizes(region_id)
        return state

    def prepare_to_stop(self, region_id: str) -> DownloadState:
        return self.orchestrator.prepare_to_stop(region_id)

    def wait(self, region_id: str, timeout: float | None = None) -> bool:
        return self.orchestrator.wait(region_id, timeout)

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def recompute_sizes(
        self, region_id: str, on_done: Callable[[], None] | None = None
    ) -> Future:
        return self.sizes.recompute_sizes(region_id, on_done)

    def recompute_sizes_if_needed(
        self, region_id: str, on_done: Callable[[], None] | None = None
    ) -> Future | None:
        return self.sizes.recompute_sizes_if_needed(region_id, on_done)

    def whole_cache_size(
        self, local: bool, on_done: Callable[[int], None] | None = None
    ) -> Future:
        return self.sizes.whole_cache_size(local, on_done)

    def clear_cache(self, local_only: bool, region_ids: Iterable[str] = ()) -> Future:
        return self.evictor.clear_cache(local_only, region_ids)

    def remove_local_forecast(
        self,
        region_ids: Iterable[str],
        *,
        refresh_map: bool = True,
        on_settings_removed: Callable[[], None] | None = None,
        on_data_removed: Callable[[], None] | None = None,
    ) -> Future:
        return self.evictor.remove_local_forecast(
            region_ids,
            refresh_map=refresh_map,
            on_settings_removed=on_settings_removed,
            on_data_removed=on_data_removed,
        )

    # ------------------------------------------------------------------
    # Queries and startup
    # ------------------------------------------------------------------

    def is_forecast_outdated(self, region_id: str) -> bool:
        """A finished forecast is outdated once FORECAST_OUTDATED_DAYS have passed."""
        lifecycle = self.ctx.lifecycle
        if not lifecycle.is_finished(region_id):
            return False
        last_update = lifecycle.get_last_update(region_id)
        if last_update == LAST_UPDATE_NEVER:
            return False
        return days_between(last_update, self._day_start()) >= FORECAST_OUTDATED_DAYS

    def first_init_forecast(self, region_id: str) -> None:
        """Reconcile a region's persisted state with a fresh process."""
        lifecycle = self.ctx.lifecycle
        if lifecycle.is_in_progress(region_id):
            if lifecycle.get_last_update(region_id) == LAST_UPDATE_NEVER:
                self.evictor.remove_local_forecast([region_id])
        elif lifecycle.is_finished(region_id):
            destination = self.ctx.progress_destination(region_id)
            self.ctx.info.set_progress(region_id, destination)

    def regions_with_states(self, *states: DownloadState) -> list[str]:
        return self.ctx.regions_with_states(*states)

    def get_offline_tile_ids(self, region_ids: Iterable[str] | None = None) -> list[int]:
        return self.ctx.offline_tile_ids(region_ids)

    def is_contained_in_offline_regions(self, tile_id: int, exclude_region_id: str) -> bool:
        return self.ctx.is_contained_in_offline_regions(tile_id, exclude_region_id)

    def get_progress_destination(self, region_id: str) -> int:
        return self.orchestrator.get_progress_destination(region_id)

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Cancel running cycles and release owned resources."""
        self.orchestrator.cancel_all()
        for resource in reversed(self._owned):
            if isinstance(resource, ThreadPoolExecutor):
                resource.shutdown(wait=True)
            elif isinstance(resource, (ForecastTileEngine, TileStore)):
                resource.close()
        self._owned.clear()
        logger.info('OfflineForecastManager shut down')

    def __enter__(self) -> OfflineForecastManager:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
