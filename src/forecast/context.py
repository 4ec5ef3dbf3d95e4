"""Collaborators shared by the orchestrator, the size estimator and the evictor."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from shared.constants import FORECAST_DATES_COUNT, OFFLINE_STATES
from tiles.addressing import tile_ids_for_bounds

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from concurrent.futures import Executor, Future

    from domain.models import BBox, ForecastSettings, Region
    from forecast.info_cache import EphemeralInfoCache
    from forecast.lifecycle import RegionLifecycleStore
    from forecast.sizes import WholeCacheSizeMemo
    from shared.constants import DownloadState
    from shared.dispatch import UiDispatcher
    from shared.progress import CancelToken
    from tiles.engine import RangeResult, TileCallback

logger = logging.getLogger(__name__)


class ConnectivityProvider(Protocol):
    def is_online(self) -> bool: ...

    def is_on_wifi(self) -> bool: ...


class RegionCatalog(Protocol):
    def resolve(self, region_id: str) -> Region | None: ...

    def bounds(self, region: Region) -> BBox: ...


class DownloadEngine(Protocol):
    def fetch_tile_range(
        self,
        bbox: BBox,
        date_time: int,
        *,
        force_refresh: bool,
        cancel_token: CancelToken,
        zoom: int,
        on_tile_done: TileCallback | None = None,
    ) -> Future[RangeResult]: ...


class TileStorage(Protocol):
    def size_of(self, local_ids: Iterable[int], remote_ids: Iterable[int], zoom: int) -> int: ...

    def clear(self, local_ids: Iterable[int], remote_ids: Iterable[int], zoom: int) -> int: ...


class StaticConnectivity:
    """Connectivity fixed by the caller (CLI flags, tests)."""

    def __init__(self, *, online: bool = True, wifi: bool = True) -> None:
        self.online = online
        self.wifi = wifi

    def is_online(self) -> bool:
        return self.online

    def is_on_wifi(self) -> bool:
        return self.online and self.wifi


class StaticRegionCatalog:
    """Region catalog backed by a dict."""

    def __init__(self, regions: Iterable[Region] = ()) -> None:
        self._regions = {r.region_id: r for r in regions}

    def add(self, region: Region) -> None:
        self._regions[region.region_id] = region

    def resolve(self, region_id: str) -> Region | None:
        return self._regions.get(region_id)

    def bounds(self, region: Region) -> BBox:
        return region.bbox

    def region_ids(self) -> list[str]:
        return list(self._regions)


@functools.lru_cache(maxsize=256)
def _cached_tile_ids(bbox: BBox, zoom: int) -> tuple[int, ...]:
    return tuple(sorted(tile_ids_for_bounds(bbox, zoom)))


@dataclass
class ForecastContext:
    settings: ForecastSettings
    catalog: RegionCatalog
    connectivity: ConnectivityProvider
    engine: DownloadEngine
    store: TileStorage
    lifecycle: RegionLifecycleStore
    info: EphemeralInfoCache
    memo: WholeCacheSizeMemo
    executor: Executor
    ui: UiDispatcher
    refresh_layers: Callable[[], None] | None = None
    is_feature_active: Callable[[], bool] | None = None

    @property
    def zoom(self) -> int:
        return self.settings.zoom

    def feature_active(self) -> bool:
        if not self.settings.enabled:
            return False
        return self.is_feature_active() if self.is_feature_active is not None else True

    def tile_ids_for_region(self, region: Region) -> list[int]:
        return list(_cached_tile_ids(self.catalog.bounds(region), self.zoom))

    def tile_ids(self, region_id: str) -> list[int] | None:
        """Tile ids of the region, None when the catalog does not know it."""
        region = self.catalog.resolve(region_id)
        return self.tile_ids_for_region(region) if region is not None else None

    def progress_destination(self, region_id: str) -> int:
        tile_ids = self.tile_ids(region_id)
        return len(tile_ids) * FORECAST_DATES_COUNT if tile_ids is not None else -1

    def regions_with_states(self, *states: DownloadState) -> list[str]:
        known = dict.fromkeys(self.lifecycle.region_ids())
        known.update(dict.fromkeys(self.info.region_ids()))
        return [
            region_id
            for region_id in known
            if self.lifecycle.get_download_state(region_id) in states
        ]

    def offline_region_ids(self) -> list[str]:
        return self.regions_with_states(*OFFLINE_STATES)

    def offline_tile_ids(self, region_ids: Iterable[str] | None = None) -> list[int]:
        """Deduplicated tile ids of the given regions (default: all offline ones)."""
        if region_ids is None:
            region_ids = self.offline_region_ids()
        seen: dict[int, None] = {}
        for region_id in region_ids:
            for tile_id in self.tile_ids(region_id) or ():
                seen.setdefault(tile_id, None)
        return list(seen)

    def is_contained_in_offline_regions(self, tile_id: int, exclude_region_id: str) -> bool:
        """True if an offline region other than exclude_region_id covers tile_id."""
        for region_id in self.offline_region_ids():
            if region_id == exclude_region_id:
                continue
            if tile_id in (self.tile_ids(region_id) or ()):
                return True
        return False

    def update_layers(self) -> None:
        self.ui.post(self.refresh_layers)

    def run_async(self, fn: Callable[[], object], name: str) -> Future:
        """Run fn on the background pool; failures are logged and kept in the future."""

        def _task():
            try:
                return fn()
            except Exception:
                logger.exception('Background task %s failed', name)
                raise

        return self.executor.submit(_task)
