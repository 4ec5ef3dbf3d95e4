"""Fixtures shared by the forecast tests."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from domain.models import ForecastSettings
from forecast.context import StaticConnectivity, StaticRegionCatalog
from forecast.lifecycle import MemoryPreferences
from forecast.manager import OfflineForecastManager
from forecast_fakes import (
    DAY_START,
    REGION_A,
    REGION_B,
    REGION_C,
    ZOOM,
    FakeClock,
    FakeEngine,
    FakeStore,
)
from shared.dispatch import UiDispatcher


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connectivity():
    return StaticConnectivity(online=True, wifi=True)


@pytest.fixture
def catalog():
    return StaticRegionCatalog([REGION_A, REGION_B, REGION_C])


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix='test-bg')
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def layer_refreshes():
    return []


@pytest.fixture
def make_manager(engine, store, clock, connectivity, catalog, executor, layer_refreshes, tmp_path):
    """Factory for managers wired to the fakes; keyword args override settings."""

    def _make(is_feature_active=None, **overrides):
        settings = ForecastSettings(zoom=ZOOM, cache_dir=str(tmp_path), **overrides)
        return OfflineForecastManager(
            settings,
            catalog,
            connectivity,
            engine=engine,
            store=store,
            preferences=MemoryPreferences(),
            executor=executor,
            ui=UiDispatcher(immediate=True),
            refresh_layers=lambda: layer_refreshes.append(True),
            is_feature_active=is_feature_active,
            clock=clock,
            day_start=lambda: DAY_START,
        )

    return _make


@pytest.fixture
def manager(make_manager):
    mgr = make_manager()
    yield mgr
    mgr.shutdown()
