"""Offline weather forecast: download cycles, size estimation and eviction."""
from forecast.context import ForecastContext, StaticConnectivity, StaticRegionCatalog
from forecast.lifecycle import MemoryPreferences, RegionLifecycleStore, TomlPreferences
from forecast.manager import OfflineForecastManager

__all__ = [
    'ForecastContext',
    'MemoryPreferences',
    'OfflineForecastManager',
    'RegionLifecycleStore',
    'StaticConnectivity',
    'StaticRegionCatalog',
    'TomlPreferences',
]
