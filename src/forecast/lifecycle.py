"""Persisted per-region forecast fields.

RegionLifecycleStore is the only writer of the four per-region entries
(download state, last update, update frequency, Wi-Fi-only flag). The
key-value mechanics live behind PreferenceBackend; two backends are
provided: an in-memory dict and a tomlkit-backed file.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Protocol

import tomlkit

from shared.constants import (
    LAST_UPDATE_NEVER,
    PREF_FORECAST_DOWNLOAD_STATE_PREFIX,
    PREF_FORECAST_FREQUENCY_PREFIX,
    PREF_FORECAST_LAST_UPDATE_PREFIX,
    PREF_FORECAST_WIFI_PREFIX,
    DownloadState,
    UpdateFrequency,
)

logger = logging.getLogger(__name__)


class PreferenceBackend(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, *keys: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryPreferences:
    """Process-local preferences, for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class TomlPreferences(MemoryPreferences):
    """Preferences persisted to a flat TOML file, rewritten on every change."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            doc = tomlkit.parse(self.path.read_text(encoding='utf-8'))
            self._data.update(doc.unwrap())
            logger.info('Loaded %d preferences from %s', len(self._data), self.path)

    def _save(self) -> None:
        doc = tomlkit.document()
        for key in sorted(self._data):
            doc[key] = self._data[key]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp.write_text(tomlkit.dumps(doc), encoding='utf-8')
        tmp.replace(self.path)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._save()

    def remove(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)
            self._save()


class RegionLifecycleStore:
    """Typed accessors over the persisted per-region preferences."""

    def __init__(self, backend: PreferenceBackend) -> None:
        self.backend = backend

    @staticmethod
    def preference_keys(region_id: str) -> list[str]:
        return [
            PREF_FORECAST_DOWNLOAD_STATE_PREFIX + region_id,
            PREF_FORECAST_LAST_UPDATE_PREFIX + region_id,
            PREF_FORECAST_FREQUENCY_PREFIX + region_id,
            PREF_FORECAST_WIFI_PREFIX + region_id,
        ]

    # Download state
    def get_download_state(self, region_id: str) -> DownloadState:
        raw = self.backend.get(PREF_FORECAST_DOWNLOAD_STATE_PREFIX + region_id)
        try:
            return DownloadState(raw) if raw is not None else DownloadState.UNDEFINED
        except ValueError:
            logger.warning('Unknown download state %r for %s', raw, region_id)
            return DownloadState.UNDEFINED

    def set_download_state(self, region_id: str, state: DownloadState) -> None:
        self.backend.set(PREF_FORECAST_DOWNLOAD_STATE_PREFIX + region_id, state.value)

    def is_undefined(self, region_id: str) -> bool:
        return self.get_download_state(region_id) == DownloadState.UNDEFINED

    def is_in_progress(self, region_id: str) -> bool:
        return self.get_download_state(region_id) == DownloadState.IN_PROGRESS

    def is_finished(self, region_id: str) -> bool:
        return self.get_download_state(region_id) == DownloadState.FINISHED

    # Last update (epoch ms, LAST_UPDATE_NEVER when never completed)
    def get_last_update(self, region_id: str) -> int:
        return int(
            self.backend.get(PREF_FORECAST_LAST_UPDATE_PREFIX + region_id, LAST_UPDATE_NEVER)
        )

    def set_last_update(self, region_id: str, millis: int) -> None:
        self.backend.set(PREF_FORECAST_LAST_UPDATE_PREFIX + region_id, int(millis))

    # Update frequency
    def get_frequency(self, region_id: str) -> UpdateFrequency:
        raw = self.backend.get(PREF_FORECAST_FREQUENCY_PREFIX + region_id)
        try:
            return UpdateFrequency(raw) if raw is not None else UpdateFrequency.UNDEFINED
        except ValueError:
            return UpdateFrequency.UNDEFINED

    def set_frequency(self, region_id: str, frequency: UpdateFrequency) -> None:
        self.backend.set(PREF_FORECAST_FREQUENCY_PREFIX + region_id, frequency.value)

    # Wi-Fi only
    def get_wifi_only(self, region_id: str) -> bool:
        return bool(self.backend.get(PREF_FORECAST_WIFI_PREFIX + region_id, False))

    def set_wifi_only(self, region_id: str, value: bool) -> None:
        self.backend.set(PREF_FORECAST_WIFI_PREFIX + region_id, bool(value))

    def remove(self, region_id: str) -> None:
        """Drop all persisted fields of the region."""
        self.backend.remove(*self.preference_keys(region_id))

    def region_ids(self) -> list[str]:
        """Regions that have a persisted download state."""
        prefix = PREF_FORECAST_DOWNLOAD_STATE_PREFIX
        return [k[len(prefix):] for k in self.backend.keys() if k.startswith(prefix)]
