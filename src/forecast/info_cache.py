"""Process-lifetime cache of per-region sizes and download progress.

Nothing here is persisted. Entries are created on first write, removed when a
region's local data is purged, and every read-modify-write goes through the
region's own lock.
"""

from __future__ import annotations

import contextlib
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


@dataclass
class RegionCacheInfo:
    """Ephemeral per-region figures."""

    local_size: int = 0
    projected_update_size: int = 0
    sizes_calculated: bool = False
    progress: int = 0


class EphemeralInfoCache:
    def __init__(self) -> None:
        self._entries: dict[str, RegionCacheInfo] = {}
        self._locks: dict[str, threading.RLock] = {}
        # Bumped whenever a region's sizes are discarded; survives remove()
        self._generations: dict[str, int] = {}
        self._guard = threading.Lock()

    def _lock_for(self, region_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(region_id)
            if lock is None:
                lock = self._locks[region_id] = threading.RLock()
            return lock

    def region_lock(self, region_id: str) -> threading.RLock:
        """The region's exclusive lock, without creating an entry."""
        return self._lock_for(region_id)

    @contextlib.contextmanager
    def locked(self, region_id: str) -> Iterator[RegionCacheInfo]:
        """Exclusive section over the region's entry, created if missing."""
        with self._lock_for(region_id):
            with self._guard:
                info = self._entries.get(region_id)
                if info is None:
                    info = self._entries[region_id] = RegionCacheInfo()
            yield info

    def get(self, region_id: str) -> RegionCacheInfo | None:
        """Snapshot of the entry, or None when the region has none."""
        with self._lock_for(region_id):
            with self._guard:
                info = self._entries.get(region_id)
            return replace(info) if info is not None else None

    def remove(self, region_id: str) -> None:
        with self._lock_for(region_id), self._guard:
            self._entries.pop(region_id, None)
            self._generations[region_id] = self._generations.get(region_id, 0) + 1

    def generation(self, region_id: str) -> int:
        """Counter of size invalidations; a stale computation must not write back."""
        with self._guard:
            return self._generations.get(region_id, 0)

    def reset_sizes(self, region_id: str) -> int:
        """Zero the sizes, clear the flag and return the new generation."""
        with self.locked(region_id) as info:
            info.local_size = 0
            info.projected_update_size = 0
            info.sizes_calculated = False
            with self._guard:
                generation = self._generations[region_id] = (
                    self._generations.get(region_id, 0) + 1
                )
        return generation

    def discard_local_size(self, region_id: str) -> None:
        with self.locked(region_id) as info:
            info.local_size = 0
            with self._guard:
                self._generations[region_id] = self._generations.get(region_id, 0) + 1

    def region_ids(self) -> list[str]:
        with self._guard:
            return list(self._entries)

    # Convenience accessors
    def get_progress(self, region_id: str) -> int:
        info = self.get(region_id)
        return info.progress if info is not None else 0

    def set_progress(self, region_id: str, value: int) -> None:
        with self.locked(region_id) as info:
            info.progress = value

    def get_size(self, region_id: str, *, local: bool) -> int:
        info = self.get(region_id)
        if info is None:
            return 0
        return info.local_size if local else info.projected_update_size

    def set_size(self, region_id: str, size: int, *, local: bool) -> None:
        with self.locked(region_id) as info:
            if local:
                info.local_size = size
            else:
                info.projected_update_size = size

    def is_sizes_calculated(self, region_id: str) -> bool:
        info = self.get(region_id)
        return info.sizes_calculated if info is not None else False
