"""Download engine for forecast tile ranges.

ForecastTileEngine runs a private asyncio loop in a daemon thread. Callers on
any thread submit one request per forecast slice and get back a
concurrent.futures.Future; the futures complete in whatever order the HTTP
transfers finish.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import aiohttp

from infrastructure.http.client import make_http_session
from shared.constants import HTTP_5XX_MAX, HTTP_5XX_MIN, HTTP_NOT_FOUND, HTTP_OK
from tiles.addressing import tile_ids_for_bounds, unpack_x, unpack_y

if TYPE_CHECKING:
    from concurrent.futures import Future

    from domain.models import BBox, ForecastSettings
    from shared.progress import CancelToken
    from tiles.store import TileStore

logger = logging.getLogger(__name__)

# (succeeded, completed_so_far, total) after each tile of a range
TileCallback = Callable[[bool, int, int], None]


@dataclass(frozen=True)
class RangeResult:
    """Outcome of one tile-range request."""

    succeeded: bool
    completed: int
    total: int


def format_slice_date(date_time_ms: int) -> str:
    """Slice timestamp as used in tile URLs: YYYYMMDD_HH00 (UTC)."""
    dt = datetime.fromtimestamp(date_time_ms / 1000, tz=timezone.utc)
    return dt.strftime('%Y%m%d_%H00')


class ForecastTileEngine:
    def __init__(
        self,
        store: TileStore,
        settings: ForecastSettings,
        session_factory: Callable[[], aiohttp.ClientSession] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self._session_factory = session_factory or (
            lambda: make_http_session(settings.http_timeout_s)
        )
        self._session: aiohttp.ClientSession | None = None
        self._sem: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._stats_downloads = 0
        self._stats_errors = 0

    # ------------------------------------------------------------------
    # Loop thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._loop is not None:
                return
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(
                target=self._loop.run_forever,
                daemon=True,
                name='forecast-engine',
            )
            self._thread.start()
        logger.info('ForecastTileEngine started')

    def close(self, timeout: float = 5.0) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self._close_session(), loop).result(timeout)
        except Exception:
            logger.exception('Failed to close HTTP session')
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning('Engine loop thread did not stop within timeout')
        loop.close()
        logger.info(
            'ForecastTileEngine stopped: %d tiles downloaded, %d errors',
            self._stats_downloads,
            self._stats_errors,
        )

    @property
    def stats(self) -> dict:
        return {
            'downloads': self._stats_downloads,
            'errors': self._stats_errors,
            'running': self._thread is not None and self._thread.is_alive(),
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_tile_range(
        self,
        bbox: BBox,
        date_time: int,
        *,
        force_refresh: bool,
        cancel_token: CancelToken,
        zoom: int,
        on_tile_done: TileCallback | None = None,
    ) -> Future[RangeResult]:
        """
        Download every tile of bbox for one forecast slice, without blocking.

        on_tile_done is called on the engine thread once per attempted tile,
        whether the tile succeeded or not. Tiles skipped after cancellation
        are not reported.
        """
        self.start()
        assert self._loop is not None
        return asyncio.run_coroutine_threadsafe(
            self.fetch_range(
                bbox,
                date_time,
                force_refresh=force_refresh,
                cancel_token=cancel_token,
                zoom=zoom,
                on_tile_done=on_tile_done,
            ),
            self._loop,
        )

    def tile_url(self, tile_id: int, date_time: int, zoom: int) -> str:
        return self.settings.tile_url_template.format(
            zoom=zoom,
            x=unpack_x(tile_id),
            y=unpack_y(tile_id),
            date=format_slice_date(date_time),
        )

    # ------------------------------------------------------------------
    # Coroutines (run on the engine loop)
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = self._session_factory()
            self._sem = asyncio.Semaphore(self.settings.download_concurrency)
        return self._session

    async def _close_session(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch_range(
        self,
        bbox: BBox,
        date_time: int,
        *,
        force_refresh: bool,
        cancel_token: CancelToken,
        zoom: int,
        on_tile_done: TileCallback | None = None,
    ) -> RangeResult:
        tile_ids = sorted(tile_ids_for_bounds(bbox, zoom))
        total = len(tile_ids)
        session = await self._get_session()
        assert self._sem is not None
        completed = 0

        async def _worker(tile_id: int) -> None:
            nonlocal completed
            async with self._sem:
                # Polled per tile: a cancelled cycle stops issuing transfers
                if cancel_token.cancelled:
                    return
                try:
                    ok = await self._fetch_one(
                        session, tile_id, date_time, zoom, force_refresh=force_refresh
                    )
                except Exception:
                    logger.exception('Tile %d failed', tile_id)
                    self._stats_errors += 1
                    ok = False
            if ok:
                completed += 1
            if on_tile_done is not None:
                on_tile_done(ok, completed, total)

        await asyncio.gather(*(_worker(t) for t in tile_ids))
        if completed < total:
            logger.debug(
                'Slice %s: %d/%d tiles (cancelled=%s)',
                format_slice_date(date_time),
                completed,
                total,
                cancel_token.cancelled,
            )
        return RangeResult(succeeded=completed == total, completed=completed, total=total)

    async def _fetch_one(
        self,
        session: aiohttp.ClientSession,
        tile_id: int,
        date_time: int,
        zoom: int,
        *,
        force_refresh: bool,
    ) -> bool:
        if not force_refresh and await asyncio.to_thread(
            self.store.exists, zoom, tile_id, date_time
        ):
            return True
        data = await self._download(session, self.tile_url(tile_id, date_time, zoom))
        if data is None:
            self._stats_errors += 1
            return False
        await asyncio.to_thread(
            self.store.put, zoom, tile_id, date_time, data, local=True
        )
        self._stats_downloads += 1
        return True

    async def _download(self, session: aiohttp.ClientSession, url: str) -> bytes | None:
        """GET with retries on 5xx and network errors. None on failure."""
        retries = self.settings.http_retries
        for attempt in range(retries):
            try:
                resp = await session.get(url)
                try:
                    if resp.status == HTTP_OK:
                        return await resp.read()
                    if resp.status == HTTP_NOT_FOUND:
                        logger.debug('Tile not published: %s', url)
                        return None
                    if not (HTTP_5XX_MIN <= resp.status < HTTP_5XX_MAX):
                        logger.warning('HTTP %d for %s', resp.status, url)
                        return None
                    logger.debug('HTTP %d for %s (attempt %d)', resp.status, url, attempt + 1)
                finally:
                    resp.release()
            except (TimeoutError, aiohttp.ClientError) as e:
                logger.debug('Request failed for %s (attempt %d): %s', url, attempt + 1, e)
            if attempt + 1 < retries:
                await asyncio.sleep(0.5 * self.settings.http_backoff_factor**attempt)
        logger.warning('Giving up on %s after %d attempts', url, retries)
        return None
