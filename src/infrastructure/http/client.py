from __future__ import annotations

import os
import ssl
from pathlib import Path

import aiohttp
import certifi

from shared.constants import HTTP_5XX_MIN, HTTP_TIMEOUT_DEFAULT, TILE_CACHE_DIR


def resolve_cache_dir(raw: str | Path = TILE_CACHE_DIR) -> Path:
    raw_dir = Path(raw)
    if raw_dir.is_absolute():
        return raw_dir
    local = os.getenv('LOCALAPPDATA')
    if local:
        return (Path(local) / 'OfflineForecast' / raw_dir).resolve()
    # Fallback: user's home directory
    return (Path.home() / '.offline_forecast' / raw_dir).resolve()


def make_http_session(timeout_s: float = HTTP_TIMEOUT_DEFAULT) -> aiohttp.ClientSession:
    # SSL context with certifi's CA bundle
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    timeout = aiohttp.ClientTimeout(total=timeout_s)
    return aiohttp.ClientSession(connector=connector, timeout=timeout)


async def probe_online(url: str, timeout_s: float = 10.0) -> bool:
    """Quick reachability check of the tile server (any non-5xx answer counts)."""
    ssl_context = ssl.create_default_context(cafile=certifi.where())
    connector = aiohttp.TCPConnector(ssl=ssl_context)
    timeout = aiohttp.ClientTimeout(
        total=timeout_s, connect=timeout_s, sock_connect=timeout_s, sock_read=timeout_s
    )
    try:
        async with (
            aiohttp.ClientSession(connector=connector) as client,
            client.head(url, timeout=timeout) as resp,
        ):
            return resp.status < HTTP_5XX_MIN
    except (TimeoutError, aiohttp.ClientError, OSError):
        return False
