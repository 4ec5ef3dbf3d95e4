"""Forecast horizon timestamps (epoch milliseconds)."""

from __future__ import annotations

from datetime import datetime, timezone

from shared.constants import (
    DAY_MS,
    FORECAST_DATES_COUNT,
    HOUR_MS,
    HOURLY_SLICES,
    HOURLY_STEP_H,
    THREE_HOURLY_STEP_H,
)


def start_of_today_ms(now: datetime | None = None) -> int:
    """Local midnight of the current (or given) day."""
    now = now or datetime.now().astimezone()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def utc_now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def forecast_timestamps(day_start_ms: int) -> list[int]:
    """
    The FORECAST_DATES_COUNT slice times starting at day_start_ms.

    The first HOURLY_SLICES are one hour apart, the rest three hours apart.
    """
    stamps = []
    date_time = day_start_ms
    for i in range(FORECAST_DATES_COUNT):
        stamps.append(date_time)
        step_h = HOURLY_STEP_H if i < HOURLY_SLICES else THREE_HOURLY_STEP_H
        date_time += HOUR_MS * step_h
    return stamps


def days_between(earlier_ms: int, later_ms: int) -> int:
    """Whole days from earlier_ms to later_ms (truncated)."""
    return int((later_ms - earlier_ms) / DAY_MS)
