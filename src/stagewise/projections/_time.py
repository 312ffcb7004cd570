"""Shared time and rounding utilities for projections."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from stagewise.defaults import ALL_TIME_START, DAY_MS, DEFAULT_RANGE, RANGE_ALL, RANGE_WINDOWS
from stagewise.models import parse_ts, to_iso


def round1(value: float) -> float:
    """Round to one decimal place, halves away from zero.

    Works on the exact binary value of *value*, so ``round1(0.05)`` is 0.1
    while ``round1(1.15)`` is 1.1 (1.15 is stored as 1.1499...).
    """
    return float(Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return math.floor(value + 0.5)


def ms_to_days(ms: float) -> float:
    return ms / DAY_MS


@dataclass(frozen=True)
class RangeWindow:
    """A reporting window plus its equal-length predecessor (if any).

    All bounds are inclusive epoch milliseconds.
    """

    key: str
    start: int
    end: int
    prev_start: int | None = None
    prev_end: int | None = None

    @property
    def has_comparison(self) -> bool:
        return self.prev_start is not None

    def iso_bounds(self) -> tuple[str, str]:
        return to_iso(self.start), to_iso(self.end)

    def prev_iso_bounds(self) -> tuple[str, str] | None:
        if self.prev_start is None or self.prev_end is None:
            return None
        return to_iso(self.prev_start), to_iso(self.prev_end)


def normalize_range(range_key: str | None) -> str:
    """Map an unknown or missing range key onto the default."""
    if range_key == RANGE_ALL or range_key in RANGE_WINDOWS:
        return range_key
    return DEFAULT_RANGE


def range_window(range_key: str | None, now_ms: int) -> RangeWindow:
    key = normalize_range(range_key)
    if key == RANGE_ALL:
        return RangeWindow(key=key, start=parse_ts(ALL_TIME_START), end=now_ms)
    duration = RANGE_WINDOWS[key] * DAY_MS
    start = now_ms - duration
    prev_end = start - 1
    prev_start = prev_end - duration + 1
    return RangeWindow(key=key, start=start, end=now_ms, prev_start=prev_start, prev_end=prev_end)


def quarter_bounds(now_ms: int) -> tuple[int, int]:
    """Return the (start, end) epoch ms of the UTC calendar quarter containing *now_ms*."""
    now = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc)
    first_month = (now.month - 1) // 3 * 3 + 1
    start = datetime(now.year, first_month, 1, tzinfo=timezone.utc)
    if first_month == 10:
        following = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        following = datetime(now.year, first_month + 3, 1, tzinfo=timezone.utc)
    return int(start.timestamp() * 1000), int(following.timestamp() * 1000) - 1


def day_start(ms: int) -> int:
    """Epoch ms of the UTC midnight at or before *ms*."""
    return ms - ms % DAY_MS


def day_key(ms: int) -> str:
    """UTC calendar day of *ms* as ``YYYY-MM-DD``."""
    return to_iso(ms)[:10]
