"""Per-day metric series for dashboard charts.

Every day of the window gets a point, including days with no events.  With
``previous=True`` the series covers the equal-length window that ends the
day before the current one starts.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from stagewise import event_log
from stagewise.defaults import DAY_MS, RANGE_ALL, TIMESERIES_DEFAULT_RANGE, TIMESERIES_RANGES
from stagewise.errors import ValidationError
from stagewise.models import now_ms as _now_ms, parse_ts, to_iso
from stagewise.projections._time import day_key, day_start, quarter_bounds
from stagewise.projections.activity import METRIC_EVENT_TYPES

log = logging.getLogger("stagewise.projections.timeseries")

DEFAULT_METRIC = "placements"


def daily_counts(
    workspace_id: str,
    event_types: list[str],
    since_ms: int,
    until_ms: int,
) -> Counter[str]:
    """Count matching events per UTC day inside ``[since, until]``."""
    counts: Counter[str] = Counter()
    for e in event_log.query_all(
        workspace_id=workspace_id,
        event_types=event_types,
        since=to_iso(since_ms),
        until=to_iso(until_ms),
    ):
        ts = parse_ts(e.get("timestamp"))
        if ts is not None:
            counts[day_key(ts)] += 1
    return counts


def _first_event_ms(workspace_id: str, event_types: list[str]) -> int | None:
    # Earliest event of the metric, else of any kind
    for types in (event_types, None):
        rows = event_log.query(workspace_id=workspace_id, event_types=types, ascending=True, limit=1)
        if rows:
            return parse_ts(rows[0]["timestamp"])
    return None


def series_window(range_key: str, now_ms: int, first_event_ms: int | None = None) -> tuple[int, int] | None:
    """Return ``(first_day_start, days)`` for a range key.

    ``quarter`` runs from the start of the current UTC quarter and ``all``
    from the day of *first_event_ms*; ``all`` without data yields None.
    """
    today = day_start(now_ms)
    if range_key == "quarter":
        start = quarter_bounds(now_ms)[0]
    elif range_key == RANGE_ALL:
        if first_event_ms is None:
            return None
        start = day_start(min(first_event_ms, now_ms))
    else:
        days = TIMESERIES_RANGES.get(range_key, TIMESERIES_RANGES[TIMESERIES_DEFAULT_RANGE])
        return today - (days - 1) * DAY_MS, days
    return start, (today - start) // DAY_MS + 1


def timeseries_report(
    workspace_id: str | None,
    metric: str | None = None,
    range_key: str | None = None,
    *,
    previous: bool = False,
    now_ms: int | None = None,
) -> dict[str, Any]:
    if not workspace_id:
        raise ValidationError("workspaceId required")
    now = _now_ms() if now_ms is None else now_ms
    key = (range_key or TIMESERIES_DEFAULT_RANGE).lower()
    event_types = METRIC_EVENT_TYPES.get(metric or DEFAULT_METRIC, METRIC_EVENT_TYPES[DEFAULT_METRIC])

    try:
        first = _first_event_ms(workspace_id, event_types) if key == RANGE_ALL else None
        window = series_window(key, now, first)
        # "all" has nothing before it to compare against
        if window is None or (previous and key == RANGE_ALL):
            return {"points": []}
        start, days = window
        if previous:
            start -= days * DAY_MS
        until = min(start + days * DAY_MS - 1, now)
        counts = daily_counts(workspace_id, event_types, start, until)
    except Exception:
        log.exception("Timeseries query failed", extra={"workspace_id": workspace_id})
        return {"points": []}

    days_in_window = [day_key(start + i * DAY_MS) for i in range(days)]
    return {"points": [{"t": day, "v": counts.get(day, 0)} for day in days_in_window]}
