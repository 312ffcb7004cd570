"""Recent activity listing for dashboard drill-downs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from stagewise import event_log
from stagewise.defaults import DAY_MS, QUERY_LIMIT_SMALL
from stagewise.errors import ValidationError
from stagewise.models import EventType, now_ms as _now_ms, to_iso
from stagewise.projections._time import range_window

log = logging.getLogger("stagewise.projections.activity")

METRIC_EVENT_TYPES: dict[str, list[str]] = {
    "placements": [EventType.PLACEMENT_CREATED],
    "interviews": [EventType.INTERVIEW_SCHEDULED],
    "cv_sent": [EventType.CV_SENT],
    "tasks_completed": [EventType.TASK_COMPLETED],
}


def _day_bounds(date: str) -> tuple[int, int]:
    try:
        day = datetime.strptime(date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {date!r} (expected YYYY-MM-DD)") from exc
    start = int(day.timestamp() * 1000)
    return start, start + DAY_MS - 1


def activity_events(
    workspace_id: str | None,
    *,
    range_key: str | None = None,
    metric: str | None = None,
    date: str | None = None,
    user_id: str | None = None,
    company: str | None = None,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Most recent events of a workspace for one UTC day or a range window.

    An unknown *metric* lists every event type.
    """
    if not workspace_id:
        raise ValidationError("workspaceId required")
    if date:
        since, until = _day_bounds(date)
    else:
        window = range_window(range_key, _now_ms() if now_ms is None else now_ms)
        since, until = window.start, window.end

    try:
        rows = event_log.query(
            workspace_id=workspace_id,
            event_types=METRIC_EVENT_TYPES.get(metric or ""),
            user_id=user_id,
            company=company,
            since=to_iso(since),
            until=to_iso(until),
            limit=QUERY_LIMIT_SMALL,
        )
    except Exception:
        log.exception("Activity query failed", extra={"workspace_id": workspace_id})
        return {"events": []}

    return {
        "events": [
            {
                "name": r["event_type"],
                "ts": r["timestamp"],
                "company": r.get("company"),
                "stage": (r.get("payload") or {}).get("stage"),
                "userId": r.get("user_id"),
            }
            for r in rows
        ]
    }
