"""Activity heatmap: one cell per UTC day that saw at least one event."""

from __future__ import annotations

import logging
from typing import Any

from stagewise.defaults import DAY_MS, DAY_WINDOW_RANGES, HEATMAP_DEFAULT_RANGE
from stagewise.errors import ValidationError
from stagewise.models import EventType, now_ms as _now_ms
from stagewise.projections._time import day_start
from stagewise.projections.timeseries import daily_counts

log = logging.getLogger("stagewise.projections.heatmap")

HEATMAP_METRICS: dict[str, list[str]] = {
    "stage_moves": [EventType.STAGE_CHANGED, EventType.CANDIDATE_MOVED],
    "tasks_completed": [EventType.TASK_COMPLETED],
}
DEFAULT_HEATMAP_METRIC = "stage_moves"


def heatmap_report(
    workspace_id: str | None,
    metric: str | None = None,
    range_key: str | None = None,
    *,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Daily cell counts for stage moves or completed tasks.

    Unknown metrics count stage moves; unknown ranges cover 90 days.
    """
    if not workspace_id:
        raise ValidationError("workspaceId required")
    now = _now_ms() if now_ms is None else now_ms
    event_types = HEATMAP_METRICS.get(metric or DEFAULT_HEATMAP_METRIC, HEATMAP_METRICS[DEFAULT_HEATMAP_METRIC])
    days = DAY_WINDOW_RANGES.get(range_key or HEATMAP_DEFAULT_RANGE, DAY_WINDOW_RANGES[HEATMAP_DEFAULT_RANGE])
    since = day_start(now) - (days - 1) * DAY_MS

    try:
        counts = daily_counts(workspace_id, event_types, since, now)
    except Exception:
        log.exception("Heatmap query failed", extra={"workspace_id": workspace_id})
        return {"cells": []}
    return {"cells": [{"d": day, "v": n} for day, n in sorted(counts.items())]}
