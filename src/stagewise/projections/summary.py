"""Dashboard KPI summary: activity counts, period deltas, stage distribution."""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import Any

from stagewise import event_log
from stagewise.defaults import DAY_MS, QUERY_LIMIT_LARGE
from stagewise.errors import ValidationError
from stagewise.models import STAGE_EVENT_TYPES, EventType, TaskOrigin, now_ms as _now_ms, to_iso
from stagewise.pipeline import PipelineConfig
from stagewise.projections._time import RangeWindow, quarter_bounds, range_window, round_half_up
from stagewise.projections.intervals import project_role_states
from stagewise.projections.stage_duration import stage_sort_key

log = logging.getLogger("stagewise.projections.summary")

# KPI prefix -> event type counted in the range window
RANGE_METRICS: dict[str, str] = {
    "placements": EventType.PLACEMENT_CREATED,
    "interviews": EventType.INTERVIEW_SCHEDULED,
    "cvSent": EventType.CV_SENT,
}


def count_delta_pct(current: int, previous: int) -> int:
    """Whole-number percentage change; a zero baseline reads as 0 or 100."""
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / max(1, previous) * 100)


def _count(workspace_id: str, event_type: str, since_ms: int, until_ms: int) -> int:
    return event_log.count(
        workspace_id=workspace_id,
        event_types=[event_type],
        since=to_iso(since_ms),
        until=to_iso(until_ms),
    )


def _commission(workspace_id: str, window: RangeWindow) -> float:
    since, until = window.iso_bounds()
    events = event_log.query_all(
        workspace_id=workspace_id,
        event_types=[EventType.PLACEMENT_CREATED],
        since=since,
        until=until,
    )
    total = 0.0
    for e in events:
        payload = e.get("payload") or {}
        amount = payload.get("commission", payload.get("value"))
        if isinstance(amount, (int, float)) and not isinstance(amount, bool) and math.isfinite(amount):
            total += amount
    return total


def stage_distribution(workspace_id: str, pipeline: PipelineConfig) -> list[dict[str, Any]]:
    """Count in-progress roles per current stage, in pipeline order."""
    active = {r.id for r in event_log.list_roles(workspace_id=workspace_id, active_only=True)}
    events = event_log.query_all(workspace_id=workspace_id, event_types=STAGE_EVENT_TYPES)
    states = project_role_states(events)
    counts = Counter(s.stage for rid, s in states.items() if rid in active)

    rows = [
        {"stage": str(i), "stageName": stage.name, "count": counts.pop(str(i), 0)}
        for i, stage in enumerate(pipeline.stages)
    ]
    for stage in sorted(counts, key=stage_sort_key):
        rows.append({"stage": stage, "stageName": pipeline.stage_name(stage), "count": counts[stage]})
    return rows


def _gather(workspace_id: str, window: RangeWindow, now: int) -> dict[str, Any]:
    q_start, q_end = quarter_bounds(now)
    kpis: dict[str, Any] = {
        "placementsQTD": _count(workspace_id, EventType.PLACEMENT_CREATED, q_start, q_end),
    }
    deltas: dict[str, Any] | None = {} if window.has_comparison else None
    for prefix, event_type in RANGE_METRICS.items():
        current = _count(workspace_id, event_type, window.start, window.end)
        kpis[f"{prefix}Range"] = current
        if deltas is not None:
            previous = _count(workspace_id, event_type, window.prev_start, window.prev_end)
            deltas[f"{prefix}RangeDelta"] = current - previous
            deltas[f"{prefix}RangePct"] = count_delta_pct(current, previous)

    kpis["commissionRange"] = _commission(workspace_id, window)
    kpis["rolesInProgress"] = len(event_log.list_roles(workspace_id=workspace_id, active_only=True))
    kpis["urgentCount"] = len(event_log.list_tasks(
        workspace_id=workspace_id,
        done=False,
        origin=TaskOrigin.AUTO_ESCALATION.value,
        limit=QUERY_LIMIT_LARGE,
    ))
    kpis["quarterProgressPct"] = min(100, max(0, round_half_up((now - q_start) / (q_end - q_start) * 100)))
    kpis["daysLeftInQuarter"] = max(0, math.ceil((q_end - now) / DAY_MS))

    pipeline = event_log.get_workspace_settings(workspace_id).pipeline
    return {
        "kpis": kpis,
        "deltas": deltas,
        "stageDistribution": stage_distribution(workspace_id, pipeline),
        "range": window.key,
    }


def _empty_summary(window: RangeWindow) -> dict[str, Any]:
    kpis = {
        "placementsQTD": 0,
        "placementsRange": 0,
        "interviewsRange": 0,
        "cvSentRange": 0,
        "commissionRange": 0.0,
        "rolesInProgress": 0,
        "urgentCount": 0,
        "quarterProgressPct": 0,
        "daysLeftInQuarter": 0,
    }
    deltas = None
    if window.has_comparison:
        deltas = {}
        for prefix in RANGE_METRICS:
            deltas[f"{prefix}RangeDelta"] = 0
            deltas[f"{prefix}RangePct"] = 0
    return {"kpis": kpis, "deltas": deltas, "stageDistribution": [], "range": window.key}


def summary_report(
    workspace_id: str | None,
    range_key: str | None = None,
    *,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Build the KPI bundle; any store failure degrades to zeroed values."""
    if not workspace_id:
        raise ValidationError("workspaceId required")
    now = _now_ms() if now_ms is None else now_ms
    window = range_window(range_key, now)
    try:
        return _gather(workspace_id, window, now)
    except Exception:
        log.exception("Summary query failed", extra={"workspace_id": workspace_id})
        return _empty_summary(window)
