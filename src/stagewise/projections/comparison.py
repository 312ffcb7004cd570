"""Period Comparator and the stage-duration report.

The report runs the aggregator over the requested window and over the
equal-length window immediately before it.  Failures are isolated per
window: a failed current window yields zeroed aggregates, a failed prior
window only drops the comparison block.
"""

from __future__ import annotations

import logging
from typing import Any

from stagewise import event_log
from stagewise.errors import StoreQueryError, ValidationError
from stagewise.models import STAGE_EVENT_TYPES, StageSummary, now_ms as _now_ms, to_iso
from stagewise.pipeline import PipelineConfig
from stagewise.projections._time import RangeWindow, range_window, round1
from stagewise.projections.intervals import reconstruct_intervals
from stagewise.projections.stage_duration import StageDurationResult, aggregate_intervals

log = logging.getLogger("stagewise.projections.comparison")


def delta_pct(current: float, prior: float | None) -> float | None:
    """Percentage change of *current* over *prior*.

    None means there is no prior data at all; a zero prior with a positive
    current reads as a 100% increase.
    """
    if prior is None:
        return None
    if prior == 0 and current == 0:
        return 0.0
    if prior == 0 and current > 0:
        return 100.0
    if prior > 0:
        return round1((current - prior) / prior * 100)
    return None


def compare(
    current: StageDurationResult,
    previous: StageDurationResult,
) -> list[StageSummary]:
    """Attach ``prev_avg_days`` / ``delta_pct`` to every current stage."""
    prior_by_stage = {s.stage: s for s in previous.stages}
    compared: list[StageSummary] = []
    for stage in current.stages:
        prior = prior_by_stage.get(stage.stage)
        prev_avg = prior.avg_days if prior is not None else None
        compared.append(StageSummary(
            stage=stage.stage,
            stage_name=stage.stage_name,
            roles_count=stage.roles_count,
            avg_days=stage.avg_days,
            median_days=stage.median_days,
            max_days=stage.max_days,
            total_days=stage.total_days,
            prev_avg_days=prev_avg,
            delta_pct=delta_pct(stage.avg_days, prev_avg),
            compared=True,
        ))
    return compared


def fetch_stage_events(workspace_id: str, since_ms: int, until_ms: int) -> list[dict[str, Any]]:
    """Read every transition event of a workspace inside ``[since, until]``."""
    try:
        return event_log.query_all(
            workspace_id=workspace_id,
            event_types=STAGE_EVENT_TYPES,
            since=to_iso(since_ms),
            until=to_iso(until_ms),
        )
    except Exception as exc:
        raise StoreQueryError(f"Stage event query failed: {exc}") from exc


def window_stats(
    workspace_id: str,
    since_ms: int,
    until_ms: int,
    pipeline: PipelineConfig | None = None,
) -> StageDurationResult:
    events = fetch_stage_events(workspace_id, since_ms, until_ms)
    return aggregate_intervals(reconstruct_intervals(events, until_ms), pipeline)


def _load_pipeline(workspace_id: str) -> PipelineConfig:
    try:
        return event_log.get_workspace_settings(workspace_id).pipeline
    except Exception as exc:
        raise StoreQueryError(f"Settings query failed: {exc}") from exc


def _empty_report(window: RangeWindow) -> dict[str, Any]:
    return {
        "stages": [],
        "totalRoles": 0,
        "overallAvgDays": 0,
        "range": window.key,
        "comparison": None,
    }


def stage_duration_report(
    workspace_id: str | None,
    range_key: str | None = None,
    *,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Build the stage-duration payload for one workspace and range."""
    if not workspace_id:
        raise ValidationError("workspaceId required")
    now = _now_ms() if now_ms is None else now_ms
    window = range_window(range_key, now)

    try:
        pipeline = _load_pipeline(workspace_id)
        current = window_stats(workspace_id, window.start, window.end, pipeline)
    except StoreQueryError:
        log.exception("Stage-duration query failed", extra={"workspace_id": workspace_id})
        return _empty_report(window)

    previous: StageDurationResult | None = None
    if window.has_comparison:
        try:
            previous = window_stats(workspace_id, window.prev_start, window.prev_end, pipeline)
        except StoreQueryError:
            log.exception(
                "Stage-duration comparison query failed; omitting comparison",
                extra={"workspace_id": workspace_id},
            )

    report = current.to_dict()
    report["range"] = window.key
    if previous is None:
        report["comparison"] = None
        return report

    report["stages"] = [s.to_dict() for s in compare(current, previous)]
    prev_from, prev_to = window.prev_iso_bounds()
    report["comparison"] = {"from": prev_from, "to": prev_to}
    return report
