"""Read-side analytics endpoints: stage durations, KPI summary, activity feed, charts."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from stagewise.projections import (
    activity_events,
    heatmap_report,
    leaderboard_report,
    stage_duration_report,
    summary_report,
    timeseries_report,
)

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/stage-duration")
def stage_duration(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    range: str | None = None,
):
    return stage_duration_report(workspace_id, range, now_ms=request.app.state.clock())


@router.get("/summary")
def summary(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    range: str | None = None,
):
    return summary_report(workspace_id, range, now_ms=request.app.state.clock())


@router.get("/events")
def events(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    range: str | None = None,
    metric: str | None = None,
    date: str | None = None,
    user_id: str | None = Query(default=None, alias="userId"),
    company: str | None = None,
):
    return activity_events(
        workspace_id,
        range_key=range,
        metric=metric,
        date=date,
        user_id=user_id,
        company=company,
        now_ms=request.app.state.clock(),
    )


@router.get("/timeseries")
def timeseries(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    metric: str | None = None,
    range: str | None = None,
    prev: str | None = None,
):
    return timeseries_report(
        workspace_id, metric, range, previous=prev == "1", now_ms=request.app.state.clock(),
    )


@router.get("/heatmap")
def heatmap(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    metric: str | None = None,
    range: str | None = None,
):
    return heatmap_report(workspace_id, metric, range, now_ms=request.app.state.clock())


@router.get("/leaderboard")
def leaderboard(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    type: str | None = None,
    range: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
):
    return leaderboard_report(
        workspace_id, type, range, limit=limit, offset=offset, now_ms=request.app.state.clock(),
    )
