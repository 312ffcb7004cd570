"""Leaderboards: placements per teammate and conversion per client company."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from stagewise import event_log
from stagewise.defaults import (
    DAY_MS,
    DAY_WINDOW_RANGES,
    LEADERBOARD_DEFAULT_LIMIT,
    LEADERBOARD_DEFAULT_RANGE,
    LEADERBOARD_MAX_LIMIT,
)
from stagewise.errors import ValidationError
from stagewise.models import EventType, now_ms as _now_ms, to_iso
from stagewise.projections._time import day_start, round_half_up

log = logging.getLogger("stagewise.projections.leaderboard")

BOARD_TEAMMATES = "teammates"
BOARD_COMPANIES = "companies"


def _tally(workspace_id: str, event_type: str, column: str, since: str, until: str) -> Counter[str]:
    events = event_log.query_all(
        workspace_id=workspace_id, event_types=[event_type], since=since, until=until,
    )
    return Counter(e[column] for e in events if e.get(column))


def teammate_rows(workspace_id: str, since: str, until: str) -> list[dict[str, Any]]:
    placements = _tally(workspace_id, EventType.PLACEMENT_CREATED, "user_id", since, until)
    rows = [{"userId": user, "placements": n} for user, n in placements.items()]
    rows.sort(key=lambda r: (-r["placements"], r["userId"]))
    return rows


def company_rows(workspace_id: str, since: str, until: str) -> list[dict[str, Any]]:
    """Conversion is placements over CVs sent, as a whole percentage.

    A company with placements but no CVs in the window converts at 0%.
    """
    sent = _tally(workspace_id, EventType.CV_SENT, "company", since, until)
    placed = _tally(workspace_id, EventType.PLACEMENT_CREATED, "company", since, until)
    rows = []
    for company in sent.keys() | placed.keys():
        pct = round_half_up(placed[company] / sent[company] * 100) if sent[company] else 0
        rows.append({"company": company, "conversionPct": pct, "placements": placed[company]})
    rows.sort(key=lambda r: (-r["conversionPct"], -r["placements"], r["company"]))
    return rows


def leaderboard_report(
    workspace_id: str | None,
    board: str | None = None,
    range_key: str | None = None,
    *,
    limit: int | None = None,
    offset: int | None = None,
    now_ms: int | None = None,
) -> dict[str, Any]:
    if not workspace_id:
        raise ValidationError("workspaceId required")
    now = _now_ms() if now_ms is None else now_ms
    limit = max(1, min(LEADERBOARD_MAX_LIMIT, LEADERBOARD_DEFAULT_LIMIT if limit is None else limit))
    offset = max(0, offset or 0)
    days = DAY_WINDOW_RANGES.get(
        range_key or LEADERBOARD_DEFAULT_RANGE, DAY_WINDOW_RANGES[LEADERBOARD_DEFAULT_RANGE],
    )
    since, until = to_iso(day_start(now) - (days - 1) * DAY_MS), to_iso(now)

    try:
        if board == BOARD_COMPANIES:
            rows = company_rows(workspace_id, since, until)
        else:
            rows = teammate_rows(workspace_id, since, until)
    except Exception:
        log.exception("Leaderboard query failed", extra={"workspace_id": workspace_id})
        return {"rows": [], "total": 0}
    return {"rows": rows[offset:offset + limit], "total": len(rows)}
