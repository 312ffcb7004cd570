"""Stage residency intervals and live role state, derived from the event log.

Nothing here is cached or persisted: both projections are rebuilt from the
raw transition events on every call, and both are pure functions of their
inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from stagewise.models import EventType, RoleState, StageInterval, StageTransitionEvent

log = logging.getLogger("stagewise.projections.intervals")


@dataclass
class _OpenStage:
    stage: str
    stage_name: str
    entered_at: int


def normalize_transitions(
    events: Iterable[dict[str, Any] | StageTransitionEvent],
) -> list[StageTransitionEvent]:
    """Coerce raw event records into transitions, dropping unusable ones."""
    result: list[StageTransitionEvent] = []
    for e in events:
        t = e if isinstance(e, StageTransitionEvent) else StageTransitionEvent.from_record(e)
        if t is not None:
            result.append(t)
    return result


def reconstruct_intervals(
    events: Iterable[dict[str, Any] | StageTransitionEvent],
    period_end: int,
) -> list[StageInterval]:
    """Walk each role's ordered history and emit stage residency intervals.

    Closed intervals come first (in role, time order), followed by one
    still-open interval per role measured up to *period_end*.  Intervals
    with a non-positive duration are never emitted.

    A ``stage_changed`` whose ``from_stage`` does not match the role's open
    stage is tolerated: nothing is closed, and the destination stage is
    opened anyway.
    """
    transitions = sorted(normalize_transitions(events), key=lambda t: (t.role_id, t.timestamp))

    intervals: list[StageInterval] = []
    open_stages: dict[str, _OpenStage] = {}
    discarded = 0

    for t in transitions:
        if t.kind == EventType.STAGE_ENTERED:
            open_stages[t.role_id] = _OpenStage(t.stage, t.stage_name, t.timestamp)
            continue

        previous = open_stages.get(t.role_id)
        if previous is not None and previous.stage == t.from_stage:
            duration = t.timestamp - previous.entered_at
            if duration > 0:
                intervals.append(StageInterval(
                    role_id=t.role_id,
                    stage=previous.stage,
                    stage_name=previous.stage_name,
                    entered_at=previous.entered_at,
                    exited_at=t.timestamp,
                    duration_ms=duration,
                ))
        else:
            discarded += 1
            log.debug(
                "Inconsistent transition for role %s: open=%s from=%s",
                t.role_id, previous.stage if previous else None, t.from_stage,
                extra={"role_id": t.role_id},
            )
        open_stages[t.role_id] = _OpenStage(t.stage, t.stage_name, t.timestamp)

    for role_id, current in open_stages.items():
        duration = period_end - current.entered_at
        if duration <= 0:
            continue
        intervals.append(StageInterval(
            role_id=role_id,
            stage=current.stage,
            stage_name=current.stage_name,
            entered_at=current.entered_at,
            exited_at=None,
            duration_ms=duration,
        ))

    if discarded:
        log.warning("Discarded %d inconsistent stage transition(s)", discarded)
    return intervals


def project_role_states(
    events: Iterable[dict[str, Any] | StageTransitionEvent],
) -> dict[str, RoleState]:
    """Project each role's current stage from its latest transition.

    ``created_at`` is the timestamp of the role's earliest transition; the
    caller may override it with the role record's own creation time.
    """
    states: dict[str, RoleState] = {}
    transitions = sorted(
        normalize_transitions(events),
        key=lambda t: (t.role_id, t.timestamp, t.kind == EventType.STAGE_CHANGED),
    )
    for t in transitions:
        existing = states.get(t.role_id)
        created_at = existing.created_at if existing else t.timestamp
        states[t.role_id] = RoleState(
            role_id=t.role_id,
            stage=t.stage,
            stage_name=t.stage_name,
            stage_updated_at=t.timestamp,
            created_at=created_at,
        )
    return states
