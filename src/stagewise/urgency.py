"""SLA/Urgency Rule Engine.

Evaluates live role state (projected from the event log) against the
workspace's SLA rules and keeps exactly one open escalation task per
breaching role and stage.  Stage changes go through ``change_stage`` so the
stage-triggered rules (client chase, response learning) and an immediate
evaluation pass run alongside the transition.

Every function takes an explicit ``now_ms`` so that scheduled ticks, HTTP
re-checks and tests all run the same evaluation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from stagewise import event_log
from stagewise.client_response import ClientResponseLearner, default_learner
from stagewise.defaults import (
    CHASE_TITLE,
    ESCALATION_TITLE_PREFIX,
    HOUR_MS,
    QUERY_LIMIT_LARGE,
    TASK_DUE_SOON_MS,
)
from stagewise.errors import NotFoundError, ValidationError
from stagewise.models import (
    STAGE_EVENT_TYPES,
    Event,
    EventType,
    Role,
    RoleState,
    TaskOrigin,
    UrgencyTask,
    new_id,
    now_ms as _now_ms,
    parse_ts,
    to_iso,
)
from stagewise.pipeline import PipelineConfig, SLAConfig, WorkspaceSettings
from stagewise.projections._time import round_half_up
from stagewise.projections.intervals import project_role_states

log = logging.getLogger("stagewise.urgency")


# ---------------------------------------------------------------------------
# Assessment (pure)
# ---------------------------------------------------------------------------

@dataclass
class RoleAssessment:
    state: RoleState
    stage_name: str
    stage_age_hours: float
    total_age_hours: float
    stage_limit_hours: float
    total_limit_hours: float
    urgent: bool

    @property
    def hours_over(self) -> int:
        if not math.isfinite(self.stage_limit_hours):
            return 0
        return max(0, round_half_up(self.stage_age_hours - self.stage_limit_hours))

    @property
    def escalation_title(self) -> str:
        return f"{ESCALATION_TITLE_PREFIX}{self.stage_name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "roleId": self.state.role_id,
            "jobTitle": self.state.title,
            "company": self.state.company,
            "stage": self.state.stage,
            "stageName": self.stage_name,
            "stageAgeHours": round(self.stage_age_hours, 1),
            "hoursOver": self.hours_over,
        }


def assess_role(
    state: RoleState,
    pipeline: PipelineConfig,
    sla: SLAConfig,
    now_ms: int,
) -> RoleAssessment:
    """Decide whether a role breaches its stage or total-age threshold.

    The terminal stage is exempt from the per-stage threshold.
    """
    index = state.stage_index
    stage_limit = sla.stage_limit_hours(-1 if index is None else index, pipeline)
    total_limit = sla.total_limit_hours
    stage_age = (now_ms - state.stage_updated_at) / HOUR_MS
    total_age = (now_ms - state.created_at) / HOUR_MS
    terminal = index is not None and pipeline.is_terminal(index)
    urgent = not terminal and (stage_age > stage_limit or total_age > total_limit)
    return RoleAssessment(
        state=state,
        stage_name=pipeline.stage_name(state.stage),
        stage_age_hours=stage_age,
        total_age_hours=total_age,
        stage_limit_hours=stage_limit,
        total_limit_hours=total_limit,
        urgent=urgent,
    )


# ---------------------------------------------------------------------------
# Role state
# ---------------------------------------------------------------------------

def _initial_state(role: Role) -> RoleState:
    created = parse_ts(role.created_at) or 0
    return RoleState(
        role_id=role.id,
        stage="0",
        stage_name="",
        stage_updated_at=created,
        created_at=created,
        company=role.company,
        title=role.title,
    )


def _merge(role: Role, projected: RoleState | None) -> RoleState:
    state = _initial_state(role)
    if projected is not None:
        state.stage = projected.stage
        state.stage_name = projected.stage_name
        state.stage_updated_at = projected.stage_updated_at
    return state


def load_role_states(workspace_id: str) -> list[RoleState]:
    """Current state of every active role in a workspace."""
    roles = event_log.list_roles(workspace_id=workspace_id, active_only=True)
    events = event_log.query_all(workspace_id=workspace_id, event_types=STAGE_EVENT_TYPES)
    projected = project_role_states(events)
    return [_merge(role, projected.get(role.id)) for role in roles]


def load_role_state(role: Role) -> RoleState:
    events = event_log.query_all(role_id=role.id, event_types=STAGE_EVENT_TYPES)
    return _merge(role, project_role_states(events).get(role.id))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def ensure_task(
    *,
    workspace_id: str,
    role_id: str,
    title: str,
    due_at: int,
    origin: TaskOrigin,
    now_ms: int,
) -> UrgencyTask | None:
    """Create an auto task unless an open one with the same title exists.

    Returns the new task, or None when one was already open.
    """
    task = UrgencyTask(
        id=new_id(),
        role_id=role_id,
        title=title,
        due_at=due_at,
        origin=origin,
        workspace_id=workspace_id,
        created_at=to_iso(now_ms),
    )
    if not event_log.create_task_if_absent(task):
        return None
    rule_event = (
        EventType.RULE_ESCALATION if origin == TaskOrigin.AUTO_ESCALATION
        else EventType.RULE_STAGE_TRIGGER
    )
    event_log.append(Event(
        event_type=rule_event,
        workspace_id=workspace_id,
        role_id=role_id,
        payload=task.to_dict(),
        timestamp=to_iso(now_ms),
    ))
    log.info("Created %s task %r for role %s", origin.value, title, role_id,
             extra={"workspace_id": workspace_id, "role_id": role_id})
    return task


def create_manual_task(
    workspace_id: str,
    role_id: str,
    title: str,
    due_at: int | None = None,
    *,
    now_ms: int | None = None,
) -> UrgencyTask:
    if not title or not title.strip():
        raise ValidationError("title required")
    role = event_log.get_role(role_id)
    if role is None or role.workspace_id != workspace_id:
        raise NotFoundError(f"Role not found: {role_id}")
    now = _now_ms() if now_ms is None else now_ms
    task = UrgencyTask(
        id=new_id(),
        role_id=role_id,
        title=title.strip(),
        due_at=due_at,
        origin=TaskOrigin.MANUAL,
        workspace_id=workspace_id,
        created_at=to_iso(now),
    )
    event_log.create_task_if_absent(task)
    event_log.append(Event(
        event_type=EventType.TASK_CREATED,
        workspace_id=workspace_id,
        role_id=role_id,
        payload=task.to_dict(),
        timestamp=to_iso(now),
    ))
    return task


def complete_task(task_id: str, *, now_ms: int | None = None) -> UrgencyTask:
    """Mark a task done.  Tasks are never deleted."""
    task = event_log.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Task not found: {task_id}")
    if task.done:
        return task
    now = _now_ms() if now_ms is None else now_ms
    completed_at = to_iso(now)
    if event_log.mark_task_done(task_id, completed_at):
        role = event_log.get_role(task.role_id)
        event_log.append(Event(
            event_type=EventType.TASK_COMPLETED,
            workspace_id=task.workspace_id,
            role_id=task.role_id,
            company=role.company if role else None,
            payload={"task_id": task.id, "title": task.title, "origin": task.origin.value},
            timestamp=completed_at,
        ))
    task.done = True
    task.completed_at = completed_at
    return task


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

@dataclass
class EvaluationResult:
    workspace_id: str
    evaluated: int = 0
    urgent: list[RoleAssessment] = field(default_factory=list)
    created: list[UrgencyTask] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspaceId": self.workspace_id,
            "evaluated": self.evaluated,
            "urgentCount": len(self.urgent),
            "urgent": [a.to_dict() for a in self.urgent],
            "created": [t.to_dict() for t in self.created],
        }


def _escalate(
    workspace_id: str,
    states: list[RoleState],
    settings: WorkspaceSettings,
    now_ms: int,
) -> EvaluationResult:
    result = EvaluationResult(workspace_id=workspace_id)
    for state in states:
        assessment = assess_role(state, settings.pipeline, settings.sla, now_ms)
        result.evaluated += 1
        if not assessment.urgent:
            continue
        result.urgent.append(assessment)
        if not settings.sla.escalations_enabled:
            continue
        task = ensure_task(
            workspace_id=workspace_id,
            role_id=state.role_id,
            title=assessment.escalation_title,
            due_at=now_ms,
            origin=TaskOrigin.AUTO_ESCALATION,
            now_ms=now_ms,
        )
        if task is not None:
            result.created.append(task)
    return result


def evaluate_workspace(workspace_id: str, *, now_ms: int | None = None) -> EvaluationResult:
    """One evaluation tick.  Safe to re-run: open escalations are never duplicated."""
    now = _now_ms() if now_ms is None else now_ms
    settings = event_log.get_workspace_settings(workspace_id)
    result = _escalate(workspace_id, load_role_states(workspace_id), settings, now)
    log.info(
        "Evaluated %d role(s): %d urgent, %d task(s) created",
        result.evaluated, len(result.urgent), len(result.created),
        extra={"workspace_id": workspace_id},
    )
    return result


def evaluate_role(role: Role, *, now_ms: int | None = None) -> EvaluationResult:
    now = _now_ms() if now_ms is None else now_ms
    settings = event_log.get_workspace_settings(role.workspace_id)
    states = [load_role_state(role)] if role.is_active else []
    return _escalate(role.workspace_id, states, settings, now)


# ---------------------------------------------------------------------------
# Roles and stage changes
# ---------------------------------------------------------------------------

def create_role(
    workspace_id: str,
    title: str = "",
    company: str | None = None,
    *,
    initial_stage: int = 0,
    role_id: str | None = None,
    now_ms: int | None = None,
) -> Role:
    """Register a role and record its entry into *initial_stage*."""
    if not workspace_id:
        raise ValidationError("workspaceId required")
    pipeline = event_log.get_workspace_settings(workspace_id).pipeline
    if not 0 <= initial_stage < len(pipeline.stages):
        raise ValidationError(f"Stage out of range: {initial_stage}")
    now = _now_ms() if now_ms is None else now_ms
    role = Role(
        id=role_id or new_id(),
        workspace_id=workspace_id,
        title=title,
        company=company,
        created_at=to_iso(now),
    )
    event_log.upsert_role(role)
    event_log.append(Event(
        event_type=EventType.STAGE_ENTERED,
        workspace_id=workspace_id,
        role_id=role.id,
        company=company,
        payload={"stage": str(initial_stage), "stage_name": pipeline.stage_name(initial_stage)},
        timestamp=to_iso(now),
    ))
    return role


@dataclass
class StageChange:
    role_id: str
    from_stage: str
    to_stage: str
    time_in_from_stage_ms: int
    chase_task: UrgencyTask | None = None
    evaluation: EvaluationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "roleId": self.role_id,
            "fromStage": self.from_stage,
            "toStage": self.to_stage,
            "timeInFromStageMs": self.time_in_from_stage_ms,
            "chaseTask": self.chase_task.to_dict() if self.chase_task else None,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
        }


def change_stage(
    role_id: str,
    to_stage: int,
    *,
    user_id: str | None = None,
    now_ms: int | None = None,
    learner: ClientResponseLearner = default_learner,
) -> StageChange:
    """Move a role to another stage and run the stage-triggered rules."""
    role = event_log.get_role(role_id)
    if role is None:
        raise NotFoundError(f"Role not found: {role_id}")
    settings = event_log.get_workspace_settings(role.workspace_id)
    pipeline, sla = settings.pipeline, settings.sla
    if not 0 <= to_stage < len(pipeline.stages):
        raise ValidationError(f"Stage out of range: {to_stage}")

    now = _now_ms() if now_ms is None else now_ms
    current = load_role_state(role)
    if current.stage == str(to_stage):
        raise ValidationError(f"Role {role_id} is already in stage {to_stage}")

    from_name = pipeline.stage_name(current.stage)
    to_name = pipeline.stage_name(to_stage)
    time_in_from = max(0, now - current.stage_updated_at)
    event_log.append(Event(
        event_type=EventType.STAGE_CHANGED,
        workspace_id=role.workspace_id,
        role_id=role.id,
        user_id=user_id,
        company=role.company,
        payload={
            "from_stage": current.stage,
            "to_stage": str(to_stage),
            "from_stage_name": from_name,
            "to_stage_name": to_name,
            "time_in_from_stage_ms": time_in_from,
        },
        timestamp=to_iso(now),
    ))
    change = StageChange(
        role_id=role.id,
        from_stage=current.stage,
        to_stage=str(to_stage),
        time_in_from_stage_ms=time_in_from,
    )

    if sla.chase_enabled and sla.is_awaiting_response(to_name):
        delay = learner.recommended_chase_delay(role.workspace_id, role.company)
        change.chase_task = ensure_task(
            workspace_id=role.workspace_id,
            role_id=role.id,
            title=CHASE_TITLE,
            due_at=now + delay,
            origin=TaskOrigin.AUTO_CHASE,
            now_ms=now,
        )

    if sla.is_awaiting_response(from_name) and time_in_from > 0:
        learner.record_sample(role.workspace_id, role.company, time_in_from, now_ms=now)

    change.evaluation = evaluate_role(role, now_ms=now)
    return change


# ---------------------------------------------------------------------------
# Read-only urgency view
# ---------------------------------------------------------------------------

def task_urgency(tasks: list[UrgencyTask], roles: dict[str, RoleState], now_ms: int) -> list[dict[str, Any]]:
    """Open tasks due within 24 h or overdue: overdue first, then soonest due."""
    items: list[dict[str, Any]] = []
    for task in tasks:
        if task.done or task.due_at is None:
            continue
        delta = task.due_at - now_ms
        if delta > TASK_DUE_SOON_MS:
            continue
        state = roles.get(task.role_id)
        items.append({
            "taskId": task.id,
            "roleId": task.role_id,
            "title": task.title,
            "origin": task.origin.value,
            "jobTitle": state.title if state else None,
            "company": state.company if state else None,
            "dueAt": task.due_at,
            "dueInHours": round_half_up(delta / HOUR_MS),
            "overdue": delta < 0,
        })
    items.sort(key=lambda t: (not t["overdue"], t["dueAt"]))
    return items


def urgent_actions(workspace_id: str | None, *, now_ms: int | None = None) -> dict[str, Any]:
    """Urgent roles and due-soon tasks.  Creates nothing."""
    if not workspace_id:
        raise ValidationError("workspaceId required")
    now = _now_ms() if now_ms is None else now_ms
    settings = event_log.get_workspace_settings(workspace_id)
    states = load_role_states(workspace_id)
    assessments = [assess_role(s, settings.pipeline, settings.sla, now) for s in states]
    items = [a.to_dict() for a in assessments if a.urgent]
    tasks = event_log.list_tasks(workspace_id=workspace_id, done=False, limit=QUERY_LIMIT_LARGE)
    due = task_urgency(tasks, {s.role_id: s for s in states}, now)
    return {"count": len(items) + len(due), "items": items, "tasks": due}
