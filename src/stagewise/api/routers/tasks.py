"""Task listing, manual tasks, urgency view, and on-demand rule evaluation."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from stagewise import event_log, urgency
from stagewise.api.schemas import TaskCreateBody
from stagewise.errors import ValidationError
from stagewise.models import parse_ts

router = APIRouter(tags=["tasks"])

_STATUS_FILTERS = {"open": False, "done": True}


@router.get("/tasks")
def list_tasks(
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
    role_id: str | None = Query(default=None, alias="roleId"),
    status: str | None = None,
):
    if not workspace_id:
        raise ValidationError("workspaceId required")
    if status is not None and status not in _STATUS_FILTERS:
        raise ValidationError(f"Unknown status: {status}")
    done = _STATUS_FILTERS.get(status) if status else None
    tasks = event_log.list_tasks(workspace_id=workspace_id, role_id=role_id, done=done)
    return {"tasks": [t.to_dict() for t in tasks]}


@router.post("/tasks", status_code=201)
def create_task(request: Request, body: TaskCreateBody):
    due_at = parse_ts(body.due_at)
    if body.due_at is not None and due_at is None:
        raise ValidationError(f"Invalid due_at: {body.due_at}")
    task = urgency.create_manual_task(
        body.workspace_id,
        body.role_id,
        body.title,
        due_at,
        now_ms=request.app.state.clock(),
    )
    return task.to_dict()


@router.post("/tasks/{task_id}/done")
def complete_task(request: Request, task_id: str):
    return urgency.complete_task(task_id, now_ms=request.app.state.clock()).to_dict()


@router.get("/urgent-actions")
def urgent_actions(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
):
    return urgency.urgent_actions(workspace_id, now_ms=request.app.state.clock())


@router.post("/rules/evaluate")
def evaluate(
    request: Request,
    workspace_id: str | None = Query(default=None, alias="workspaceId"),
):
    """HTTP-triggered re-check; same evaluation the worker runs."""
    if not workspace_id:
        raise ValidationError("workspaceId required")
    result = urgency.evaluate_workspace(workspace_id, now_ms=request.app.state.clock())
    return result.to_dict()
