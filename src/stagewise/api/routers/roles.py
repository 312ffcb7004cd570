"""Role registration and stage-change endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from stagewise import event_log, urgency
from stagewise.api.schemas import RoleCreateBody, StageChangeBody

router = APIRouter(tags=["roles"])


@router.post("/roles", status_code=201)
def create_role(request: Request, body: RoleCreateBody):
    role = urgency.create_role(
        body.workspace_id,
        body.title,
        body.company,
        initial_stage=body.initial_stage,
        role_id=body.role_id,
        now_ms=request.app.state.clock(),
    )
    return role.to_dict()


@router.get("/roles")
def list_roles(
    workspace_id: str = Query(..., alias="workspaceId", min_length=1),
    active_only: bool = Query(default=False, alias="activeOnly"),
):
    return [r.to_dict() for r in event_log.list_roles(workspace_id=workspace_id, active_only=active_only)]


@router.get("/roles/{role_id}")
def get_role(role_id: str):
    role = event_log.get_role(role_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Role not found")
    state = urgency.load_role_state(role)
    result = role.to_dict()
    result["stage"] = state.stage
    result["stageUpdatedAt"] = state.stage_updated_at
    return result


@router.post("/roles/{role_id}/stage")
def change_stage(request: Request, role_id: str, body: StageChangeBody):
    change = urgency.change_stage(
        role_id,
        body.to_stage,
        user_id=body.user_id,
        now_ms=request.app.state.clock(),
    )
    return change.to_dict()
