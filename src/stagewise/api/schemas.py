"""Pydantic request models for strict input validation."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------

class IntakeBody(BaseModel):
    # Contents are validated per event by ``stagewise.intake``.
    events: list[Any] | None = None

    model_config = {"extra": "allow"}


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

class RoleCreateBody(BaseModel):
    workspace_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    company: str | None = None
    initial_stage: int = Field(default=0, ge=0)
    role_id: str | None = None


class StageChangeBody(BaseModel):
    to_stage: int = Field(..., ge=0)
    user_id: str | None = None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskCreateBody(BaseModel):
    workspace_id: str = Field(..., min_length=1)
    role_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    due_at: int | str | None = None


# ---------------------------------------------------------------------------
# Workspace settings
# ---------------------------------------------------------------------------

class StageBody(BaseModel):
    id: str
    name: str
    order: int = 0


class SLABody(BaseModel):
    per_stage_hours: list[float | None] | None = None
    max_stage_hours: float | None = None
    max_total_hours: float | None = None
    escalations_enabled: bool = True
    chase_enabled: bool = True
    awaiting_response_stages: list[str] | None = None


class SettingsUpdateBody(BaseModel):
    stages: list[StageBody] | None = None
    template: str | None = None
    sla: SLABody | None = None
