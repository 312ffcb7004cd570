"""Core data types for stagewise."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def to_iso(ms: int | float) -> str:
    """Render epoch milliseconds as ISO-8601 UTC with millisecond precision.

    Every timestamp written to the store goes through here so that lexical
    order of the stored strings equals chronological order.
    """
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds")


def now_iso() -> str:
    return to_iso(now_ms())


# Epoch-ms range that ``to_iso`` can render
_MIN_MS = int(datetime(1, 1, 2, tzinfo=timezone.utc).timestamp() * 1000)
_MAX_MS = int(datetime(9999, 12, 31, tzinfo=timezone.utc).timestamp() * 1000)


def _in_range(ms: int) -> int | None:
    return ms if _MIN_MS <= ms <= _MAX_MS else None


def parse_ts(value: Any) -> int | None:
    """Parse an epoch-ms number or an ISO-8601 string into epoch milliseconds.

    Returns None for anything unparseable, non-finite or outside the
    years datetime can represent.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        return _in_range(int(value)) if math.isfinite(value) else None
    if isinstance(value, int):
        return _in_range(value)
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return _in_range(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None


def new_id() -> str:
    return uuid.uuid4().hex[:12]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskOrigin(str, Enum):
    AUTO_CHASE = "auto-chase"
    AUTO_ESCALATION = "auto-escalation"
    MANUAL = "manual"


class RoleStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    LOST = "lost"


INACTIVE_ROLE_STATUSES = (RoleStatus.CLOSED.value, RoleStatus.LOST.value)


# ---------------------------------------------------------------------------
# Event type registry (single source of truth for all event type strings)
# ---------------------------------------------------------------------------

class EventType:
    # Pipeline transitions
    STAGE_ENTERED = "stage_entered"
    STAGE_CHANGED = "stage_changed"
    CANDIDATE_MOVED = "candidate_moved"  # older clients; counted as a stage move only
    # Dashboard activity
    PLACEMENT_CREATED = "placement_created"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    CV_SENT = "cv_sent"
    TASK_COMPLETED = "task_completed"
    # Rule engine
    TASK_CREATED = "task.created"
    RULE_ESCALATION = "rule.escalation"
    RULE_STAGE_TRIGGER = "rule.stage_trigger"
    RESPONSE_SAMPLE = "client.response_sample"
    # Settings
    SETTINGS_UPDATED = "workspace.settings_updated"
    # Worker
    WORKER_STARTED = "worker.started"
    WORKER_STOPPED = "worker.stopped"


STAGE_EVENT_TYPES = (EventType.STAGE_ENTERED, EventType.STAGE_CHANGED)


# ---------------------------------------------------------------------------
# Event (append-only log record)
# ---------------------------------------------------------------------------

@dataclass
class Event:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    workspace_id: str | None = None
    role_id: str | None = None
    user_id: str | None = None
    company: str | None = None
    id: str = ""
    trace_id: str = ""
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "trace_id": self.trace_id,
            "timestamp": self.timestamp,
            "event_type": self.event_type,
            "workspace_id": self.workspace_id,
            "role_id": self.role_id,
            "user_id": self.user_id,
            "company": self.company,
            "payload": self.payload,
        }


# ---------------------------------------------------------------------------
# Stage transitions and derived intervals
# ---------------------------------------------------------------------------

def _stage_key(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


@dataclass(frozen=True)
class StageTransitionEvent:
    """A ``stage_entered`` or ``stage_changed`` record, normalised.

    For ``stage_entered`` only ``stage``/``stage_name`` are meaningful; for
    ``stage_changed`` ``stage`` is the destination and ``from_stage`` the
    stage the role is leaving.
    """

    role_id: str
    kind: str
    timestamp: int
    stage: str
    stage_name: str
    from_stage: str | None = None
    from_stage_name: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> StageTransitionEvent | None:
        """Build from a stored event row or an intake-shaped dict.

        Accepts both the store column names (``event_type``, ``timestamp``,
        ``payload``) and the wire names (``event_name``, ``ts``, ``meta``).
        Returns None when the record is not a usable stage transition.
        """
        kind = record.get("event_type") or record.get("event_name")
        if kind not in STAGE_EVENT_TYPES:
            return None
        role_id = record.get("role_id")
        ts = parse_ts(record.get("timestamp", record.get("ts")))
        if not role_id or ts is None:
            return None
        meta = record.get("payload") or record.get("meta") or {}

        if kind == EventType.STAGE_ENTERED:
            stage = _stage_key(meta.get("stage"))
            if stage is None:
                stage = "0"
            return cls(
                role_id=str(role_id),
                kind=kind,
                timestamp=ts,
                stage=stage,
                stage_name=meta.get("stage_name") or f"Stage {stage}",
            )

        to_stage = _stage_key(meta.get("to_stage", meta.get("stage")))
        if to_stage is None:
            return None
        return cls(
            role_id=str(role_id),
            kind=kind,
            timestamp=ts,
            stage=to_stage,
            stage_name=(meta.get("to_stage_name") or meta.get("stage_name")
                        or f"Stage {to_stage}"),
            from_stage=_stage_key(meta.get("from_stage")),
            from_stage_name=meta.get("from_stage_name"),
        )


@dataclass(frozen=True)
class StageInterval:
    role_id: str
    stage: str
    stage_name: str
    entered_at: int
    exited_at: int | None
    duration_ms: int

    @property
    def is_open(self) -> bool:
        return self.exited_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "roleId": self.role_id,
            "stage": self.stage,
            "stageName": self.stage_name,
            "enteredAt": self.entered_at,
            "exitedAt": self.exited_at,
            "durationMs": self.duration_ms,
        }


@dataclass
class StageSummary:
    stage: str
    stage_name: str
    roles_count: int
    avg_days: float
    median_days: float
    max_days: float
    total_days: float
    prev_avg_days: float | None = None
    delta_pct: float | None = None
    compared: bool = False

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "stage": self.stage,
            "stageName": self.stage_name,
            "rolesCount": self.roles_count,
            "avgDays": self.avg_days,
            "medianDays": self.median_days,
            "maxDays": self.max_days,
            "totalDays": self.total_days,
        }
        if self.compared:
            d["prevAvgDays"] = self.prev_avg_days
            d["deltaPct"] = self.delta_pct
        return d


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

@dataclass
class Role:
    id: str
    workspace_id: str
    title: str = ""
    company: str | None = None
    status: str = RoleStatus.OPEN.value
    created_at: str = field(default_factory=now_iso)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_ROLE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "title": self.title,
            "company": self.company,
            "status": self.status,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Role:
        return cls(
            id=d["id"],
            workspace_id=d.get("workspace_id", ""),
            title=d.get("title", ""),
            company=d.get("company"),
            status=d.get("status", RoleStatus.OPEN.value),
            created_at=d.get("created_at") or now_iso(),
        )


@dataclass
class RoleState:
    """A role's live pipeline position, projected from the event log."""

    role_id: str
    stage: str
    stage_name: str
    stage_updated_at: int
    created_at: int
    company: str | None = None
    title: str = ""

    @property
    def stage_index(self) -> int | None:
        try:
            return int(self.stage)
        except ValueError:
            return None


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

@dataclass
class UrgencyTask:
    id: str
    role_id: str
    title: str
    due_at: int | None = None
    done: bool = False
    origin: TaskOrigin = TaskOrigin.MANUAL
    workspace_id: str | None = None
    created_at: str = field(default_factory=now_iso)
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role_id": self.role_id,
            "workspace_id": self.workspace_id,
            "title": self.title,
            "due_at": self.due_at,
            "done": self.done,
            "origin": self.origin.value,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }


# ---------------------------------------------------------------------------
# Client response learning
# ---------------------------------------------------------------------------

@dataclass
class ClientResponseStat:
    client_key: str
    count: int
    avg_ms: float
    last_ms: float
    updated_at: int
    workspace_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "client_key": self.client_key,
            "workspace_id": self.workspace_id,
            "count": self.count,
            "avg_ms": self.avg_ms,
            "last_ms": self.last_ms,
            "updated_at": self.updated_at,
        }


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

@dataclass
class RateWindow:
    count: int
    window_start: int
