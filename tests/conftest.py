"""Shared fixtures for stagewise tests."""

from __future__ import annotations

import pytest

from stagewise import event_log
from stagewise.adapters.sqlite_store import SqliteStore
from stagewise.defaults import HOUR_MS
from stagewise.models import Event, EventType, Role, to_iso

# Fixed reference instant (2023-11-14T22:13:20Z) so every test is deterministic.
T0 = 1_700_000_000_000
WS = "ws-1"


# ---------------------------------------------------------------------------
# Auto-use fixtures: cleanup global state between tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_store():
    """Reset the event_log singleton after every test."""
    yield
    event_log._store = None


@pytest.fixture
def db_path(tmp_path):
    """Fresh SQLite database wired into the event_log facade."""
    path = tmp_path / "test_state.db"
    store = SqliteStore(path)
    event_log.configure(store)
    return path


@pytest.fixture
def store(tmp_path):
    """Return a fresh SqliteStore (not wired to the event_log facade)."""
    path = tmp_path / "contract_state.db"
    return SqliteStore(path)


# ---------------------------------------------------------------------------
# Event builders (plain records, as read back from the store)
# ---------------------------------------------------------------------------

def entered(role_id, stage, ts, name=None):
    return {
        "event_type": EventType.STAGE_ENTERED,
        "role_id": role_id,
        "timestamp": to_iso(ts),
        "payload": {"stage": str(stage), "stage_name": name or f"Stage {stage}"},
    }


def changed(role_id, from_stage, to_stage, ts, to_name=None):
    return {
        "event_type": EventType.STAGE_CHANGED,
        "role_id": role_id,
        "timestamp": to_iso(ts),
        "payload": {
            "from_stage": str(from_stage),
            "to_stage": str(to_stage),
            "to_stage_name": to_name or f"Stage {to_stage}",
        },
    }


# ---------------------------------------------------------------------------
# Persisted helpers (require the db_path fixture)
# ---------------------------------------------------------------------------

def make_role(role_id, *, workspace_id=WS, stage=0, at=T0, company=None, title="Engineer", status="open"):
    """Persist a role and its ``stage_entered`` event, return the Role.

    Usage::

        from conftest import make_role
        role = make_role("r-1", stage=1, at=T0 - 50 * HOUR_MS)
    """
    role = Role(id=role_id, workspace_id=workspace_id, title=title, company=company,
                status=status, created_at=to_iso(at))
    event_log.upsert_role(role)
    record_transition(role_id, None, stage, at, workspace_id=workspace_id)
    return role


def record_transition(role_id, from_stage, to_stage, at, *, workspace_id=WS):
    """Append a stage_entered (``from_stage=None``) or stage_changed event."""
    if from_stage is None:
        event_type = EventType.STAGE_ENTERED
        payload = {"stage": str(to_stage)}
    else:
        event_type = EventType.STAGE_CHANGED
        payload = {"from_stage": str(from_stage), "to_stage": str(to_stage)}
    event_log.append(Event(
        event_type=event_type,
        workspace_id=workspace_id,
        role_id=role_id,
        payload=payload,
        timestamp=to_iso(at),
    ))


def record_activity(event_type, at, *, workspace_id=WS, company=None, user_id=None, **payload):
    event_log.append(Event(
        event_type=event_type,
        workspace_id=workspace_id,
        company=company,
        user_id=user_id,
        payload=payload,
        timestamp=to_iso(at),
    ))


def hours(n):
    return int(n * HOUR_MS)
