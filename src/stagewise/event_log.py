"""Append-only event log backed by a StagewiseStore singleton.

The event log is the source of truth.  Every stage transition, dashboard
activity, rule firing and settings change is recorded as an immutable
event.  A role's current stage is never stored: it is projected from its
latest transition event (see ``stagewise.projections.intervals``).

This module is a **facade**: all persistence is delegated to a
``StagewiseStore`` instance (default: ``SqliteStore``).  The store is
initialised once at startup via ``init()`` or ``configure()`` and then
accessed through a global singleton.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any

from stagewise.defaults import QUERY_PAGE_SIZE
from stagewise.models import ClientResponseStat, Event, Role, UrgencyTask, new_id
from stagewise.pipeline import WorkspaceSettings
from stagewise.ports import StagewiseStore

# ---------------------------------------------------------------------------
# Store singleton (thread-safe)
# ---------------------------------------------------------------------------

_store: StagewiseStore | None = None
_store_lock = threading.Lock()


def configure(store: StagewiseStore) -> None:
    """Set the global store instance (useful for tests and startup).

    Closes the previous store (if any) to avoid leaked connections/pools.
    """
    global _store
    with _store_lock:
        if _store is not None and _store is not store:
            _store.close()
        _store = store


def get_store() -> StagewiseStore | None:
    """Return the current store (may be None if not configured)."""
    return _store


def close() -> None:
    """Close and release the global store instance.

    Safe to call multiple times or when no store is configured.
    """
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
            _store = None


def _get_store() -> StagewiseStore:
    """Return the configured store. Raises if not initialised."""
    if _store is None:
        raise RuntimeError(
            "Store not configured. Call event_log.init() or "
            "event_log.configure() first."
        )
    return _store


def fresh_trace_id() -> str:
    """Generate a fresh trace ID.  Honours STAGEWISE_TRACE_ID env var for pinning."""
    return os.environ.get("STAGEWISE_TRACE_ID") or f"trace-{new_id()}"


def init(db_path: str | Path | None = None, *, backend: str | None = None, dsn: str | None = None) -> None:
    """Initialise (or re-initialise) the store.

    When *backend* is ``None`` the factory reads ``STAGEWISE_DB_BACKEND``
    (default ``"sqlite"``).
    """
    from stagewise.adapters.store_factory import create_store
    configure(create_store(backend=backend, db_path=db_path, dsn=dsn))


# ---------------------------------------------------------------------------
# Event operations
# ---------------------------------------------------------------------------

def append(event: Event) -> Event:
    if not event.trace_id:
        event.trace_id = fresh_trace_id()
    if not event.id:
        event.id = new_id()
    return _get_store().append(event)


def query(
    *,
    workspace_id: str | None = None,
    event_types: list[str] | tuple[str, ...] | None = None,
    role_id: str | None = None,
    user_id: str | None = None,
    company: str | None = None,
    since: str | None = None,
    until: str | None = None,
    ascending: bool = False,
    limit: int = 200,
    offset: int = 0,
) -> list[dict[str, Any]]:
    return _get_store().query(
        workspace_id=workspace_id, event_types=event_types, role_id=role_id,
        user_id=user_id, company=company, since=since, until=until,
        ascending=ascending, limit=limit, offset=offset,
    )


def query_all(
    *,
    workspace_id: str | None = None,
    event_types: list[str] | tuple[str, ...] | None = None,
    role_id: str | None = None,
    since: str | None = None,
    until: str | None = None,
) -> list[dict[str, Any]]:
    """Every matching event, oldest first.

    Reads the log in pages of ``QUERY_PAGE_SIZE`` until a short page, so
    projections over the whole history never see a truncated result.
    """
    events: list[dict[str, Any]] = []
    while True:
        page = query(
            workspace_id=workspace_id, event_types=event_types, role_id=role_id,
            since=since, until=until, ascending=True,
            limit=QUERY_PAGE_SIZE, offset=len(events),
        )
        events.extend(page)
        if len(page) < QUERY_PAGE_SIZE:
            return events


def count(
    *,
    workspace_id: str | None = None,
    event_types: list[str] | tuple[str, ...] | None = None,
    since: str | None = None,
    until: str | None = None,
) -> int:
    return _get_store().count(
        workspace_id=workspace_id, event_types=event_types, since=since, until=until,
    )


def list_workspaces() -> list[str]:
    return _get_store().list_workspaces()


# ---------------------------------------------------------------------------
# Role metadata
# ---------------------------------------------------------------------------

def upsert_role(role: Role) -> None:
    _get_store().upsert_role(role)


def get_role(role_id: str) -> Role | None:
    return _get_store().get_role(role_id)


def list_roles(
    *,
    workspace_id: str | None = None,
    active_only: bool = False,
    limit: int = 10_000,
) -> list[Role]:
    return _get_store().list_roles(
        workspace_id=workspace_id, active_only=active_only, limit=limit,
    )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

def create_task_if_absent(task: UrgencyTask) -> bool:
    return _get_store().create_task_if_absent(task)


def get_task(task_id: str) -> UrgencyTask | None:
    return _get_store().get_task(task_id)


def list_tasks(
    *,
    workspace_id: str | None = None,
    role_id: str | None = None,
    done: bool | None = None,
    origin: str | None = None,
    limit: int = 200,
) -> list[UrgencyTask]:
    return _get_store().list_tasks(
        workspace_id=workspace_id, role_id=role_id, done=done,
        origin=origin, limit=limit,
    )


def mark_task_done(task_id: str, completed_at: str) -> bool:
    return _get_store().mark_task_done(task_id, completed_at)


# ---------------------------------------------------------------------------
# Client response statistics
# ---------------------------------------------------------------------------

def get_client_stat(workspace_id: str, client_key: str) -> ClientResponseStat | None:
    return _get_store().get_client_stat(workspace_id, client_key)


def save_client_stat(stat: ClientResponseStat) -> None:
    _get_store().save_client_stat(stat)


def list_client_stats(workspace_id: str | None = None) -> list[ClientResponseStat]:
    return _get_store().list_client_stats(workspace_id=workspace_id)


# ---------------------------------------------------------------------------
# Workspace settings
# ---------------------------------------------------------------------------

def get_workspace_settings(workspace_id: str) -> WorkspaceSettings:
    """Return the workspace's settings, or defaults when none are stored."""
    return WorkspaceSettings.from_dict(_get_store().get_workspace_settings(workspace_id))


def save_workspace_settings(workspace_id: str, settings: WorkspaceSettings) -> None:
    _get_store().save_workspace_settings(workspace_id, settings.to_dict())
