"""Core store mixins: events and roles.

These mixin classes provide the business methods for EventStorePort and
RoleStorePort.  They rely on ``_StoreDialect`` methods (``_connection``,
``_ph``, ``_placeholders``, etc.) being available via MRO.
"""

from __future__ import annotations

import json
from typing import Any

from stagewise.models import INACTIVE_ROLE_STATUSES, Event, Role, now_iso


# ---------------------------------------------------------------------------
# EventStoreMixin
# ---------------------------------------------------------------------------

class EventStoreMixin:
    """Mixin providing EventStorePort methods."""

    def append(self, event: Event) -> Event:
        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO events (id, trace_id, timestamp, event_type, workspace_id, "
                f"role_id, user_id, company, payload) "
                f"VALUES ({self._placeholders(9)})",
                (
                    event.id,
                    event.trace_id,
                    event.timestamp,
                    event.event_type,
                    event.workspace_id,
                    event.role_id,
                    event.user_id,
                    event.company,
                    json.dumps(event.payload),
                ),
            )
            conn.commit()
        return event

    def _event_filters(
        self,
        *,
        workspace_id: str | None = None,
        event_types: list[str] | tuple[str, ...] | None = None,
        role_id: str | None = None,
        user_id: str | None = None,
        company: str | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> tuple[str, list[Any]]:
        ph = self._ph
        clauses: list[str] = []
        params: list[Any] = []
        for col, val in (("workspace_id", workspace_id), ("role_id", role_id),
                         ("user_id", user_id), ("company", company)):
            if val:
                clauses.append(f"{col} = {ph}")
                params.append(val)
        if event_types:
            clauses.append(f"event_type IN ({self._placeholders(len(event_types))})")
            params.extend(event_types)
        if since:
            clauses.append(f"timestamp >= {ph}")
            params.append(since)
        if until:
            clauses.append(f"timestamp <= {ph}")
            params.append(until)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params

    def query(
        self,
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
        where, params = self._event_filters(
            workspace_id=workspace_id, event_types=event_types, role_id=role_id,
            user_id=user_id, company=company, since=since, until=until,
        )
        order = "ASC" if ascending else "DESC"
        params.extend([limit, offset])
        sql = (
            f"SELECT * FROM events{where} ORDER BY timestamp {order}, id {order} "
            f"LIMIT {self._ph} OFFSET {self._ph}"
        )
        with self._connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_event_dict(r) for r in rows]

    def count(
        self,
        *,
        workspace_id: str | None = None,
        event_types: list[str] | tuple[str, ...] | None = None,
        since: str | None = None,
        until: str | None = None,
    ) -> int:
        where, params = self._event_filters(
            workspace_id=workspace_id, event_types=event_types, since=since, until=until,
        )
        with self._connection() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS cnt FROM events{where}", params).fetchone()
        return dict(row)["cnt"]

    def list_workspaces(self) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT workspace_id FROM roles "
                "UNION SELECT DISTINCT workspace_id FROM events WHERE workspace_id IS NOT NULL"
            ).fetchall()
        return sorted(dict(r)["workspace_id"] for r in rows if dict(r)["workspace_id"])


# ---------------------------------------------------------------------------
# RoleStoreMixin
# ---------------------------------------------------------------------------

class RoleStoreMixin:
    """Mixin providing RoleStorePort methods (role metadata only)."""

    def upsert_role(self, role: Role) -> None:
        ex = self._excluded_prefix
        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO roles (id, workspace_id, title, company, status, created_at, updated_at) "
                f"VALUES ({self._placeholders(7)}) "
                f"ON CONFLICT(id) DO UPDATE SET "
                f"title={ex}.title, company={ex}.company, "
                f"status={ex}.status, updated_at={ex}.updated_at",
                (role.id, role.workspace_id, role.title, role.company,
                 role.status, role.created_at, now_iso()),
            )
            conn.commit()

    def get_role(self, role_id: str) -> Role | None:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM roles WHERE id = {self._ph}", (role_id,),
            ).fetchone()
        if row is None:
            return None
        return Role.from_dict(dict(row))

    def list_roles(
        self,
        *,
        workspace_id: str | None = None,
        active_only: bool = False,
        limit: int = 10_000,
    ) -> list[Role]:
        where, params = self._build_where({"workspace_id": workspace_id})
        if active_only:
            clause = f"status NOT IN ({self._placeholders(len(INACTIVE_ROLE_STATUSES))})"
            where = f"{where} AND {clause}" if where else f" WHERE {clause}"
            params.extend(INACTIVE_ROLE_STATUSES)
        params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM roles{where} ORDER BY created_at ASC, id ASC LIMIT {self._ph}",
                params,
            ).fetchall()
        return [Role.from_dict(dict(r)) for r in rows]
