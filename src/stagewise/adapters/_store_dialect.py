"""Abstract base class capturing SQL dialect differences between backends.

Subclasses implement 5 abstract members: ``_connection``, ``_ph``,
``_excluded_prefix``, ``_insert_or_ignore_sql`` and ``close``.
Concrete helpers that are purely dialect-aware also live here so that
mixin classes can call them via MRO.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any


# ---------------------------------------------------------------------------
# Schema (shared between all backends)
# ---------------------------------------------------------------------------

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS events (
        id            TEXT PRIMARY KEY,
        trace_id      TEXT NOT NULL,
        timestamp     TEXT NOT NULL,
        event_type    TEXT NOT NULL,
        workspace_id  TEXT,
        role_id       TEXT,
        user_id       TEXT,
        company       TEXT,
        payload       TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_type      ON events(event_type)",
    "CREATE INDEX IF NOT EXISTS idx_events_workspace ON events(workspace_id, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_events_role      ON events(role_id, timestamp)",
    """
    CREATE TABLE IF NOT EXISTS roles (
        id            TEXT PRIMARY KEY,
        workspace_id  TEXT NOT NULL,
        title         TEXT NOT NULL DEFAULT '',
        company       TEXT,
        status        TEXT NOT NULL DEFAULT 'open',
        created_at    TEXT NOT NULL,
        updated_at    TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_roles_workspace ON roles(workspace_id)",
    """
    CREATE TABLE IF NOT EXISTS tasks (
        id            TEXT PRIMARY KEY,
        workspace_id  TEXT,
        role_id       TEXT NOT NULL,
        title         TEXT NOT NULL,
        due_at        BIGINT,
        done          INTEGER NOT NULL DEFAULT 0,
        origin        TEXT NOT NULL DEFAULT 'manual',
        created_at    TEXT NOT NULL,
        completed_at  TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tasks_role      ON tasks(role_id)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_workspace ON tasks(workspace_id, done)",
    # One open auto task per (role, title): the conditional-insert key.
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_tasks_open_auto ON tasks(role_id, title) "
    "WHERE done = 0 AND origin <> 'manual'",
    """
    CREATE TABLE IF NOT EXISTS client_response_stats (
        workspace_id  TEXT NOT NULL DEFAULT '',
        client_key    TEXT NOT NULL,
        count         INTEGER NOT NULL,
        avg_ms        DOUBLE PRECISION NOT NULL,
        last_ms       DOUBLE PRECISION NOT NULL,
        updated_at    BIGINT NOT NULL,
        PRIMARY KEY (workspace_id, client_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workspace_settings (
        workspace_id  TEXT PRIMARY KEY,
        data          TEXT NOT NULL,
        updated_at    TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rate_windows (
        key           TEXT PRIMARY KEY,
        count         INTEGER NOT NULL,
        window_start  BIGINT NOT NULL
    )
    """,
]


class _StoreDialect(ABC):
    """Abstract SQL-dialect base.

    Provides 5 abstract members that vary per backend, plus concrete helpers
    used by the mixin classes.
    """

    # ------------------------------------------------------------------
    # Abstract template methods (what varies per backend)
    # ------------------------------------------------------------------

    @abstractmethod
    def _connection(self):
        """Context manager yielding an open database connection.

        Subclasses should decorate with ``@contextmanager`` and yield a
        connection that supports ``.execute()``, ``.commit()``,
        ``.rollback()``, and cursor ``.fetchone()``/``.fetchall()``.
        Rows must be convertible with ``dict(row)``.
        """

    @property
    @abstractmethod
    def _ph(self) -> str:
        """SQL parameter placeholder: ``'?'`` for SQLite, ``'%s'`` for PostgreSQL."""

    @property
    @abstractmethod
    def _excluded_prefix(self) -> str:
        """Upsert EXCLUDED reference: ``'excluded'`` or ``'EXCLUDED'``."""

    @abstractmethod
    def _insert_or_ignore_sql(
        self, table: str, columns: list[str], ph_str: str,
    ) -> str:
        """Build INSERT-or-ignore SQL for the backend dialect."""

    @abstractmethod
    def close(self) -> None: ...

    # ------------------------------------------------------------------
    # Concrete helpers
    # ------------------------------------------------------------------

    def _apply_schema(self) -> None:
        with self._connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
            conn.commit()

    def _placeholders(self, n: int) -> str:
        """Return *n* comma-separated parameter placeholders."""
        return ", ".join([self._ph] * n)

    def _build_where(
        self, filters: dict[str, object],
    ) -> tuple[str, list]:
        """Build a WHERE clause from a {column: value} dict.

        Skips entries where value is None.  Returns (clause_str, params_list).
        clause_str is empty string when no filters match.
        """
        ph = self._ph
        clauses: list[str] = []
        params: list = []
        for col, val in filters.items():
            if val is not None:
                clauses.append(f"{col} = {ph}")
                params.append(val)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params

    @staticmethod
    def _row_to_event_dict(row: Any) -> dict[str, Any]:
        """Convert a database row to an event dictionary."""
        d = dict(row)
        payload = d["payload"]
        d["payload"] = json.loads(payload) if isinstance(payload, str) else payload
        return d
