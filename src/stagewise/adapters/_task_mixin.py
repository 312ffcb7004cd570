"""Task and client-response store mixins.

Auto tasks rely on the partial unique index ``uq_tasks_open_auto`` so that
the existence check and the insert are a single statement.
"""

from __future__ import annotations

from typing import Any

from stagewise.models import ClientResponseStat, TaskOrigin, UrgencyTask

_TASK_COLUMNS = [
    "id", "workspace_id", "role_id", "title", "due_at",
    "done", "origin", "created_at", "completed_at",
]


def _row_to_task(row: Any) -> UrgencyTask:
    d = dict(row)
    return UrgencyTask(
        id=d["id"],
        role_id=d["role_id"],
        title=d["title"],
        due_at=d.get("due_at"),
        done=bool(d.get("done")),
        origin=TaskOrigin(d.get("origin") or TaskOrigin.MANUAL.value),
        workspace_id=d.get("workspace_id"),
        created_at=d["created_at"],
        completed_at=d.get("completed_at"),
    )


def _row_to_stat(row: Any) -> ClientResponseStat:
    d = dict(row)
    return ClientResponseStat(
        client_key=d["client_key"],
        workspace_id=d.get("workspace_id") or "",
        count=int(d["count"]),
        avg_ms=float(d["avg_ms"]),
        last_ms=float(d["last_ms"]),
        updated_at=int(d["updated_at"]),
    )


# ---------------------------------------------------------------------------
# TaskStoreMixin
# ---------------------------------------------------------------------------

class TaskStoreMixin:
    """Mixin providing TaskStorePort methods."""

    def create_task_if_absent(self, task: UrgencyTask) -> bool:
        """Insert *task* unless an open auto task with the same title exists.

        Manual tasks are never deduplicated.  Returns True if a row was written.
        """
        sql = self._insert_or_ignore_sql(
            "tasks", _TASK_COLUMNS, self._placeholders(len(_TASK_COLUMNS)),
        )
        with self._connection() as conn:
            cur = conn.execute(
                sql,
                (
                    task.id, task.workspace_id, task.role_id, task.title, task.due_at,
                    1 if task.done else 0, task.origin.value, task.created_at,
                    task.completed_at,
                ),
            )
            written = cur.rowcount == 1
            conn.commit()
        return written

    def get_task(self, task_id: str) -> UrgencyTask | None:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM tasks WHERE id = {self._ph}", (task_id,),
            ).fetchone()
        return _row_to_task(row) if row else None

    def list_tasks(
        self,
        *,
        workspace_id: str | None = None,
        role_id: str | None = None,
        done: bool | None = None,
        origin: str | None = None,
        limit: int = 200,
    ) -> list[UrgencyTask]:
        where, params = self._build_where({
            "workspace_id": workspace_id,
            "role_id": role_id,
            "done": None if done is None else (1 if done else 0),
            "origin": origin,
        })
        params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM tasks{where} "
                f"ORDER BY due_at IS NULL, due_at ASC, created_at ASC LIMIT {self._ph}",
                params,
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def mark_task_done(self, task_id: str, completed_at: str) -> bool:
        ph = self._ph
        with self._connection() as conn:
            cur = conn.execute(
                f"UPDATE tasks SET done = 1, completed_at = {ph} "
                f"WHERE id = {ph} AND done = 0",
                (completed_at, task_id),
            )
            updated = cur.rowcount > 0
            conn.commit()
        return updated


# ---------------------------------------------------------------------------
# ClientStatStoreMixin
# ---------------------------------------------------------------------------

class ClientStatStoreMixin:
    """Mixin providing ClientStatStorePort methods."""

    def get_client_stat(self, workspace_id: str, client_key: str) -> ClientResponseStat | None:
        ph = self._ph
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT * FROM client_response_stats "
                f"WHERE workspace_id = {ph} AND client_key = {ph}",
                (workspace_id or "", client_key),
            ).fetchone()
        return _row_to_stat(row) if row else None

    def save_client_stat(self, stat: ClientResponseStat) -> None:
        ex = self._excluded_prefix
        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO client_response_stats "
                f"(workspace_id, client_key, count, avg_ms, last_ms, updated_at) "
                f"VALUES ({self._placeholders(6)}) "
                f"ON CONFLICT(workspace_id, client_key) DO UPDATE SET "
                f"count={ex}.count, avg_ms={ex}.avg_ms, "
                f"last_ms={ex}.last_ms, updated_at={ex}.updated_at",
                (stat.workspace_id or "", stat.client_key, stat.count,
                 stat.avg_ms, stat.last_ms, stat.updated_at),
            )
            conn.commit()

    def list_client_stats(self, workspace_id: str | None = None) -> list[ClientResponseStat]:
        where, params = self._build_where({"workspace_id": workspace_id})
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM client_response_stats{where} ORDER BY client_key",
                params,
            ).fetchall()
        return [_row_to_stat(r) for r in rows]
