"""Workspace settings and shared rate-window mixins."""

from __future__ import annotations

import json
from typing import Any

from stagewise.models import RateWindow, now_iso


class SettingsStoreMixin:
    """Mixin providing SettingsStorePort methods."""

    def get_workspace_settings(self, workspace_id: str) -> dict[str, Any] | None:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT data FROM workspace_settings WHERE workspace_id = {self._ph}",
                (workspace_id,),
            ).fetchone()
        if row is None:
            return None
        data = dict(row)["data"]
        return json.loads(data) if isinstance(data, str) else data

    def save_workspace_settings(self, workspace_id: str, data: dict[str, Any]) -> None:
        ex = self._excluded_prefix
        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO workspace_settings (workspace_id, data, updated_at) "
                f"VALUES ({self._placeholders(3)}) "
                f"ON CONFLICT(workspace_id) DO UPDATE SET "
                f"data={ex}.data, updated_at={ex}.updated_at",
                (workspace_id, json.dumps(data), now_iso()),
            )
            conn.commit()


class RateWindowMixin:
    """Mixin providing RateWindowStorePort methods.

    Lets several API processes share one rate-limit state through the
    database instead of each keeping its own in-memory windows.
    """

    def get_rate_window(self, key: str) -> RateWindow | None:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT count, window_start FROM rate_windows WHERE key = {self._ph}",
                (key,),
            ).fetchone()
        if row is None:
            return None
        d = dict(row)
        return RateWindow(count=int(d["count"]), window_start=int(d["window_start"]))

    def hit_rate_window(self, key: str, now_ms: int, window_ms: int) -> RateWindow:
        """Count one hit for *key* in a single statement.

        An expired window restarts at *now_ms* with a count of 1; otherwise
        the count is bumped.  Returns the window after the hit.
        """
        ph = self._ph
        expired = f"{ph} - rate_windows.window_start > {ph}"
        with self._connection() as conn:
            row = conn.execute(
                f"INSERT INTO rate_windows (key, count, window_start) VALUES ({ph}, 1, {ph}) "
                f"ON CONFLICT(key) DO UPDATE SET "
                f"count = CASE WHEN {expired} THEN 1 ELSE rate_windows.count + 1 END, "
                f"window_start = CASE WHEN {expired} THEN {ph} ELSE rate_windows.window_start END "
                f"RETURNING count, window_start",
                (key, now_ms, now_ms, window_ms, now_ms, window_ms, now_ms),
            ).fetchone()
            conn.commit()
        d = dict(row)
        return RateWindow(count=int(d["count"]), window_start=int(d["window_start"]))
