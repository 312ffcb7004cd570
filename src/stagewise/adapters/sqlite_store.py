"""SQLite implementation of StagewiseStore.

Connections are opened per call; the file runs in WAL mode so readers and
the single writer do not block each other.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from stagewise.adapters._core_mixin import EventStoreMixin, RoleStoreMixin
from stagewise.adapters._settings_mixin import RateWindowMixin, SettingsStoreMixin
from stagewise.adapters._store_dialect import _StoreDialect
from stagewise.adapters._task_mixin import ClientStatStoreMixin, TaskStoreMixin


class SqliteStore(
    EventStoreMixin,
    RoleStoreMixin,
    TaskStoreMixin,
    ClientStatStoreMixin,
    SettingsStoreMixin,
    RateWindowMixin,
    _StoreDialect,
):
    """StagewiseStore backed by a single SQLite file."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._apply_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        pass  # connections are per-call; nothing to tear down

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @property
    def _ph(self) -> str:
        return "?"

    @property
    def _excluded_prefix(self) -> str:
        return "excluded"

    def _insert_or_ignore_sql(
        self, table: str, columns: list[str], ph_str: str,
    ) -> str:
        return f"INSERT OR IGNORE INTO {table} ({', '.join(columns)}) VALUES ({ph_str})"
