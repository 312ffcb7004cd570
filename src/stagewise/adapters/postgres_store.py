"""PostgreSQL implementation of StagewiseStore.

Uses psycopg 3 (sync mode) with psycopg_pool.ConnectionPool for
connection management.  Schema is identical to SQLite (TEXT columns
with JSON serialisation, not JSONB) for migration simplicity.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from stagewise.adapters._core_mixin import EventStoreMixin, RoleStoreMixin
from stagewise.adapters._settings_mixin import RateWindowMixin, SettingsStoreMixin
from stagewise.adapters._store_dialect import _StoreDialect
from stagewise.adapters._task_mixin import ClientStatStoreMixin, TaskStoreMixin


class PostgresStore(
    EventStoreMixin,
    RoleStoreMixin,
    TaskStoreMixin,
    ClientStatStoreMixin,
    SettingsStoreMixin,
    RateWindowMixin,
    _StoreDialect,
):
    """StagewiseStore backed by PostgreSQL via psycopg 3 + connection pool."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 2,
        max_size: int = 10,
        run_schema: bool = True,
    ) -> None:
        self._dsn = dsn
        self._pool = ConnectionPool(
            dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row},
        )
        if run_schema:
            self._apply_schema()

    @property
    def dsn(self) -> str:
        return self._dsn

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        with self._pool.connection() as conn:
            yield conn

    @property
    def _ph(self) -> str:
        return "%s"

    @property
    def _excluded_prefix(self) -> str:
        return "EXCLUDED"

    def _insert_or_ignore_sql(
        self, table: str, columns: list[str], ph_str: str,
    ) -> str:
        return (
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({ph_str}) "
            f"ON CONFLICT DO NOTHING"
        )
