"""Factory for creating the appropriate StagewiseStore backend.

Reads ``STAGEWISE_DB_BACKEND`` (default: ``sqlite``) and returns the
corresponding store implementation.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from stagewise.ports import StagewiseStore

DEFAULT_DB_PATH = ".stagewise/state.db"


def create_store(
    *,
    backend: str | None = None,
    db_path: str | Path | None = None,
    dsn: str | None = None,
    **kwargs: Any,
) -> StagewiseStore:
    """Create and return a ``StagewiseStore`` for the requested backend.

    Parameters
    ----------
    backend:
        ``"sqlite"`` or ``"postgres"``.  Falls back to the
        ``STAGEWISE_DB_BACKEND`` env var (default ``"sqlite"``).
    db_path:
        Path to the SQLite file.  Falls back to ``STAGEWISE_DB_PATH``.
    dsn:
        PostgreSQL connection string.  Required when *backend* is ``"postgres"``.
        Falls back to ``STAGEWISE_PG_DSN``.
    **kwargs:
        Extra keyword arguments forwarded to the store constructor
        (e.g. ``min_size``, ``max_size`` for the Postgres pool).
    """
    backend = (backend or os.environ.get("STAGEWISE_DB_BACKEND", "sqlite")).lower()

    if backend == "sqlite":
        from stagewise.adapters.sqlite_store import SqliteStore

        path = db_path or os.environ.get("STAGEWISE_DB_PATH", DEFAULT_DB_PATH)
        return SqliteStore(path)

    if backend == "postgres":
        from stagewise.adapters.postgres_store import PostgresStore

        pg_dsn = dsn or os.environ.get("STAGEWISE_PG_DSN")
        if not pg_dsn:
            raise ValueError(
                "PostgreSQL backend requires a DSN.  Set STAGEWISE_PG_DSN or pass dsn=."
            )
        return PostgresStore(pg_dsn, **kwargs)

    raise ValueError(f"Unknown backend: {backend!r}  (expected 'sqlite' or 'postgres')")
