"""Contract tests for StagewiseStore implementations.

Every storage backend must pass these tests.  The ``contract_store`` fixture
is parametrised so that adding a new backend only requires extending the
params list.  Postgres tests require ``STAGEWISE_TEST_PG_DSN`` to be set;
they are skipped otherwise.
"""

from __future__ import annotations

import os
import threading

import pytest

from stagewise.adapters.sqlite_store import SqliteStore
from stagewise.adapters.store_factory import create_store
from stagewise.models import (
    ClientResponseStat,
    Event,
    EventType,
    RateWindow,
    Role,
    TaskOrigin,
    UrgencyTask,
    new_id,
)
from stagewise.ports import (
    ClientStatStorePort,
    EventStorePort,
    RateWindowStorePort,
    RoleStorePort,
    SettingsStorePort,
    StagewiseStore,
    TaskStorePort,
)


# ---------------------------------------------------------------------------
# Parametrised fixture: extend params for new backends
# ---------------------------------------------------------------------------

def _pg_available() -> bool:
    return bool(os.environ.get("STAGEWISE_TEST_PG_DSN"))


_backends = ["sqlite"]
if _pg_available():
    _backends.append("postgres")


@pytest.fixture(params=_backends)
def contract_store(request, tmp_path):
    if request.param == "sqlite":
        store = SqliteStore(tmp_path / "contract.db")
        yield store
        store.close()
    elif request.param == "postgres":
        from stagewise.adapters.postgres_store import PostgresStore

        dsn = os.environ["STAGEWISE_TEST_PG_DSN"]
        store = PostgresStore(dsn, min_size=1, max_size=2)
        # Clean tables before each test for isolation
        import psycopg
        with psycopg.connect(dsn) as conn:
            for table in (
                "rate_windows", "workspace_settings", "client_response_stats",
                "tasks", "roles", "events",
            ):
                conn.execute(f"DELETE FROM {table}")
            conn.commit()
        yield store
        store.close()
    else:
        raise ValueError(f"Unknown backend: {request.param}")


def _event(event_type=EventType.CV_SENT, ts="2023-11-10T00:00:00.000+00:00", **kw):
    return Event(event_type=event_type, id=new_id(), trace_id="t", timestamp=ts, **kw)


def _task(role_id="r-1", title="Check in: New Leads", origin=TaskOrigin.AUTO_ESCALATION, **kw):
    return UrgencyTask(id=new_id(), role_id=role_id, title=title, origin=origin,
                       workspace_id="ws-1", **kw)


# ===================================================================
# Protocol conformance
# ===================================================================

class TestProtocolConformance:
    def test_ports(self, contract_store):
        for port in (EventStorePort, RoleStorePort, TaskStorePort,
                     ClientStatStorePort, SettingsStorePort, RateWindowStorePort,
                     StagewiseStore):
            assert isinstance(contract_store, port)


# ===================================================================
# Events
# ===================================================================

class TestEvents:
    def test_append_and_query_roundtrip(self, contract_store):
        contract_store.append(_event(workspace_id="ws-1", company="Acme", payload={"value": 3}))
        [row] = contract_store.query(workspace_id="ws-1")
        assert row["event_type"] == EventType.CV_SENT
        assert row["company"] == "Acme"
        assert row["payload"] == {"value": 3}

    def test_time_window_inclusive(self, contract_store):
        for day in ("01", "05", "09"):
            contract_store.append(_event(workspace_id="ws-1", ts=f"2023-11-{day}T00:00:00.000+00:00"))
        rows = contract_store.query(
            workspace_id="ws-1",
            since="2023-11-01T00:00:00.000+00:00",
            until="2023-11-05T00:00:00.000+00:00",
        )
        assert len(rows) == 2

    def test_ordering(self, contract_store):
        for day in ("03", "01", "02"):
            contract_store.append(_event(workspace_id="ws-1", ts=f"2023-11-{day}T00:00:00.000+00:00"))
        asc = [r["timestamp"][:10] for r in contract_store.query(workspace_id="ws-1", ascending=True)]
        desc = [r["timestamp"][:10] for r in contract_store.query(workspace_id="ws-1")]
        assert asc == ["2023-11-01", "2023-11-02", "2023-11-03"]
        assert desc == list(reversed(asc))

    def test_filters_and_count(self, contract_store):
        contract_store.append(_event(workspace_id="ws-1", user_id="u-1"))
        contract_store.append(_event(EventType.PLACEMENT_CREATED, workspace_id="ws-1"))
        contract_store.append(_event(workspace_id="ws-2"))
        assert contract_store.count(workspace_id="ws-1") == 2
        assert contract_store.count(event_types=[EventType.CV_SENT]) == 2
        assert len(contract_store.query(user_id="u-1")) == 1
        assert len(contract_store.query(workspace_id="ws-1", limit=1)) == 1

    def test_list_workspaces(self, contract_store):
        contract_store.append(_event(workspace_id="ws-b"))
        contract_store.append(_event())
        contract_store.upsert_role(Role(id="r-1", workspace_id="ws-a"))
        assert contract_store.list_workspaces() == ["ws-a", "ws-b"]


# ===================================================================
# Roles
# ===================================================================

class TestRoles:
    def test_upsert_and_get(self, contract_store):
        contract_store.upsert_role(Role(id="r-1", workspace_id="ws-1", title="Dev"))
        contract_store.upsert_role(Role(id="r-1", workspace_id="ws-1", title="Senior Dev", status="closed"))
        role = contract_store.get_role("r-1")
        assert role.title == "Senior Dev"
        assert not role.is_active
        assert contract_store.get_role("missing") is None

    def test_list_active_only(self, contract_store):
        contract_store.upsert_role(Role(id="r-1", workspace_id="ws-1"))
        contract_store.upsert_role(Role(id="r-2", workspace_id="ws-1", status="lost"))
        contract_store.upsert_role(Role(id="r-3", workspace_id="ws-2"))
        assert [r.id for r in contract_store.list_roles(workspace_id="ws-1")] == ["r-1", "r-2"]
        assert [r.id for r in contract_store.list_roles(workspace_id="ws-1", active_only=True)] == ["r-1"]


# ===================================================================
# Tasks
# ===================================================================

class TestTasks:
    def test_one_open_auto_task_per_title(self, contract_store):
        assert contract_store.create_task_if_absent(_task()) is True
        assert contract_store.create_task_if_absent(_task()) is False
        assert contract_store.create_task_if_absent(_task(title="Chase client feedback",
                                                          origin=TaskOrigin.AUTO_CHASE)) is True
        assert len(contract_store.list_tasks(role_id="r-1")) == 2

    def test_completed_task_frees_the_slot(self, contract_store):
        first = _task()
        contract_store.create_task_if_absent(first)
        assert contract_store.mark_task_done(first.id, "2023-11-10T00:00:00.000+00:00") is True
        assert contract_store.mark_task_done(first.id, "2023-11-11T00:00:00.000+00:00") is False
        assert contract_store.create_task_if_absent(_task()) is True
        assert contract_store.get_task(first.id).completed_at == "2023-11-10T00:00:00.000+00:00"

    def test_manual_tasks_never_deduplicated(self, contract_store):
        for _ in range(2):
            assert contract_store.create_task_if_absent(_task(title="Call", origin=TaskOrigin.MANUAL))
        assert len(contract_store.list_tasks(origin="manual")) == 2

    def test_list_filters_and_order(self, contract_store):
        contract_store.create_task_if_absent(_task(title="b", due_at=200, origin=TaskOrigin.MANUAL))
        contract_store.create_task_if_absent(_task(title="none", origin=TaskOrigin.MANUAL))
        contract_store.create_task_if_absent(_task(title="a", due_at=100, origin=TaskOrigin.MANUAL))
        done = _task(title="x", due_at=1, origin=TaskOrigin.MANUAL)
        contract_store.create_task_if_absent(done)
        contract_store.mark_task_done(done.id, "2023-11-10T00:00:00.000+00:00")
        open_titles = [t.title for t in contract_store.list_tasks(workspace_id="ws-1", done=False)]
        assert open_titles == ["a", "b", "none"]
        assert [t.title for t in contract_store.list_tasks(done=True)] == ["x"]


# ===================================================================
# Client stats, settings, rate windows
# ===================================================================

class TestClientStats:
    def test_save_and_overwrite(self, contract_store):
        stat = ClientResponseStat(client_key="Acme", workspace_id="ws-1", count=1,
                                  avg_ms=10.0, last_ms=10.0, updated_at=1)
        contract_store.save_client_stat(stat)
        stat.count, stat.avg_ms = 2, 12.5
        contract_store.save_client_stat(stat)
        loaded = contract_store.get_client_stat("ws-1", "Acme")
        assert loaded.count == 2
        assert loaded.avg_ms == 12.5
        assert contract_store.get_client_stat("ws-2", "Acme") is None
        assert [s.client_key for s in contract_store.list_client_stats("ws-1")] == ["Acme"]


class TestSettings:
    def test_roundtrip(self, contract_store):
        assert contract_store.get_workspace_settings("ws-1") is None
        contract_store.save_workspace_settings("ws-1", {"sla": {"max_total_hours": 5}})
        contract_store.save_workspace_settings("ws-1", {"sla": {"max_total_hours": 7}})
        assert contract_store.get_workspace_settings("ws-1") == {"sla": {"max_total_hours": 7}}


class TestRateWindows:
    def test_hit_opens_and_bumps_window(self, contract_store):
        assert contract_store.get_rate_window("k") is None
        assert contract_store.hit_rate_window("k", 1000, 60_000) == RateWindow(count=1, window_start=1000)
        assert contract_store.hit_rate_window("k", 2000, 60_000) == RateWindow(count=2, window_start=1000)
        assert contract_store.get_rate_window("k") == RateWindow(count=2, window_start=1000)

    def test_hit_restarts_expired_window(self, contract_store):
        contract_store.hit_rate_window("k", 1000, 60_000)
        contract_store.hit_rate_window("k", 1000, 60_000)
        # Exactly one window length later still counts.
        assert contract_store.hit_rate_window("k", 61_000, 60_000).count == 3
        assert contract_store.hit_rate_window("k", 61_001, 60_000) == RateWindow(count=1, window_start=61_001)

    def test_concurrent_hits_are_all_counted(self, contract_store):
        def hit():
            contract_store.hit_rate_window("k", 1000, 60_000)

        threads = [threading.Thread(target=hit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert contract_store.get_rate_window("k").count == 8


# ===================================================================
# Factory
# ===================================================================

class TestStoreFactory:
    def test_sqlite_default(self, tmp_path):
        store = create_store(backend="sqlite", db_path=tmp_path / "f.db")
        assert isinstance(store, SqliteStore)

    def test_postgres_requires_dsn(self, monkeypatch):
        monkeypatch.delenv("STAGEWISE_PG_DSN", raising=False)
        with pytest.raises(ValueError, match="DSN"):
            create_store(backend="postgres")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            create_store(backend="mongo")
