"""Worker lifecycle, graceful shutdown, and per-workspace evaluation ticks."""

from __future__ import annotations

import os
import threading
import time
from unittest.mock import patch

from conftest import T0, WS, hours, make_role

from stagewise import event_log, urgency
from stagewise.models import EventType
from stagewise.worker import EvaluationWorker, WorkerConfig


def _config(db_path, poll_interval=1.0, workspaces=None):
    config = WorkerConfig()
    config.db_path = str(db_path)
    config.poll_interval = poll_interval
    config.workspaces = workspaces or []
    return config


class TestWorkerConfig:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = WorkerConfig()
            assert cfg.poll_interval == 300
            assert cfg.workspaces == []
            assert cfg.db_path.endswith("state.db")

    def test_custom_config(self):
        with patch.dict(os.environ, {
            "STAGEWISE_WORKER_POLL_INTERVAL": "15",
            "STAGEWISE_WORKER_WORKSPACES": "ws-a, ws-b,,",
            "STAGEWISE_DB_PATH": "/tmp/custom.db",
        }):
            cfg = WorkerConfig()
            assert cfg.poll_interval == 15
            assert cfg.workspaces == ["ws-a", "ws-b"]
            assert cfg.db_path == "/tmp/custom.db"


class TestRunOnce:
    def test_evaluates_every_workspace(self, db_path):
        make_role("A", at=T0 - hours(30))
        make_role("B", workspace_id="ws-2", at=T0 - hours(30))
        worker = EvaluationWorker(_config(db_path), clock=lambda: T0, init_store=False)
        results = worker.run_once()
        assert sorted(r.workspace_id for r in results) == [WS, "ws-2"]
        assert worker.tasks_created == 2
        assert worker.cycles == 1

    def test_repeated_ticks_do_not_duplicate(self, db_path):
        make_role("A", at=T0 - hours(30))
        worker = EvaluationWorker(_config(db_path), clock=lambda: T0, init_store=False)
        worker.run_once()
        worker.run_once()
        assert worker.tasks_created == 1
        assert len(event_log.list_tasks(workspace_id=WS, done=False)) == 1

    def test_configured_workspaces_only(self, db_path):
        make_role("A", at=T0 - hours(30))
        make_role("B", workspace_id="ws-2", at=T0 - hours(30))
        worker = EvaluationWorker(_config(db_path, workspaces=["ws-2"]), clock=lambda: T0, init_store=False)
        [result] = worker.run_once()
        assert result.workspace_id == "ws-2"
        assert event_log.list_tasks(workspace_id=WS) == []

    def test_failing_workspace_does_not_stop_others(self, db_path, caplog):
        make_role("A", at=T0 - hours(30))
        make_role("B", workspace_id="ws-2", at=T0 - hours(30))
        real = urgency.evaluate_workspace

        def flaky(workspace_id, *, now_ms=None):
            if workspace_id == WS:
                raise RuntimeError("boom")
            return real(workspace_id, now_ms=now_ms)

        worker = EvaluationWorker(_config(db_path), clock=lambda: T0, init_store=False)
        with patch.object(urgency, "evaluate_workspace", side_effect=flaky):
            results = worker.run_once()
        assert [r.workspace_id for r in results] == ["ws-2"]
        assert "Evaluation failed for workspace ws-1" in caplog.text

    def test_listing_failure_skips_cycle(self, db_path):
        worker = EvaluationWorker(_config(db_path), init_store=False)
        with patch.object(event_log, "list_workspaces", side_effect=RuntimeError("db down")):
            assert worker.run_once() == []
        assert worker.cycles == 1


class TestWorkerLifecycle:
    def _run(self, worker):
        thread = threading.Thread(target=worker.start, daemon=True)
        thread.start()
        return thread

    def test_worker_starts_and_stops(self, db_path):
        worker = EvaluationWorker(_config(db_path))
        thread = self._run(worker)
        time.sleep(0.3)
        assert worker.is_running is True

        worker.stop()
        thread.join(timeout=5)
        assert worker.is_running is False
        assert worker.cycles >= 1

    def test_stop_interrupts_long_wait(self, db_path):
        worker = EvaluationWorker(_config(db_path, poll_interval=60))
        thread = self._run(worker)
        time.sleep(0.3)
        started = time.monotonic()
        worker.stop()
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert time.monotonic() - started < 5

    def test_records_start_stop_events(self, db_path):
        worker = EvaluationWorker(_config(db_path))
        thread = self._run(worker)
        time.sleep(0.3)
        worker.stop()
        thread.join(timeout=5)

        started = event_log.query(event_types=[EventType.WORKER_STARTED])
        stopped = event_log.query(event_types=[EventType.WORKER_STOPPED])
        assert len(started) == 1
        assert len(stopped) == 1
        assert started[0]["payload"]["pid"] == os.getpid()
        assert stopped[0]["payload"]["cycles"] >= 1
