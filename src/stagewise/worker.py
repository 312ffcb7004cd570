"""Scheduled rule-engine evaluation worker.

Runs as a **separate process** next to the API server.  Every poll interval
it runs one evaluation tick per workspace, so escalations fire as time
passes even when no stage changes happen.

Usage:
    python -m stagewise.worker           # uses env vars
    stagewise worker                     # via CLI

Configuration (env vars):
    STAGEWISE_WORKER_POLL_INTERVAL   seconds between ticks (default 300)
    STAGEWISE_WORKER_WORKSPACES      comma-separated workspace ids (default: all)
    STAGEWISE_DB_PATH                SQLite file (default .stagewise/state.db)
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from pathlib import Path
from typing import Any, Callable

from stagewise import event_log, urgency
from stagewise.defaults import WORKER_POLL_INTERVAL_SECONDS
from stagewise.models import Event, EventType

log = logging.getLogger("stagewise.worker")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class WorkerConfig:
    """Worker runtime configuration from environment."""

    def __init__(self) -> None:
        self.poll_interval = float(os.environ.get(
            "STAGEWISE_WORKER_POLL_INTERVAL", str(WORKER_POLL_INTERVAL_SECONDS),
        ))
        raw = os.environ.get("STAGEWISE_WORKER_WORKSPACES", "")
        self.workspaces = [w.strip() for w in raw.split(",") if w.strip()]
        self.db_path = os.environ.get("STAGEWISE_DB_PATH", str(Path(".stagewise") / "state.db"))


# ---------------------------------------------------------------------------
# Worker loop
# ---------------------------------------------------------------------------

class EvaluationWorker:
    """Periodic rule-engine evaluation with graceful shutdown."""

    def __init__(
        self,
        config: WorkerConfig | None = None,
        *,
        clock: Callable[[], int] | None = None,
        init_store: bool = True,
    ) -> None:
        self.config = config or WorkerConfig()
        self._clock = clock
        self._init_store = init_store
        self._stop_event = threading.Event()
        self._running = False
        self._cycles = 0
        self._tasks_created = 0

    def start(self) -> None:
        """Start the worker loop (blocking). Installs signal handlers."""
        self._running = True
        self._stop_event.clear()
        self._install_signal_handlers()

        log.info(
            "Worker starting: poll=%ss workspaces=%s",
            self.config.poll_interval,
            ",".join(self.config.workspaces) or "all",
        )

        if self._init_store:
            event_log.init(self.config.db_path)

        event_log.append(Event(
            event_type=EventType.WORKER_STARTED,
            payload={
                "poll_interval": self.config.poll_interval,
                "workspaces": self.config.workspaces,
                "pid": os.getpid(),
            },
        ))

        try:
            while self._running:
                self.run_once()
                if self._stop_event.wait(self.config.poll_interval):
                    break
        finally:
            self._shutdown()

    def stop(self) -> None:
        """Signal the worker to stop after the current tick."""
        log.info("Worker stop requested")
        self._running = False
        self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        """Capture SIGTERM and SIGINT for graceful shutdown.

        Only works from the main thread; silently skips otherwise
        (e.g. when run inside a test thread).
        """
        if threading.current_thread() is not threading.main_thread():
            log.debug("Not main thread, skipping signal handler installation")
            return

        def _handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            log.info("Received %s, initiating graceful shutdown", sig_name)
            self.stop()

        signal.signal(signal.SIGTERM, _handler)
        signal.signal(signal.SIGINT, _handler)

    def _workspaces(self) -> list[str]:
        return self.config.workspaces or event_log.list_workspaces()

    def run_once(self) -> list[urgency.EvaluationResult]:
        """Execute one evaluation tick across workspaces.

        A failing workspace is logged and skipped; the others still run.
        """
        self._cycles += 1
        try:
            workspaces = self._workspaces()
        except Exception:
            log.exception("Could not list workspaces (cycle %d)", self._cycles)
            return []

        now = self._clock() if self._clock else None
        results: list[urgency.EvaluationResult] = []
        for workspace_id in workspaces:
            try:
                result = urgency.evaluate_workspace(workspace_id, now_ms=now)
            except Exception:
                log.exception(
                    "Evaluation failed for workspace %s (cycle %d)", workspace_id, self._cycles,
                    extra={"workspace_id": workspace_id},
                )
                continue
            self._tasks_created += len(result.created)
            results.append(result)

        log.info("Cycle %d: evaluated %d workspace(s)", self._cycles, len(results))
        return results

    def _shutdown(self) -> None:
        log.info(
            "Worker shutting down: cycles=%d tasks_created=%d",
            self._cycles,
            self._tasks_created,
        )
        event_log.append(Event(
            event_type=EventType.WORKER_STOPPED,
            payload={
                "cycles": self._cycles,
                "tasks_created": self._tasks_created,
                "pid": os.getpid(),
            },
        ))
        self._running = False

    # Public read-only state for tests / monitoring
    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def tasks_created(self) -> int:
        return self._tasks_created

    @property
    def is_running(self) -> bool:
        return self._running


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def run_worker(db_path: str | None = None) -> None:
    """Start the worker (blocking). For CLI / __main__."""
    from stagewise.observability import setup_logging

    setup_logging(os.environ.get("STAGEWISE_LOG_LEVEL", "INFO"))
    config = WorkerConfig()
    if db_path:
        config.db_path = db_path
    EvaluationWorker(config).start()


if __name__ == "__main__":
    run_worker()
