"""CLI command implementations."""

from __future__ import annotations

import argparse
import os

from stagewise.cli._helpers import _out


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from stagewise.api import create_app
    from stagewise.observability import setup_logging

    setup_logging(os.environ.get("STAGEWISE_LOG_LEVEL", "INFO"))
    uvicorn.run(create_app(args.db), host=args.host, port=args.port)
    return 0


def cmd_worker(args: argparse.Namespace) -> int:
    from stagewise.observability import setup_logging
    from stagewise.worker import EvaluationWorker, WorkerConfig

    setup_logging(os.environ.get("STAGEWISE_LOG_LEVEL", "INFO"))
    config = WorkerConfig()
    config.db_path = args.db
    if args.poll_interval is not None:
        config.poll_interval = args.poll_interval
    if args.workspace:
        config.workspaces = list(args.workspace)
    EvaluationWorker(config, init_store=False).start()
    return 0


def cmd_evaluate(args: argparse.Namespace) -> int:
    from stagewise import event_log, urgency

    workspaces = [args.workspace] if args.workspace else event_log.list_workspaces()
    return _out([urgency.evaluate_workspace(ws).to_dict() for ws in workspaces])


def cmd_stage_duration(args: argparse.Namespace) -> int:
    from stagewise.projections import stage_duration_report
    return _out(stage_duration_report(args.workspace, args.range))


def cmd_summary(args: argparse.Namespace) -> int:
    from stagewise.projections import summary_report
    return _out(summary_report(args.workspace, args.range))
