"""Argparse parser definition for the stagewise CLI."""

from __future__ import annotations

import argparse

from stagewise.cli._helpers import _default_db
from stagewise.defaults import DEFAULT_RANGE, RANGE_ALL, RANGE_WINDOWS

_RANGES = [*RANGE_WINDOWS, RANGE_ALL]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stagewise",
        description="Stage-duration analytics and SLA escalation for recruitment pipelines",
    )
    parser.add_argument("--db", default=_default_db(), help="SQLite database path")
    sub = parser.add_subparsers(dest="command")

    _register_server_commands(sub)
    _register_report_commands(sub)
    return parser


def _register_server_commands(sub: argparse._SubParsersAction) -> None:
    # -- serve --
    p = sub.add_parser("serve", help="Start HTTP API server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=9876)

    # -- worker --
    p = sub.add_parser("worker", help="Start the scheduled rule-evaluation worker")
    p.add_argument("--poll-interval", type=float, help="Seconds between evaluation ticks")
    p.add_argument("--workspace", action="append", default=[],
                   help="Workspace to evaluate (repeatable; default: all)")


def _register_report_commands(sub: argparse._SubParsersAction) -> None:
    # -- evaluate --
    p = sub.add_parser("evaluate", help="Run one rule-engine evaluation tick")
    p.add_argument("--workspace", help="Workspace id (default: every workspace)")

    # -- stage-duration --
    p = sub.add_parser("stage-duration", help="Per-stage residency statistics")
    p.add_argument("--workspace", required=True)
    p.add_argument("--range", choices=_RANGES, default=DEFAULT_RANGE)

    # -- summary --
    p = sub.add_parser("summary", help="KPI summary bundle")
    p.add_argument("--workspace", required=True)
    p.add_argument("--range", choices=_RANGES, default=DEFAULT_RANGE)
