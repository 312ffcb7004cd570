"""CLI for stagewise.

Commands:
  stagewise serve
  stagewise worker
  stagewise evaluate
  stagewise stage-duration
  stagewise summary
"""

from __future__ import annotations

import os
import sys

from stagewise.cli._helpers import _out  # noqa: F401 (re-exported for tests)
from stagewise.cli._parser import build_parser
from stagewise.cli.commands import (
    cmd_evaluate,
    cmd_serve,
    cmd_stage_duration,
    cmd_summary,
    cmd_worker,
)

_DISPATCH = {
    "serve": cmd_serve,
    "worker": cmd_worker,
    "evaluate": cmd_evaluate,
    "stage-duration": cmd_stage_duration,
    "summary": cmd_summary,
}


def main(argv: list[str] | None = None) -> int:
    from stagewise import event_log as el

    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    handler = _DISPATCH.get(args.command) if args.command else None
    if handler is None:
        parser.print_help()
        return 1

    # Ensure DB exists
    el.init(args.db, backend=os.environ.get("STAGEWISE_DB_BACKEND"), dsn=os.environ.get("STAGEWISE_PG_DSN"))
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
