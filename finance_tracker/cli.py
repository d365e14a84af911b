"""Command-line interface for the Finance Tracker.

Usage:
  finance-tracker init-db
  finance-tracker serve --port 5000
  finance-tracker job check-budget-alerts
  finance-tracker job trigger-recurring-transactions
  finance-tracker process-recurring --transaction-id 12 --user-id 3

Scheduled jobs are meant to be run by cron (see ``jobs.SCHEDULES``).
"""

from __future__ import annotations

import argparse
import datetime as dt
import json
import logging
from typing import List, Optional

from .jobs import SCHEDULES, run_job
from .recurring import process_recurring_transaction
from .webapp import create_app


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Finance Tracker")
    p.add_argument("--config", "-c", help="Path to JSON config with extra categories")
    p.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    serve = sub.add_parser("serve", help="Run the development web server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5000)
    serve.add_argument("--debug", action="store_true")

    job = sub.add_parser("job", help="Run one scheduled job")
    job.add_argument("name", choices=sorted(SCHEDULES))
    job.add_argument("--now", help="Override the current time (ISO format)")

    proc = sub.add_parser("process-recurring", help="Process one recurring transaction event")
    proc.add_argument("--transaction-id", type=int, required=True)
    proc.add_argument("--user-id", type=int, required=True)
    proc.add_argument("--now", help="Override the current time (ISO format)")

    sub.add_parser("schedules", help="Print the cron schedule of every job")
    return p.parse_args(argv)


def _parse_now(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    return dt.datetime.fromisoformat(value)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    if args.command == "schedules":
        for name, cron in SCHEDULES.items():
            print(f"{cron:15} {name}")
        return 0

    app = create_app(args.config)
    logging.basicConfig(
        level=(args.log_level or app.config.get("LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        app.run(host=args.host, port=args.port, debug=args.debug)
        return 0

    with app.app_context():
        if args.command == "init-db":
            print("Database ready.")
            return 0
        if args.command == "job":
            result = run_job(args.name, app.config, now=_parse_now(args.now))
            print(json.dumps(result))
            return 0
        occurrence = process_recurring_transaction(args.transaction_id, args.user_id, now=_parse_now(args.now))
        print(json.dumps({"occurrence_id": occurrence.id if occurrence else None}))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
