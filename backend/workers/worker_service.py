#!/usr/bin/env python3
"""
Long-running worker service.

Runs the stock rollover sweep every tick. The sweep itself is idempotent (it never
overwrites an existing next-day row), so ticking often is safe; each tick is its own
transaction.
"""

import argparse
import sys
import time
import traceback
from datetime import datetime, timezone

from backend.app.config import settings
from backend.app.logs import json_log
from backend.workers.stock_rollover import run_rollover


WORKER_NAME = "stock-rollover-worker"


def run_tick(db_url: str, now: datetime = None) -> dict:
    now = now or datetime.now(timezone.utc)
    out = run_rollover(db_url, now)
    json_log(
        "info",
        "worker.rollover.tick",
        worker=WORKER_NAME,
        locations_processed=out["locations_processed"],
        rows_created=out["rows_created"],
        errors=out["errors"],
    )
    return out


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=settings.db_url)
    parser.add_argument("--sleep", type=float, default=300.0, help="Seconds between sweeps")
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    args = parser.parse_args()

    while True:
        try:
            run_tick(args.db)
        except Exception as ex:
            # Never crash the worker loop; the next tick retries from scratch.
            json_log("error", "worker.rollover.error", worker=WORKER_NAME, error=str(ex))
            traceback.print_exc(file=sys.stderr)

        if args.once:
            break
        time.sleep(args.sleep)


if __name__ == "__main__":
    main()
