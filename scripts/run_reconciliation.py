#!/usr/bin/env python3
"""Run the merge-queue reconciliation once, outside the API process.

Takes the same database lease as the scheduled job, so it is safe to run
while the API (and its scheduler) is up: if another process holds the lease
the run is skipped.

Usage:
    python scripts/run_reconciliation.py                     # reconcile yesterday
    python scripts/run_reconciliation.py --date 2026-03-02   # reconcile 2026-03-01
    python scripts/run_reconciliation.py --json              # machine-readable output

Exit codes:
    0 = reconciliation ran
    1 = skipped (lease held elsewhere)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date

from leave_engine.config import settings
from leave_engine.database import engine
from leave_engine.jobs.reconciliation import run_reconciliation_job
from leave_engine.merge_queue.schemas import ReconciliationResult


async def _run(run_date: date | None) -> ReconciliationResult:
    try:
        return await run_reconciliation_job(run_date)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(
        description="Leave Engine merge-queue reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_reconciliation.py
  python scripts/run_reconciliation.py --date 2026-03-02 --json
""",
    )
    parser.add_argument("--date", dest="run_date", type=date.fromisoformat, default=None,
                        help="Run date (YYYY-MM-DD); the previous day is reconciled (default: today)")
    parser.add_argument("--json", dest="output_json", action="store_true",
                        help="Output the result as JSON")
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    result = asyncio.run(_run(args.run_date))

    if args.output_json:
        print(result.model_dump_json(indent=2))
    elif result.skipped:
        print(f"Skipped reconciliation for {result.target_date}: {result.skip_reason}")
    else:
        print(
            f"Reconciled {result.target_date}: "
            f"{result.created} entries created, {result.escalated} escalated"
        )

    if result.skipped:
        sys.exit(1)


if __name__ == "__main__":
    main()
