#!/usr/bin/env python3
"""
Run booking reconciliation jobs once, for use from cron or a platform scheduler.

Usage:
  python scripts/run_jobs.py                  # every job
  python scripts/run_jobs.py auto-cancel-unpaid no-show-detection
  python scripts/run_jobs.py --list

Environment:
  - SQLALCHEMY_DATABASE_URL (from app config)
  - REDIS_URL (job run locks; without Redis the jobs still run)

Exits non-zero when any job reports failures.
"""
from __future__ import annotations

import argparse
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend")))

from app.core.observability import setup_logging  # noqa: E402
from app.services import reconciliation_jobs  # noqa: E402
from app.utils.json import dumps  # noqa: E402
from app.utils.redis_cache import close_redis_client  # noqa: E402
from app.utils.status_logger import register_status_listeners  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("jobs", nargs="*", help="job names (default: all)")
    parser.add_argument("--list", action="store_true", help="print job names and exit")
    args = parser.parse_args(argv)

    if args.list:
        for name in reconciliation_jobs.JOBS:
            print(name)
        return 0

    unknown = [name for name in args.jobs if name not in reconciliation_jobs.JOBS]
    if unknown:
        parser.error(f"unknown job(s): {', '.join(unknown)}")

    setup_logging(component="jobs")
    register_status_listeners()
    ctx = reconciliation_jobs.default_context()
    names = args.jobs or list(reconciliation_jobs.JOBS)
    failed = 0
    try:
        for name in names:
            summary = reconciliation_jobs.run_job(name, ctx)
            failed += summary.get("failed", 0)
            print(dumps(summary))
    finally:
        close_redis_client()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
