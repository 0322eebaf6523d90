#!/usr/bin/env python3
"""Run every metrics job whose schedule has expired.

Meant to be called from cron. For more options, use: python -m repometrics.cli

Environment Variables:
    REPOMETRICS_DB_PATH: Path to the SQLite database
    REPOMETRICS_GITHUB_HOST: API host (GitHub Enterprise installs)

Examples:
    # Run due jobs once
    python scripts/run_due_jobs.py

    # Keep polling every 5 minutes
    python scripts/run_due_jobs.py --watch --poll-seconds 300
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from repometrics.sync.config import SyncConfig
from repometrics.sync.controller import MetricsJobController
from repometrics.sync.results import RunStatus
from repometrics.sync.scheduler import JobScheduler


async def main():
    parser = argparse.ArgumentParser(description="Run due GitHub metrics jobs")
    parser.add_argument("--db", default=None, help="Database path (default: from env)")
    parser.add_argument("--watch", action="store_true", help="Keep polling for due jobs")
    parser.add_argument(
        "--poll-seconds", type=int, default=None, help="Poll interval for --watch"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = SyncConfig.from_env()
    if args.db:
        config.db_path = Path(args.db)
    if args.poll_seconds:
        config.poll_interval_seconds = args.poll_seconds

    async with MetricsJobController(config) as controller:
        scheduler = JobScheduler(controller)
        if args.watch:
            await scheduler.run_forever()
            return 0
        statuses = await scheduler.run_due()

    failed = [i for i, status in statuses.items() if status is RunStatus.ERROR]
    print(f"Ran {len(statuses)} job(s), {len(failed)} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
