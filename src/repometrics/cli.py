"""Command-line interface for the metrics job.

Usage:
    python -m repometrics.cli add-org --installation-id 42 --org acme --onboarded
    python -m repometrics.cli run --installation-id 42
    python -m repometrics.cli due
    python -m repometrics.cli watch
    python -m repometrics.cli status

Environment Variables (can be set in .env file):
    GITHUB_TOKEN                  - Installation token used by add-org when --token is omitted
    REPOMETRICS_DB_PATH           - Path to SQLite database (default: ./data/metrics.db)
    REPOMETRICS_GITHUB_HOST       - API host (default: api.github.com)
    REPOMETRICS_RESCHEDULE_SECONDS - Delay between successful runs (default: 3600)
    REPOMETRICS_POLL_SECONDS      - Scheduler poll interval (default: 60)
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from repometrics.sync.config import SyncConfig


def build_config(args) -> SyncConfig:
    config = SyncConfig.from_env()
    config.db_path = Path(args.db)
    return config


async def cmd_add_org(args):
    """Register or update an organization and queue its first run."""
    from repometrics.sync.controller import METRICS_TASK
    from repometrics.sync.database import MetricsDatabase, Organization, OrgStatus
    from repometrics.sync.timeutil import format_timestamp, utc_now

    token = args.token or os.environ.get("GITHUB_TOKEN")
    if not token:
        print("Error: No token given. Use --token or set GITHUB_TOKEN.")
        return 1

    async with MetricsDatabase(Path(args.db)) as db:
        existing = await db.get_org(args.installation_id)
        org = Organization(
            installation_id=args.installation_id,
            org_name=args.org,
            token=token,
            status=OrgStatus.INACTIVE if args.inactive else OrgStatus.ACTIVE,
            onboard_complete=args.onboarded,
            api_limit_exceeded=existing.api_limit_exceeded if existing else False,
            api_limit_reached_count=existing.api_limit_reached_count if existing else 0,
        )
        await db.add_org(org)
        if await db.get_task(args.installation_id, METRICS_TASK) is None:
            await db.submit_task(
                args.installation_id,
                METRICS_TASK,
                expires_at=format_timestamp(utc_now()),
                processing=False,
            )
        print(f"Registered {org.org_name} (installation {org.installation_id})")

    return 0


async def cmd_run(args):
    """Run the metrics job for one installation now."""
    from repometrics.sync.controller import MetricsJobController
    from repometrics.sync.results import RunStatus

    async with MetricsJobController(build_config(args)) as controller:
        status = await controller.run(args.installation_id)

    print(f"Run finished: {status.value}")
    return 0 if status is RunStatus.SUCCESS else 1


async def cmd_due(args):
    """Run every job whose schedule has expired."""
    from repometrics.sync.controller import MetricsJobController
    from repometrics.sync.scheduler import JobScheduler

    async with MetricsJobController(build_config(args)) as controller:
        statuses = await JobScheduler(controller).run_due()

    if not statuses:
        print("No jobs due")
    for installation_id, status in statuses.items():
        print(f"  {installation_id:<12} {status.value}")
    return 0


async def cmd_watch(args):
    """Keep polling for due jobs."""
    from repometrics.sync.controller import MetricsJobController
    from repometrics.sync.scheduler import JobScheduler

    config = build_config(args)
    print(f"Polling for due jobs every {config.poll_interval_seconds}s")
    async with MetricsJobController(config) as controller:
        await JobScheduler(controller).run_forever(max_polls=args.max_polls)
    return 0


async def cmd_status(args):
    """Show organizations, their jobs and stored datasets."""
    from repometrics.sync.controller import METRICS_TASK
    from repometrics.sync.database import MetricsDatabase

    db_path = Path(args.db)
    if not db_path.exists():
        print(f"No database at {db_path}")
        return 1

    async with MetricsDatabase(db_path) as db:
        orgs = await db.list_orgs()
        print("=" * 60)
        print("ORGANIZATIONS")
        print("=" * 60)
        for org in orgs:
            job = await db.get_task(org.installation_id, METRICS_TASK)
            eligible = await db.get_eligible_repos(org.org_name)
            print(f"\n{org.org_name} (installation {org.installation_id})")
            print(f"  Status:            {org.status.value}")
            print(f"  Onboarded:         {org.onboard_complete}")
            print(f"  API limit flagged: {org.api_limit_exceeded} "
                  f"(reached {org.api_limit_reached_count} times)")
            print(f"  Eligible repos:    {len(eligible)}")
            if job:
                print(f"  Next run:          {job.expires_at} (processing={job.processing})")
            for dataset, count in (await db.count_datasets(org.org_name)).items():
                print(f"    {dataset:15} {count:,}")

    return 0


async def cmd_clear_limit(args):
    """Unpark an organization after its API quota has recovered."""
    from repometrics.sync.database import MetricsDatabase

    async with MetricsDatabase(Path(args.db)) as db:
        updated = await db.update_org(args.installation_id, api_limit_exceeded=False)
    if not updated:
        print(f"No organization with installation id {args.installation_id}")
        return 1
    print(f"Cleared API limit flag for installation {args.installation_id}")
    return 0


async def cmd_set_repo(args):
    """Mark a repository onboarded or toggle whether it is synced."""
    from repometrics.sync.database import MetricsDatabase

    async with MetricsDatabase(Path(args.db)) as db:
        updated = await db.set_repo_flags(
            args.repo_id,
            onboard_complete=True if args.onboarded else None,
            enabled=args.enabled,
        )
    if not updated:
        print(f"No repository with id {args.repo_id} (or nothing to change)")
        return 1
    print(f"Updated repository {args.repo_id}")
    return 0


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="GitHub repository metrics synchronization",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--db",
        default=os.environ.get("REPOMETRICS_DB_PATH", "./data/metrics.db"),
        help="Path to SQLite database (env: REPOMETRICS_DB_PATH, default: ./data/metrics.db)",
    )
    parser.add_argument(
        "--log-level", default="INFO", help="Logging level (default: INFO)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_org_parser = subparsers.add_parser("add-org", help="Register an organization")
    add_org_parser.add_argument("--installation-id", type=int, required=True)
    add_org_parser.add_argument("--org", required=True, help="Organization login")
    add_org_parser.add_argument("--token", help="Installation token (env: GITHUB_TOKEN)")
    add_org_parser.add_argument(
        "--onboarded", action="store_true", help="Mark onboarding as complete"
    )
    add_org_parser.add_argument(
        "--inactive", action="store_true", help="Register the organization as inactive"
    )

    run_parser = subparsers.add_parser("run", help="Run the metrics job for one installation")
    run_parser.add_argument("--installation-id", type=int, required=True)

    subparsers.add_parser("due", help="Run all jobs that are due")

    watch_parser = subparsers.add_parser("watch", help="Poll for due jobs forever")
    watch_parser.add_argument(
        "--max-polls", type=int, default=None, help="Stop after this many polls"
    )

    subparsers.add_parser("status", help="Show organizations and job state")

    clear_parser = subparsers.add_parser(
        "clear-limit", help="Clear the API limit flag of an organization"
    )
    clear_parser.add_argument("--installation-id", type=int, required=True)

    repo_parser = subparsers.add_parser("set-repo", help="Change repository flags")
    repo_parser.add_argument("--repo-id", type=int, required=True)
    repo_parser.add_argument(
        "--onboarded", action="store_true", help="Mark the repository as onboarded"
    )
    repo_parser.add_argument(
        "--enabled", action="store_true", default=None, help="Include in metrics runs"
    )
    repo_parser.add_argument(
        "--disabled", action="store_false", dest="enabled", help="Exclude from metrics runs"
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "add-org": cmd_add_org,
        "run": cmd_run,
        "due": cmd_due,
        "watch": cmd_watch,
        "status": cmd_status,
        "clear-limit": cmd_clear_limit,
        "set-repo": cmd_set_repo,
    }
    return asyncio.run(commands[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
