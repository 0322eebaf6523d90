"""Organization-level metrics run.

One run, for one installation:
- Eligibility check (org exists, active, onboarded)
- Job claim so overlapping runs back off
- Repository list refresh from GitHub
- Sequential per-repository fan-out with rate limit short-circuit
- Rescheduling of the next run
"""

import logging
from datetime import datetime
from typing import Optional

from repometrics.sync.api import MetricsApi
from repometrics.sync.config import SyncConfig
from repometrics.sync.database import MetricsDatabase, Organization, OrgStatus
from repometrics.sync.gateway import GitHubGateway
from repometrics.sync.results import ResultKind, RunStatus, classify_error
from repometrics.sync.synchronizers import RepoContext, sync_repository
from repometrics.sync.timeutil import next_run_at, utc_now

logger = logging.getLogger(__name__)

METRICS_TASK = "Metrics"


class MetricsJobController:
    """Runs the metrics job for an organization and reschedules it.

    ``run`` never raises: every failure is logged and reported as
    ``RunStatus.ERROR``, and the job's processing flag is cleared on every
    path that claimed it.
    """

    def __init__(
        self,
        config: SyncConfig,
        db: Optional[MetricsDatabase] = None,
        api: Optional[MetricsApi] = None,
    ):
        self.config = config
        self.db = db
        self.api = api
        self._gateway: Optional[GitHubGateway] = None
        self._owns_db = db is None

    async def init(self) -> None:
        """Open the database and HTTP client unless they were injected."""
        if self.db is None:
            self.db = MetricsDatabase(self.config.db_path)
            await self.db.init()
        if self.api is None:
            self._gateway = GitHubGateway(self.config)
            self.api = MetricsApi(self._gateway)

    async def close(self) -> None:
        """Clean up resources."""
        if self._gateway:
            await self._gateway.close()
        if self.db and self._owns_db:
            await self.db.close()

    async def __aenter__(self) -> "MetricsJobController":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _check_eligible(self, org: Optional[Organization], installation_id: int) -> bool:
        if org is None or org.status is not OrgStatus.ACTIVE:
            logger.error(f"Org not found or inactive with installation id {installation_id}")
            return False
        if not org.onboard_complete:
            logger.info(f"Onboarding jobs not fully completed for the {org.org_name} organization")
            return False
        return True

    async def run(self, installation_id: int, now: Optional[datetime] = None) -> RunStatus:
        """Sync every eligible repository of an installation."""
        logger.info(f"Metrics run started for installation {installation_id}")
        try:
            org = await self.db.get_org(installation_id)
        except Exception:
            logger.exception(f"Could not load installation {installation_id}")
            return RunStatus.ERROR

        if not self._check_eligible(org, installation_id):
            return RunStatus.ERROR

        try:
            claimed = await self.db.claim_task(installation_id, METRICS_TASK)
        except Exception:
            logger.exception(f"Could not claim metrics job for {org.org_name}")
            return RunStatus.ERROR
        if not claimed:
            logger.warning(f"Metrics job for {org.org_name} is already running")
            return RunStatus.ALREADY_RUNNING

        try:
            status = await self._run_claimed(org, now or utc_now())
        except Exception as exc:
            logger.exception(f"Metrics run failed for {org.org_name}")
            if classify_error(exc) is ResultKind.RATE_LIMITED:
                await self._park(org)
            await self._release(installation_id)
            return RunStatus.ERROR

        logger.info(f"Metrics run for {org.org_name} finished: {status.value}")
        return status

    async def _run_claimed(self, org: Organization, now: datetime) -> RunStatus:
        if org.api_limit_exceeded:
            # Parked until the flag is cleared externally
            logger.info(f"API limit flagged for {org.org_name}, skipping repositories")
            await self.db.release_task(org.installation_id, METRICS_TASK)
            return RunStatus.SUCCESS

        remote_repos = await self.api.list_org_repos(org.org_name, org.token)
        await self.db.replace_repos(org.org_name, remote_repos)
        repos = await self.db.get_eligible_repos(org.org_name)
        logger.info(f"Syncing {len(repos)} of {len(remote_repos)} repositories for {org.org_name}")

        for repo in repos:
            ctx = RepoContext.for_repo(repo, org.token)
            report = await sync_repository(ctx, self.db, self.api, now=now)
            logger.debug(f"{ctx.full_name}: {report.summary()}")

            if report.rate_limited:
                logger.error(f"API limit reached for {org.org_name} while syncing {ctx.full_name}")
                await self._park(org)
                await self.db.release_task(org.installation_id, METRICS_TASK)
                return RunStatus.ERROR

        await self.schedule_next_run(org.installation_id, now)
        return RunStatus.SUCCESS

    async def schedule_next_run(self, installation_id: int, now: Optional[datetime] = None) -> str:
        """Release the job and move its expiry one interval ahead."""
        expires_at = next_run_at(self.config.reschedule_interval_seconds, now)
        await self.db.submit_task(
            installation_id,
            METRICS_TASK,
            expires_at=expires_at,
            processing=False,
        )
        return expires_at

    async def _park(self, org: Organization) -> None:
        try:
            await self.db.record_api_limit_reached(org.installation_id)
        except Exception:
            logger.exception(f"Could not flag API limit for {org.org_name}")

    async def _release(self, installation_id: int) -> None:
        try:
            await self.db.release_task(installation_id, METRICS_TASK)
        except Exception:
            logger.exception(f"Could not reset processing flag for installation {installation_id}")
