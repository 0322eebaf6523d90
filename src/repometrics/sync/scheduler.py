"""Polling loop that starts metrics runs whose job record has expired."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from repometrics.sync.controller import METRICS_TASK, MetricsJobController
from repometrics.sync.results import RunStatus
from repometrics.sync.timeutil import format_timestamp, utc_now

logger = logging.getLogger(__name__)


class JobScheduler:
    """Runs due metrics jobs one installation at a time."""

    def __init__(self, controller: MetricsJobController):
        self.controller = controller

    async def run_due(self, now: Optional[datetime] = None) -> Dict[int, RunStatus]:
        """Run every job that is not processing and has expired.

        ``now`` only selects the due jobs; each run reads the clock when it
        starts, so runs late in a long poll are stamped and rescheduled from
        their own start time.

        Returns:
            Run status per installation id
        """
        now = now or utc_now()
        due = await self.controller.db.get_due_tasks(METRICS_TASK, format_timestamp(now))
        if due:
            logger.info(f"{len(due)} metrics job(s) due")

        statuses = {}
        for job in due:
            statuses[job.installation_id] = await self.controller.run(job.installation_id)
        return statuses

    async def run_forever(self, max_polls: Optional[int] = None) -> None:
        """Poll for due jobs until cancelled (or ``max_polls`` polls)."""
        polls = 0
        while max_polls is None or polls < max_polls:
            await self.run_due()
            polls += 1
            if max_polls is None or polls < max_polls:
                await asyncio.sleep(self.controller.config.poll_interval_seconds)
