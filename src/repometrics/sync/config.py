"""Configuration for the metrics synchronization job."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List


@dataclass
class SyncConfig:
    """Configuration for syncing GitHub metrics.

    Attributes:
        db_path: Path to SQLite database holding orgs, repos, jobs and datasets.
        github_host: API host used to build request URLs.
        request_timeout_seconds: Timeout for a single HTTP request.
        reschedule_interval_seconds: Delay until the next run after a successful one.
        poll_interval_seconds: Sleep between scheduler polls for due jobs.
        max_retries: Retry attempts for secondary rate limit responses.
        secondary_rate_limit_backoff: Backoff delays (seconds) per retry attempt.
        per_page: Page size for list endpoints.
        max_repo_pages: Page limit for an org's repository listing; a longer listing is an error.
    """

    db_path: Path = field(default_factory=lambda: Path("./data/metrics.db"))
    github_host: str = "api.github.com"
    request_timeout_seconds: float = 30.0
    reschedule_interval_seconds: int = 3600
    poll_interval_seconds: int = 60
    max_retries: int = 3
    secondary_rate_limit_backoff: List[int] = field(default_factory=lambda: [60, 120, 300])
    per_page: int = 100
    max_repo_pages: int = 100

    def __post_init__(self):
        """Ensure paths are Path objects and intervals make sense."""
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if self.reschedule_interval_seconds <= 0:
            raise ValueError("reschedule_interval_seconds must be positive")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if not self.secondary_rate_limit_backoff:
            raise ValueError("secondary_rate_limit_backoff needs at least one delay")

    @property
    def base_url(self) -> str:
        return f"https://{self.github_host}"

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Build a config from REPOMETRICS_* environment variables."""
        return cls(
            db_path=Path(os.environ.get("REPOMETRICS_DB_PATH", "./data/metrics.db")),
            github_host=os.environ.get("REPOMETRICS_GITHUB_HOST", "api.github.com"),
            reschedule_interval_seconds=int(
                os.environ.get("REPOMETRICS_RESCHEDULE_SECONDS", 3600)
            ),
            poll_interval_seconds=int(os.environ.get("REPOMETRICS_POLL_SECONDS", 60)),
        )
