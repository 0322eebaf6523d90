"""SQLite database for metrics state.

Provides persistent storage for:
- Organizations (installations) and their API limit flags
- Repository membership and eligibility flags
- Dataset documents, one JSON document per (dataset, repository)
- Job records driving the hourly schedule
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite


class OrgStatus(Enum):
    """Organization (installation) status."""

    ACTIVE = "active"
    INACTIVE = "inactive"  # App uninstalled
    SUSPENDED = "suspended"  # Installation suspended by the org owner


@dataclass
class Organization:
    """A GitHub App installation and its metrics job state."""

    installation_id: int
    org_name: str
    token: Optional[str] = None
    status: OrgStatus = OrgStatus.ACTIVE
    onboard_complete: bool = False
    api_limit_exceeded: bool = False
    api_limit_reached_count: int = 0


@dataclass
class Repository:
    """Repository of an organization plus local eligibility flags."""

    repo_id: int
    repo_name: str
    org_name: str
    default_branch: str = "main"
    private: bool = False
    archived: bool = False
    onboard_complete: bool = False
    enabled: bool = True
    deleted: bool = False


@dataclass
class JobRecord:
    """Scheduled run of a task for one installation."""

    installation_id: int
    task: str
    expires_at: Optional[str] = None
    processing: bool = False


SCHEMA = """
-- organizations: one row per app installation
CREATE TABLE IF NOT EXISTS organizations (
    installation_id INTEGER PRIMARY KEY,
    org_name TEXT UNIQUE NOT NULL,
    token TEXT,
    org_status TEXT DEFAULT 'active',
    onboard_complete BOOLEAN DEFAULT FALSE,
    api_limit_exceeded BOOLEAN DEFAULT FALSE,
    api_limit_reached_count INTEGER DEFAULT 0,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP
);

-- repositories: refreshed from GitHub on every run, flags are local
CREATE TABLE IF NOT EXISTS repositories (
    repo_id INTEGER PRIMARY KEY,
    org_name TEXT NOT NULL,
    repo_name TEXT NOT NULL,
    default_branch TEXT DEFAULT 'main',
    private BOOLEAN DEFAULT FALSE,
    archived BOOLEAN DEFAULT FALSE,
    onboard_complete BOOLEAN DEFAULT FALSE,
    repo_enabled BOOLEAN DEFAULT TRUE,
    deleted BOOLEAN DEFAULT FALSE,
    updated_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_repos_org ON repositories(org_name);

-- datasets: whole documents, always written as full replacements
CREATE TABLE IF NOT EXISTS datasets (
    dataset TEXT NOT NULL,
    repo_id INTEGER NOT NULL,
    org_name TEXT NOT NULL,
    repo_name TEXT NOT NULL,
    document TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (dataset, repo_id)
);

-- jobs: next scheduled run per installation and task
CREATE TABLE IF NOT EXISTS jobs (
    installation_id INTEGER NOT NULL,
    task TEXT NOT NULL,
    expires_at TEXT,
    processing BOOLEAN DEFAULT FALSE,
    updated_at TIMESTAMP,
    PRIMARY KEY (installation_id, task)
);

CREATE INDEX IF NOT EXISTS idx_jobs_due ON jobs(task, processing, expires_at);
"""

ORG_FIELDS = {
    "org_name",
    "token",
    "org_status",
    "onboard_complete",
    "api_limit_exceeded",
    "api_limit_reached_count",
}
JOB_FIELDS = {"expires_at", "processing"}


class MetricsDatabase:
    """Async SQLite database for organizations, repositories, datasets and jobs."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """Initialize database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "MetricsDatabase":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Organizations

    @staticmethod
    def _row_to_org(row: aiosqlite.Row) -> Organization:
        return Organization(
            installation_id=row["installation_id"],
            org_name=row["org_name"],
            token=row["token"],
            status=OrgStatus(row["org_status"]),
            onboard_complete=bool(row["onboard_complete"]),
            api_limit_exceeded=bool(row["api_limit_exceeded"]),
            api_limit_reached_count=row["api_limit_reached_count"] or 0,
        )

    async def add_org(self, org: Organization) -> None:
        """Insert an organization, or overwrite the one with the same installation id."""
        async with self._lock:
            await self._db.execute(
                """
                INSERT INTO organizations
                (installation_id, org_name, token, org_status, onboard_complete,
                 api_limit_exceeded, api_limit_reached_count, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(installation_id) DO UPDATE SET
                    org_name = excluded.org_name,
                    token = excluded.token,
                    org_status = excluded.org_status,
                    onboard_complete = excluded.onboard_complete,
                    api_limit_exceeded = excluded.api_limit_exceeded,
                    api_limit_reached_count = excluded.api_limit_reached_count,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    org.installation_id,
                    org.org_name,
                    org.token,
                    org.status.value,
                    org.onboard_complete,
                    org.api_limit_exceeded,
                    org.api_limit_reached_count,
                ),
            )
            await self._db.commit()

    async def get_org(self, installation_id: int) -> Optional[Organization]:
        """Get an organization by installation id."""
        async with self._db.execute(
            "SELECT * FROM organizations WHERE installation_id = ?",
            (installation_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_org(row) if row else None

    async def list_orgs(self) -> List[Organization]:
        async with self._db.execute(
            "SELECT * FROM organizations ORDER BY org_name"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_org(row) for row in rows]

    async def update_org(self, installation_id: int, **fields: Any) -> int:
        """Set the given organization columns. Returns number of rows updated."""
        unknown = set(fields) - ORG_FIELDS
        if unknown:
            raise ValueError(f"Unknown organization fields: {sorted(unknown)}")
        if not fields:
            return 0
        if isinstance(fields.get("org_status"), OrgStatus):
            fields["org_status"] = fields["org_status"].value

        assignments = ", ".join(f"{name} = ?" for name in fields)
        async with self._lock:
            cursor = await self._db.execute(
                f"""
                UPDATE organizations
                SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE installation_id = ?
                """,
                (*fields.values(), installation_id),
            )
            await self._db.commit()
            return cursor.rowcount

    async def record_api_limit_reached(self, installation_id: int) -> None:
        """Park an organization after a rate limit breach."""
        async with self._lock:
            await self._db.execute(
                """
                UPDATE organizations
                SET api_limit_exceeded = TRUE,
                    api_limit_reached_count = api_limit_reached_count + 1,
                    updated_at = CURRENT_TIMESTAMP
                WHERE installation_id = ?
                """,
                (installation_id,),
            )
            await self._db.commit()

    # Repositories

    @staticmethod
    def _row_to_repo(row: aiosqlite.Row) -> Repository:
        return Repository(
            repo_id=row["repo_id"],
            repo_name=row["repo_name"],
            org_name=row["org_name"],
            default_branch=row["default_branch"] or "main",
            private=bool(row["private"]),
            archived=bool(row["archived"]),
            onboard_complete=bool(row["onboard_complete"]),
            enabled=bool(row["repo_enabled"]),
            deleted=bool(row["deleted"]),
        )

    async def replace_repos(self, org_name: str, repos: List[Repository]) -> int:
        """Replace an organization's repository list with the remote one.

        Remote fields are overwritten keyed by repo id, local flags
        (onboard_complete, enabled) are preserved, and repositories that are
        no longer listed are marked deleted. Returns number of repos listed.
        """
        async with self._lock:
            await self._db.executemany(
                """
                INSERT INTO repositories
                (repo_id, org_name, repo_name, default_branch, private, archived,
                 deleted, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, FALSE, CURRENT_TIMESTAMP)
                ON CONFLICT(repo_id) DO UPDATE SET
                    org_name = excluded.org_name,
                    repo_name = excluded.repo_name,
                    default_branch = excluded.default_branch,
                    private = excluded.private,
                    archived = excluded.archived,
                    deleted = FALSE,
                    updated_at = CURRENT_TIMESTAMP
                """,
                [
                    (
                        r.repo_id,
                        org_name,
                        r.repo_name,
                        r.default_branch,
                        r.private,
                        r.archived,
                    )
                    for r in repos
                ],
            )

            listed_ids = [r.repo_id for r in repos]
            placeholders = ", ".join("?" for _ in listed_ids)
            not_listed = f"AND repo_id NOT IN ({placeholders})" if listed_ids else ""
            await self._db.execute(
                f"""
                UPDATE repositories
                SET deleted = TRUE, updated_at = CURRENT_TIMESTAMP
                WHERE org_name = ? AND deleted = FALSE {not_listed}
                """,
                (org_name, *listed_ids),
            )
            await self._db.commit()
            return len(repos)

    async def get_repos(
        self,
        org_name: str,
        onboard_complete: Optional[bool] = None,
        enabled: Optional[bool] = None,
        deleted: Optional[bool] = None,
    ) -> List[Repository]:
        """Get an organization's repositories, optionally filtered by flags."""
        clauses = ["org_name = ?"]
        params: List[Any] = [org_name]
        for column, value in (
            ("onboard_complete", onboard_complete),
            ("repo_enabled", enabled),
            ("deleted", deleted),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)

        async with self._db.execute(
            f"""
            SELECT * FROM repositories
            WHERE {' AND '.join(clauses)}
            ORDER BY repo_id
            """,
            params,
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_repo(row) for row in rows]

    async def get_eligible_repos(self, org_name: str) -> List[Repository]:
        """Repositories that take part in the metrics run."""
        return await self.get_repos(org_name, onboard_complete=True, enabled=True, deleted=False)

    async def set_repo_flags(
        self,
        repo_id: int,
        onboard_complete: Optional[bool] = None,
        enabled: Optional[bool] = None,
    ) -> int:
        """Update local eligibility flags of a repository."""
        assignments = []
        params: List[Any] = []
        if onboard_complete is not None:
            assignments.append("onboard_complete = ?")
            params.append(onboard_complete)
        if enabled is not None:
            assignments.append("repo_enabled = ?")
            params.append(enabled)
        if not assignments:
            return 0

        async with self._lock:
            cursor = await self._db.execute(
                f"""
                UPDATE repositories
                SET {', '.join(assignments)}, updated_at = CURRENT_TIMESTAMP
                WHERE repo_id = ?
                """,
                (*params, repo_id),
            )
            await self._db.commit()
            return cursor.rowcount

    # Dataset documents

    async def get_dataset(self, dataset: str, repo_id: int) -> Optional[Dict[str, Any]]:
        """Get the stored document of a dataset for one repository."""
        async with self._db.execute(
            "SELECT document FROM datasets WHERE dataset = ? AND repo_id = ?",
            (dataset, repo_id),
        ) as cursor:
            row = await cursor.fetchone()
            return json.loads(row["document"]) if row else None

    async def set_dataset(self, dataset: str, record: Dict[str, Any], org_name: str) -> None:
        """Store a dataset document, replacing the previous one entirely."""
        async with self._lock:
            await self._db.execute(
                """
                INSERT INTO datasets (dataset, repo_id, org_name, repo_name, document, updated_at)
                VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(dataset, repo_id) DO UPDATE SET
                    org_name = excluded.org_name,
                    repo_name = excluded.repo_name,
                    document = excluded.document,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    dataset,
                    record["repo_id"],
                    org_name,
                    record["repo_name"],
                    json.dumps(record, default=str),
                ),
            )
            await self._db.commit()

    async def count_datasets(self, org_name: Optional[str] = None) -> Dict[str, int]:
        """Count stored documents per dataset."""
        query = "SELECT dataset, COUNT(*) AS count FROM datasets"
        params: tuple = ()
        if org_name:
            query += " WHERE org_name = ?"
            params = (org_name,)
        query += " GROUP BY dataset ORDER BY dataset"
        async with self._db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
            return {row["dataset"]: row["count"] for row in rows}

    # Jobs

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> JobRecord:
        return JobRecord(
            installation_id=row["installation_id"],
            task=row["task"],
            expires_at=row["expires_at"],
            processing=bool(row["processing"]),
        )

    async def submit_task(self, installation_id: int, task: str, **fields: Any) -> None:
        """Create the job record if needed and set the given fields."""
        unknown = set(fields) - JOB_FIELDS
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        columns = ["installation_id", "task", *fields]
        values = [installation_id, task, *fields.values()]
        updates = ", ".join(f"{name} = excluded.{name}" for name in fields)
        conflict = f"DO UPDATE SET {updates}, updated_at = CURRENT_TIMESTAMP" if fields else "DO NOTHING"

        async with self._lock:
            await self._db.execute(
                f"""
                INSERT INTO jobs ({', '.join(columns)}, updated_at)
                VALUES ({', '.join('?' for _ in values)}, CURRENT_TIMESTAMP)
                ON CONFLICT(installation_id, task) {conflict}
                """,
                values,
            )
            await self._db.commit()

    async def claim_task(self, installation_id: int, task: str) -> bool:
        """Set processing only if it was not already set.

        Returns False when another run holds the job.
        """
        async with self._lock:
            await self._db.execute(
                """
                INSERT OR IGNORE INTO jobs (installation_id, task, processing, updated_at)
                VALUES (?, ?, FALSE, CURRENT_TIMESTAMP)
                """,
                (installation_id, task),
            )
            cursor = await self._db.execute(
                """
                UPDATE jobs
                SET processing = TRUE, updated_at = CURRENT_TIMESTAMP
                WHERE installation_id = ? AND task = ? AND processing = FALSE
                """,
                (installation_id, task),
            )
            await self._db.commit()
            return cursor.rowcount == 1

    async def release_task(self, installation_id: int, task: str) -> None:
        """Clear the processing flag without moving the schedule."""
        await self.submit_task(installation_id, task, processing=False)

    async def get_task(self, installation_id: int, task: str) -> Optional[JobRecord]:
        async with self._db.execute(
            "SELECT * FROM jobs WHERE installation_id = ? AND task = ?",
            (installation_id, task),
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_job(row) if row else None

    async def get_due_tasks(self, task: str, now: str) -> List[JobRecord]:
        """Jobs of ``task`` not running and expired at ``now`` (ISO-8601 UTC)."""
        async with self._db.execute(
            """
            SELECT * FROM jobs
            WHERE task = ? AND processing = FALSE
            AND (expires_at IS NULL OR expires_at <= ?)
            ORDER BY expires_at
            """,
            (task, now),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_job(row) for row in rows]
