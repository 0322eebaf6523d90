"""Dataset synchronizers and the per-repository fan-out.

Each synchronizer merges one GitHub dataset into its stored document:

- watchers, clones, views: daily time series, deduplicated by date
- releases, actions: event lists, deduplicated by content
- forks, license, language: snapshots, fully replaced on every run
- repo_tree: snapshot of the tree of the latest stored commit

A synchronizer either returns a value or raises; ``sync_repository`` runs
all of them concurrently and turns every outcome into a ``SyncResult`` so a
failure in one dataset never affects the others.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from repometrics.sync.api import MetricsApi
from repometrics.sync.database import MetricsDatabase, Repository
from repometrics.sync.gateway import FetchError
from repometrics.sync.merge import (
    latest_entry,
    merge_daily_counts,
    merge_events,
    merge_releases,
    merge_watchers,
)
from repometrics.sync.results import RepoSyncReport, SyncResult
from repometrics.sync.timeutil import utc_now

logger = logging.getLogger(__name__)

WATCHERS = "watchers"
RELEASES = "releases"
REPO_TREE = "repo_tree"
CLONES = "clones"
VIEWS = "views"
ACTIONS = "actions"
FORKS = "forks"
LICENSE = "license"
LANGUAGE = "language"
# Written by the onboarding job, only read here
COMMITS = "commits"


@dataclass(frozen=True)
class RepoContext:
    """Everything a synchronizer needs to know about the repository it syncs."""

    org_name: str
    token: str
    repo_id: int
    repo_name: str

    @classmethod
    def for_repo(cls, repo: Repository, token: str) -> "RepoContext":
        return cls(org_name=repo.org_name, token=token, repo_id=repo.repo_id, repo_name=repo.repo_name)

    @property
    def full_name(self) -> str:
        return f"{self.org_name}/{self.repo_name}"

    def new_record(self, **fields: Any) -> Dict[str, Any]:
        return {"repo_id": self.repo_id, "repo_name": self.repo_name, **fields}


Synchronizer = Callable[[RepoContext, MetricsDatabase, MetricsApi, datetime], Awaitable[Any]]


async def sync_watchers(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    stored, (fresh, total) = await asyncio.gather(
        db.get_dataset(WATCHERS, ctx.repo_id),
        api.get_watchers(ctx.org_name, ctx.repo_name, ctx.token, now=now),
    )
    if stored is None:
        await db.set_dataset(WATCHERS, ctx.new_record(list=fresh, watchers=total), ctx.org_name)
    elif fresh:
        record = dict(stored)
        record["list"] = merge_watchers(stored.get("list") or [], fresh, now.date())
        record["watchers"] = total
        await db.set_dataset(WATCHERS, record, ctx.org_name)
    return "success"


async def sync_releases(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    stored, fresh = await asyncio.gather(
        db.get_dataset(RELEASES, ctx.repo_id),
        api.get_releases(ctx.org_name, ctx.repo_name, ctx.token),
    )
    if stored is None:
        await db.set_dataset(RELEASES, ctx.new_record(list=fresh), ctx.org_name)
    elif fresh:
        record = dict(stored)
        record["list"] = merge_releases(stored.get("list") or [], fresh, now.date())
        await db.set_dataset(RELEASES, record, ctx.org_name)
    return "success"


async def _sync_daily_counts(
    dataset: str,
    fetch: Callable[[str, str, str], Awaitable[list]],
    ctx: RepoContext,
    db: MetricsDatabase,
) -> str:
    stored, fresh = await asyncio.gather(
        db.get_dataset(dataset, ctx.repo_id),
        fetch(ctx.org_name, ctx.repo_name, ctx.token),
    )
    if stored is None:
        await db.set_dataset(dataset, ctx.new_record(list=fresh), ctx.org_name)
    elif fresh:
        record = dict(stored)
        record["list"] = merge_daily_counts(stored.get("list") or [], fresh)
        await db.set_dataset(dataset, record, ctx.org_name)
    return "success"


async def sync_clones(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    return await _sync_daily_counts(CLONES, api.get_clones, ctx, db)


async def sync_views(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    return await _sync_daily_counts(VIEWS, api.get_views, ctx, db)


async def sync_actions(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    stored, fresh = await asyncio.gather(
        db.get_dataset(ACTIONS, ctx.repo_id),
        api.get_actions(ctx.org_name, ctx.repo_name, ctx.token),
    )
    if stored is None:
        await db.set_dataset(ACTIONS, ctx.new_record(list=fresh), ctx.org_name)
    elif fresh:
        record = dict(stored)
        record["list"] = merge_events(stored.get("list") or [], fresh)
        await db.set_dataset(ACTIONS, record, ctx.org_name)
    return "success"


async def sync_forks(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    forks = await api.get_forks(ctx.org_name, ctx.repo_name, ctx.token)
    await db.set_dataset(FORKS, ctx.new_record(list=forks), ctx.org_name)
    return "success"


async def sync_license(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    license_info = await api.get_license(ctx.org_name, ctx.repo_name, ctx.token)
    await db.set_dataset(LICENSE, ctx.new_record(license=license_info), ctx.org_name)
    return "success"


async def sync_language(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> str:
    languages = await api.get_languages(ctx.org_name, ctx.repo_name, ctx.token)
    await db.set_dataset(LANGUAGE, ctx.new_record(language=languages), ctx.org_name)
    return "success"


async def sync_repo_tree(ctx: RepoContext, db: MetricsDatabase, api: MetricsApi, now: datetime) -> bool:
    """Snapshot the tree of the most recent stored commit.

    Returns False without fetching anything while no commit with a sha is
    stored, and without writing when GitHub no longer knows the commit.
    """
    commits = await db.get_dataset(COMMITS, ctx.repo_id)
    latest = latest_entry((commits or {}).get("list") or [])
    if not latest or not latest.get("sha"):
        logger.debug(f"No stored commit for {ctx.full_name}, skipping repo tree")
        return False

    sha = latest["sha"]
    try:
        tree = await api.get_repo_tree(ctx.org_name, ctx.repo_name, sha, ctx.token)
    except FetchError as exc:
        if exc.status_code == 404 or exc.message == "NOT FOUND":
            logger.info(f"Tree {sha} not found for {ctx.full_name}")
            return False
        raise

    await db.set_dataset(REPO_TREE, ctx.new_record(sha=sha, list=tree), ctx.org_name)
    return True


SYNCHRONIZERS: Dict[str, Synchronizer] = {
    ACTIONS: sync_actions,
    WATCHERS: sync_watchers,
    CLONES: sync_clones,
    VIEWS: sync_views,
    FORKS: sync_forks,
    RELEASES: sync_releases,
    LICENSE: sync_license,
    LANGUAGE: sync_language,
    REPO_TREE: sync_repo_tree,
}


async def sync_repository(
    ctx: RepoContext,
    db: MetricsDatabase,
    api: MetricsApi,
    now: Optional[datetime] = None,
    synchronizers: Optional[Dict[str, Synchronizer]] = None,
) -> RepoSyncReport:
    """Run every dataset synchronizer for one repository and wait for all of them."""
    now = now or utc_now()
    synchronizers = synchronizers or SYNCHRONIZERS

    names = list(synchronizers)
    outcomes = await asyncio.gather(
        *(synchronizers[name](ctx, db, api, now) for name in names),
        return_exceptions=True,
    )

    report = RepoSyncReport(repo_id=ctx.repo_id, repo_name=ctx.repo_name)
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, BaseException):
            result = SyncResult.from_exception(outcome)
            logger.warning(
                f"{name} sync failed for {ctx.full_name} ({result.kind.value}): {result.detail}"
            )
        else:
            result = SyncResult.ok(outcome)
        report.results[name] = result

    return report
