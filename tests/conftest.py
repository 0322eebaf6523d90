"""Shared fixtures: a real SQLite database and an in-memory stand-in for the GitHub API."""

from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from repometrics.sync.config import SyncConfig
from repometrics.sync.database import MetricsDatabase, Organization, OrgStatus, Repository


class FakeApi:
    """Replays canned dataset responses and records every call.

    ``errors`` maps a method name to the exception it should raise;
    ``repo_errors`` does the same for a single ``(method, repo_name)`` pair.
    """

    def __init__(self):
        self.repos: List[Repository] = []
        self.watchers = ([], 0)
        self.releases: List[dict] = []
        self.clones: List[dict] = []
        self.views: List[dict] = []
        self.actions: List[dict] = []
        self.forks: List[dict] = []
        self.license: Optional[dict] = {"key": "mit", "name": "MIT License", "spdx_id": "MIT"}
        self.languages: Dict[str, int] = {"Python": 1200}
        self.tree: List[dict] = [{"path": "README.md", "type": "blob"}]
        self.errors: Dict[str, Exception] = {}
        self.repo_errors: Dict[tuple, Exception] = {}
        self.calls: List[tuple] = []
        self.watchers_now = None

    async def _answer(self, name: str, repo_name: Optional[str], value):
        self.calls.append((name, repo_name))
        error = self.repo_errors.get((name, repo_name)) or self.errors.get(name)
        if error is not None:
            raise error
        return value

    def calls_for(self, repo_name: str) -> List[str]:
        return [name for name, repo in self.calls if repo == repo_name]

    async def list_org_repos(self, org_name, token):
        return await self._answer("list_org_repos", None, list(self.repos))

    async def get_watchers(self, org_name, repo_name, token, now=None):
        self.watchers_now = now
        return await self._answer("get_watchers", repo_name, self.watchers)

    async def get_releases(self, org_name, repo_name, token):
        return await self._answer("get_releases", repo_name, list(self.releases))

    async def get_clones(self, org_name, repo_name, token):
        return await self._answer("get_clones", repo_name, list(self.clones))

    async def get_views(self, org_name, repo_name, token):
        return await self._answer("get_views", repo_name, list(self.views))

    async def get_actions(self, org_name, repo_name, token):
        return await self._answer("get_actions", repo_name, list(self.actions))

    async def get_forks(self, org_name, repo_name, token):
        return await self._answer("get_forks", repo_name, list(self.forks))

    async def get_license(self, org_name, repo_name, token):
        return await self._answer("get_license", repo_name, self.license)

    async def get_languages(self, org_name, repo_name, token):
        return await self._answer("get_languages", repo_name, dict(self.languages))

    async def get_repo_tree(self, org_name, repo_name, sha, token):
        return await self._answer("get_repo_tree", repo_name, list(self.tree))


@pytest.fixture
def config(tmp_path):
    return SyncConfig(db_path=tmp_path / "metrics.db", secondary_rate_limit_backoff=[0])


@pytest_asyncio.fixture
async def db(config):
    async with MetricsDatabase(config.db_path) as database:
        yield database


@pytest.fixture
def api():
    return FakeApi()


async def seed_org(
    db: MetricsDatabase,
    api: FakeApi,
    repo_names=("alpha", "beta"),
    installation_id: int = 7,
    **org_fields,
) -> Organization:
    """Store an active, onboarded org whose repositories are all eligible."""
    fields = {"status": OrgStatus.ACTIVE, "onboard_complete": True, **org_fields}
    org = Organization(installation_id=installation_id, org_name="acme", token="tok", **fields)
    await db.add_org(org)

    api.repos = [
        Repository(repo_id=100 + i, repo_name=name, org_name=org.org_name)
        for i, name in enumerate(repo_names)
    ]
    await db.replace_repos(org.org_name, api.repos)
    for repo in api.repos:
        await db.set_repo_flags(repo.repo_id, onboard_complete=True, enabled=True)
    return org
