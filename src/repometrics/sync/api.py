"""GitHub endpoints behind each metrics dataset.

Each method fetches one dataset for one repository and reshapes the body
into the entries stored by the synchronizers. Time series entries always
carry a ``date`` key; every list endpoint reads a single page.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from repometrics.sync.database import Repository
from repometrics.sync.gateway import FetchError, GitHubGateway
from repometrics.sync.timeutil import format_timestamp, utc_now


class MetricsApi:
    """Dataset-level view of the GitHub REST API."""

    def __init__(self, gateway: GitHubGateway):
        self.gateway = gateway

    @property
    def per_page(self) -> int:
        return self.gateway.config.per_page

    def _repo_url(self, org_name: str, repo_name: str, suffix: str = "") -> str:
        return self.gateway.url(f"/repos/{org_name}/{repo_name}{suffix}")

    def tree_url(self, org_name: str, repo_name: str, sha: str) -> str:
        return self._repo_url(org_name, repo_name, f"/git/trees/{sha}")

    async def list_org_repos(self, org_name: str, token: str) -> List[Repository]:
        """All repositories of an organization."""
        data = await self.gateway.get_paginated(
            self.gateway.url(f"/orgs/{org_name}/repos"),
            token,
            params={"type": "all"},
        )
        return [
            Repository(
                repo_id=item["id"],
                repo_name=item["name"],
                org_name=org_name,
                default_branch=item.get("default_branch") or "main",
                private=bool(item.get("private", False)),
                archived=bool(item.get("archived", False)),
            )
            for item in data
        ]

    async def get_watchers(
        self,
        org_name: str,
        repo_name: str,
        token: str,
        now: Optional[datetime] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Today's stargazer count entry and the current total."""
        result = await self.gateway.fetch(self._repo_url(org_name, repo_name), token)
        total = int((result.body or {}).get("stargazers_count", 0))
        entry = {"date": format_timestamp(now or utc_now()), "count": total}
        return [entry], total

    async def get_releases(self, org_name: str, repo_name: str, token: str) -> List[Dict[str, Any]]:
        result = await self.gateway.fetch(
            self._repo_url(org_name, repo_name, "/releases"),
            token,
            params={"per_page": self.per_page},
        )
        return [
            {
                "id": item.get("id"),
                "name": item.get("name"),
                "tag_name": item.get("tag_name"),
                "author": (item.get("author") or {}).get("login"),
                "draft": bool(item.get("draft", False)),
                "prerelease": bool(item.get("prerelease", False)),
                "date": item.get("published_at") or item.get("created_at"),
            }
            for item in result.body or []
        ]

    async def _traffic(
        self, org_name: str, repo_name: str, token: str, kind: str
    ) -> List[Dict[str, Any]]:
        result = await self.gateway.fetch(
            self._repo_url(org_name, repo_name, f"/traffic/{kind}"),
            token,
            params={"per": "day"},
        )
        return [
            {
                "date": item["timestamp"],
                "count": item.get("count", 0),
                "uniques": item.get("uniques", 0),
            }
            for item in (result.body or {}).get(kind, [])
        ]

    async def get_clones(self, org_name: str, repo_name: str, token: str) -> List[Dict[str, Any]]:
        """Daily clone counts for the last 14 days."""
        return await self._traffic(org_name, repo_name, token, "clones")

    async def get_views(self, org_name: str, repo_name: str, token: str) -> List[Dict[str, Any]]:
        """Daily visits and visitors for the last 14 days."""
        return await self._traffic(org_name, repo_name, token, "views")

    async def get_actions(self, org_name: str, repo_name: str, token: str) -> List[Dict[str, Any]]:
        """Most recent workflow runs."""
        result = await self.gateway.fetch(
            self._repo_url(org_name, repo_name, "/actions/runs"),
            token,
            params={"per_page": self.per_page},
        )
        return [
            {
                "id": run.get("id"),
                "name": run.get("name"),
                "event": run.get("event"),
                "status": run.get("status"),
                "conclusion": run.get("conclusion"),
                "branch": run.get("head_branch"),
                "date": run.get("created_at"),
                "updated_at": run.get("updated_at"),
            }
            for run in (result.body or {}).get("workflow_runs", [])
        ]

    async def get_forks(self, org_name: str, repo_name: str, token: str) -> List[Dict[str, Any]]:
        result = await self.gateway.fetch(
            self._repo_url(org_name, repo_name, "/forks"),
            token,
            params={"per_page": self.per_page},
        )
        return [
            {
                "id": fork.get("id"),
                "full_name": fork.get("full_name"),
                "owner": (fork.get("owner") or {}).get("login"),
                "date": fork.get("created_at"),
            }
            for fork in result.body or []
        ]

    async def get_license(
        self, org_name: str, repo_name: str, token: str
    ) -> Optional[Dict[str, Any]]:
        """Detected license, or None when the repository has none."""
        try:
            result = await self.gateway.fetch(
                self._repo_url(org_name, repo_name, "/license"), token
            )
        except FetchError as exc:
            if exc.status_code == 404:
                return None
            raise
        license_info = (result.body or {}).get("license") or {}
        return {
            "key": license_info.get("key"),
            "name": license_info.get("name"),
            "spdx_id": license_info.get("spdx_id"),
        }

    async def get_languages(self, org_name: str, repo_name: str, token: str) -> Dict[str, int]:
        """Bytes of code per language."""
        result = await self.gateway.fetch(
            self._repo_url(org_name, repo_name, "/languages"), token
        )
        return dict(result.body or {})

    async def get_repo_tree(
        self, org_name: str, repo_name: str, sha: str, token: str
    ) -> List[Dict[str, Any]]:
        """Top-level tree entries of a commit."""
        result = await self.gateway.fetch(self.tree_url(org_name, repo_name, sha), token)
        return list((result.body or {}).get("tree", []))
