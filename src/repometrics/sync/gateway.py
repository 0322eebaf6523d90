"""Authenticated GitHub API access for the metrics job.

Every call is made with the organization's installation token. The gateway
reports the remaining quota with each response and turns any non-2xx response
or transport failure into a ``FetchError`` carrying an uppercased message, so
callers can recognise GitHub's rate limit wording without caring about case.

GitHub Rate Limits:
- Core API: 5000 requests/hour per installation token
- Secondary limits: Undocumented, can trigger 403/429 for rapid requests

Secondary limits are retried here with a fixed backoff schedule. Primary
quota exhaustion is not retried: the job parks the organization instead.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from repometrics.sync.config import SyncConfig

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
DEFAULT_ACCEPT = "application/vnd.github+json"


class FetchError(Exception):
    """A GitHub request that did not produce a usable response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        rate_limit_remaining: Optional[int] = None,
    ):
        self.message = (message or "UNKNOWN ERROR").upper()
        self.status_code = status_code
        self.rate_limit_remaining = rate_limit_remaining
        super().__init__(self.message)


@dataclass
class FetchResult:
    """Response body plus the quota left on the token that made the call."""

    body: Any
    rate_limit_remaining: Optional[int] = None


def _parse_remaining(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("X-RateLimit-Remaining")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Pull GitHub's ``message`` field out of an error body."""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


class GitHubGateway:
    """GitHub REST client used by the synchronizers.

    Features:
    - Bearer auth with a per-call token (one token per organization)
    - Rate limit header parsing
    - Retry on secondary rate limits with a fixed backoff schedule
    - Page-number pagination for list endpoints
    """

    def __init__(self, config: SyncConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "GitHubGateway":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout_seconds)
        return self._client

    def url(self, path: str) -> str:
        """Absolute API URL for a path such as ``/repos/org/name``."""
        return f"{self.config.base_url}{path}"

    def _is_secondary_rate_limit(self, response: httpx.Response) -> bool:
        """Detect secondary rate limit (abuse detection)."""
        if response.status_code not in (403, 429):
            return False
        if response.headers.get("Retry-After"):
            return True
        message = _error_message(response).lower()
        return "abuse" in message or "secondary rate" in message

    def _backoff_for(self, response: httpx.Response, retry_count: int) -> float:
        schedule = self.config.secondary_rate_limit_backoff
        backoff = schedule[min(retry_count, len(schedule) - 1)]
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                backoff = int(retry_after)
            except ValueError:
                pass
        return backoff

    async def fetch(
        self,
        url: str,
        token: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> FetchResult:
        """GET ``url`` and return its JSON body with the remaining quota.

        Raises:
            FetchError: on transport failure or any non-2xx status.
        """
        client = await self._ensure_client()
        headers = {
            "Accept": DEFAULT_ACCEPT,
            "X-GitHub-Api-Version": API_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        retry_count = 0
        while True:
            try:
                response = await client.get(url, headers=headers, params=params)
            except httpx.HTTPError as exc:
                logger.warning(f"Request to {url} failed: {exc!r}")
                raise FetchError(str(exc) or type(exc).__name__) from exc

            remaining = _parse_remaining(response)

            if self._is_secondary_rate_limit(response) and retry_count < self.config.max_retries:
                backoff = self._backoff_for(response, retry_count)
                logger.warning(
                    f"Secondary rate limit hit. Backing off for {backoff}s "
                    f"(attempt {retry_count + 1}/{self.config.max_retries})"
                )
                await asyncio.sleep(backoff)
                retry_count += 1
                continue

            if response.is_success:
                body = response.json() if response.content else None
                return FetchResult(body=body, rate_limit_remaining=remaining)

            raise FetchError(
                _error_message(response),
                status_code=response.status_code,
                rate_limit_remaining=remaining,
            )

    async def get_paginated(
        self,
        url: str,
        token: str,
        params: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> List[Any]:
        """GET with page-number pagination, returning all results.

        Follows pages until an empty or short page. A listing that is still
        full after ``max_pages`` pages raises instead of coming back partial.

        Raises:
            FetchError: on a failed page or a listing longer than ``max_pages``.
        """
        params = dict(params or {})
        params.setdefault("per_page", self.config.per_page)
        max_pages = max_pages or self.config.max_repo_pages

        all_results: List[Any] = []
        page = 1

        while True:
            params["page"] = page
            result = await self.fetch(url, token, params=params)
            data = result.body
            if not data:
                break
            if not isinstance(data, list):
                all_results.append(data)
                break

            all_results.extend(data)
            if len(data) < params["per_page"]:
                break
            if page >= max_pages:
                raise FetchError(
                    f"Listing {url} still has more than {len(all_results)} items "
                    f"after {max_pages} pages"
                )
            page += 1

        return all_results
