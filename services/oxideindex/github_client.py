"""
GitHub API client with rate limit handling.

All traffic of the indexer goes through GitHubClient._request, one request
at a time. Rate limiting is handled locally:

- 403 with an exhausted quota and a reset timestamp: sleep until the reset
  (plus a small margin) and retry. Primary limit, unbounded.
- 403 with Retry-After: sleep as directed and retry.
- any other 403: secondary (abuse-detection) limit, linear backoff with a
  cap, bounded number of attempts.
- 429: sleep Retry-After (or a default) and retry, unbounded.
- 401: authentication failure, fatal.
- any other non-2xx: fail immediately with the response body attached.

Endpoints:
  - GET /search/code?q=...                  - Code search
  - GET /repos/{owner}/{repo}               - Repository metadata
  - GET /repos/{owner}/{repo}/contents/{p}  - File content (base64)
  - GET /rate_limit                         - Quota status
"""

from __future__ import annotations

import base64
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from .config import GitHubConfig
from .models import CodeSearchItem, FileContent, SearchPage
from .utils import (
    AuthError,
    GitHubAPIError,
    NetworkError,
    RateLimitedError,
    SecondaryRateLimitedError,
    compute_backoff,
    format_duration,
    iso_timestamp,
)


class GitHubClient:
    """
    Sequential, rate-aware GitHub REST client.

    Sleep and clock are injectable so the retry behaviour can be exercised
    without waiting.
    """

    def __init__(
        self,
        config: Optional[GitHubConfig] = None,
        token: Optional[str] = None,
        token_provider: Optional[Callable[[], str]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            config: API settings; defaults are used when omitted.
            token: Static bearer token. Ignored when token_provider is given.
            token_provider: Callable returning a valid token, consulted on
                            every request so expiring tokens are refreshed.
            sleep: Function used for every backoff wait.
            clock: Returns the current Unix time in seconds.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.config = config or GitHubConfig()
        self._sleep = sleep
        self._clock = clock

        if token_provider is None:
            if token is None:
                token = os.getenv("GITHUB_TOKEN")
                if token:
                    logger.info("GitHub token loaded from environment")
                else:
                    logger.warning("No GitHub token provided - code search requires authentication")
            if token:
                token_provider = lambda: token  # noqa: E731
        self._token_provider = token_provider

        self._client = httpx.Client(
            base_url=self.config.api_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": self.config.user_agent,
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self.config.timeout,
            transport=transport,
        )

        self.rate_limit_remaining: Optional[int] = None
        self.rate_limit_reset: Optional[datetime] = None
        self.request_count = 0

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Public API
    # =========================================================================

    def get_json(
        self,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> tuple[Any, httpx.Headers]:
        """
        GET an endpoint (path or absolute URL) and return (json body, headers).

        Raises:
            RateLimitedError, SecondaryRateLimitedError, GitHubAPIError,
            NetworkError, AuthError
        """
        response = self._request("GET", endpoint, params=params)
        return response.json(), response.headers

    def search_code(self, query: str, page: int, per_page: Optional[int] = None) -> SearchPage:
        """Fetch one page of code-search results, newest-indexed first."""
        params = {
            "q": query,
            "per_page": per_page or self.config.per_page,
            "page": page,
            "sort": "indexed",
            "order": "desc",
        }
        data, _ = self.get_json("/search/code", params=params)

        raw_items = data.get("items") or []
        items = []
        for raw in raw_items:
            try:
                items.append(CodeSearchItem.from_api(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed search item ({e}): {raw.get('html_url', '?')}")

        return SearchPage(
            total_count=int(data.get("total_count") or 0),
            incomplete_results=bool(data.get("incomplete_results")),
            items=items,
            raw_count=len(raw_items),
        )

    def search_code_count(self, query: str) -> int:
        """Return the total result count reported for a query."""
        data, _ = self.get_json("/search/code", params={"q": query, "per_page": 1})
        return int(data.get("total_count") or 0)

    def get_repository(self, full_name: str) -> dict[str, Any]:
        """Fetch repository metadata for owner/repo."""
        data, _ = self.get_json(f"/repos/{full_name}")
        return data

    def get_file_content(
        self,
        full_name: str,
        path: str,
        ref: Optional[str] = None,
    ) -> FileContent:
        """
        Get file content from a repository.

        Tries the given ref first; if that fails the default branch is used.

        Returns:
            FileContent with decoded bytes.
        """
        endpoint = f"/repos/{full_name}/contents/{quote(path, safe='/')}"

        try:
            data, _ = self.get_json(endpoint, params={"ref": ref} if ref else None)
        except GitHubAPIError as e:
            if ref is None or isinstance(e, RateLimitedError):
                raise
            logger.debug(f"Fetch of {full_name}/{path}@{ref[:8]} failed ({e.status_code}), trying default branch")
            data, _ = self.get_json(endpoint)

        if isinstance(data, list):
            raise GitHubAPIError(f"Path is a directory: {full_name}/{path}", url=endpoint)

        raw = data.get("content") or ""
        if data.get("encoding") == "base64":
            content = base64.b64decode(raw)
        else:
            content = raw.encode("utf-8")

        return FileContent(
            path=data.get("path", path),
            sha=data.get("sha", ""),
            size=int(data.get("size") or len(content)),
            content=content,
        )

    def check_rate_limit(self) -> dict[str, Any]:
        """
        Check current rate limit status.

        Returns:
            Dict of rate limit resources (core, search, ...); empty on failure.
        """
        try:
            data, _ = self.get_json("/rate_limit")
            return data.get("resources", {})
        except (GitHubAPIError, NetworkError) as e:
            logger.warning(f"Could not check rate limit: {e}")
            return {}

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _auth_headers(self) -> dict[str, str]:
        if self._token_provider is None:
            return {}
        return {"Authorization": f"Bearer {self._token_provider()}"}

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue a request, waiting out rate limits as the server directs."""
        secondary_attempts = 0
        network_attempts = 0

        while True:
            try:
                self.request_count += 1
                response = self._client.request(
                    method,
                    endpoint,
                    params=params,
                    headers=self._auth_headers(),
                )
            except httpx.RequestError as e:
                network_attempts += 1
                if network_attempts >= self.config.network_max_retries:
                    raise NetworkError(
                        f"Request to {endpoint} failed after {network_attempts} attempts: {e}"
                    ) from e
                wait_time = compute_backoff(network_attempts - 1)
                logger.warning(f"Request error {e!r}, retrying in {wait_time:.1f}s")
                self._sleep(wait_time)
                continue

            self._update_rate_limit(response)
            status = response.status_code

            if status == 403:
                reset = self._primary_reset(response)
                if reset is not None:
                    self._wait_for_reset(reset, endpoint)
                    continue

                retry_after = self._retry_after(response)
                if retry_after is not None:
                    wait_time = max(1.0, retry_after)
                    self._log_wait(f"HTTP 403 with Retry-After={retry_after:g}s", wait_time)
                    self._sleep(wait_time)
                    continue

                secondary_attempts += 1
                if secondary_attempts >= self.config.secondary_max_attempts:
                    raise SecondaryRateLimitedError(
                        f"GitHub API 403 after {secondary_attempts} attempts. Body: {response.text}",
                        status_code=status,
                        url=str(response.request.url),
                        body=response.text,
                    )
                wait_time = min(
                    self.config.secondary_backoff_cap,
                    self.config.secondary_backoff_step * secondary_attempts,
                )
                self._log_wait(
                    f"HTTP 403 (secondary limit), attempt {secondary_attempts}/"
                    f"{self.config.secondary_max_attempts}",
                    wait_time,
                )
                self._sleep(wait_time)
                continue

            if status == 429:
                retry_after = self._retry_after(response)
                wait_time = retry_after if retry_after is not None else self.config.retry_after_default
                self._log_wait("HTTP 429", wait_time)
                self._sleep(wait_time)
                continue

            if status == 401:
                raise AuthError(f"GitHub rejected credentials (401): {response.text}")

            if not response.is_success:
                raise GitHubAPIError(
                    f"GitHub API {status} {response.reason_phrase}: {response.text}",
                    status_code=status,
                    url=str(response.request.url),
                    body=response.text,
                )

            return response

    def _primary_reset(self, response: httpx.Response) -> Optional[int]:
        """Reset timestamp when the response reports an exhausted quota."""
        if response.headers.get("X-RateLimit-Remaining") != "0":
            return None
        try:
            reset = int(
                response.headers.get("X-RateLimit-Reset-Search")
                or response.headers.get("X-RateLimit-Reset", "0")
            )
        except ValueError:
            return None
        return reset if reset > 0 else None

    def _wait_for_reset(self, reset: int, endpoint: str) -> None:
        reset_at = datetime.fromtimestamp(reset, tz=timezone.utc)
        wait_time = max(0.0, reset - self._clock()) + self.config.reset_margin

        max_wait = self.config.max_primary_wait
        if max_wait is not None and wait_time > max_wait:
            raise RateLimitedError(
                f"Rate limit for {endpoint} resets at {iso_timestamp(reset_at)}, "
                f"beyond the allowed wait of {format_duration(max_wait)}",
                reset_at=reset_at,
                status_code=403,
                url=endpoint,
            )

        self._log_wait(f"Rate limited. Resets at {iso_timestamp(reset_at)}", wait_time)
        self._sleep(wait_time)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _log_wait(self, reason: str, wait_time: float) -> None:
        resume_at = datetime.fromtimestamp(self._clock() + wait_time, tz=timezone.utc)
        logger.warning(
            f"{reason}. Sleeping {format_duration(wait_time)} "
            f"(resume at {iso_timestamp(resume_at)})"
        )

    def _update_rate_limit(self, response: httpx.Response) -> None:
        """Update rate limit tracking from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")
        limit = response.headers.get("X-RateLimit-Limit")

        if remaining and remaining.isdigit():
            self.rate_limit_remaining = int(remaining)
            if 0 < self.rate_limit_remaining < 5:
                logger.warning(f"Rate limit low: {self.rate_limit_remaining}/{limit} requests remaining")

        if reset and reset.isdigit():
            self.rate_limit_reset = datetime.fromtimestamp(int(reset), tz=timezone.utc)
