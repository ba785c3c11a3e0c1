"""
Repository metadata resolution with a persistent cache.

The cache dict lives inside the crawl state, so repository metadata is
fetched once per repository and survives resumed runs. Entries older than
the configured TTL are refetched so star/fork counts do not go stale.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from loguru import logger

from .models import RepositoryDescriptor
from .utils import iso_timestamp, parse_timestamp


class RepositorySource(Protocol):
    def get_repository(self, full_name: str) -> dict[str, Any]:
        ...


def split_full_name(full_name: str) -> tuple[str, str]:
    """Split owner/repo, rejecting malformed names."""
    owner, _, repo = full_name.partition("/")
    if not owner or not repo or "/" in repo:
        raise ValueError(f"Invalid repository format: {full_name}")
    return owner, repo


class RepositoryResolver:
    """Resolve owner/repo to RepositoryDescriptor, consulting the cache first."""

    def __init__(
        self,
        client: RepositorySource,
        cache: dict[str, dict[str, Any]],
        ttl_hours: float = 24.0,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.cache = cache
        self.ttl_seconds = ttl_hours * 3600
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def resolve(self, full_name: str) -> RepositoryDescriptor:
        split_full_name(full_name)

        entry = self.cache.get(full_name)
        if entry is not None and not self._expired(entry):
            self.hits += 1
            return RepositoryDescriptor.from_dict(entry["repository"])

        self.misses += 1
        payload = self.client.get_repository(full_name)
        repository = RepositoryDescriptor.from_api(payload)
        self.cache[full_name] = {
            "repository": repository.to_dict(),
            "fetched_at": iso_timestamp(datetime.fromtimestamp(self._clock(), tz=timezone.utc)),
        }
        logger.debug(f"Resolved repository {full_name} ({repository.stargazers_count} stars)")
        return repository

    def _expired(self, entry: dict[str, Any]) -> bool:
        if self.ttl_seconds <= 0:
            return False
        fetched_at = entry.get("fetched_at")
        if fetched_at is None:
            return True
        try:
            fetched = parse_timestamp(str(fetched_at)).timestamp()
        except ValueError:
            return True
        return self._clock() - fetched > self.ttl_seconds
