"""
Persistent crawl state.

The crawl is a cursor over (variant index, page number) plus the set of
identity keys already processed in the current cycle. The state is saved at
checkpoints so a restarted process resumes at the page it was working on
instead of starting the whole variant list over.

Handles:
- Cursor transitions (next page, next variant, cycle completion)
- Seen-key tracking for the current cycle
- Repository metadata cache shared with the resolver
- Atomic persistence with schema/query checks on load
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .utils import StateError, atomic_write_json, iso_timestamp, read_json, utc_now


SCHEMA_VERSION = "2.0"


@dataclass
class CrawlState:
    """
    Cursor and bookkeeping for one crawl cycle.
    Stored as JSON between runs.
    """
    query: str
    current_variant: int = 0
    current_page: int = 1
    seen_keys: set[str] = field(default_factory=set)
    repo_cache: dict[str, dict[str, Any]] = field(default_factory=dict)
    last_full_scan_at: Optional[str] = None
    updated_at: Optional[str] = None
    schema_version: str = SCHEMA_VERSION

    @classmethod
    def fresh(cls, query: str) -> "CrawlState":
        """Create state positioned at the first page of the first variant."""
        return cls(query=query)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def next_page(self) -> None:
        self.current_page += 1

    def next_variant(self) -> None:
        self.current_variant += 1
        self.current_page = 1

    def complete_cycle(self, now: Optional[datetime] = None) -> None:
        """Rewind to the start and forget the keys seen in this cycle."""
        self.current_variant = 0
        self.current_page = 1
        self.seen_keys.clear()
        self.last_full_scan_at = iso_timestamp(now)

    def is_cycle_complete(self, variant_count: int) -> bool:
        return self.current_variant >= variant_count

    def mark_seen(self, key: str) -> None:
        self.seen_keys.add(key)

    def is_seen(self, key: str) -> bool:
        return key in self.seen_keys

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "query": self.query,
            "current_variant": self.current_variant,
            "current_page": self.current_page,
            "seen_keys": sorted(self.seen_keys),
            "repo_cache": self.repo_cache,
            "last_full_scan_at": self.last_full_scan_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CrawlState":
        try:
            state = cls(
                query=data["query"],
                current_variant=int(data.get("current_variant", 0)),
                current_page=int(data.get("current_page", 1)),
                seen_keys=set(data.get("seen_keys") or []),
                repo_cache=dict(data.get("repo_cache") or {}),
                last_full_scan_at=data.get("last_full_scan_at"),
                updated_at=data.get("updated_at"),
                schema_version=str(data.get("schema_version", "")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StateError(f"Malformed crawl state: {e}") from e

        if state.current_variant < 0 or state.current_page < 1:
            raise StateError(
                f"Invalid cursor (variant={state.current_variant}, page={state.current_page})"
            )
        return state


class StateStore:
    """Load and save CrawlState at a fixed path."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, query: str) -> CrawlState:
        """
        Load state for the configured query.

        A missing, unreadable or incompatible file yields a fresh state, so a
        bad state file never stops the crawl.
        """
        if not self.path.exists():
            logger.info(f"No crawl state at {self.path}, starting fresh")
            return CrawlState.fresh(query)

        try:
            data = read_json(self.path)
            if not isinstance(data, dict):
                raise StateError("State root is not an object")
            state = CrawlState.from_dict(data)
        except (OSError, ValueError, StateError) as e:
            logger.warning(f"Could not read crawl state {self.path} ({e}), starting fresh")
            return CrawlState.fresh(query)

        if state.schema_version != SCHEMA_VERSION:
            logger.warning(
                f"Crawl state schema {state.schema_version!r} != {SCHEMA_VERSION!r}, starting fresh"
            )
            return CrawlState.fresh(query)

        if state.query != query:
            logger.info("Search query changed since last run, starting a new cycle")
            fresh = CrawlState.fresh(query)
            fresh.repo_cache = state.repo_cache
            return fresh

        logger.info(
            f"Resuming crawl at variant {state.current_variant}, page {state.current_page} "
            f"({len(state.seen_keys)} keys seen, {len(state.repo_cache)} repos cached)"
        )
        return state

    def save(self, state: CrawlState) -> None:
        state.updated_at = iso_timestamp(utc_now())
        atomic_write_json(self.path, state.to_dict())
        logger.debug(
            f"Saved crawl state: variant={state.current_variant} page={state.current_page} "
            f"seen={len(state.seen_keys)}"
        )

    def delete(self) -> bool:
        """Remove the state file. Returns True if one existed."""
        if not self.path.exists():
            return False
        self.path.unlink()
        logger.info(f"Deleted crawl state {self.path}")
        return True
