"""
Crawl orchestration for the plugin index.

Drives the search variants page by page:
1. Resume at the persisted (variant, page) cursor
2. For each unseen search hit: resolve repository (cached), fetch the file,
   extract metadata, merge into the index
3. Checkpoint output + state every N processed items and at page boundaries
4. On cycle completion rewind the cursor and clear seen keys

Key principles:
- Resumable: a crash or shutdown loses at most the items since the last
  checkpoint, and those are re-processed from the same page on restart
- Idempotent: re-running with no upstream changes leaves the published items
  unchanged (only generated_at moves)
- Sequential: one request at a time, paced, so rate limits are rarely hit
"""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol

from loguru import logger

from .config import Config
from .extractor import extract_plugin_metadata
from .models import (
    CodeSearchItem,
    FileContent,
    FileDescriptor,
    IndexedPlugin,
    SearchPage,
    SearchVariant,
)
from .output import CheckpointPolicy, PluginIndex
from .resolver import RepositoryResolver
from .state import CrawlState, StateStore
from .utils import (
    AuthError,
    GitHubAPIError,
    NetworkError,
    RateLimitedError,
    ShutdownRequested,
    Sleeper,
    format_duration,
    iso_timestamp,
    utc_now,
)
from .variants import build_search_variants


RAW_URL_TEMPLATE = "https://raw.githubusercontent.com/{full_name}/{branch}/{path}"


class SearchClient(Protocol):
    def search_code(self, query: str, page: int, per_page: Optional[int] = None) -> SearchPage:
        ...

    def get_repository(self, full_name: str) -> dict:
        ...

    def get_file_content(self, full_name: str, path: str, ref: Optional[str] = None) -> FileContent:
        ...


@dataclass
class IndexerStats:
    """Statistics for one crawl cycle."""
    processed: int = 0
    new_entries: int = 0
    skipped_seen: int = 0
    failed: int = 0
    content_failures: int = 0
    pages: int = 0
    variants_completed: int = 0
    checkpoints: int = 0
    started_at: datetime = field(default_factory=utc_now)
    duration_seconds: float = 0.0


@dataclass
class CycleResult:
    """Result of a crawl cycle."""
    completed: bool
    stats: IndexerStats
    total_entries: int
    interrupted: bool = False
    message: str = ""


class PluginIndexer:
    """
    Search crawl orchestrator.

    Owns no network code itself: every request goes through the client, and
    every wait goes through the sleeper so a shutdown signal ends it promptly.
    """

    def __init__(
        self,
        config: Config,
        client: SearchClient,
        state_store: Optional[StateStore] = None,
        sleeper: Optional[Callable[[float], None]] = None,
        now: Callable[[], datetime] = utc_now,
        variants: Optional[list[SearchVariant]] = None,
    ):
        """
        Initialize the indexer.

        Args:
            config: Loaded configuration.
            client: GitHub client (or a test double with the same methods).
            state_store: Crawl state persistence; defaults to output.state_path.
            sleeper: Pacing/cycle sleep. A Sleeper is created when omitted.
            now: Current UTC time, used for indexed_at and scan timestamps.
            variants: Variant sequence; built from the configured query when omitted.
        """
        self.config = config
        self.client = client
        self.state_store = state_store or StateStore(config.output.state_path)
        self.sleeper = sleeper if sleeper is not None else Sleeper()
        self._now = now
        self.variants: list[SearchVariant] = variants or build_search_variants(
            config.crawl.query, config.crawl.language
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def install_signal_handlers(self) -> None:
        """Stop the sleeper on SIGINT/SIGTERM so the crawl checkpoints and exits."""
        if not isinstance(self.sleeper, Sleeper):
            logger.debug("Custom sleeper in use, not installing signal handlers")
            return

        def handler(signum, frame):
            logger.info(f"Received signal {signum}, finishing current step and shutting down")
            self.sleeper.stop()

        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def run(self, continuous: Optional[bool] = None) -> CycleResult:
        """
        Run one cycle, or cycles forever in continuous mode.

        Continuous mode returns only on shutdown; the result of the last
        cycle is returned.
        """
        if continuous is None:
            continuous = self.config.crawl.continuous

        logger.info(f"Query: {self.config.crawl.query}")
        logger.info(f"Continuous mode: {continuous}")

        if not continuous:
            return self.run_once()

        cycle_delay = self.config.crawl.cycle_delay_ms / 1000
        logger.info(f"Cycle delay: {format_duration(cycle_delay)}")

        cycle = 0
        while True:
            cycle += 1
            logger.info(f"=== Continuous cycle {cycle} ===")
            result = self.run_once()
            if result.interrupted:
                return result
            if not result.completed:
                logger.warning(f"Cycle {cycle} incomplete ({result.message}), resuming next cycle")

            logger.info(f"Sleeping {format_duration(cycle_delay)} before next cycle")
            try:
                self.sleeper(cycle_delay)
            except ShutdownRequested:
                logger.info("Shutdown requested between cycles")
                result.interrupted = True
                return result

    def run_once(self) -> CycleResult:
        """
        Run (or resume) one full pass over all search variants.

        Raises:
            AuthError: Credentials rejected.
            GitHubAPIError: Non-retryable API failure on a search page.
        """
        query = self.config.crawl.query
        state = self.state_store.load(query)
        index = PluginIndex.load(
            self.config.output.index_path,
            replace_edited_files=self.config.crawl.replace_edited_files,
        )
        resolver = RepositoryResolver(
            self.client,
            state.repo_cache,
            ttl_hours=self.config.crawl.repo_cache_ttl_hours,
        )
        policy = CheckpointPolicy(self.config.crawl.checkpoint_every)
        stats = IndexerStats()
        start = time.perf_counter()

        logger.info(
            f"Starting crawl: {len(self.variants)} variants, {len(index)} existing entries"
        )

        def finish(completed: bool, interrupted: bool = False, message: str = "") -> CycleResult:
            stats.duration_seconds = time.perf_counter() - start
            logger.info(
                f"Crawl {'complete' if completed else 'stopped'}: {stats.processed} processed, "
                f"{stats.new_entries} new, {stats.skipped_seen} already seen, "
                f"{stats.failed} failed, {len(index)} total entries "
                f"({format_duration(stats.duration_seconds)}, "
                f"cache {resolver.hits} hits/{resolver.misses} misses)"
            )
            return CycleResult(
                completed=completed,
                stats=stats,
                total_entries=len(index),
                interrupted=interrupted,
                message=message,
            )

        try:
            outcome = self._crawl(state, index, resolver, policy, stats)
        except ShutdownRequested:
            logger.info("Shutdown requested, checkpointing")
            self._checkpoint(state, index, policy, stats, force_state=True)
            return finish(False, interrupted=True, message="shutdown")
        except (AuthError, GitHubAPIError) as e:
            logger.error(f"Fatal error at variant {state.current_variant} page {state.current_page}: {e}")
            self._checkpoint(state, index, policy, stats, force_state=True)
            raise

        if outcome is not None:
            return finish(False, message=outcome)

        if policy.dirty:
            self._write_output(index, policy, stats)
        state.complete_cycle(self._now())
        self.state_store.save(state)
        return finish(True)

    # =========================================================================
    # Crawl loop
    # =========================================================================

    def _crawl(
        self,
        state: CrawlState,
        index: PluginIndex,
        resolver: RepositoryResolver,
        policy: CheckpointPolicy,
        stats: IndexerStats,
    ) -> Optional[str]:
        """Walk variants from the cursor. Returns a reason when stopping early."""
        per_page = self.config.github.per_page
        max_pages = self.config.github.max_pages
        total_variants = len(self.variants)

        while not state.is_cycle_complete(total_variants):
            variant = self.variants[state.current_variant]
            if state.current_page > max_pages:
                self._advance_variant(state, variant, "page limit reached", stats)
                continue

            position = f"variant {state.current_variant + 1}/{total_variants} ({variant.name})"
            logger.info(
                f"{position} page {state.current_page}/{max_pages} "
                f"[{self._overall_percent(state):.1f}% of cycle]"
            )
            logger.debug(f"  Query: {variant.query}")

            try:
                page = self.client.search_code(variant.query, state.current_page, per_page)
            except (RateLimitedError, NetworkError) as e:
                return self._page_failed(state, index, policy, stats, variant, e)
            except GitHubAPIError as e:
                if e.is_server_error:
                    return self._page_failed(state, index, policy, stats, variant, e)
                raise

            stats.pages += 1

            if page.total_count == 0 or page.returned == 0:
                reason = "no results" if page.total_count == 0 else "no more items"
                self._advance_variant(state, variant, reason, stats)
                self.state_store.save(state)
                continue

            logger.info(f"  Found {page.returned} items (total_count={page.total_count})")
            if page.incomplete_results:
                logger.warning(f"  Search reported incomplete results for {variant.name}")

            for item in page.items:
                if self._process_item(item, state, index, resolver, stats):
                    if policy.should_flush(stats.processed, stats.new_entries):
                        self._checkpoint(state, index, policy, stats, force_state=True)
                        logger.info(
                            f"Saved progress ({stats.new_entries} new so far, "
                            f"{stats.processed} processed)"
                        )
                    self._pause(self.config.crawl.item_delay_ms)

            state.next_page()
            if page.returned < per_page:
                self._advance_variant(state, variant, "reached end of results", stats)
            elif state.current_page > max_pages:
                self._advance_variant(state, variant, "page limit reached", stats)

            self._checkpoint(state, index, policy, stats, force_state=True)

            if not state.is_cycle_complete(total_variants):
                self._pause(self.config.crawl.page_delay_ms)

        return None

    def _process_item(
        self,
        item: CodeSearchItem,
        state: CrawlState,
        index: PluginIndex,
        resolver: RepositoryResolver,
        stats: IndexerStats,
    ) -> bool:
        """Index one search hit. Returns True when the item was processed."""
        key = item.key
        if state.is_seen(key):
            stats.skipped_seen += 1
            return False

        location = f"{item.repository_full_name}/{item.path}"
        try:
            plugin = self._build_plugin(item, resolver, stats)
        except AuthError:
            raise
        except (GitHubAPIError, NetworkError, ValueError) as e:
            stats.failed += 1
            logger.warning(f"Failed to process {location}: {e}")
            return False

        if index.add(plugin):
            stats.new_entries += 1
            logger.debug(f"New entry: {plugin.plugin_name} by {plugin.plugin_author} ({location})")

        state.mark_seen(key)
        stats.processed += 1
        return True

    def _build_plugin(
        self,
        item: CodeSearchItem,
        resolver: RepositoryResolver,
        stats: IndexerStats,
    ) -> IndexedPlugin:
        repository = resolver.resolve(item.repository_full_name)

        content: Optional[bytes] = None
        try:
            content = self.client.get_file_content(item.repository_full_name, item.path).content
        except AuthError:
            raise
        except (GitHubAPIError, NetworkError) as e:
            stats.content_failures += 1
            logger.warning(
                f"Failed to fetch {item.repository_full_name}/{item.path}, "
                f"using file name and owner: {e}"
            )

        metadata = extract_plugin_metadata(content, item.path, repository.owner_login)

        return IndexedPlugin(
            plugin_name=metadata.name,
            plugin_author=metadata.author,
            plugin_version=metadata.version,
            plugin_description=metadata.description,
            plugin_resource_id=metadata.resource_id,
            language=self.config.crawl.language,
            file=FileDescriptor(
                path=item.path,
                html_url=item.html_url,
                raw_url=RAW_URL_TEMPLATE.format(
                    full_name=item.repository_full_name,
                    branch=repository.default_branch,
                    path=item.path,
                ),
                sha=item.sha,
                size=item.size,
            ),
            repository=repository,
            indexed_at=iso_timestamp(self._now()),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _advance_variant(
        self,
        state: CrawlState,
        variant: SearchVariant,
        reason: str,
        stats: IndexerStats,
    ) -> None:
        logger.info(f"  {variant.name}: {reason}, moving to next variant")
        state.next_variant()
        stats.variants_completed += 1

    def _page_failed(
        self,
        state: CrawlState,
        index: PluginIndex,
        policy: CheckpointPolicy,
        stats: IndexerStats,
        variant: SearchVariant,
        error: Exception,
    ) -> str:
        """Keep the cursor on the failed page so the next run retries it."""
        logger.error(f"Error processing {variant.name} page {state.current_page}: {error}")
        self._checkpoint(state, index, policy, stats, force_state=True)
        return f"{variant.name} page {state.current_page} failed: {error}"

    def _checkpoint(
        self,
        state: CrawlState,
        index: PluginIndex,
        policy: CheckpointPolicy,
        stats: IndexerStats,
        force_state: bool = False,
    ) -> None:
        """Flush output when dirty, then save state. Output always goes first."""
        policy.record(stats.new_entries)
        if policy.dirty:
            self._write_output(index, policy, stats)
        if force_state:
            self.state_store.save(state)

    def _write_output(self, index: PluginIndex, policy: CheckpointPolicy, stats: IndexerStats) -> None:
        index.write(
            self.config.output.index_path,
            self.config.crawl.query,
            generated_at=self._now(),
        )
        policy.mark_flushed(stats.new_entries)
        stats.checkpoints += 1

    def _pause(self, delay_ms: int) -> None:
        if delay_ms > 0:
            self.sleeper(delay_ms / 1000)

    def _overall_percent(self, state: CrawlState) -> float:
        total = len(self.variants)
        if total == 0:
            return 100.0
        pages = self.config.github.max_pages
        done = state.current_variant + (state.current_page - 1) / pages
        return min(100.0, done / total * 100)
