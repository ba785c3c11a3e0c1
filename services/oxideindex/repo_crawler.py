"""
Clone-based repository crawler.

Second pass over repositories already known to contain plugins. Code search
only returns files GitHub has indexed, so every repository in the published
index (plus a manual list) is shallow-cloned and scanned locally:

1. Collect repositories from oxide_plugins.json and manual-repositories.json
2. Skip repositories recorded in crawler_state.json
3. git clone --depth 1, scan every .cs file declaring Oxide.Plugins
4. Merge the found plugins into crawled_plugins.json, save state
5. Delete the clone

No API calls are made, so this pass does not consume rate limit.
"""

from __future__ import annotations

import os
import re
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from .config import Config
from .extractor import extract_plugin_metadata, is_oxide_plugin
from .hasher import git_blob_sha
from .models import FileDescriptor, IndexedPlugin, RepositoryDescriptor
from .output import PluginIndex
from .resolver import split_full_name
from .utils import (
    CloneError,
    ShutdownRequested,
    atomic_write_json,
    format_duration,
    iso_timestamp,
    read_json,
    retry,
    timed_operation,
    utc_now,
)


CRAWL_QUERY = "Repository crawl - namespace Oxide.Plugins files found locally"

SKIP_DIRS = {
    ".git", ".vs", ".vscode", "bin", "obj", "packages",
    "node_modules", ".nuget", "TestResults", ".idea",
}

GITHUB_REPO_RE = re.compile(r"github\.com/([^/\s]+/[^/\s#?]+)")


@dataclass
class CloneResult:
    """Result of git clone operation."""
    success: bool
    repo_path: Path
    error: Optional[str] = None


@dataclass
class RepositoryCrawlResult:
    """Plugins found in one repository."""
    repository: str
    clone_url: str
    plugins: list[IndexedPlugin] = field(default_factory=list)
    scanned_at: str = ""
    errors: list[str] = field(default_factory=list)


@dataclass
class CrawlStatistics:
    """Statistics for one crawl session."""
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_found: int = 0
    already_processed: int = 0
    newly_processed: int = 0
    successful: int = 0
    failed: int = 0
    plugins_found: int = 0
    new_plugins: int = 0

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or utc_now()
        return (end - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "crawl_session": {
                "started_at": iso_timestamp(self.started_at),
                "completed_at": iso_timestamp(self.completed_at) if self.completed_at else None,
                "duration_ms": int(self.duration_seconds * 1000),
            },
            "repositories": {
                "total_found": self.total_found,
                "already_processed": self.already_processed,
                "newly_processed": self.newly_processed,
                "successful": self.successful,
                "failed": self.failed,
            },
            "plugins": {
                "total_found": self.plugins_found,
                "new_plugins": self.new_plugins,
            },
        }


def parse_repository_urls(urls: list[str]) -> list[str]:
    """Extract owner/repo names from GitHub URLs, dropping anything else."""
    names = []
    for url in urls:
        if not isinstance(url, str):
            continue
        match = GITHUB_REPO_RE.search(url)
        if not match:
            logger.warning(f"Not a GitHub repository URL: {url}")
            continue
        name = match.group(1)
        if name.endswith(".git"):
            name = name[:-4]
        names.append(name)
    return names


def should_skip_directory(name: str) -> bool:
    return name in SKIP_DIRS or name.startswith(".")


def find_plugin_files(repo_path: Path) -> list[Path]:
    """All .cs files under repo_path outside build/tooling directories."""
    found = []
    for root, dirs, files in os.walk(repo_path):
        dirs[:] = sorted(d for d in dirs if not should_skip_directory(d))
        for name in sorted(files):
            if name.endswith(".cs"):
                found.append(Path(root) / name)
    return found


class RepositoryCrawler:
    """
    Clone-and-scan crawler.

    Usage:
        crawler = RepositoryCrawler(config)
        crawler.install_signal_handlers()
        stats = crawler.crawl()
    """

    def __init__(
        self,
        config: Config,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self._now = now
        output_dir = Path(config.output.dir)
        self.temp_dir = Path(config.repo_crawl.temp_dir)
        self.index_path = config.output.index_path
        self.output_path = output_dir / config.repo_crawl.output_file
        self.state_path = output_dir / config.repo_crawl.state_file
        self.manual_path = Path(config.repo_crawl.manual_repositories)
        self._stop = threading.Event()
        self._known_repositories: dict[str, RepositoryDescriptor] = {}
        self.state = self._load_state()

    # =========================================================================
    # State
    # =========================================================================

    def _fresh_state(self) -> dict[str, Any]:
        return {
            "last_updated": iso_timestamp(self._now()),
            "total_repositories_processed": 0,
            "successful_crawls": 0,
            "failed_crawls": 0,
            "processed_repositories": {},
        }

    def _load_state(self) -> dict[str, Any]:
        if not self.state_path.exists():
            return self._fresh_state()
        try:
            state = read_json(self.state_path)
            if not isinstance(state, dict) or not isinstance(state.get("processed_repositories"), dict):
                raise ValueError("missing processed_repositories")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load crawler state {self.state_path} ({e}), starting fresh")
            return self._fresh_state()

        logger.info(f"Loaded state: {len(state['processed_repositories'])} repositories already processed")
        return state

    def save_state(self) -> None:
        processed = self.state["processed_repositories"]
        self.state["last_updated"] = iso_timestamp(self._now())
        self.state["total_repositories_processed"] = len(processed)
        self.state["successful_crawls"] = sum(1 for r in processed.values() if r.get("success"))
        self.state["failed_crawls"] = sum(1 for r in processed.values() if not r.get("success"))
        atomic_write_json(self.state_path, self.state)

    def _record(self, result: RepositoryCrawlResult, success: bool) -> None:
        self.state["processed_repositories"][result.repository] = {
            "last_crawled": result.scanned_at,
            "plugins_count": len(result.plugins),
            "success": success,
            "errors": result.errors,
        }

    # =========================================================================
    # Repository sources
    # =========================================================================

    def collect_repositories(self) -> list[str]:
        """Unique repositories from the published index and the manual list, in order."""
        repositories: list[str] = []

        if self.index_path.exists():
            index = PluginIndex.load(self.index_path)
            for plugin in index.items_sorted():
                self._known_repositories.setdefault(plugin.repository.full_name, plugin.repository)
            repositories.extend(sorted(self._known_repositories))
            logger.info(f"Found {len(self._known_repositories)} unique repositories in {self.index_path}")
        else:
            logger.info(f"{self.index_path} not found, continuing without it")

        if self.manual_path.exists():
            try:
                urls = read_json(self.manual_path)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load manual repositories {self.manual_path}: {e}")
                urls = []
            manual = parse_repository_urls(urls if isinstance(urls, list) else [])
            repositories.extend(manual)
            logger.info(f"Found {len(manual)} manual repositories")

        unique = list(dict.fromkeys(repositories))
        logger.info(f"Total unique repositories: {len(unique)}")
        return unique

    def repository_info(self, full_name: str) -> RepositoryDescriptor:
        """Metadata from the published index, or defaults derived from the name."""
        return self._known_repositories.get(full_name) or RepositoryDescriptor.placeholder(full_name)

    # =========================================================================
    # Crawl
    # =========================================================================

    def install_signal_handlers(self) -> None:
        """Finish the current repository, clean up and stop on SIGINT/SIGTERM."""
        def handler(signum, frame):
            logger.info(f"Received signal {signum}, stopping after the current repository")
            self._stop.set()

        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def stop(self) -> None:
        self._stop.set()

    def crawl(self) -> CrawlStatistics:
        """Crawl every repository not yet recorded in the crawler state."""
        stats = CrawlStatistics(started_at=self._now())
        start = time.perf_counter()

        repositories = self.collect_repositories()
        stats.total_found = len(repositories)
        if not repositories:
            logger.error(f"No repositories found in {self.index_path} or {self.manual_path}")
            stats.completed_at = self._now()
            return stats

        processed = self.state["processed_repositories"]
        pending = [r for r in repositories if r not in processed]
        stats.already_processed = len(repositories) - len(pending)
        logger.info(f"Already processed: {stats.already_processed}, to process: {len(pending)}")

        if not pending:
            logger.info("All repositories have already been processed")
            stats.completed_at = self._now()
            return stats

        output = PluginIndex.load(self.output_path)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        try:
            for i, repo in enumerate(pending, start=1):
                if self._stop.is_set():
                    logger.info("Stop requested, ending crawl early")
                    break

                logger.info(f"[{i}/{len(pending)}] Processing: {repo}")

                # Recorded before cloning so a crash does not retry the repository forever
                processed[repo] = {
                    "last_crawled": iso_timestamp(self._now()),
                    "plugins_count": 0,
                    "success": False,
                    "errors": ["Processing in progress..."],
                }
                self.save_state()

                stats.newly_processed += 1
                try:
                    result = self.crawl_repository(repo)
                except ShutdownRequested as e:
                    # Not recorded, so the next crawl picks it up again
                    logger.info(f"  {e}, ending crawl early")
                    del processed[repo]
                    stats.newly_processed -= 1
                    break
                except (CloneError, ValueError) as e:
                    stats.failed += 1
                    result = RepositoryCrawlResult(
                        repository=repo,
                        clone_url=f"https://github.com/{repo}.git",
                        scanned_at=iso_timestamp(self._now()),
                        errors=[f"Failed to crawl: {e}"],
                    )
                    self._record(result, success=False)
                    logger.error(f"  Failed: {e}")
                else:
                    stats.successful += 1
                    stats.plugins_found += len(result.plugins)
                    for plugin in result.plugins:
                        if output.add(plugin):
                            stats.new_plugins += 1
                    self._record(result, success=True)
                    logger.info(f"  Found {len(result.plugins)} plugins")
                    if result.errors:
                        logger.warning(f"  {len(result.errors)} files could not be read")

                self.save_state()
                output.write(self.output_path, CRAWL_QUERY, generated_at=self._now())

                if i % 10 == 0:
                    logger.info(
                        f"Progress: {i}/{len(pending)} ({i / len(pending):.0%}) | "
                        f"success {stats.successful}, failed {stats.failed}, "
                        f"plugins {stats.plugins_found}"
                    )
        finally:
            self.cleanup()

        stats.completed_at = self._now()
        self.state["latest_session_statistics"] = stats.to_dict()
        self.save_state()
        self._log_statistics(stats, time.perf_counter() - start)
        return stats

    def crawl_repository(self, full_name: str) -> RepositoryCrawlResult:
        """Clone one repository, scan it and remove the clone."""
        split_full_name(full_name)
        clone_url = f"https://github.com/{full_name}.git"
        repo_dir = self.temp_dir / full_name.replace("/", "_")

        try:
            self.clone_repository(clone_url, repo_dir)
            repository = self.repository_info(full_name)
            with timed_operation(f"  Scan of {full_name}", log_level="debug"):
                plugins, errors = self.scan_repository(repo_dir, repository)
        finally:
            self._cleanup_repo(repo_dir)

        return RepositoryCrawlResult(
            repository=full_name,
            clone_url=clone_url,
            plugins=plugins,
            scanned_at=iso_timestamp(self._now()),
            errors=errors,
        )

    @retry(max_attempts=2, base_delay=2.0, exceptions=(CloneError,))
    def clone_repository(self, clone_url: str, repo_dir: Path) -> CloneResult:
        """
        Shallow clone into repo_dir.

        Raises:
            CloneError: git failed or timed out.
            ShutdownRequested: stop was requested, so the clone is not retried.
        """
        if self._stop.is_set():
            raise ShutdownRequested(f"Stop requested before cloning {clone_url}")

        self._cleanup_repo(repo_dir)
        timeout = self.config.repo_crawl.clone_timeout
        cmd = ["git", "clone", "--depth", "1", "--quiet", clone_url, str(repo_dir)]

        logger.info(f"  Cloning {clone_url}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            self._cleanup_repo(repo_dir)
            if self._stop.is_set():
                raise ShutdownRequested(f"Clone of {clone_url} interrupted") from e
            raise CloneError(f"Clone timed out after {format_duration(timeout)}") from e
        except OSError as e:
            raise CloneError(f"Could not run git: {e}") from e

        if result.returncode != 0:
            self._cleanup_repo(repo_dir)
            if self._stop.is_set():
                raise ShutdownRequested(f"Clone of {clone_url} interrupted")
            raise CloneError(result.stderr.strip() or f"git exited with {result.returncode}")

        return CloneResult(success=True, repo_path=repo_dir)

    def scan_repository(
        self,
        repo_dir: Path,
        repository: RepositoryDescriptor,
    ) -> tuple[list[IndexedPlugin], list[str]]:
        """Build index entries for every Oxide plugin source under repo_dir."""
        plugins: list[IndexedPlugin] = []
        errors: list[str] = []

        for file_path in find_plugin_files(repo_dir):
            relative = file_path.relative_to(repo_dir).as_posix()
            try:
                content = file_path.read_bytes()
            except OSError as e:
                errors.append(f"Error reading {relative}: {e}")
                continue

            if not is_oxide_plugin(content):
                continue

            metadata = extract_plugin_metadata(content, relative, repository.owner_login)
            branch = repository.default_branch
            plugins.append(IndexedPlugin(
                plugin_name=metadata.name,
                plugin_author=metadata.author,
                plugin_version=metadata.version,
                plugin_description=metadata.description,
                plugin_resource_id=metadata.resource_id,
                language=self.config.crawl.language,
                file=FileDescriptor(
                    path=relative,
                    html_url=f"{repository.html_url}/blob/{branch}/{relative}",
                    raw_url=f"https://raw.githubusercontent.com/{repository.full_name}/{branch}/{relative}",
                    sha=git_blob_sha(content),
                    size=len(content),
                ),
                repository=repository,
                indexed_at=iso_timestamp(self._now()),
            ))

        return plugins, errors

    # =========================================================================
    # Cleanup
    # =========================================================================

    def _cleanup_repo(self, repo_dir: Path) -> None:
        if repo_dir.exists():
            shutil.rmtree(repo_dir, ignore_errors=True)

    def cleanup(self) -> None:
        """Remove the scratch clone directory."""
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir, ignore_errors=True)
            logger.debug(f"Removed {self.temp_dir}")

    def _log_statistics(self, stats: CrawlStatistics, elapsed: float) -> None:
        logger.info("=" * 60)
        logger.info("Repository crawl completed")
        logger.info(f"Duration: {format_duration(elapsed)}")
        logger.info(f"Repositories in source: {stats.total_found}")
        logger.info(f"Already processed: {stats.already_processed}")
        logger.info(f"Newly processed: {stats.newly_processed} "
                    f"(successful {stats.successful}, failed {stats.failed})")
        logger.info(f"Plugins found: {stats.plugins_found} ({stats.new_plugins} new)")
        if stats.successful:
            logger.info(f"Average plugins per successful repo: {stats.plugins_found / stats.successful:.1f}")
        logger.info(f"Results: {self.output_path}, state: {self.state_path}")
        logger.info("=" * 60)
