"""
Oxide Plugin Indexer

Crawls GitHub code search for Oxide/uMod game-server plugins (C# files
declaring namespace Oxide.Plugins), resolves repository metadata, extracts
plugin name/author and publishes a deterministic JSON index.

Features:
- Resumable crawl with checkpointing
- Rate limit handling with automatic pause/resume
- Clone-based second pass over known repositories
"""

from .config import (
    Config,
    GitHubConfig,
    AuthConfig,
    CrawlConfig,
    OutputConfig,
    RepoCrawlConfig,
    LoggingConfig,
)
from .hasher import identity_key, location_key, git_blob_sha
from .models import (
    SearchVariant,
    CodeSearchItem,
    SearchPage,
    FileContent,
    FileDescriptor,
    RepositoryDescriptor,
    IndexedPlugin,
)
from .github_client import GitHubClient
from .auth import TokenChain, PersonalTokenProvider, GitHubAppTokenProvider, build_token_chain
from .variants import build_search_variants
from .extractor import PluginInfo, PluginMetadata, extract_plugin_metadata, parse_plugin_info
from .resolver import RepositoryResolver
from .state import CrawlState, StateStore
from .output import PluginIndex, CheckpointPolicy
from .indexer import PluginIndexer, IndexerStats, CycleResult
from .repo_crawler import RepositoryCrawler, CrawlStatistics
from .utils import (
    setup_logging,
    setup_detailed_logging,
    retry,
    timed_operation,
    Sleeper,
    IndexerError,
    GitHubAPIError,
    RateLimitedError,
    SecondaryRateLimitedError,
    NetworkError,
    AuthError,
    ConfigError,
    StateError,
    CloneError,
    ShutdownRequested,
)

__all__ = [
    # Config
    "Config",
    "GitHubConfig",
    "AuthConfig",
    "CrawlConfig",
    "OutputConfig",
    "RepoCrawlConfig",
    "LoggingConfig",
    # Keys
    "identity_key",
    "location_key",
    "git_blob_sha",
    # Models
    "SearchVariant",
    "CodeSearchItem",
    "SearchPage",
    "FileContent",
    "FileDescriptor",
    "RepositoryDescriptor",
    "IndexedPlugin",
    # GitHub
    "GitHubClient",
    "TokenChain",
    "PersonalTokenProvider",
    "GitHubAppTokenProvider",
    "build_token_chain",
    # Crawl
    "build_search_variants",
    "PluginInfo",
    "PluginMetadata",
    "extract_plugin_metadata",
    "parse_plugin_info",
    "RepositoryResolver",
    "CrawlState",
    "StateStore",
    "PluginIndex",
    "CheckpointPolicy",
    "PluginIndexer",
    "IndexerStats",
    "CycleResult",
    "RepositoryCrawler",
    "CrawlStatistics",
    # Utils
    "setup_logging",
    "setup_detailed_logging",
    "retry",
    "timed_operation",
    "Sleeper",
    "IndexerError",
    "GitHubAPIError",
    "RateLimitedError",
    "SecondaryRateLimitedError",
    "NetworkError",
    "AuthError",
    "ConfigError",
    "StateError",
    "CloneError",
    "ShutdownRequested",
]
