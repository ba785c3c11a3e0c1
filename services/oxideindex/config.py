"""
Configuration management for the plugin indexer.

Loads settings from an optional indexer_config.yaml, then applies environment
variable overrides (a local .env file is honoured).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from .utils import ConfigError


DEFAULT_QUERY = "namespace Oxide.Plugins in:file language:C#"


@dataclass
class GitHubConfig:
    """GitHub API access and rate-limit behaviour."""
    api_url: str = "https://api.github.com"
    user_agent: str = "oxide-rust-plugins-indexer/1.0"
    timeout: float = 30.0
    per_page: int = 100
    max_pages: int = 10  # search API serves at most 1000 results per query
    secondary_max_attempts: int = 6
    secondary_backoff_step: float = 5.0
    secondary_backoff_cap: float = 120.0
    reset_margin: float = 1.5
    retry_after_default: float = 10.0
    network_max_retries: int = 3
    max_primary_wait: Optional[float] = None  # seconds; None waits for any reset


@dataclass
class AuthConfig:
    """Credentials: GitHub App installation first, personal token second."""
    token: Optional[str] = None
    app_id: Optional[str] = None
    installation_id: Optional[str] = None
    private_key_path: Optional[str] = None

    @property
    def app_configured(self) -> bool:
        return bool(self.app_id and self.installation_id and self.private_key_path)


@dataclass
class CrawlConfig:
    """Search crawl settings."""
    query: str = DEFAULT_QUERY
    continuous: bool = False
    cycle_delay_ms: int = 15 * 60 * 1000
    item_delay_ms: int = 200
    page_delay_ms: int = 1000
    checkpoint_every: int = 50
    language: str = "C#"
    repo_cache_ttl_hours: float = 24.0
    replace_edited_files: bool = False


@dataclass
class OutputConfig:
    """Where the published index and crawl state live."""
    dir: str = "output"
    index_file: str = "oxide_plugins.json"
    state_file: str = "state.json"

    @property
    def index_path(self) -> Path:
        return Path(self.dir) / self.index_file

    @property
    def state_path(self) -> Path:
        return Path(self.dir) / self.state_file


@dataclass
class RepoCrawlConfig:
    """Clone-based repository crawler settings."""
    temp_dir: str = "temp_repos"
    manual_repositories: str = "input/manual-repositories.json"
    output_file: str = "crawled_plugins.json"
    state_file: str = "crawler_state.json"
    clone_timeout: int = 300


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    file: str = "./logs/oxideindex.log"
    max_size_mb: int = 50
    backup_count: int = 5


_SECTIONS = {
    "github": GitHubConfig,
    "auth": AuthConfig,
    "crawl": CrawlConfig,
    "output": OutputConfig,
    "repo_crawl": RepoCrawlConfig,
    "logging": LoggingConfig,
}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """
    Main configuration container.

    Loads from indexer_config.yaml with environment variable overrides.
    """
    github: GitHubConfig = field(default_factory=GitHubConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    repo_crawl: RepoCrawlConfig = field(default_factory=RepoCrawlConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None, use_env: bool = True) -> "Config":
        """
        Load configuration.

        Args:
            config_path: Path to indexer_config.yaml. If None, default locations
                         are tried and defaults are used when none exists.
            use_env: Apply environment variable overrides.

        Returns:
            Config instance with loaded settings.
        """
        if use_env:
            load_dotenv()

        data: dict[str, Any] = {}
        if config_path is None:
            candidates = [
                Path("indexer_config.yaml"),
                Path("/etc/oxideindex/indexer_config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break

        if config_path is not None:
            config_path = Path(config_path)
            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            logger.info(f"Loading config from {config_path}")
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        else:
            logger.debug("No config file found, using defaults")

        config = cls._from_dict(data)
        if use_env:
            config._apply_env_overrides(os.environ)
        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary, ignoring unknown keys with a warning."""
        if not isinstance(data, dict):
            raise ConfigError("Config root must be a mapping")

        config = cls()
        for section, section_cls in _SECTIONS.items():
            values = data.get(section)
            if values is None:
                continue
            if not isinstance(values, dict):
                raise ConfigError(f"Section '{section}' must be a mapping")

            known = {f.name for f in fields(section_cls)}
            unknown = set(values) - known
            if unknown:
                logger.warning(f"Ignoring unknown keys in '{section}': {sorted(unknown)}")

            current = getattr(config, section)
            setattr(config, section, replace(current, **{k: v for k, v in values.items() if k in known}))

        return config

    def _apply_env_overrides(self, env: Any) -> None:
        """Apply environment variable overrides to configuration."""
        if env.get("GITHUB_API_URL"):
            self.github.api_url = env["GITHUB_API_URL"]

        # Credentials
        if env.get("GITHUB_TOKEN"):
            self.auth.token = env["GITHUB_TOKEN"]
        if env.get("GITHUB_APP_ID"):
            self.auth.app_id = env["GITHUB_APP_ID"]
        if env.get("GITHUB_APP_INSTALLATION_ID"):
            self.auth.installation_id = env["GITHUB_APP_INSTALLATION_ID"]
        if env.get("GITHUB_APP_PRIVATE_KEY_PATH"):
            self.auth.private_key_path = env["GITHUB_APP_PRIVATE_KEY_PATH"]

        # Crawl behaviour
        try:
            if env.get("SEARCH_QUERY"):
                self.crawl.query = env["SEARCH_QUERY"]
            if env.get("CONTINUOUS"):
                self.crawl.continuous = _parse_bool(env["CONTINUOUS"])
            if env.get("CYCLE_DELAY_MS"):
                self.crawl.cycle_delay_ms = int(env["CYCLE_DELAY_MS"])
            if env.get("ITEM_DELAY_MS"):
                self.crawl.item_delay_ms = int(env["ITEM_DELAY_MS"])
            if env.get("PAGE_DELAY_MS"):
                self.crawl.page_delay_ms = int(env["PAGE_DELAY_MS"])
            if env.get("CHECKPOINT_EVERY"):
                self.crawl.checkpoint_every = int(env["CHECKPOINT_EVERY"])
            if env.get("REPO_CACHE_TTL_HOURS"):
                self.crawl.repo_cache_ttl_hours = float(env["REPO_CACHE_TTL_HOURS"])
        except ValueError as e:
            raise ConfigError(f"Invalid numeric environment override: {e}") from e
        if env.get("REPLACE_EDITED_FILES"):
            self.crawl.replace_edited_files = _parse_bool(env["REPLACE_EDITED_FILES"])

        # Paths
        if env.get("OUTPUT_DIR"):
            self.output.dir = env["OUTPUT_DIR"]
        if env.get("REPO_CRAWL_TEMP_DIR"):
            self.repo_crawl.temp_dir = env["REPO_CRAWL_TEMP_DIR"]

        if env.get("LOG_LEVEL"):
            self.logging.level = env["LOG_LEVEL"].upper()

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.
        Empty list means configuration is valid.
        """
        errors = []

        if not 1 <= self.github.per_page <= 100:
            errors.append("github.per_page must be between 1 and 100")
        if not 1 <= self.github.max_pages <= 10:
            errors.append("github.max_pages must be between 1 and 10")
        if self.github.secondary_max_attempts < 1:
            errors.append("github.secondary_max_attempts must be at least 1")

        if not self.crawl.query.strip():
            errors.append("crawl.query cannot be empty")
        for name in ("cycle_delay_ms", "item_delay_ms", "page_delay_ms"):
            if getattr(self.crawl, name) < 0:
                errors.append(f"crawl.{name} cannot be negative")
        if self.crawl.checkpoint_every < 1:
            errors.append("crawl.checkpoint_every must be at least 1")
        if self.crawl.repo_cache_ttl_hours < 0:
            errors.append("crawl.repo_cache_ttl_hours cannot be negative")

        app_fields = [self.auth.app_id, self.auth.installation_id, self.auth.private_key_path]
        if any(app_fields) and not all(app_fields):
            errors.append(
                "GitHub App auth needs app_id, installation_id and private_key_path together"
            )

        return errors
