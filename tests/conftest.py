"""
Shared fixtures for the indexer tests.
"""

import pytest

from services.oxideindex.config import Config
from services.oxideindex.models import FileDescriptor, IndexedPlugin, RepositoryDescriptor


class FakeClock:
    """Clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Defaults with every path under tmp_path and no pacing delays."""
    config = Config()
    config.output.dir = str(tmp_path / "output")
    config.crawl.item_delay_ms = 0
    config.crawl.page_delay_ms = 0
    config.repo_crawl.temp_dir = str(tmp_path / "temp_repos")
    config.repo_crawl.manual_repositories = str(tmp_path / "input" / "manual-repositories.json")
    config.logging.file = str(tmp_path / "logs" / "oxideindex.log")
    return config


@pytest.fixture
def make_plugin():
    """Factory for IndexedPlugin entries."""
    def factory(
        full_name="alice/plugins",
        path="Kits.cs",
        sha="abc123",
        indexed_at="2024-05-01T12:00:00.000Z",
        name=None,
    ):
        repository = RepositoryDescriptor.placeholder(full_name)
        return IndexedPlugin(
            plugin_name=name or path.rsplit("/", 1)[-1][:-3],
            plugin_author=repository.owner_login,
            language="C#",
            file=FileDescriptor(
                path=path,
                html_url=f"https://github.com/{full_name}/blob/main/{path}",
                raw_url=f"https://raw.githubusercontent.com/{full_name}/main/{path}",
                sha=sha,
                size=100,
            ),
            repository=repository,
            indexed_at=indexed_at,
        )
    return factory
