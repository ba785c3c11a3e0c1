"""
Tests for the clone-based repository crawler.

Cloning is replaced by writing files into the target directory, so no git
or network access is needed.
"""

import json
import subprocess
from pathlib import Path

import pytest

from services.oxideindex import repo_crawler
from services.oxideindex.hasher import git_blob_sha
from services.oxideindex.models import RepositoryDescriptor
from services.oxideindex.output import PluginIndex
from services.oxideindex.repo_crawler import (
    CloneResult,
    RepositoryCrawler,
    find_plugin_files,
    parse_repository_urls,
)
from services.oxideindex.utils import CloneError


PLUGIN_SOURCE = b'namespace Oxide.Plugins\n{\n    [Info("Kits", "k1lly0u", "4.0.0")]\n    class Kits : RustPlugin {}\n}\n'


class TestHelpers:

    def test_find_plugin_files_skips_build_dirs(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "Kits.cs").write_text("x")
        (tmp_path / "bin").mkdir()
        (tmp_path / "bin" / "Gen.cs").write_text("x")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "Hook.cs").write_text("x")
        (tmp_path / "README.md").write_text("x")

        found = [p.relative_to(tmp_path).as_posix() for p in find_plugin_files(tmp_path)]
        assert found == ["src/Kits.cs"]

    def test_parse_repository_urls(self):
        names = parse_repository_urls([
            "https://github.com/alice/plugins",
            "https://github.com/bob/tools.git",
            "https://gitlab.com/carol/other",
            42,
        ])
        assert names == ["alice/plugins", "bob/tools"]


class TestScan:

    def test_scan_repository(self, tmp_path, config):
        repo_dir = tmp_path / "clone"
        (repo_dir / "plugins").mkdir(parents=True)
        (repo_dir / "plugins" / "Kits.cs").write_bytes(PLUGIN_SOURCE)
        (repo_dir / "Helper.cs").write_bytes(b"namespace Other {}")

        crawler = RepositoryCrawler(config)
        plugins, errors = crawler.scan_repository(
            repo_dir, RepositoryDescriptor.placeholder("alice/plugins")
        )

        assert errors == []
        assert len(plugins) == 1
        plugin = plugins[0]
        assert plugin.plugin_name == "Kits"
        assert plugin.plugin_author == "k1lly0u"
        assert plugin.file.path == "plugins/Kits.cs"
        assert plugin.file.sha == git_blob_sha(PLUGIN_SOURCE)
        assert plugin.file.html_url == "https://github.com/alice/plugins/blob/main/plugins/Kits.cs"


@pytest.fixture
def fake_clone(monkeypatch):
    """Replace git clone: alice/plugins gets one plugin file, bob/broken fails."""
    def clone(self, clone_url, repo_dir):
        if "bob/broken" in clone_url:
            raise CloneError("repository not found")
        repo_dir.mkdir(parents=True)
        (repo_dir / "Kits.cs").write_bytes(PLUGIN_SOURCE)
        return CloneResult(success=True, repo_path=repo_dir)

    monkeypatch.setattr(RepositoryCrawler, "clone_repository", clone)


class TestCrawl:

    def test_crawl_records_results(self, config, fake_clone, make_plugin):
        index = PluginIndex()
        index.add(make_plugin(full_name="alice/plugins"))
        index.write(config.output.index_path, "q")

        manual = config.repo_crawl.manual_repositories
        Path(manual).parent.mkdir(parents=True)
        Path(manual).write_text(json.dumps([
            "https://github.com/bob/broken",
            "https://github.com/alice/plugins",
        ]))

        crawler = RepositoryCrawler(config)
        stats = crawler.crawl()

        assert stats.total_found == 2
        assert stats.newly_processed == 2
        assert (stats.successful, stats.failed) == (1, 1)
        assert stats.plugins_found == 1
        assert stats.new_plugins == 1

        state = json.loads(crawler.state_path.read_text())
        processed = state["processed_repositories"]
        assert processed["alice/plugins"]["success"]
        assert processed["alice/plugins"]["plugins_count"] == 1
        assert not processed["bob/broken"]["success"]
        assert processed["bob/broken"]["errors"][0].startswith("Failed to crawl")
        assert state["total_repositories_processed"] == 2
        assert state["latest_session_statistics"]["repositories"]["failed"] == 1

        output = json.loads(crawler.output_path.read_text())
        assert output["count"] == 1
        assert output["items"][0]["file"]["path"] == "Kits.cs"

        assert not crawler.temp_dir.exists()

    def test_second_crawl_skips_processed(self, config, fake_clone, make_plugin):
        index = PluginIndex()
        index.add(make_plugin(full_name="alice/plugins"))
        index.write(config.output.index_path, "q")

        RepositoryCrawler(config).crawl()
        stats = RepositoryCrawler(config).crawl()

        assert stats.already_processed == 1
        assert stats.newly_processed == 0

    def test_no_repositories(self, config):
        stats = RepositoryCrawler(config).crawl()
        assert stats.total_found == 0

    def test_stop_during_clone_is_not_retried(self, config, make_plugin, monkeypatch):
        """A clone killed by shutdown ends the crawl and leaves the repository pending."""
        index = PluginIndex()
        index.add(make_plugin(full_name="alice/plugins"))
        index.write(config.output.index_path, "q")

        crawler = RepositoryCrawler(config)
        git_calls = []

        def killed_git(cmd, **kwargs):
            git_calls.append(cmd)
            crawler.stop()
            return subprocess.CompletedProcess(cmd, returncode=130, stdout="", stderr="interrupted")

        monkeypatch.setattr(repo_crawler.subprocess, "run", killed_git)
        stats = crawler.crawl()

        assert len(git_calls) == 1
        assert stats.newly_processed == 0
        state = json.loads(crawler.state_path.read_text())
        assert "alice/plugins" not in state["processed_repositories"]
        assert not crawler.temp_dir.exists()
