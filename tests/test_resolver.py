"""
Tests for repository resolution and caching.
"""

import pytest

from services.oxideindex.resolver import RepositoryResolver, split_full_name


class FakeRepos:
    def __init__(self):
        self.calls = []

    def get_repository(self, full_name):
        self.calls.append(full_name)
        owner, name = full_name.split("/")
        return {
            "full_name": full_name,
            "name": name,
            "html_url": f"https://github.com/{full_name}",
            "description": "Rust plugins",
            "owner": {"login": owner, "html_url": f"https://github.com/{owner}"},
            "default_branch": "master",
            "stargazers_count": len(self.calls),
        }


class TestRepositoryResolver:

    def test_fetched_once_per_repository(self, clock):
        source = FakeRepos()
        cache = {}
        resolver = RepositoryResolver(source, cache, clock=clock)

        first = resolver.resolve("alice/plugins")
        second = resolver.resolve("alice/plugins")

        assert source.calls == ["alice/plugins"]
        assert first == second
        assert first.owner_login == "alice"
        assert first.default_branch == "master"
        assert (resolver.hits, resolver.misses) == (1, 1)
        assert cache["alice/plugins"]["fetched_at"].endswith("Z")

    def test_cache_shared_across_resolvers(self, clock):
        source = FakeRepos()
        cache = {}
        RepositoryResolver(source, cache, clock=clock).resolve("alice/plugins")
        RepositoryResolver(source, cache, clock=clock).resolve("alice/plugins")
        assert len(source.calls) == 1

    def test_expired_entry_refetched(self, clock):
        source = FakeRepos()
        resolver = RepositoryResolver(source, {}, ttl_hours=1, clock=clock)

        resolver.resolve("alice/plugins")
        clock.now += 2 * 3600
        refreshed = resolver.resolve("alice/plugins")

        assert len(source.calls) == 2
        assert refreshed.stargazers_count == 2

    def test_zero_ttl_never_expires(self, clock):
        source = FakeRepos()
        resolver = RepositoryResolver(source, {}, ttl_hours=0, clock=clock)
        resolver.resolve("alice/plugins")
        clock.now += 365 * 24 * 3600
        resolver.resolve("alice/plugins")
        assert len(source.calls) == 1

    def test_invalid_name(self, clock):
        resolver = RepositoryResolver(FakeRepos(), {}, clock=clock)
        with pytest.raises(ValueError):
            resolver.resolve("not-a-repo")
        with pytest.raises(ValueError):
            split_full_name("a/b/c")
