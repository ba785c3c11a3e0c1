"""
Tests for crawl state transitions and persistence.
"""

import json
from datetime import datetime, timezone

from services.oxideindex.state import SCHEMA_VERSION, CrawlState, StateStore


QUERY = "namespace Oxide.Plugins in:file language:C#"


class TestTransitions:
    """Test cursor movement."""

    def test_fresh_state(self):
        state = CrawlState.fresh(QUERY)
        assert (state.current_variant, state.current_page) == (0, 1)
        assert state.seen_keys == set()
        assert state.last_full_scan_at is None

    def test_next_page_and_variant(self):
        state = CrawlState.fresh(QUERY)
        state.next_page()
        state.next_page()
        assert state.current_page == 3

        state.next_variant()
        assert (state.current_variant, state.current_page) == (1, 1)

    def test_complete_cycle_resets(self):
        state = CrawlState(query=QUERY, current_variant=29, current_page=4)
        state.mark_seen("a/b#c.cs#1")
        state.repo_cache["a/b"] = {"repository": {}, "fetched_at": "2024-01-01T00:00:00.000Z"}

        state.complete_cycle(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))

        assert (state.current_variant, state.current_page) == (0, 1)
        assert not state.is_seen("a/b#c.cs#1")
        assert state.last_full_scan_at == "2024-05-01T12:00:00.000Z"
        assert "a/b" in state.repo_cache

    def test_cycle_complete_check(self):
        state = CrawlState(query=QUERY, current_variant=2)
        assert state.is_cycle_complete(2)
        assert not state.is_cycle_complete(3)


class TestStateStore:
    """Test loading and saving."""

    def test_save_and_load(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        state = CrawlState(query=QUERY, current_variant=3, current_page=7)
        state.mark_seen("b/b#x.cs#2")
        state.mark_seen("a/a#y.cs#1")
        store.save(state)

        raw = json.loads((tmp_path / "state.json").read_text())
        assert raw["seen_keys"] == ["a/a#y.cs#1", "b/b#x.cs#2"]
        assert raw["schema_version"] == SCHEMA_VERSION

        loaded = store.load(QUERY)
        assert (loaded.current_variant, loaded.current_page) == (3, 7)
        assert loaded.seen_keys == {"a/a#y.cs#1", "b/b#x.cs#2"}
        assert loaded.updated_at is not None

    def test_missing_file_gives_fresh(self, tmp_path):
        state = StateStore(tmp_path / "state.json").load(QUERY)
        assert (state.current_variant, state.current_page) == (0, 1)

    def test_corrupt_file_gives_fresh(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        state = StateStore(path).load(QUERY)
        assert state.current_variant == 0

    def test_invalid_cursor_gives_fresh(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "schema_version": SCHEMA_VERSION,
            "query": QUERY,
            "current_variant": 2,
            "current_page": 0,
        }))
        assert StateStore(path).load(QUERY).current_variant == 0

    def test_old_schema_gives_fresh(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": "1.0",
            "query": QUERY,
            "current_variant": 5,
            "current_page": 2,
        }))
        assert StateStore(path).load(QUERY).current_variant == 0

    def test_query_change_keeps_repo_cache(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        state = CrawlState(query="old query", current_variant=4)
        state.repo_cache["alice/plugins"] = {"repository": {"full_name": "alice/plugins"}}
        store.save(state)

        loaded = store.load(QUERY)
        assert loaded.query == QUERY
        assert loaded.current_variant == 0
        assert "alice/plugins" in loaded.repo_cache

    def test_delete(self, tmp_path):
        store = StateStore(tmp_path / "state.json")
        assert not store.delete()
        store.save(CrawlState.fresh(QUERY))
        assert store.delete()
        assert not store.exists()
