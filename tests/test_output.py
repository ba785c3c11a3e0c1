"""
Tests for index merging, ordering and atomic writes.
"""

import json
from datetime import datetime, timezone

from services.oxideindex.output import CheckpointPolicy, PluginIndex


GENERATED_AT = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestPluginIndex:
    """Test dedup and ordering."""

    def test_identity_dedup(self, make_plugin):
        index = PluginIndex()
        assert index.add(make_plugin())
        assert not index.add(make_plugin(indexed_at="2025-01-01T00:00:00.000Z"))
        assert len(index) == 1
        assert "alice/plugins#Kits.cs#abc123" in index

    def test_new_sha_is_new_entry(self, make_plugin):
        index = PluginIndex()
        index.add(make_plugin(sha="v1"))
        index.add(make_plugin(sha="v2"))
        assert len(index) == 2

    def test_replace_edited_files(self, make_plugin):
        index = PluginIndex(replace_edited_files=True)
        index.add(make_plugin(sha="v1"))
        index.add(make_plugin(sha="v2"))
        assert len(index) == 1
        assert index.contains("alice/plugins#Kits.cs#v2")

    def test_replace_keeps_newest_version(self, make_plugin):
        index = PluginIndex(replace_edited_files=True)
        index.add(make_plugin(sha="new", indexed_at="2024-06-01T00:00:00.000Z"))
        assert not index.add(make_plugin(sha="old", indexed_at="2024-01-01T00:00:00.000Z"))
        assert [p.file.sha for p in index.items_sorted()] == ["new"]

    def test_reload_with_replace_keeps_newest_version(self, tmp_path, make_plugin):
        path = tmp_path / "oxide_plugins.json"
        index = PluginIndex()
        index.add(make_plugin(sha="old", indexed_at="2024-01-01T00:00:00.000Z"))
        index.add(make_plugin(sha="new", indexed_at="2024-06-01T00:00:00.000Z"))
        index.write(path, "q")

        reloaded = PluginIndex.load(path, replace_edited_files=True)

        assert [p.file.sha for p in reloaded.items_sorted()] == ["new"]

    def test_sort_order(self, make_plugin):
        index = PluginIndex()
        index.add(make_plugin(full_name="zed/repo", path="A.cs", indexed_at="2024-05-01T00:00:00.000Z"))
        index.add(make_plugin(full_name="bob/repo", path="B.cs", indexed_at="2024-05-01T00:00:00.000Z"))
        index.add(make_plugin(full_name="bob/repo", path="A.cs", indexed_at="2024-05-01T00:00:00.000Z"))
        index.add(make_plugin(full_name="old/repo", path="Z.cs", indexed_at="2023-01-01T00:00:00.000Z"))
        index.add(make_plugin(full_name="new/repo", path="Z.cs", indexed_at="2024-12-31T00:00:00.000Z"))

        order = [(p.repository.full_name, p.file.path) for p in index.items_sorted()]
        assert order == [
            ("new/repo", "Z.cs"),
            ("bob/repo", "A.cs"),
            ("bob/repo", "B.cs"),
            ("zed/repo", "A.cs"),
            ("old/repo", "Z.cs"),
        ]


class TestWrite:
    """Test the published file."""

    def test_payload_shape(self, tmp_path, make_plugin):
        index = PluginIndex()
        index.add(make_plugin())
        path = tmp_path / "out" / "oxide_plugins.json"
        index.write(path, "q", generated_at=GENERATED_AT)

        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload["generated_at"] == "2024-06-01T00:00:00.000Z"
        assert payload["query"] == "q"
        assert payload["count"] == 1
        item = payload["items"][0]
        assert item["plugin_name"] == "Kits"
        assert item["file"]["sha"] == "abc123"
        assert item["repository"]["full_name"] == "alice/plugins"

    def test_no_temp_files_left(self, tmp_path, make_plugin):
        index = PluginIndex()
        index.add(make_plugin())
        index.write(tmp_path / "oxide_plugins.json", "q")
        assert [p.name for p in tmp_path.iterdir()] == ["oxide_plugins.json"]

    def test_rewrite_is_identical(self, tmp_path, make_plugin):
        path = tmp_path / "oxide_plugins.json"
        index = PluginIndex()
        index.add(make_plugin(path="B.cs"))
        index.add(make_plugin(path="A.cs"))
        index.write(path, "q", generated_at=GENERATED_AT)
        first = path.read_bytes()

        reloaded = PluginIndex.load(path)
        reloaded.write(path, "q", generated_at=GENERATED_AT)
        assert path.read_bytes() == first

    def test_load_missing_and_corrupt(self, tmp_path):
        assert len(PluginIndex.load(tmp_path / "missing.json")) == 0

        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("[[[")
        assert len(PluginIndex.load(corrupt)) == 0

    def test_load_drops_malformed_entries(self, tmp_path, make_plugin):
        path = tmp_path / "oxide_plugins.json"
        path.write_text(json.dumps({
            "items": [make_plugin().to_dict(), {"plugin_name": "broken"}],
        }))
        assert len(PluginIndex.load(path)) == 1


class TestCheckpointPolicy:

    def test_flush_every_n_with_new_entries(self):
        policy = CheckpointPolicy(every=50)
        assert not policy.should_flush(49, 5)
        assert policy.should_flush(50, 5)
        policy.mark_flushed(5)
        assert not policy.dirty
        assert not policy.should_flush(100, 5)
        assert policy.should_flush(150, 6)

    def test_no_flush_without_new_entries(self):
        policy = CheckpointPolicy(every=50)
        assert not policy.should_flush(50, 0)
        assert not policy.dirty
