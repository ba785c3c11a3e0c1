"""
Published index merging and writing.

The index is an in-memory map keyed by identity triple, seeded from the
previously published file, merged with new entries and written back
atomically in a deterministic order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from .models import IndexedPlugin
from .utils import atomic_write_json, iso_timestamp, parse_timestamp, read_json


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _indexed_at(plugin: IndexedPlugin) -> datetime:
    try:
        return parse_timestamp(plugin.indexed_at)
    except (TypeError, ValueError):
        return _EPOCH


def sort_plugins(plugins: Iterable[IndexedPlugin]) -> list[IndexedPlugin]:
    """Newest indexed_at first, ties broken by repository, path and sha."""
    ordered = sorted(
        plugins,
        key=lambda p: (p.repository.full_name, p.file.path, p.file.sha),
    )
    ordered.sort(key=_indexed_at, reverse=True)
    return ordered


class PluginIndex:
    """Deduplicating collection of published index entries."""

    def __init__(self, replace_edited_files: bool = False):
        self.replace_edited_files = replace_edited_files
        self._items: dict[str, IndexedPlugin] = {}
        self._by_location: dict[str, str] = {}

    @classmethod
    def load(cls, path: Path | str, replace_edited_files: bool = False) -> "PluginIndex":
        """
        Seed the index from a published file.

        A missing or corrupt file gives an empty index; entries that cannot be
        parsed are dropped individually.
        """
        index = cls(replace_edited_files=replace_edited_files)
        path = Path(path)
        if not path.exists():
            logger.info(f"No existing index at {path}")
            return index

        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read existing index {path} ({e}), starting empty")
            return index

        raw_items = data.get("items") if isinstance(data, dict) else None
        dropped = 0
        for raw in raw_items or []:
            try:
                index.add(IndexedPlugin.from_dict(raw))
            except (KeyError, TypeError, ValueError):
                dropped += 1

        if dropped:
            logger.warning(f"Dropped {dropped} malformed entries from {path}")
        logger.info(f"Loaded {len(index)} existing entries from {path}")
        return index

    def add(self, plugin: IndexedPlugin) -> bool:
        """Merge an entry. Returns True when it was not already present."""
        key = plugin.identity_key
        if key in self._items:
            return False

        if self.replace_edited_files:
            previous = self._by_location.get(plugin.location_key)
            if previous is not None and previous in self._items:
                if _indexed_at(plugin) < _indexed_at(self._items[previous]):
                    logger.debug(f"Keeping newer version of {plugin.location_key}")
                    return False
                logger.debug(f"Replacing edited file {plugin.location_key}")
                del self._items[previous]

        self._items[key] = plugin
        self._by_location[plugin.location_key] = key
        return True

    def contains(self, key: str) -> bool:
        return key in self._items

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        return len(self._items)

    def items_sorted(self) -> list[IndexedPlugin]:
        return sort_plugins(self._items.values())

    def repositories(self) -> set[str]:
        return {p.repository.full_name for p in self._items.values()}

    def to_payload(self, query: str, generated_at: Optional[datetime] = None) -> dict[str, Any]:
        items = self.items_sorted()
        return {
            "generated_at": iso_timestamp(generated_at),
            "query": query,
            "count": len(items),
            "items": [p.to_dict() for p in items],
        }

    def write(self, path: Path | str, query: str, generated_at: Optional[datetime] = None) -> None:
        atomic_write_json(path, self.to_payload(query, generated_at))
        logger.info(f"Wrote {len(self)} entries to {path}")


class CheckpointPolicy:
    """
    Decide when accumulated results are flushed.

    A flush is due at every Nth processed item, but only when something new
    was merged since the previous flush.
    """

    def __init__(self, every: int = 50):
        self.every = max(1, every)
        self._flushed_new = 0
        self._new_entries = 0

    def record(self, new_entries: int) -> None:
        self._new_entries = new_entries

    @property
    def dirty(self) -> bool:
        return self._new_entries > self._flushed_new

    def should_flush(self, processed: int, new_entries: int) -> bool:
        self._new_entries = new_entries
        return processed > 0 and processed % self.every == 0 and self.dirty

    def mark_flushed(self, new_entries: Optional[int] = None) -> None:
        if new_entries is not None:
            self._new_entries = new_entries
        self._flushed_new = self._new_entries
