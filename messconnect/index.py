"""
Per-entity-type id index.

The key-value store cannot enumerate records, so every indexed entity type
keeps an ordered list of its live ids. The index is what "list all" reads.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from messconnect.kv import KeyValueStore

DEFAULT_PAGE_LIMIT = 50
_SCAN_BATCH = 500


def _parse_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        offset = int(cursor)
    except ValueError:
        raise ValueError(f"Invalid cursor: {cursor!r}")
    if offset < 0:
        raise ValueError(f"Invalid cursor: {cursor!r}")
    return offset


class Index:
    """Ordered, duplicate-free collection of ids stored under `name`."""

    def __init__(self, store: KeyValueStore, name: str):
        self.store = store
        self.name = name

    def add(self, item_id: str) -> bool:
        return self.store.index_add(self.name, [item_id]) > 0

    def add_many(self, item_ids: List[str]) -> int:
        return self.store.index_add(self.name, list(item_ids))

    def remove(self, item_id: str) -> bool:
        return self.store.index_remove(self.name, [item_id]) > 0

    def remove_many(self, item_ids: List[str]) -> int:
        return self.store.index_remove(self.name, list(item_ids))

    def page(
        self, cursor: Optional[str] = None, limit: int = DEFAULT_PAGE_LIMIT
    ) -> Tuple[List[str], Optional[str]]:
        """
        Return up to `limit` ids starting at `cursor` and the cursor for the
        next page, or None when this page reaches the end.
        """
        if limit <= 0:
            raise ValueError("limit must be positive")
        offset = _parse_cursor(cursor)
        # Fetch one extra id to know whether another page exists.
        ids = self.store.index_range(self.name, offset, limit + 1)
        if len(ids) > limit:
            return ids[:limit], str(offset + limit)
        return ids, None

    def list_all(self) -> List[str]:
        ids: List[str] = []
        cursor: Optional[str] = None
        while True:
            batch, cursor = self.page(cursor, _SCAN_BATCH)
            ids.extend(batch)
            if cursor is None:
                return ids

    def count(self) -> int:
        return self.store.index_size(self.name)

    def clear(self) -> None:
        self.store.index_clear(self.name)
