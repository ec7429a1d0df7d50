"""
Read-through node cache for live stores.

Live stores keep recently read nodes in an ``ItemCache`` keyed by
``database:id``. The cache is normally invalidated by the store's change
notifications; while notifications are muted for a sync batch, whoever
mutates a node is responsible for evicting it with ``remove_item``.

Examples:
    >>> cache = ItemCache(max_size=1000)
    >>> cache.set(ItemCache.key("master", "a1"), "node")
    >>> cache.get("master:a1")
    'node'
    >>> cache.remove_item("master", "a1")
    >>> "master:a1" in cache
    False
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any


class ItemCache:
    """Bounded LRU of node snapshots; the least recently read entry goes first."""

    def __init__(self, *, max_size: int = 10_000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._entries: OrderedDict[str, Any] = OrderedDict()
        self._max_size = max_size

    @staticmethod
    def key(database: str, item_id: str) -> str:
        return f"{database}:{item_id}"

    def get(self, key: str) -> Any | None:
        value = self._entries.get(key)
        if value is not None:
            self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def remove_item(self, database: str, item_id: str) -> None:
        self._entries.pop(self.key(database, item_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
