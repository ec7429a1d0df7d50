"""Duplicate-identity consistency check for one sync run.

Two serialized items claiming the same id at different paths cannot both be
applied: whichever loads second would silently move or overwrite the first.
The checker remembers every item processed in the run and rejects such a
duplicate, which aborts the run.
"""

from __future__ import annotations

from treesync.core.logging import get_logger
from treesync.core.models import SerializedItem

logger = get_logger(__name__)


class DuplicateIdConsistencyChecker:
    """Flags an item whose id was already processed at another location."""

    def __init__(self) -> None:
        self._seen: dict[tuple[str, str], str] = {}

    def is_consistent(self, item: SerializedItem) -> bool:
        existing_path = self._seen.get((item.database_name, item.id))
        if existing_path is None or existing_path == item.item_path:
            return True

        logger.error(
            "duplicate_item_id",
            database=item.database_name,
            item_id=item.id,
            path=item.item_path,
            existing_path=existing_path,
        )
        return False

    def add_processed_item(self, item: SerializedItem) -> None:
        self._seen[(item.database_name, item.id)] = item.item_path

    @property
    def processed_count(self) -> int:
        return len(self._seen)

    def reset(self) -> None:
        self._seen.clear()


__all__ = ["DuplicateIdConsistencyChecker"]
