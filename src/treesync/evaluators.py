"""
Evaluators: the policy deciding what a sync does with each item it visits.

The loader computes *what* differs between the serialized and the live
tree; an evaluator decides *whether* to act on it.

Architecture:
    ::

        SerializedAsMasterEvaluator   disk is master: create, update, delete orphans
        NewItemsOnlyEvaluator         seed only: create missing items, never overwrite
"""

from __future__ import annotations

from treesync.core.logging import get_logger
from treesync.core.models import LiveNode, SerializedItem
from treesync.core.protocols import LiveStore
from treesync.merge.engine import ItemMergeEngine

logger = get_logger(__name__)


class SerializedAsMasterEvaluator:
    """
    Makes the live tree an exact copy of the serialized tree.

    New and existing items are reconciled with the merge engine; orphaned
    live items are deleted together with their descendants.
    """

    def __init__(self, merge_engine: ItemMergeEngine, live_store: LiveStore, allow_missing_fields: bool = False):
        self._merge_engine = merge_engine
        self._live_store = live_store
        self._allow_missing_fields = allow_missing_fields

    def evaluate_new_serialized_item(self, item: SerializedItem) -> LiveNode | None:
        logger.debug("evaluate_new", database=item.database_name, path=item.item_path)
        return self._merge_engine.reconcile(item, self._allow_missing_fields)

    def evaluate_update(self, item: SerializedItem, existing: LiveNode) -> LiveNode | None:
        return self._merge_engine.reconcile(item, self._allow_missing_fields)

    def evaluate_orphans(self, orphans: list[LiveNode]) -> None:
        for orphan in orphans:
            logger.warning("orphan_deleted", database=orphan.database, path=orphan.path, item_id=orphan.id)
            self._live_store.delete_node(orphan.database, orphan.id)
            self._live_store.clear_caches(orphan.database, orphan.id)


class NewItemsOnlyEvaluator:
    """Creates items missing from the live tree and leaves everything else alone."""

    def __init__(self, merge_engine: ItemMergeEngine, allow_missing_fields: bool = False):
        self._merge_engine = merge_engine
        self._allow_missing_fields = allow_missing_fields

    def evaluate_new_serialized_item(self, item: SerializedItem) -> LiveNode | None:
        return self._merge_engine.reconcile(item, self._allow_missing_fields)

    def evaluate_update(self, item: SerializedItem, existing: LiveNode) -> LiveNode | None:
        return None

    def evaluate_orphans(self, orphans: list[LiveNode]) -> None:
        for orphan in orphans:
            logger.info("orphan_ignored", database=orphan.database, path=orphan.path, item_id=orphan.id)


__all__ = ["SerializedAsMasterEvaluator", "NewItemsOnlyEvaluator"]
