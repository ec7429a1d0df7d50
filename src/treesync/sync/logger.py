"""Default ``LoaderLogger``: tree-walk notifications as structlog events."""

from __future__ import annotations

from treesync.core.logging import get_logger
from treesync.core.models import LiveNode, SerializedReference


class StructlogLoaderLogger:
    def __init__(self, logger=None):
        self._log = logger or get_logger("treesync.sync")

    def begin_loading_tree(self, root: SerializedReference) -> None:
        self._log.info("tree_load_started", database=root.database_name, root=root.item_path)

    def end_loading_tree(self, root: SerializedReference, items_processed: int, elapsed_ms: float) -> None:
        self._log.info(
            "tree_load_completed",
            database=root.database_name,
            root=root.item_path,
            items_processed=items_processed,
            elapsed_ms=round(elapsed_ms, 2),
        )

    def skipped_item_present_in_serialization(
        self, reference: SerializedReference, predicate_name: str, store_name: str, justification: str
    ) -> None:
        self._log.info(
            "item_skipped_excluded",
            database=reference.database_name,
            path=reference.item_path,
            predicate=predicate_name,
            store=store_name,
            justification=justification,
        )

    def skipped_item_missing_in_serialization(self, reference: SerializedReference, store_name: str) -> None:
        self._log.warning(
            "item_skipped_missing",
            database=reference.database_name,
            path=reference.item_path,
            store=store_name,
        )

    def skipped_item(self, node: LiveNode, predicate_name: str, justification: str) -> None:
        self._log.debug(
            "live_item_skipped",
            database=node.database,
            path=node.path,
            predicate=predicate_name,
            justification=justification,
        )


__all__ = ["StructlogLoaderLogger"]
