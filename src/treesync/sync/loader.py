"""
Tree sync engine: walk the serialized tree and converge the live tree to it.

The loader is the heart of a sync run. It walks the serialized tree depth
first, asks the inclusion predicate whether each node is in scope, hands
every in-scope item to the evaluator (which decides whether and how to
reconcile it), detects orphaned live children and defers failures for a
replay once the whole walk has completed.

Manifesto:
    - **Excluded means untouched:** an excluded node is never loaded and its
      children are never visited
    - **Failure isolation:** a failing item or subtree is queued for replay;
      its siblings keep loading
    - **Errors never delete:** an item that failed to load is never treated
      as an orphan
    - **One fatal kind:** a consistency violation unwinds the whole call

Architecture:
    ::

        load_all(roots)
          │  events muted for the batch
          ├── load_tree(root) ──► _load_item(root)
          │                   └── _load_tree_recursive(root)
          │                         ├── predicate? no → log skip, stop
          │                         ├── _load_one_level(node)
          │                         │     ├── live children → orphan candidates
          │                         │     ├── serialized children → _load_item
          │                         │     │     (standard values → structural retry)
          │                         │     └── evaluator.evaluate_orphans(rest)
          │                         ├── children ("templates" first) → recurse
          │                         └── retry_structural(this level)
          ├── retry_queue.retry_all(item replay, subtree re-walk)
          └── live_store.deserialization_complete(database)

Guardrails:
    ❌ DON'T: Catch a consistency violation and queue it
    ✅ DO: Re-raise when ``is_fatal(exc)``; queue everything else

    ❌ DON'T: Hold the feedback switch with manual set/reset
    ✅ DO: ``with live_store.feedback.suppressed():`` so it is restored on every exit

Example:
    >>> engine = TreeSyncEngine(serialization_store, live_store, predicate, evaluator)
    >>> report = engine.load_all(roots, RetryQueue(), DuplicateIdConsistencyChecker())
    >>> report.ok
    True
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import partial

from treesync.core.errors import ErrorKind, SyncError, is_fatal
from treesync.core.logging import LogContext, get_logger
from treesync.core.models import STANDARD_VALUES_NAME, LiveNode, SerializedItem, SerializedReference
from treesync.core.protocols import (
    ConsistencyChecker,
    Evaluator,
    InclusionPredicate,
    LiveStore,
    LoaderLogger,
    SerializationStore,
)
from treesync.core.settings import SyncSettings
from treesync.sync.logger import StructlogLoaderLogger
from treesync.sync.retry import ReplayReport, RetryQueue

logger = get_logger(__name__)


class ItemLoadStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ItemLoadResult:
    """Outcome of loading one serialized item."""

    status: ItemLoadStatus
    node: LiveNode | None = None

    @classmethod
    def success(cls, node: LiveNode | None) -> ItemLoadResult:
        return cls(ItemLoadStatus.SUCCESS, node)

    @classmethod
    def skipped(cls) -> ItemLoadResult:
        return cls(ItemLoadStatus.SKIPPED)


class TreeSyncEngine:
    """
    Predicate-filtered, depth-first loader of serialized trees.

    Args:
        serialization_store: Source of serialized references
        live_store: Live store the evaluator mutates
        predicate: Inclusion oracle for serialized references and live nodes
        evaluator: Decides what to do with new, updated and orphaned items
        logger: Tree-walk notifications (defaults to structlog)
        settings: Walk tuning (template-first segment, depth guard)
    """

    def __init__(
        self,
        serialization_store: SerializationStore,
        live_store: LiveStore,
        predicate: InclusionPredicate,
        evaluator: Evaluator,
        logger: LoaderLogger | None = None,
        settings: SyncSettings | None = None,
    ):
        for name, value in (
            ("serialization_store", serialization_store),
            ("live_store", live_store),
            ("predicate", predicate),
            ("evaluator", evaluator),
        ):
            if value is None:
                raise ValueError(f"{name} is required")

        self._serialization_store = serialization_store
        self._live_store = live_store
        self._predicate = predicate
        self._evaluator = evaluator
        self._logger = logger or StructlogLoaderLogger()
        self._settings = settings or SyncSettings()
        self._items_processed = 0

    @property
    def items_processed(self) -> int:
        """Items handed to the predicate during the last ``load_tree``."""
        return self._items_processed

    @property
    def _predicate_name(self) -> str:
        return type(self._predicate).__name__

    @property
    def _store_name(self) -> str:
        return type(self._serialization_store).__name__

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def load_all(
        self,
        roots: Sequence[SerializedReference],
        retry_queue: RetryQueue,
        consistency_checker: ConsistencyChecker,
        on_root_loaded: Callable[[SerializedReference], None] | None = None,
    ) -> ReplayReport:
        """
        Load every root in order, then replay queued failures once.

        Change notifications of the live store are muted while the roots
        load. Returns the replay report; failures left in it have already
        been logged.

        Raises:
            ValueError: if ``roots`` is empty or an argument is missing
            SyncError: kind CONSISTENCY if the consistency checker rejects an item
        """
        if roots is None:
            raise ValueError("roots is required")
        roots = list(roots)
        if not roots:
            raise ValueError("No root items were passed")
        if retry_queue is None:
            raise ValueError("retry_queue is required")

        with self._live_store.events_muted():
            for root in roots:
                self.load_tree(root, retry_queue, consistency_checker)
                if on_root_loaded is not None:
                    on_root_loaded(root)

        report = retry_queue.retry_all(
            self._replay_item,
            partial(self._load_tree_recursive, retry_queue=retry_queue, consistency_checker=None),
        )

        self._live_store.deserialization_complete(roots[0].database_name)
        return report

    def load_tree(
        self,
        root: SerializedReference,
        retry_queue: RetryQueue,
        consistency_checker: ConsistencyChecker,
    ) -> None:
        """
        Load ``root`` and everything below it.

        Raises:
            ValueError: if an argument is missing
            SyncError: kind CONSISTENCY if the consistency checker rejects an item
        """
        if root is None:
            raise ValueError("root is required")
        if retry_queue is None:
            raise ValueError("retry_queue is required")
        if consistency_checker is None:
            raise ValueError("consistency_checker is required")

        self._items_processed = 0
        started = time.perf_counter()
        self._logger.begin_loading_tree(root)

        with LogContext(database=root.database_name, root=root.item_path):
            included = self._predicate.includes(root)
            if not included.is_included:
                self._logger.skipped_item_present_in_serialization(
                    root, self._predicate_name, self._store_name, included.justification or ""
                )
            else:
                # The recursive walk only loads children; the root is loaded here.
                root_item = root.get_item()
                if root_item is not None:
                    try:
                        self._load_item(root_item, consistency_checker)
                    except Exception as e:
                        if is_fatal(e):
                            raise
                        retry_queue.add_item_retry(root_item, e)

                self._load_tree_recursive(root, retry_queue, consistency_checker)

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._logger.end_loading_tree(root, self._items_processed, elapsed_ms)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _load_tree_recursive(
        self,
        reference: SerializedReference,
        retry_queue: RetryQueue,
        consistency_checker: ConsistencyChecker | None,
        depth: int = 0,
    ) -> None:
        included = self._predicate.includes(reference)
        if not included.is_included:
            self._logger.skipped_item_present_in_serialization(
                reference, self._predicate_name, self._store_name, included.justification or ""
            )
            return

        try:
            if depth > self._settings.max_depth:
                raise SyncError(
                    f"Tree walk exceeded maximum depth {self._settings.max_depth} at {reference.item_path}",
                    kind=ErrorKind.DEPTH_EXCEEDED,
                ).with_context(database=reference.database_name, path=reference.item_path)

            self._load_one_level(reference, retry_queue, consistency_checker)

            children = reference.get_child_references(False)
            if children:
                for child in self._templates_first(children):
                    self._load_tree_recursive(child, retry_queue, consistency_checker, depth + 1)

                # A child that failed because a sibling defines its base state
                # can succeed now that every sibling has been attempted.
                retry_queue.retry_structural(_level_key(reference), partial(self._load_item, consistency_checker=None))
        except Exception as e:
            if is_fatal(e):
                raise
            retry_queue.add_tree_retry(reference, e)

    def _templates_first(self, children: list[SerializedReference]) -> list[SerializedReference]:
        if len(children) < 2:
            return children
        segment = self._settings.templates_segment.lower()
        for index, child in enumerate(children):
            if child.item_path.lower().endswith(segment):
                if index > 0:
                    children = list(children)
                    children.insert(0, children.pop(index))
                break
        return children

    def _load_one_level(
        self,
        reference: SerializedReference,
        retry_queue: RetryQueue,
        consistency_checker: ConsistencyChecker | None,
    ) -> None:
        item = reference.get_item()
        if item is None:
            self._logger.skipped_item_missing_in_serialization(reference, self._store_name)
            return

        orphan_candidates: dict[str, LiveNode] = {}

        live_root = self._live_store.get_node(item.database_name, item.id)
        if live_root is not None:
            for live_child in self._live_store.get_children(live_root):
                included = self._predicate.includes(live_child)
                if not included.is_included:
                    self._logger.skipped_item(live_child, self._predicate_name, included.justification or "")
                elif live_child.name != STANDARD_VALUES_NAME:
                    orphan_candidates[live_child.id] = live_child

        for child_ref in reference.get_child_references(False):
            child = None
            try:
                child = child_ref.get_item()
                if child is None:
                    continue

                if child.is_standard_values:
                    orphan_candidates.pop(child.id, None)
                    retry_queue.add_structural_retry(_level_key(reference), child)
                    continue

                result = self._load_item(child, consistency_checker)
                if result.node is not None:
                    orphan_candidates.pop(result.node.id, None)

                    # Nothing serialized below this child: the walk will not
                    # descend into it, so its live children are judged here.
                    if not child.get_child_references(False):
                        for live_child in self._live_store.get_children(result.node):
                            if live_child.name == STANDARD_VALUES_NAME:
                                continue
                            if self._predicate.includes(live_child).is_included:
                                orphan_candidates[live_child.id] = live_child
                elif result.status is ItemLoadStatus.SKIPPED:
                    orphan_candidates.pop(child.id, None)
            except Exception as e:
                if is_fatal(e):
                    raise
                if child is None:
                    # Unreadable on disk: its live counterpart is only known by path.
                    retry_queue.add_item_retry(child_ref, e)
                    for live_id, live_child in list(orphan_candidates.items()):
                        if live_child.path.lower() == child_ref.item_path.lower():
                            del orphan_candidates[live_id]
                else:
                    retry_queue.add_item_retry(child, e)
                    orphan_candidates.pop(child.id, None)

        if orphan_candidates:
            with self._live_store.feedback.suppressed():
                self._evaluator.evaluate_orphans(list(orphan_candidates.values()))

    def _load_item(self, item: SerializedItem, consistency_checker: ConsistencyChecker | None) -> ItemLoadResult:
        if item is None:
            raise ValueError("item is required")

        if consistency_checker is not None:
            if not consistency_checker.is_consistent(item):
                raise SyncError.consistency_violation(
                    "Consistency check failed - aborting loading.", path=item.item_path, item_id=item.id
                )
            consistency_checker.add_processed_item(item)

        with self._live_store.feedback.suppressed():
            self._items_processed += 1

            included = self._predicate.includes(item)
            if not included.is_included:
                self._logger.skipped_item_present_in_serialization(
                    item, self._predicate_name, self._store_name, included.justification or ""
                )
                return ItemLoadResult.skipped()

            existing = self._live_store.get_node(item.database_name, item.id)
            if existing is None:
                updated = self._evaluator.evaluate_new_serialized_item(item)
            else:
                updated = self._evaluator.evaluate_update(item, existing)

            return ItemLoadResult.success(updated if updated is not None else existing)

    def _replay_item(self, reference: SerializedReference) -> ItemLoadResult:
        item = reference.get_item()
        if item is None:
            raise SyncError(
                f"{reference.database_name}:{reference.item_path} no longer exists in serialization",
                kind=ErrorKind.INVALID_SERIALIZATION,
            ).with_context(database=reference.database_name, path=reference.item_path)
        return self._load_item(item, None)


def _level_key(reference: SerializedReference) -> str:
    return f"{reference.database_name}:{reference.item_path}"


__all__ = ["ItemLoadStatus", "ItemLoadResult", "TreeSyncEngine"]
