"""
Canonical protocol definitions for treesync.

The sync and merge engines depend on the shape of their collaborators, not
on concrete classes. Every collaborator contract lives here so stores,
predicates, evaluators and loggers can be swapped (or mocked in tests)
without touching the engines.

Architecture:
    ::

        protocols.py
        ├── SerializationSource  — backing reader for serialized references
        ├── SerializationStore   — maps live nodes to serialized references
        ├── LiveStore            — query + mutation API of the live tree
        ├── InclusionPredicate   — "is this node in scope?" oracle
        ├── FieldPredicate       — "is this field in scope?" oracle
        ├── Evaluator            — decides what to do with new/updated/orphan items
        ├── ConsistencyChecker   — invariant check before each item load
        ├── LoaderLogger         — tree-walk notifications
        └── MergeLogger          — per-item change notifications

Guardrails:
    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep protocols pure contracts; implementations go in stores/, sync/, merge/
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from treesync.core.models import (
    FieldValue,
    LiveNode,
    PredicateResult,
    SerializedField,
    SerializedItem,
    SerializedReference,
    TemplateDefinition,
    VersionKey,
)

if TYPE_CHECKING:
    from treesync.core.feedback import FeedbackSwitch
    from treesync.merge.templates import TemplateChangeList


# ---------------------------------------------------------------------------
# Serialized tree
# ---------------------------------------------------------------------------


@runtime_checkable
class SerializationSource(Protocol):
    """Reads serialized nodes by logical path."""

    def read_item(self, database: str, item_path: str) -> SerializedItem | None: ...

    def child_references(self, database: str, item_path: str, recursive: bool = False) -> list[SerializedReference]: ...


@runtime_checkable
class SerializationStore(SerializationSource, Protocol):
    """A serialization source that can also locate the reference of a live node."""

    def get_reference(self, node: LiveNode) -> SerializedReference | None: ...

    def get_reference_by_path(self, database: str, item_path: str) -> SerializedReference | None: ...


# ---------------------------------------------------------------------------
# Live tree
# ---------------------------------------------------------------------------


@runtime_checkable
class LiveStore(Protocol):
    """
    Query and mutation API of the live content store.

    Every mutation returns the updated ``LiveNode`` record. ``version=None``
    addresses shared fields; a ``VersionKey`` addresses one content version.
    """

    @property
    def feedback(self) -> FeedbackSwitch: ...

    def events_muted(self) -> AbstractContextManager[None]: ...

    def get_node(self, database: str, node_id: str) -> LiveNode | None: ...

    def get_children(self, node: LiveNode) -> list[LiveNode]: ...

    def get_template(self, database: str, template_id: str) -> TemplateDefinition | None: ...

    def create_node(
        self, database: str, *, node_id: str, name: str, template_id: str, parent_id: str
    ) -> LiveNode: ...

    def delete_node(self, database: str, node_id: str) -> None: ...

    def move_node(self, database: str, node_id: str, parent_id: str) -> LiveNode: ...

    def rename_node(self, database: str, node_id: str, name: str, branch_id: str) -> LiveNode: ...

    def change_template(self, database: str, node_id: str, template_id: str) -> LiveNode: ...

    def apply_template_changes(self, database: str, node_id: str, changes: TemplateChangeList) -> LiveNode: ...

    def add_version(self, database: str, node_id: str, version: VersionKey) -> LiveNode: ...

    def remove_version(self, database: str, node_id: str, version: VersionKey) -> LiveNode: ...

    def remove_all_versions(self, database: str, node_id: str) -> LiveNode: ...

    def set_field(
        self, database: str, node_id: str, field_id: str, value: FieldValue, version: VersionKey | None = None
    ) -> LiveNode: ...

    def reset_field(
        self, database: str, node_id: str, field_id: str, version: VersionKey | None = None
    ) -> LiveNode: ...

    def clear_caches(self, database: str, node_id: str) -> None: ...

    def deserialization_complete(self, database: str) -> None: ...


# ---------------------------------------------------------------------------
# Oracles and policy
# ---------------------------------------------------------------------------


@runtime_checkable
class InclusionPredicate(Protocol):
    """Decides whether a serialized reference or a live node is in scope."""

    def includes(self, node: SerializedReference | LiveNode) -> PredicateResult: ...


@runtime_checkable
class FieldPredicate(Protocol):
    def includes(self, field_id: str) -> PredicateResult: ...


@runtime_checkable
class Evaluator(Protocol):
    """Decides whether and how a computed reconciliation is applied."""

    def evaluate_new_serialized_item(self, item: SerializedItem) -> LiveNode | None: ...

    def evaluate_update(self, item: SerializedItem, existing: LiveNode) -> LiveNode | None: ...

    def evaluate_orphans(self, orphans: list[LiveNode]) -> None: ...


@runtime_checkable
class ConsistencyChecker(Protocol):
    """Stateful invariant check run before every item load of one sync run."""

    def is_consistent(self, item: SerializedItem) -> bool: ...

    def add_processed_item(self, item: SerializedItem) -> None: ...


# ---------------------------------------------------------------------------
# Logging callbacks
# ---------------------------------------------------------------------------


class LoaderLogger(Protocol):
    def begin_loading_tree(self, root: SerializedReference) -> None: ...

    def end_loading_tree(self, root: SerializedReference, items_processed: int, elapsed_ms: float) -> None: ...

    def skipped_item_present_in_serialization(
        self, reference: SerializedReference, predicate_name: str, store_name: str, justification: str
    ) -> None: ...

    def skipped_item_missing_in_serialization(self, reference: SerializedReference, store_name: str) -> None: ...

    def skipped_item(self, node: LiveNode, predicate_name: str, justification: str) -> None: ...


class MergeLogger(Protocol):
    def created_new_item(self, node: LiveNode) -> None: ...

    def moved_item_to_new_parent(self, new_parent: LiveNode, old_parent_id: str | None, node: LiveNode) -> None: ...

    def removing_orphaned_version(self, node: LiveNode, version: VersionKey) -> None: ...

    def renamed_item(self, node: LiveNode, old_name: str) -> None: ...

    def changed_branch_template(self, node: LiveNode, old_branch_id: str) -> None: ...

    def changed_template(self, node: LiveNode, old_template_id: str) -> None: ...

    def added_new_version(self, node: LiveNode, version: VersionKey) -> None: ...

    def skipped_missing_template_field(self, node: LiveNode, field: SerializedField) -> None: ...

    def wrote_blob_stream(self, node: LiveNode, field: SerializedField) -> None: ...

    def updated_changed_field_value(
        self, node: LiveNode, field: SerializedField, old_value: FieldValue | None
    ) -> None: ...

    def reset_field_that_did_not_exist_in_serialized(
        self, node: LiveNode, field_id: str, version: VersionKey | None
    ) -> None: ...

    def skipped_pasting_ignored_field(self, node: LiveNode, field: SerializedField) -> None: ...


__all__ = [
    "SerializationSource",
    "SerializationStore",
    "LiveStore",
    "InclusionPredicate",
    "FieldPredicate",
    "Evaluator",
    "ConsistencyChecker",
    "LoaderLogger",
    "MergeLogger",
]
