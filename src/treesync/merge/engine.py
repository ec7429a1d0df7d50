"""
Item merge engine: reconcile one serialized item into one live node.

The engine applies the desired state of a single ``SerializedItem`` to the
live store. Structural changes come first (create, move, retemplate,
rename); fine-grained patching follows (shared fields, then every content
version), and live state the serialized item does not describe is pruned
(fields reset to their template default, versions removed).

Manifesto:
    - **Serialized state wins:** the live node is made to match the item, never the reverse
    - **Idempotent:** a second reconcile of the same item changes nothing and logs nothing
    - **No half-created nodes:** a failure while populating a new node deletes it
    - **Caches follow writes:** every mutation evicts the node from store caches

Architecture:
    ::

        reconcile(item)
          │
          ├── resolve parent + existing node
          ├── create (strip default versions)  │  move to new parent
          ├── retemplate (old template gone → new template as baseline)
          ├── rename / change branch
          ├── re-fetch node
          ├── shared fields:   reset absent ─► paste supplied
          └── versions:        add missing ─► reset absent ─► paste supplied
                               └── remove live versions not serialized

        paste rule:  field predicate ─► template defines field? ─►
                     blob: decode + always write │ text: write if different

Guardrails:
    ❌ DON'T: Write a text field whose value already matches
    ✅ DO: Compare against the effective value (explicit or template default)

    ❌ DON'T: Leave a newly created node behind when population fails
    ✅ DO: Delete it and clear caches before the error surfaces

Example:
    >>> engine = ItemMergeEngine(store, AllowAllFieldPredicate())
    >>> node = engine.reconcile(serialized_item)
    >>> node.name
    'home'
"""

from __future__ import annotations

import base64
import binascii

from treesync.core.errors import ErrorKind, SyncError
from treesync.core.logging import get_logger
from treesync.core.models import (
    OWNER_FIELD_ID,
    LiveNode,
    SerializedField,
    SerializedItem,
    SerializedVersion,
    TemplateDefinition,
    VersionKey,
    is_item_id,
)
from treesync.core.protocols import FieldPredicate, LiveStore, MergeLogger
from treesync.merge.logger import StructlogMergeLogger
from treesync.merge.templates import template_change_list

logger = get_logger(__name__)

# Kinds surfaced as-is; anything else is wrapped in a reconciliation failure.
_PASSTHROUGH_KINDS = frozenset(
    {
        ErrorKind.CONSISTENCY,
        ErrorKind.PARENT_NOT_FOUND,
        ErrorKind.MOVED_PARENT_NOT_FOUND,
        ErrorKind.MISSING_TEMPLATE_FIELD,
    }
)


class ItemMergeEngine:
    """
    Reconciles serialized items into a ``LiveStore``.

    Args:
        store: Live store adapter that receives every mutation
        field_predicate: Oracle deciding which field ids may be written
        logger: Receives one callback per change (defaults to structlog)
    """

    def __init__(
        self,
        store: LiveStore,
        field_predicate: FieldPredicate,
        logger: MergeLogger | None = None,
    ):
        if store is None:
            raise ValueError("store is required")
        if field_predicate is None:
            raise ValueError("field_predicate is required")
        self._store = store
        self._field_predicate = field_predicate
        self._logger = logger or StructlogMergeLogger()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reconcile(self, item: SerializedItem, allow_missing_fields: bool = False) -> LiveNode:
        """
        Make the live node identified by ``item.id`` match ``item``.

        Args:
            item: Fully materialized serialized item
            allow_missing_fields: Skip (and log) fields the live template does
                not define instead of failing

        Returns:
            The reconciled live node, fetched fresh from the store.

        Raises:
            SyncError: PARENT_NOT_FOUND when a new item's parent is not live,
                MOVED_PARENT_NOT_FOUND when an existing item's serialized
                parent is not live, MISSING_TEMPLATE_FIELD when a field is not
                defined and ``allow_missing_fields`` is false, RECONCILIATION
                wrapping any other failure.
        """
        if item is None:
            raise ValueError("item is required")

        database = item.database_name
        parent = self._store.get_node(database, item.parent_id) if item.parent_id else None
        node = self._store.get_node(database, item.id)
        created = False

        if node is None:
            node = self._create(item, parent)
            created = True
            self._logger.created_new_item(node)
        else:
            if parent is None and item.parent_id:
                raise SyncError.moved_parent_not_found(
                    database=database, item_id=item.id, parent_id=item.parent_id, path=item.item_path
                )
            if parent is not None and node.parent_id != parent.id:
                old_parent_id = node.parent_id
                node = self._store.move_node(database, node.id, parent.id)
                self._store.clear_caches(database, node.id)
                self._logger.moved_item_to_new_parent(parent, old_parent_id, node)

        try:
            node = self._change_template_if_needed(item, node)
            node = self._rename_if_needed(item, node)
            node = self._refetch(node)

            node = self._paste_shared_fields(item, node, allow_missing_fields, created)
            self._store.clear_caches(database, node.id)
            node = self._refetch(node)

            node = self._paste_versions(item, node, allow_missing_fields, created)
            self._store.clear_caches(database, node.id)
            return self._refetch(node)
        except Exception as e:
            if created:
                self._discard(database, item.id)
            if isinstance(e, SyncError) and e.kind in _PASSTHROUGH_KINDS:
                raise
            raise SyncError.reconciliation_failure(database=database, path=item.item_path, cause=e) from e

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def _create(self, item: SerializedItem, parent: LiveNode | None) -> LiveNode:
        database = item.database_name
        if parent is None:
            raise SyncError.parent_not_found(
                database=database, item_id=item.id, parent_id=item.parent_id, path=item.item_path
            )
        if self._store.get_template(database, item.template_id) is None:
            raise SyncError.template_not_found(database=database, template_id=item.template_id, path=item.item_path)

        node = self._store.create_node(
            database, node_id=item.id, name=item.name, template_id=item.template_id, parent_id=parent.id
        )
        # A fresh node starts with no content versions; the serialized item supplies them.
        node = self._store.remove_all_versions(database, node.id)
        self._store.clear_caches(database, node.id)
        return node

    def _change_template_if_needed(self, item: SerializedItem, node: LiveNode) -> LiveNode:
        if node.template_id == item.template_id:
            return node

        database = node.database
        old_template_id = node.template_id
        new_template = self._store.get_template(database, item.template_id)
        if new_template is None:
            raise SyncError.template_not_found(database=database, template_id=item.template_id, path=item.item_path)

        try:
            node = self._store.change_template(database, node.id, new_template.id)
        except SyncError as e:
            if e.kind is not ErrorKind.TEMPLATE_NOT_FOUND:
                raise
            # The old template was deleted earlier in this run. Fall back to
            # the new template as its own baseline: shared fields survive,
            # fields unknown to the new template are not cleaned up.
            logger.warning(
                "retemplate_without_source_template",
                database=database,
                path=item.item_path,
                old_template_id=old_template_id,
                new_template_id=new_template.id,
            )
            changes = template_change_list(new_template, new_template)
            node = self._store.apply_template_changes(database, node.id, changes)

        self._store.clear_caches(database, node.id)
        node = self._refetch(node)
        self._logger.changed_template(node, old_template_id)
        return node

    def _rename_if_needed(self, item: SerializedItem, node: LiveNode) -> LiveNode:
        if node.name == item.name and node.branch_id == item.branch_id:
            return node

        old_name = node.name
        old_branch_id = node.branch_id
        node = self._store.rename_node(node.database, node.id, item.name, item.branch_id)
        self._store.clear_caches(node.database, node.id)
        node = self._refetch(node)

        if old_name != item.name:
            self._logger.renamed_item(node, old_name)
        if old_branch_id != item.branch_id:
            self._logger.changed_branch_template(node, old_branch_id)
        return node

    def _discard(self, database: str, node_id: str) -> None:
        if self._store.get_node(database, node_id) is not None:
            self._store.delete_node(database, node_id)
        self._store.clear_caches(database, node_id)

    # ------------------------------------------------------------------
    # Fields and versions
    # ------------------------------------------------------------------

    def _paste_shared_fields(
        self, item: SerializedItem, node: LiveNode, allow_missing_fields: bool, created: bool
    ) -> LiveNode:
        supplied = {f.field_id for f in item.shared_fields}
        for field_id in list(node.shared_fields):
            if field_id in supplied or not self._field_predicate.includes(field_id).is_included:
                continue
            self._logger.reset_field_that_did_not_exist_in_serialized(node, field_id, None)
            node = self._store.reset_field(node.database, node.id, field_id)

        for serialized_field in item.shared_fields:
            node = self._paste_field(node, serialized_field, None, allow_missing_fields, created)
        return node

    def _paste_versions(
        self, item: SerializedItem, node: LiveNode, allow_missing_fields: bool, created: bool
    ) -> LiveNode:
        orphaned_versions = set(node.versions)

        for serialized_version in item.versions:
            key = serialized_version.key
            if key not in node.versions:
                node = self._store.add_version(node.database, node.id, key)
                if not created:
                    self._logger.added_new_version(node, key)
            orphaned_versions.discard(key)
            node = self._paste_version(node, serialized_version, allow_missing_fields, created)
            self._store.clear_caches(node.database, node.id)

        for key in sorted(orphaned_versions):
            self._logger.removing_orphaned_version(node, key)
            node = self._store.remove_version(node.database, node.id, key)
        return node

    def _paste_version(
        self, node: LiveNode, version: SerializedVersion, allow_missing_fields: bool, created: bool
    ) -> LiveNode:
        key = version.key
        supplied = {f.field_id for f in version.fields}

        for field_id in list(node.versions.get(key, {})):
            if field_id == OWNER_FIELD_ID or field_id in supplied:
                continue
            if not self._field_predicate.includes(field_id).is_included:
                continue
            self._logger.reset_field_that_did_not_exist_in_serialized(node, field_id, key)
            node = self._store.reset_field(node.database, node.id, field_id, key)

        for serialized_field in version.fields:
            node = self._paste_field(node, serialized_field, key, allow_missing_fields, created)

        if (
            OWNER_FIELD_ID not in supplied
            and node.field_value(OWNER_FIELD_ID, key) is not None
            and self._field_predicate.includes(OWNER_FIELD_ID).is_included
        ):
            node = self._store.reset_field(node.database, node.id, OWNER_FIELD_ID, key)
        return node

    def _paste_field(
        self,
        node: LiveNode,
        field: SerializedField,
        version: VersionKey | None,
        allow_missing_fields: bool,
        created: bool,
    ) -> LiveNode:
        if not self._field_predicate.includes(field.field_id).is_included:
            self._logger.skipped_pasting_ignored_field(node, field)
            return node

        template = self._assert_template(node)
        template_field = template.get_field(field.field_id)
        if template_field is None:
            if not allow_missing_fields:
                raise SyncError.missing_template_field(
                    database=node.database,
                    path=node.path,
                    field_id=field.field_id,
                    field_name=field.name,
                    template_name=template.name,
                )
            self._logger.skipped_missing_template_field(node, field)
            return node

        # A blob field holding an item id (a media reference) is stored as plain text.
        if template_field.blob and not is_item_id(field.value):
            try:
                payload = base64.b64decode(field.value, validate=True)
            except binascii.Error as e:
                raise SyncError(
                    f"Field '{field.name}' ({field.field_id}) is not valid base64",
                    kind=ErrorKind.INVALID_SERIALIZATION,
                    cause=e,
                ).with_context(database=node.database, path=node.path, field_id=field.field_id) from e
            node = self._store.set_field(node.database, node.id, field.field_id, payload, version)
            if not created:
                self._logger.wrote_blob_stream(node, field)
            return node

        current = node.field_value(field.field_id, version)
        effective = current if current is not None else template_field.default
        if field.value == effective:
            return node

        node = self._store.set_field(node.database, node.id, field.field_id, field.value, version)
        if not created:
            self._logger.updated_changed_field_value(node, field, current)
        return node

    # ------------------------------------------------------------------

    def _assert_template(self, node: LiveNode) -> TemplateDefinition:
        template = self._store.get_template(node.database, node.template_id)
        if template is None:
            raise SyncError.template_not_found(database=node.database, template_id=node.template_id, path=node.path)
        return template

    def _refetch(self, node: LiveNode) -> LiveNode:
        fresh = self._store.get_node(node.database, node.id)
        if fresh is None:
            raise SyncError(f"Item {node.database}:{node.path} disappeared during reconciliation").with_context(
                database=node.database, item_id=node.id, path=node.path
            )
        return fresh


__all__ = ["ItemMergeEngine"]
