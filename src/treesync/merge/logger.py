"""Default ``MergeLogger``: forwards every merge notification to structlog."""

from __future__ import annotations

from treesync.core.logging import get_logger
from treesync.core.models import FieldValue, LiveNode, SerializedField, VersionKey


def _preview(value: FieldValue | None, limit: int = 80) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    return value if len(value) <= limit else value[: limit - 3] + "..."


class StructlogMergeLogger:
    """Logs one structured event per change applied to a live node."""

    def __init__(self, logger=None):
        self._log = logger or get_logger("treesync.merge")

    def created_new_item(self, node: LiveNode) -> None:
        self._log.info("item_created", database=node.database, path=node.path, item_id=node.id)

    def moved_item_to_new_parent(self, new_parent: LiveNode, old_parent_id: str | None, node: LiveNode) -> None:
        self._log.info(
            "item_moved",
            database=node.database,
            path=node.path,
            old_parent_id=old_parent_id,
            new_parent=new_parent.path,
        )

    def removing_orphaned_version(self, node: LiveNode, version: VersionKey) -> None:
        self._log.info("version_orphan_removed", database=node.database, path=node.path, version=str(version))

    def renamed_item(self, node: LiveNode, old_name: str) -> None:
        self._log.info("item_renamed", database=node.database, path=node.path, old_name=old_name, new_name=node.name)

    def changed_branch_template(self, node: LiveNode, old_branch_id: str) -> None:
        self._log.info(
            "item_branch_changed",
            database=node.database,
            path=node.path,
            old_branch_id=old_branch_id,
            new_branch_id=node.branch_id,
        )

    def changed_template(self, node: LiveNode, old_template_id: str) -> None:
        self._log.info(
            "item_template_changed",
            database=node.database,
            path=node.path,
            old_template_id=old_template_id,
            new_template_id=node.template_id,
        )

    def added_new_version(self, node: LiveNode, version: VersionKey) -> None:
        self._log.info("version_added", database=node.database, path=node.path, version=str(version))

    def skipped_missing_template_field(self, node: LiveNode, field: SerializedField) -> None:
        self._log.warning(
            "field_missing_from_template_skipped",
            database=node.database,
            path=node.path,
            field_id=field.field_id,
            field_name=field.name,
        )

    def wrote_blob_stream(self, node: LiveNode, field: SerializedField) -> None:
        self._log.debug("blob_written", database=node.database, path=node.path, field_id=field.field_id)

    def updated_changed_field_value(self, node: LiveNode, field: SerializedField, old_value: FieldValue | None) -> None:
        self._log.info(
            "field_updated",
            database=node.database,
            path=node.path,
            field_id=field.field_id,
            field_name=field.name or None,
            old_value=_preview(old_value),
            new_value=_preview(field.value),
        )

    def reset_field_that_did_not_exist_in_serialized(
        self, node: LiveNode, field_id: str, version: VersionKey | None
    ) -> None:
        self._log.info(
            "field_reset",
            database=node.database,
            path=node.path,
            field_id=field_id,
            version=str(version) if version is not None else None,
        )

    def skipped_pasting_ignored_field(self, node: LiveNode, field: SerializedField) -> None:
        self._log.debug("field_ignored", database=node.database, path=node.path, field_id=field.field_id)


__all__ = ["StructlogMergeLogger"]
