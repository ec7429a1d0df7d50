"""
Value records shared by the sync engine, the merge engine and the stores.

Serialized records describe desired state read from disk; live records are
snapshots of the live store. Both are immutable: mutation happens only
through ``LiveStore`` operations, which return fresh ``LiveNode`` records,
and identity lookup into the backing store stays the source of truth.

Architecture:
    ::

        Serialized side                     Live side
        ───────────────                     ─────────
        SerializedReference                 LiveNode
          (path + partition, lazy)            (id, name, template, parent,
        SerializedItem(SerializedReference)    shared fields, versions)
          (fields + versions loaded)        TemplateDefinition
        SerializedVersion                     └── TemplateField
          └── SerializedField               VersionKey (language, number)
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from treesync.core.protocols import SerializationSource

STANDARD_VALUES_NAME = "__Standard Values"
OWNER_FIELD_ID = "__owner"

FieldValue = Union[str, bytes]


def is_item_id(value: str) -> bool:
    """True for a braced GUID such as ``{0DE95AE4-41AB-4D01-9EB0-67441B7C2450}``."""
    if len(value) != 38 or not (value.startswith("{") and value.endswith("}")):
        return False
    try:
        uuid.UUID(value[1:-1])
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class PredicateResult:
    """Outcome of an inclusion check, with an optional human-readable reason."""

    is_included: bool
    justification: str | None = None

    @classmethod
    def included(cls, justification: str | None = None) -> PredicateResult:
        return cls(True, justification)

    @classmethod
    def excluded(cls, justification: str | None = None) -> PredicateResult:
        return cls(False, justification)


@dataclass(frozen=True, order=True)
class VersionKey:
    """Identity of one content version: language variant plus revision number."""

    language: str
    number: int

    def __str__(self) -> str:
        return f"{self.language}#{self.number}"


# ---------------------------------------------------------------------------
# Serialized side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SerializedField:
    """One field value as written on disk (binary payloads are base64 text)."""

    field_id: str
    value: str
    name: str = ""


@dataclass(frozen=True)
class SerializedVersion:
    language: str
    number: int
    fields: tuple[SerializedField, ...] = ()

    @property
    def key(self) -> VersionKey:
        return VersionKey(self.language, self.number)


@dataclass(frozen=True, eq=False)
class SerializedReference:
    """
    A serialized node whose path and partition are known but whose content
    has not been read yet.

    ``get_item()`` reads the node fresh from its source every time it is
    called; nothing is cached across traversals.
    """

    item_path: str
    database_name: str
    source: SerializationSource | None = field(default=None, repr=False)

    def get_item(self) -> SerializedItem | None:
        if self.source is None:
            return None
        return self.source.read_item(self.database_name, self.item_path)

    def get_child_references(self, recursive: bool = False) -> list[SerializedReference]:
        if self.source is None:
            return []
        return self.source.child_references(self.database_name, self.item_path, recursive)

    @property
    def name(self) -> str:
        return self.item_path.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True, eq=False)
class SerializedItem(SerializedReference):
    """A fully materialized serialized node: identity, structure, fields and versions."""

    id: str = ""
    parent_id: str = ""
    template_id: str = ""
    branch_id: str = ""
    item_name: str = ""
    shared_fields: tuple[SerializedField, ...] = ()
    versions: tuple[SerializedVersion, ...] = ()

    def get_item(self) -> SerializedItem:
        return self

    @property
    def name(self) -> str:
        return self.item_name or super().name

    @property
    def is_standard_values(self) -> bool:
        return self.name == STANDARD_VALUES_NAME


# ---------------------------------------------------------------------------
# Live side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiveNode:
    """
    Snapshot of one node in the live store.

    ``shared_fields`` and the per-version dicts hold only values that were
    explicitly set; everything else reads as the template default.
    """

    id: str
    database: str
    name: str
    template_id: str
    parent_id: str | None
    path: str
    branch_id: str = ""
    shared_fields: Mapping[str, FieldValue] = field(default_factory=dict)
    versions: Mapping[VersionKey, Mapping[str, FieldValue]] = field(default_factory=dict)
    child_ids: tuple[str, ...] = ()

    @property
    def version_keys(self) -> list[VersionKey]:
        return sorted(self.versions)

    def field_value(self, field_id: str, version: VersionKey | None = None) -> FieldValue | None:
        """Explicit value of a field, or None when the field falls back to its default."""
        if version is None:
            return self.shared_fields.get(field_id)
        return self.versions.get(version, {}).get(field_id)


@dataclass(frozen=True)
class TemplateField:
    field_id: str
    name: str
    shared: bool = False
    blob: bool = False
    default: str = ""


@dataclass(frozen=True)
class TemplateDefinition:
    """Structural type of a live node: the fields it defines and their defaults."""

    id: str
    name: str
    fields: Mapping[str, TemplateField] = field(default_factory=dict)

    def get_field(self, field_id: str) -> TemplateField | None:
        return self.fields.get(field_id)

    def is_shared(self, field_id: str) -> bool:
        template_field = self.fields.get(field_id)
        return template_field is not None and template_field.shared


__all__ = [
    "STANDARD_VALUES_NAME",
    "OWNER_FIELD_ID",
    "FieldValue",
    "is_item_id",
    "PredicateResult",
    "VersionKey",
    "SerializedField",
    "SerializedVersion",
    "SerializedReference",
    "SerializedItem",
    "LiveNode",
    "TemplateField",
    "TemplateDefinition",
]
