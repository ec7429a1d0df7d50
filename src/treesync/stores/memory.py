"""
In-memory live store.

``MemoryLiveStore`` is the reference implementation of the ``LiveStore``
contract: a partitioned tree of nodes with templates, shared and versioned
field values, change notifications and a read-through node cache. The CLI
persists it as a JSON snapshot between runs.

Manifesto:
    - **Identity is the source of truth:** every read builds a fresh
      ``LiveNode`` snapshot from the backing state (or the cache)
    - **Notifications drive caches:** a write invalidates cached snapshots
      through its change notification; while notifications are muted the
      writer must call ``clear_caches``
    - **Feedback is scoped:** listeners registered with ``feedback=True``
      are not called while ``store.feedback`` is suppressed

Architecture:
    ::

        MemoryLiveStore
          ├── _nodes[database][id] ── _NodeState (mutable backing record)
          ├── _templates[id]       ── registered TemplateDefinition
          ├── _cache               ── ItemCache of LiveNode snapshots
          ├── feedback             ── FeedbackSwitch
          └── listeners            ── (callback, feedback) pairs

        Templates resolve from, in order:
          1. registered definitions (built-ins are always registered)
          2. items of the template type; their template-field descendants
             define the fields and a "__Standard Values" child the defaults

Guardrails:
    ❌ DON'T: Hand out the mutable backing records
    ✅ DO: Return ``LiveNode`` snapshots from every read and mutation

Example:
    >>> store = MemoryLiveStore()
    >>> root = store.add_root("master", node_id="root", name="sitecore")
    >>> child = store.create_node("master", node_id="c1", name="content", template_id=FOLDER_TEMPLATE_ID, parent_id="root")
    >>> child.path
    '/sitecore/content'
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from treesync.core.cache import ItemCache
from treesync.core.errors import ErrorKind, SyncError
from treesync.core.feedback import FeedbackSwitch
from treesync.core.logging import get_logger
from treesync.core.models import (
    OWNER_FIELD_ID,
    STANDARD_VALUES_NAME,
    FieldValue,
    LiveNode,
    TemplateDefinition,
    TemplateField,
    VersionKey,
)
from treesync.merge.templates import TemplateChangeList, template_change_list

logger = get_logger(__name__)

# Built-in templates
TEMPLATE_TEMPLATE_ID = "{AB86861A-6030-46C5-B394-E8F99E8B87DB}"
TEMPLATE_SECTION_TEMPLATE_ID = "{E269FBB5-3750-427A-9149-7AA950B49301}"
TEMPLATE_FIELD_TEMPLATE_ID = "{455A3E98-A627-4B40-8035-E683A0331AC7}"
FOLDER_TEMPLATE_ID = "{A87A00B1-E6DB-45AB-8B54-636FEC3B5523}"

# Fields of a template-field item
FIELD_SHARED_ID = "{BE351A73-FCB0-4213-93FA-C302D8AB4F51}"
FIELD_TYPE_ID = "{AB162CC0-DC80-4ABF-8871-998EE5D7BA32}"

BLOB_FIELD_TYPES = frozenset({"attachment", "file drop area"})

OWNER_FIELD = TemplateField(OWNER_FIELD_ID, "__Owner", shared=False)

BUILTIN_TEMPLATES = (
    TemplateDefinition(TEMPLATE_TEMPLATE_ID, "Template"),
    TemplateDefinition(TEMPLATE_SECTION_TEMPLATE_ID, "Template section"),
    TemplateDefinition(
        TEMPLATE_FIELD_TEMPLATE_ID,
        "Template field",
        {
            FIELD_SHARED_ID: TemplateField(FIELD_SHARED_ID, "Shared", shared=True),
            FIELD_TYPE_ID: TemplateField(FIELD_TYPE_ID, "Type", shared=True),
        },
    ),
    TemplateDefinition(FOLDER_TEMPLATE_ID, "Folder"),
)


@dataclass(frozen=True)
class ChangeEvent:
    """Notification delivered to store listeners after a write."""

    kind: str
    database: str
    node_id: str


Listener = Callable[[ChangeEvent], None]


@dataclass
class _NodeState:
    id: str
    database: str
    name: str
    template_id: str
    parent_id: str | None
    branch_id: str = ""
    shared: dict[str, FieldValue] = field(default_factory=dict)
    versions: dict[VersionKey, dict[str, FieldValue]] = field(default_factory=dict)
    children: list[str] = field(default_factory=list)


class MemoryLiveStore:
    """Partitioned in-memory content tree implementing ``LiveStore``."""

    def __init__(self, *, default_language: str = "en", cache: ItemCache | None = None):
        self._default_language = default_language
        self._nodes: dict[str, dict[str, _NodeState]] = {}
        self._templates: dict[str, TemplateDefinition] = {t.id: t for t in BUILTIN_TEMPLATES}
        self._cache = cache if cache is not None else ItemCache()
        self._feedback = FeedbackSwitch()
        self._listeners: list[tuple[Listener, bool]] = []
        self._muted = 0
        self.completed_databases: list[str] = []

    # ------------------------------------------------------------------
    # Feedback and notifications
    # ------------------------------------------------------------------

    @property
    def feedback(self) -> FeedbackSwitch:
        return self._feedback

    @property
    def events_are_muted(self) -> bool:
        return self._muted > 0

    @contextmanager
    def events_muted(self) -> Iterator[None]:
        """Suppress change notifications (and the cache invalidation they drive)."""
        self._muted += 1
        try:
            yield
        finally:
            self._muted -= 1

    def subscribe(self, listener: Listener, feedback: bool = False) -> None:
        """Register a change listener; ``feedback`` listeners are silenced while feedback is suppressed."""
        self._listeners.append((listener, feedback))

    def unsubscribe(self, listener: Listener) -> None:
        self._listeners = [(cb, fb) for cb, fb in self._listeners if cb is not listener]

    def _notify(self, kind: str, state: _NodeState) -> None:
        if self._muted:
            return
        self._evict(state.database, state.id)
        event = ChangeEvent(kind, state.database, state.id)
        for listener, is_feedback in list(self._listeners):
            if is_feedback and self._feedback.disabled:
                continue
            listener(event)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def databases(self) -> list[str]:
        return sorted(self._nodes)

    def get_node(self, database: str, node_id: str) -> LiveNode | None:
        key = ItemCache.key(database, node_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        state = self._nodes.get(database, {}).get(node_id)
        if state is None:
            return None
        node = self._snapshot(state)
        self._cache.set(key, node)
        return node

    def get_children(self, node: LiveNode) -> list[LiveNode]:
        state = self._nodes.get(node.database, {}).get(node.id)
        if state is None:
            return []
        children = (self.get_node(node.database, child_id) for child_id in state.children)
        return [child for child in children if child is not None]

    def get_roots(self, database: str) -> list[LiveNode]:
        roots = (s for s in self._nodes.get(database, {}).values() if s.parent_id is None)
        return [self._snapshot(s) for s in sorted(roots, key=lambda s: s.name.lower())]

    def get_node_by_path(self, database: str, path: str) -> LiveNode | None:
        for state in self._nodes.get(database, {}).values():
            if self._path(state).lower() == path.rstrip("/").lower():
                return self.get_node(database, state.id)
        return None

    def iter_nodes(self, database: str) -> Iterator[tuple[int, LiveNode]]:
        """Depth-first ``(depth, node)`` pairs of a partition."""
        stack = [(0, root) for root in reversed(self.get_roots(database))]
        while stack:
            depth, node = stack.pop()
            yield depth, node
            stack.extend((depth + 1, child) for child in reversed(self.get_children(node)))

    def __len__(self) -> int:
        return sum(len(nodes) for nodes in self._nodes.values())

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def register_template(self, template: TemplateDefinition) -> None:
        self._templates[template.id] = template

    def get_template(self, database: str, template_id: str) -> TemplateDefinition | None:
        template = self._templates.get(template_id)
        if template is None:
            template = self._template_from_items(database, template_id)
        if template is None:
            return None
        if OWNER_FIELD_ID in template.fields:
            return template
        return TemplateDefinition(template.id, template.name, {**template.fields, OWNER_FIELD_ID: OWNER_FIELD})

    def _template_from_items(self, database: str, template_id: str) -> TemplateDefinition | None:
        nodes = self._nodes.get(database, {})
        state = nodes.get(template_id)
        if state is None or state.template_id != TEMPLATE_TEMPLATE_ID:
            return None

        standard_values = next(
            (nodes[c] for c in state.children if c in nodes and nodes[c].name == STANDARD_VALUES_NAME), None
        )

        fields: dict[str, TemplateField] = {}
        stack = list(state.children)
        while stack:
            child = nodes.get(stack.pop())
            if child is None or child.template_id == TEMPLATE_TEMPLATE_ID:
                continue
            if child.template_id == TEMPLATE_FIELD_TEMPLATE_ID:
                fields[child.id] = TemplateField(
                    field_id=child.id,
                    name=child.name,
                    shared=child.shared.get(FIELD_SHARED_ID) == "1",
                    blob=str(child.shared.get(FIELD_TYPE_ID, "")).lower() in BLOB_FIELD_TYPES,
                    default=_standard_value(standard_values, child.id),
                )
            stack.extend(child.children)
        return TemplateDefinition(state.id, state.name, fields)

    # ------------------------------------------------------------------
    # Structure mutations
    # ------------------------------------------------------------------

    def add_root(
        self, database: str, *, node_id: str, name: str, template_id: str = FOLDER_TEMPLATE_ID
    ) -> LiveNode:
        """Create a partition root (a node without a parent)."""
        partition = self._nodes.setdefault(database, {})
        if node_id in partition:
            raise SyncError(f"Item {database}:{node_id} already exists").with_context(
                database=database, item_id=node_id
            )
        state = _NodeState(node_id, database, name, template_id, None)
        partition[node_id] = state
        self._notify("created", state)
        return self._snapshot(state)

    def create_node(
        self, database: str, *, node_id: str, name: str, template_id: str, parent_id: str
    ) -> LiveNode:
        partition = self._nodes.setdefault(database, {})
        if node_id in partition:
            raise SyncError(f"Item {database}:{node_id} already exists").with_context(
                database=database, item_id=node_id
            )
        parent = partition.get(parent_id)
        if parent is None:
            raise SyncError.parent_not_found(database=database, item_id=node_id, parent_id=parent_id, path=name)
        if self.get_template(database, template_id) is None:
            raise SyncError.template_not_found(
                database=database, template_id=template_id, path=f"{self._path(parent)}/{name}"
            )

        state = _NodeState(node_id, database, name, template_id, parent_id)
        state.versions[VersionKey(self._default_language, 1)] = {}
        partition[node_id] = state
        parent.children.append(node_id)
        self._notify("created", state)
        self._notify("child_added", parent)
        return self._snapshot(state)

    def delete_node(self, database: str, node_id: str) -> None:
        state = self._state(database, node_id)
        for child_id in list(state.children):
            self.delete_node(database, child_id)

        partition = self._nodes[database]
        if state.parent_id is not None and state.parent_id in partition:
            parent = partition[state.parent_id]
            parent.children.remove(node_id)
            self._cache.remove_item(database, parent.id)
            self._notify("child_removed", parent)
        del partition[node_id]
        self._cache.remove_item(database, node_id)
        self._notify("deleted", state)

    def move_node(self, database: str, node_id: str, parent_id: str) -> LiveNode:
        state = self._state(database, node_id)
        new_parent = self._state(database, parent_id)
        ancestor: _NodeState | None = new_parent
        while ancestor is not None:
            if ancestor.id == node_id:
                raise SyncError(f"Cannot move {self._path(state)} below itself").with_context(
                    database=database, item_id=node_id, parent_id=parent_id
                )
            ancestor = self._nodes[database].get(ancestor.parent_id) if ancestor.parent_id else None

        if state.parent_id is not None:
            old_parent = self._nodes[database].get(state.parent_id)
            if old_parent is not None:
                old_parent.children.remove(node_id)
                self._notify("child_removed", old_parent)
        new_parent.children.append(node_id)
        state.parent_id = parent_id
        self._notify("moved", state)
        self._notify("child_added", new_parent)
        return self._snapshot(state)

    def rename_node(self, database: str, node_id: str, name: str, branch_id: str) -> LiveNode:
        state = self._state(database, node_id)
        state.name = name
        state.branch_id = branch_id
        self._notify("renamed", state)
        return self._snapshot(state)

    def change_template(self, database: str, node_id: str, template_id: str) -> LiveNode:
        state = self._state(database, node_id)
        old_template = self.get_template(database, state.template_id)
        if old_template is None:
            raise SyncError.template_not_found(database=database, template_id=state.template_id, path=self._path(state))
        new_template = self.get_template(database, template_id)
        if new_template is None:
            raise SyncError.template_not_found(database=database, template_id=template_id, path=self._path(state))
        return self.apply_template_changes(database, node_id, template_change_list(old_template, new_template))

    def apply_template_changes(self, database: str, node_id: str, changes: TemplateChangeList) -> LiveNode:
        state = self._state(database, node_id)
        for field_id in changes.removed_fields:
            state.shared.pop(field_id, None)
            for values in state.versions.values():
                values.pop(field_id, None)
        state.template_id = changes.target_id
        self._notify("template_changed", state)
        return self._snapshot(state)

    # ------------------------------------------------------------------
    # Versions and fields
    # ------------------------------------------------------------------

    def add_version(self, database: str, node_id: str, version: VersionKey) -> LiveNode:
        state = self._state(database, node_id)
        if version not in state.versions:
            state.versions[version] = {}
            self._notify("version_added", state)
        return self._snapshot(state)

    def remove_version(self, database: str, node_id: str, version: VersionKey) -> LiveNode:
        state = self._state(database, node_id)
        if state.versions.pop(version, None) is not None:
            self._notify("version_removed", state)
        return self._snapshot(state)

    def remove_all_versions(self, database: str, node_id: str) -> LiveNode:
        state = self._state(database, node_id)
        if state.versions:
            state.versions.clear()
            self._notify("version_removed", state)
        return self._snapshot(state)

    def set_field(
        self, database: str, node_id: str, field_id: str, value: FieldValue, version: VersionKey | None = None
    ) -> LiveNode:
        state = self._state(database, node_id)
        self._values(state, version)[field_id] = value
        self._notify("field_changed", state)
        return self._snapshot(state)

    def reset_field(self, database: str, node_id: str, field_id: str, version: VersionKey | None = None) -> LiveNode:
        state = self._state(database, node_id)
        values = state.shared if version is None else state.versions.get(version, {})
        if field_id in values:
            del values[field_id]
            self._notify("field_reset", state)
        return self._snapshot(state)

    # ------------------------------------------------------------------
    # Sync hooks
    # ------------------------------------------------------------------

    def clear_caches(self, database: str, node_id: str) -> None:
        """Evict a node, its parent and its descendants from the node cache."""
        self._evict(database, node_id)

    def deserialization_complete(self, database: str) -> None:
        self.completed_databases.append(database)
        logger.info("deserialization_complete", database=database, nodes=len(self._nodes.get(database, {})))

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        builtin_ids = {t.id for t in BUILTIN_TEMPLATES}
        templates = [
            {
                "id": t.id,
                "name": t.name,
                "fields": [
                    {"id": f.field_id, "name": f.name, "shared": f.shared, "blob": f.blob, "default": f.default}
                    for f in t.fields.values()
                ],
            }
            for t in self._templates.values()
            if t.id not in builtin_ids
        ]
        nodes = []
        for database in self.databases:
            for _, node in self.iter_nodes(database):
                state = self._state(database, node.id)
                nodes.append(
                    {
                        "id": state.id,
                        "database": state.database,
                        "name": state.name,
                        "template": state.template_id,
                        "parent": state.parent_id,
                        "branch": state.branch_id,
                        "shared": {k: _encode(v) for k, v in state.shared.items()},
                        "versions": [
                            {
                                "language": key.language,
                                "number": key.number,
                                "fields": {k: _encode(v) for k, v in values.items()},
                            }
                            for key, values in sorted(state.versions.items())
                        ],
                    }
                )
        return {"templates": templates, "nodes": nodes}

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, default_language: str = "en") -> MemoryLiveStore:
        store = cls(default_language=default_language)
        for template in data.get("templates", []):
            store.register_template(
                TemplateDefinition(
                    template["id"],
                    template["name"],
                    {
                        f["id"]: TemplateField(
                            f["id"], f["name"], f.get("shared", False), f.get("blob", False), f.get("default", "")
                        )
                        for f in template.get("fields", [])
                    },
                )
            )
        for raw in data.get("nodes", []):
            partition = store._nodes.setdefault(raw["database"], {})
            state = _NodeState(
                id=raw["id"],
                database=raw["database"],
                name=raw["name"],
                template_id=raw["template"],
                parent_id=raw.get("parent"),
                branch_id=raw.get("branch", ""),
                shared={k: _decode(v) for k, v in raw.get("shared", {}).items()},
                versions={
                    VersionKey(v["language"], int(v["number"])): {k: _decode(x) for k, x in v.get("fields", {}).items()}
                    for v in raw.get("versions", [])
                },
            )
            partition[state.id] = state
            if state.parent_id is not None:
                parent = partition.get(state.parent_id)
                if parent is None:
                    raise SyncError(
                        f"Snapshot lists {state.database}:{state.name} before its parent {state.parent_id}",
                        kind=ErrorKind.INVALID_SERIALIZATION,
                    )
                parent.children.append(state.id)
        return store

    def save(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path, *, default_language: str = "en") -> MemoryLiveStore:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise SyncError(f"Invalid live snapshot {path}: {e}", kind=ErrorKind.INVALID_SERIALIZATION, cause=e) from e
        return cls.from_dict(data, default_language=default_language)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _state(self, database: str, node_id: str) -> _NodeState:
        state = self._nodes.get(database, {}).get(node_id)
        if state is None:
            raise SyncError(f"Item {database}:{node_id} does not exist").with_context(
                database=database, item_id=node_id
            )
        return state

    def _values(self, state: _NodeState, version: VersionKey | None) -> dict[str, FieldValue]:
        if version is None:
            return state.shared
        values = state.versions.get(version)
        if values is None:
            raise SyncError(f"Version {version} of {state.database}:{self._path(state)} does not exist").with_context(
                database=state.database, item_id=state.id
            )
        return values

    def _path(self, state: _NodeState) -> str:
        names = []
        partition = self._nodes.get(state.database, {})
        current: _NodeState | None = state
        while current is not None:
            names.append(current.name)
            current = partition.get(current.parent_id) if current.parent_id else None
        return "/" + "/".join(reversed(names))

    def _snapshot(self, state: _NodeState) -> LiveNode:
        return LiveNode(
            id=state.id,
            database=state.database,
            name=state.name,
            template_id=state.template_id,
            parent_id=state.parent_id,
            path=self._path(state),
            branch_id=state.branch_id,
            shared_fields=MappingProxyType(dict(state.shared)),
            versions=MappingProxyType({k: MappingProxyType(dict(v)) for k, v in state.versions.items()}),
            child_ids=tuple(state.children),
        )

    def _evict(self, database: str, node_id: str) -> None:
        self._cache.remove_item(database, node_id)
        partition = self._nodes.get(database, {})
        state = partition.get(node_id)
        if state is None:
            return
        if state.parent_id is not None:
            self._cache.remove_item(database, state.parent_id)
        stack = list(state.children)
        while stack:
            child_id = stack.pop()
            self._cache.remove_item(database, child_id)
            child = partition.get(child_id)
            if child is not None:
                stack.extend(child.children)


def _standard_value(standard_values: _NodeState | None, field_id: str) -> str:
    if standard_values is None:
        return ""
    value = standard_values.shared.get(field_id)
    if value is None:
        for _, values in sorted(standard_values.versions.items()):
            if field_id in values:
                value = values[field_id]
                break
    return value if isinstance(value, str) else ""


def _encode(value: FieldValue) -> Any:
    if isinstance(value, bytes):
        return {"$blob": base64.b64encode(value).decode("ascii")}
    return value


def _decode(value: Any) -> FieldValue:
    if isinstance(value, dict) and "$blob" in value:
        return base64.b64decode(value["$blob"])
    return value


__all__ = [
    "TEMPLATE_TEMPLATE_ID",
    "TEMPLATE_SECTION_TEMPLATE_ID",
    "TEMPLATE_FIELD_TEMPLATE_ID",
    "FOLDER_TEMPLATE_ID",
    "FIELD_SHARED_ID",
    "FIELD_TYPE_ID",
    "ChangeEvent",
    "MemoryLiveStore",
]
