"""
Test support utilities for treesync tests.

Builders for serialized items, an in-memory serialization source and a
seeded live store. They are plain helpers rather than fixtures so tests can
build several variants of the same tree.
"""

from __future__ import annotations

from treesync.core.models import (
    LiveNode,
    SerializedField,
    SerializedItem,
    SerializedReference,
    SerializedVersion,
    TemplateDefinition,
    TemplateField,
)
from treesync.stores.memory import FOLDER_TEMPLATE_ID, MemoryLiveStore

DATABASE = "master"

ROOT_ID = "{11111111-1111-1111-1111-111111111111}"
CONTENT_ID = "{0DE95AE4-41AB-4D01-9EB0-67441B7C2450}"

PAGE_TEMPLATE_ID = "{76036F5E-CBCE-46D1-AF0A-4143F9B557AA}"
ARTICLE_TEMPLATE_ID = "{B6B5C5B0-4C0E-4A1B-8E59-5C3B0B4C6E01}"

TITLE_FIELD_ID = "{75577384-3C97-45DA-A847-81B00500E250}"
BODY_FIELD_ID = "{A60ACD61-A6DB-4182-8329-C957982CEC74}"
IMAGE_FIELD_ID = "{40E50ED9-BA07-4702-992E-A912738D32DC}"
SUMMARY_FIELD_ID = "{9541E67D-CE8C-4225-803D-33F7F29F09EF}"

PAGE_TEMPLATE = TemplateDefinition(
    PAGE_TEMPLATE_ID,
    "Page",
    {
        TITLE_FIELD_ID: TemplateField(TITLE_FIELD_ID, "Title", shared=True),
        BODY_FIELD_ID: TemplateField(BODY_FIELD_ID, "Body"),
        IMAGE_FIELD_ID: TemplateField(IMAGE_FIELD_ID, "Image", shared=True, blob=True),
    },
)

ARTICLE_TEMPLATE = TemplateDefinition(
    ARTICLE_TEMPLATE_ID,
    "Article",
    {
        TITLE_FIELD_ID: TemplateField(TITLE_FIELD_ID, "Title", shared=True),
        BODY_FIELD_ID: TemplateField(BODY_FIELD_ID, "Body"),
        SUMMARY_FIELD_ID: TemplateField(SUMMARY_FIELD_ID, "Summary", shared=True),
    },
)


class InMemorySerializationSource:
    """Serialization store backed by a dict of items keyed by (database, path)."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], SerializedItem | None] = {}

    def add(self, item: SerializedItem) -> SerializedItem:
        bound = SerializedItem(
            item_path=item.item_path,
            database_name=item.database_name,
            source=self,
            id=item.id,
            parent_id=item.parent_id,
            template_id=item.template_id,
            branch_id=item.branch_id,
            item_name=item.item_name,
            shared_fields=item.shared_fields,
            versions=item.versions,
        )
        self._items[(item.database_name, item.item_path)] = bound
        return bound

    def add_missing(self, database: str, item_path: str) -> SerializedReference:
        """Register a path whose item is missing on disk."""
        self._items[(database, item_path)] = None
        return SerializedReference(item_path, database, self)

    def remove(self, database: str, item_path: str) -> None:
        self._items.pop((database, item_path), None)

    def read_item(self, database: str, item_path: str) -> SerializedItem | None:
        return self._items.get((database, item_path))

    def child_references(self, database: str, item_path: str, recursive: bool = False) -> list[SerializedReference]:
        prefix = item_path.rstrip("/") + "/"
        references = []
        for (db, path), item in sorted(self._items.items()):
            if db != database or not path.startswith(prefix):
                continue
            if not recursive and "/" in path[len(prefix):]:
                continue
            references.append(item if item is not None else SerializedReference(path, db, self))
        return references

    def get_reference_by_path(self, database: str, item_path: str) -> SerializedReference | None:
        key = (database, item_path)
        if key not in self._items:
            return None
        return self._items[key] or SerializedReference(item_path, database, self)

    def get_reference(self, node: LiveNode) -> SerializedReference | None:
        return self.get_reference_by_path(node.database, node.path)


def field(field_id: str, value: str, name: str = "") -> SerializedField:
    return SerializedField(field_id, value, name)


def version(language: str, number: int, *fields: SerializedField) -> SerializedVersion:
    return SerializedVersion(language, number, tuple(fields))


def serialized_item(
    path: str,
    item_id: str,
    *,
    parent_id: str = CONTENT_ID,
    template_id: str = PAGE_TEMPLATE_ID,
    branch_id: str = "",
    name: str | None = None,
    shared: tuple[SerializedField, ...] = (),
    versions: tuple[SerializedVersion, ...] = (),
    database: str = DATABASE,
) -> SerializedItem:
    return SerializedItem(
        item_path=path,
        database_name=database,
        id=item_id,
        parent_id=parent_id,
        template_id=template_id,
        branch_id=branch_id,
        item_name=name or path.rstrip("/").rsplit("/", 1)[-1],
        shared_fields=shared,
        versions=versions,
    )


def seeded_store(**kwargs) -> MemoryLiveStore:
    """Live store with /sitecore and /sitecore/content plus the Page and Article templates."""
    store = MemoryLiveStore(**kwargs)
    store.register_template(PAGE_TEMPLATE)
    store.register_template(ARTICLE_TEMPLATE)
    store.add_root(DATABASE, node_id=ROOT_ID, name="sitecore")
    store.create_node(DATABASE, node_id=CONTENT_ID, name="content", template_id=FOLDER_TEMPLATE_ID, parent_id=ROOT_ID)
    return store


def serialized_content_root(source: InMemorySerializationSource) -> SerializedItem:
    """Add the serialized counterparts of /sitecore and /sitecore/content to ``source``."""
    source.add(
        serialized_item("/sitecore", ROOT_ID, parent_id="", template_id=FOLDER_TEMPLATE_ID, versions=())
    )
    return source.add(
        serialized_item("/sitecore/content", CONTENT_ID, parent_id=ROOT_ID, template_id=FOLDER_TEMPLATE_ID)
    )
