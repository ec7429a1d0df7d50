"""
YAML serialization store: the serialized tree as a directory of documents.

Layout::

    <root>/<database>/sitecore.yml                 /sitecore
    <root>/<database>/sitecore/content.yml         /sitecore/content
    <root>/<database>/sitecore/content/home.yml    /sitecore/content/home

An item at logical path ``/a/b`` is the file ``a/b.yml``; its children live
in the directory ``a/b/``. A directory without a sibling document is a
reference whose item is missing on disk.

Document schema (validated with pydantic)::

    id: "{0DE95AE4-41AB-4D01-9EB0-67441B7C2450}"
    database: master
    parent: "{11111111-1111-1111-1111-111111111111}"
    template: "{76036F5E-CBCE-46D1-AF0A-4143F9B557AA}"
    branch: ""
    name: home
    path: /sitecore/content/home
    shared:
      - id: "{...}"
        name: Title
        value: Welcome
    languages:
      - language: en
        versions:
          - version: 1
            fields:
              - id: "{...}"
                value: Hello
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from treesync.core.errors import ErrorKind, SyncError
from treesync.core.logging import get_logger
from treesync.core.models import LiveNode, SerializedField, SerializedItem, SerializedReference, SerializedVersion

logger = get_logger(__name__)

EXTENSION = ".yml"


def _as_text(value: Any) -> Any:
    # YAML reads unquoted numbers and booleans as non-strings.
    if value is None:
        return ""
    if isinstance(value, (int, float, bool)):
        return str(value)
    return value


def _ensure_unique(fields: list[FieldDocument], scope: str) -> None:
    seen = set()
    for f in fields:
        key = f.id.lower()
        if key in seen:
            raise ValueError(f"field {f.id} appears more than once in {scope}")
        seen.add(key)


class FieldDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = ""
    value: str = ""

    @field_validator("id", "name", "value", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _as_text(value)


class VersionDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = Field(..., ge=1)
    fields: list[FieldDocument] = Field(default_factory=list)


class LanguageDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    language: str = Field(..., min_length=1)
    versions: list[VersionDocument] = Field(default_factory=list)


class ItemDocument(BaseModel):
    """One serialized item file."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    database: str = Field(..., min_length=1)
    parent: str = ""
    template: str = Field(..., min_length=1)
    branch: str = ""
    name: str = Field(..., min_length=1)
    path: str | None = None
    shared: list[FieldDocument] = Field(default_factory=list)
    languages: list[LanguageDocument] = Field(default_factory=list)

    @field_validator("id", "parent", "template", "branch", "name", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _as_text(value)

    @model_validator(mode="after")
    def _unique_fields(self) -> ItemDocument:
        _ensure_unique(self.shared, "shared fields")
        for language in self.languages:
            numbers = [v.version for v in language.versions]
            if len(numbers) != len(set(numbers)):
                raise ValueError(f"duplicate version number in language {language.language}")
            for version in language.versions:
                _ensure_unique(version.fields, f"{language.language}#{version.version}")
        return self

    def to_item(self, item_path: str, source: FileSystemSerializationStore) -> SerializedItem:
        return SerializedItem(
            item_path=item_path,
            database_name=self.database,
            source=source,
            id=self.id,
            parent_id=self.parent,
            template_id=self.template,
            branch_id=self.branch,
            item_name=self.name,
            shared_fields=tuple(SerializedField(f.id, f.value, f.name) for f in self.shared),
            versions=tuple(
                SerializedVersion(
                    language.language,
                    version.version,
                    tuple(SerializedField(f.id, f.value, f.name) for f in version.fields),
                )
                for language in self.languages
                for version in language.versions
            ),
        )

    @classmethod
    def from_item(cls, item: SerializedItem) -> ItemDocument:
        languages: dict[str, list[VersionDocument]] = {}
        for version in item.versions:
            languages.setdefault(version.language, []).append(
                VersionDocument(
                    version=version.number,
                    fields=[FieldDocument(id=f.field_id, name=f.name, value=f.value) for f in version.fields],
                )
            )
        return cls(
            id=item.id,
            database=item.database_name,
            parent=item.parent_id,
            template=item.template_id,
            branch=item.branch_id,
            name=item.name,
            path=item.item_path,
            shared=[FieldDocument(id=f.field_id, name=f.name, value=f.value) for f in item.shared_fields],
            languages=[LanguageDocument(language=lang, versions=versions) for lang, versions in languages.items()],
        )


class FileSystemSerializationStore:
    """Reads and writes the serialized tree under ``root``."""

    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def __repr__(self) -> str:
        return f"FileSystemSerializationStore({str(self._root)!r})"

    # ------------------------------------------------------------------
    # Path mapping
    # ------------------------------------------------------------------

    def _segments(self, item_path: str) -> list[str]:
        segments = [s for s in item_path.strip("/").split("/") if s]
        if not segments:
            raise SyncError(f"Invalid item path {item_path!r}", kind=ErrorKind.INVALID_SERIALIZATION)
        return segments

    def item_file(self, database: str, item_path: str) -> Path:
        segments = self._segments(item_path)
        return self._root.joinpath(database, *segments[:-1], segments[-1] + EXTENSION)

    def children_dir(self, database: str, item_path: str) -> Path:
        return self._root.joinpath(database, *self._segments(item_path))

    # ------------------------------------------------------------------
    # SerializationSource
    # ------------------------------------------------------------------

    def read_item(self, database: str, item_path: str) -> SerializedItem | None:
        file = self.item_file(database, item_path)
        if not file.is_file():
            return None
        try:
            data = yaml.safe_load(file.read_text(encoding="utf-8")) or {}
            document = ItemDocument.model_validate(data)
        except (yaml.YAMLError, ValidationError) as e:
            raise SyncError(
                f"Invalid serialized item {file}: {e}", kind=ErrorKind.INVALID_SERIALIZATION, cause=e
            ).with_context(database=database, path=item_path) from e
        return document.to_item(item_path, self)

    def child_references(self, database: str, item_path: str, recursive: bool = False) -> list[SerializedReference]:
        directory = self.children_dir(database, item_path)
        if not directory.is_dir():
            return []

        names = {p.stem for p in directory.glob(f"*{EXTENSION}") if p.is_file()}
        names.update(p.name for p in directory.iterdir() if p.is_dir())

        base = "/" + "/".join(self._segments(item_path))
        references = []
        for name in sorted(names, key=str.lower):
            reference = SerializedReference(f"{base}/{name}", database, self)
            references.append(reference)
            if recursive:
                references.extend(self.child_references(database, reference.item_path, True))
        return references

    # ------------------------------------------------------------------
    # SerializationStore
    # ------------------------------------------------------------------

    def get_reference_by_path(self, database: str, item_path: str) -> SerializedReference | None:
        if self.item_file(database, item_path).is_file() or self.children_dir(database, item_path).is_dir():
            return SerializedReference("/" + "/".join(self._segments(item_path)), database, self)
        return None

    def get_reference(self, node: LiveNode) -> SerializedReference | None:
        return self.get_reference_by_path(node.database, node.path)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_item(self, item: SerializedItem) -> Path:
        """Write ``item`` at the location of its ``item_path``."""
        file = self.item_file(item.database_name, item.item_path)
        file.parent.mkdir(parents=True, exist_ok=True)
        document = ItemDocument.from_item(item)
        file.write_text(
            yaml.safe_dump(document.model_dump(exclude_none=True), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
        logger.debug("item_written", database=item.database_name, path=item.item_path, file=str(file))
        return file


__all__ = [
    "FieldDocument",
    "VersionDocument",
    "LanguageDocument",
    "ItemDocument",
    "FileSystemSerializationStore",
]
