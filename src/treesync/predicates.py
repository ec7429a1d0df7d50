"""
Inclusion oracles: which nodes and fields a sync run owns.

``PresetPredicate`` scopes a run to a set of include roots, each with
optional excluded subtrees. Paths are compared case-insensitively and by
whole segments, so ``/content/home`` covers ``/content/home/about`` but not
``/content/homepage``.

Example:
    >>> predicate = PresetPredicate([IncludeEntry("master", "/content", excludes=("/content/legacy",))])
    >>> predicate.includes(SerializedReference("/content/legacy/old", "master")).is_included
    False
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from treesync.core.logging import get_logger
from treesync.core.models import LiveNode, PredicateResult, SerializedReference
from treesync.core.protocols import SerializationStore

logger = get_logger(__name__)


def _normalize(path: str) -> str:
    return path.rstrip("/").lower() or "/"


def _is_at_or_under(path: str, root: str) -> bool:
    path, root = _normalize(path), _normalize(root)
    return path == root or path.startswith(root.rstrip("/") + "/")


@dataclass(frozen=True)
class IncludeEntry:
    """One include root of a preset."""

    database: str
    path: str
    excludes: tuple[str, ...] = ()

    def evaluate(self, database: str, path: str) -> PredicateResult | None:
        """Decide for a node, or return None when this entry does not cover it."""
        if database.lower() != self.database.lower() or not _is_at_or_under(path, self.path):
            return None
        for exclude in self.excludes:
            if _is_at_or_under(path, exclude):
                return PredicateResult.excluded(f"{database}:{path} is excluded by {exclude} under {self.path}")
        return PredicateResult.included(f"{database}:{path} is included by {self.path}")


class PresetPredicate:
    """Includes a node when one of the include entries covers it and none of its excludes does."""

    def __init__(self, entries: Iterable[IncludeEntry]):
        self._entries = list(entries)

    @property
    def entries(self) -> list[IncludeEntry]:
        return list(self._entries)

    @property
    def root_paths(self) -> list[tuple[str, str]]:
        """``(database, path)`` of every include root, in declaration order."""
        return [(entry.database, entry.path) for entry in self._entries]

    def includes(self, node: SerializedReference | LiveNode) -> PredicateResult:
        if isinstance(node, LiveNode):
            database, path = node.database, node.path
        else:
            database, path = node.database_name, node.item_path

        excluded: PredicateResult | None = None
        for entry in self._entries:
            result = entry.evaluate(database, path)
            if result is None:
                continue
            if result.is_included:
                return result
            excluded = result

        return excluded or PredicateResult.excluded(f"{database}:{path} is not under any include root")


class ConfigurationFieldPredicate:
    """Excludes a configured set of field ids from every write."""

    def __init__(self, ignored_field_ids: Iterable[str]):
        self._ignored = {field_id.lower() for field_id in ignored_field_ids}

    def includes(self, field_id: str) -> PredicateResult:
        if field_id.lower() in self._ignored:
            return PredicateResult.excluded(f"Field {field_id} is ignored by configuration")
        return PredicateResult.included()


class AllowAllFieldPredicate:
    def includes(self, field_id: str) -> PredicateResult:
        return PredicateResult.included()


def resolve_root_references(predicate: PresetPredicate, store: SerializationStore) -> list[SerializedReference]:
    """Serialized references of every include root that exists on disk."""
    roots = []
    for database, path in predicate.root_paths:
        reference = store.get_reference_by_path(database, path)
        if reference is None:
            logger.warning("include_root_missing", database=database, path=path)
            continue
        roots.append(reference)
    return roots


__all__ = [
    "IncludeEntry",
    "PresetPredicate",
    "ConfigurationFieldPredicate",
    "AllowAllFieldPredicate",
    "resolve_root_references",
]
