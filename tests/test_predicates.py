"""Tests for inclusion and field predicates."""

from unittest.mock import MagicMock

import pytest

from tests._support import InMemorySerializationSource, serialized_content_root
from treesync.core.models import LiveNode, SerializedReference
from treesync.predicates import (
    AllowAllFieldPredicate,
    ConfigurationFieldPredicate,
    IncludeEntry,
    PresetPredicate,
    resolve_root_references,
)


@pytest.fixture
def predicate():
    return PresetPredicate(
        [
            IncludeEntry("master", "/sitecore/content/home", excludes=("/sitecore/content/home/legacy",)),
            IncludeEntry("master", "/sitecore/templates/project"),
        ]
    )


def ref(path: str, database: str = "master") -> SerializedReference:
    return SerializedReference(path, database)


class TestPresetPredicate:
    @pytest.mark.parametrize(
        "path",
        [
            "/sitecore/content/home",
            "/sitecore/content/home/about",
            "/Sitecore/Content/HOME/About",
            "/sitecore/templates/project/page",
        ],
    )
    def test_included(self, predicate, path):
        result = predicate.includes(ref(path))
        assert result.is_included
        assert result.justification

    @pytest.mark.parametrize(
        "path",
        [
            "/sitecore/content",
            "/sitecore/content/homepage",
            "/sitecore/content/home/legacy",
            "/sitecore/content/home/legacy/old",
            "/sitecore/templates",
        ],
    )
    def test_excluded(self, predicate, path):
        assert not predicate.includes(ref(path)).is_included

    def test_other_database_excluded(self, predicate):
        result = predicate.includes(ref("/sitecore/content/home", database="web"))
        assert not result.is_included
        assert "not under any include root" in result.justification

    def test_exclude_justification_names_the_exclude(self, predicate):
        result = predicate.includes(ref("/sitecore/content/home/legacy/old"))
        assert "/sitecore/content/home/legacy" in result.justification

    def test_live_nodes(self, predicate):
        node = LiveNode("{a}", "master", "about", "{t}", "{p}", "/sitecore/content/home/about")
        assert predicate.includes(node).is_included

    def test_root_paths(self, predicate):
        assert predicate.root_paths == [
            ("master", "/sitecore/content/home"),
            ("master", "/sitecore/templates/project"),
        ]

    def test_later_entry_can_include_what_earlier_excludes(self):
        predicate = PresetPredicate(
            [
                IncludeEntry("master", "/sitecore/content", excludes=("/sitecore/content/shared",)),
                IncludeEntry("master", "/sitecore/content/shared/logos"),
            ]
        )
        assert predicate.includes(ref("/sitecore/content/shared/logos/main")).is_included
        assert not predicate.includes(ref("/sitecore/content/shared/other")).is_included


class TestFieldPredicates:
    def test_configuration_field_predicate_is_case_insensitive(self):
        predicate = ConfigurationFieldPredicate(["{ABC-DEF}"])
        assert not predicate.includes("{abc-def}").is_included
        assert predicate.includes("{123}").is_included

    def test_allow_all(self):
        assert AllowAllFieldPredicate().includes("{anything}").is_included


class TestResolveRootReferences:
    def test_existing_roots_in_declaration_order(self):
        source = InMemorySerializationSource()
        serialized_content_root(source)
        predicate = PresetPredicate(
            [IncludeEntry("master", "/sitecore/content"), IncludeEntry("master", "/sitecore/missing")]
        )

        roots = resolve_root_references(predicate, source)

        assert [r.item_path for r in roots] == ["/sitecore/content"]

    def test_uses_store_lookup(self):
        store = MagicMock()
        store.get_reference_by_path.return_value = None

        assert resolve_root_references(PresetPredicate([IncludeEntry("web", "/a")]), store) == []
        store.get_reference_by_path.assert_called_once_with("web", "/a")
