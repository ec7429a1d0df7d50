"""
Shared pytest fixtures and configuration for treesync tests.

This module provides:
- A seeded in-memory live store (/sitecore, /sitecore/content, Page and Article templates)
- An in-memory serialization source with the matching serialized roots
- A merge engine wired to the live store with a recording merge logger

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_something(live_store, merge_engine):
        ...
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Ensure treesync package and tests._support are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from tests._support import InMemorySerializationSource, seeded_store, serialized_content_root  # noqa: E402
from treesync.merge.engine import ItemMergeEngine  # noqa: E402
from treesync.predicates import AllowAllFieldPredicate  # noqa: E402


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def live_store():
    """Live store seeded with /sitecore/content and the Page/Article templates."""
    return seeded_store()


@pytest.fixture
def source():
    """Serialization source holding the serialized /sitecore and /sitecore/content."""
    serialization = InMemorySerializationSource()
    serialized_content_root(serialization)
    return serialization


@pytest.fixture
def merge_logger():
    """MagicMock standing in for the MergeLogger callbacks."""
    return MagicMock()


@pytest.fixture
def merge_engine(live_store, merge_logger):
    return ItemMergeEngine(live_store, AllowAllFieldPredicate(), merge_logger)
