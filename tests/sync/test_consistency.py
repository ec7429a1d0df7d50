"""Tests for the duplicate-id consistency checker."""

from tests._support import serialized_item
from treesync.sync.consistency import DuplicateIdConsistencyChecker

ITEM_ID = "{4F1C2D3E-5A6B-4C7D-8E9F-0A1B2C3D4E05}"


class TestDuplicateIdConsistencyChecker:
    def test_first_occurrence_is_consistent(self):
        checker = DuplicateIdConsistencyChecker()
        assert checker.is_consistent(serialized_item("/sitecore/content/home", ITEM_ID))

    def test_same_id_same_path_is_consistent(self):
        checker = DuplicateIdConsistencyChecker()
        item = serialized_item("/sitecore/content/home", ITEM_ID)
        checker.add_processed_item(item)

        assert checker.is_consistent(serialized_item("/sitecore/content/home", ITEM_ID))

    def test_same_id_other_path_is_inconsistent(self):
        checker = DuplicateIdConsistencyChecker()
        checker.add_processed_item(serialized_item("/sitecore/content/home", ITEM_ID))

        assert not checker.is_consistent(serialized_item("/sitecore/content/copy", ITEM_ID))

    def test_databases_are_separate(self):
        checker = DuplicateIdConsistencyChecker()
        checker.add_processed_item(serialized_item("/sitecore/content/home", ITEM_ID))

        assert checker.is_consistent(serialized_item("/sitecore/content/copy", ITEM_ID, database="web"))

    def test_reset(self):
        checker = DuplicateIdConsistencyChecker()
        checker.add_processed_item(serialized_item("/sitecore/content/home", ITEM_ID))
        assert checker.processed_count == 1

        checker.reset()

        assert checker.processed_count == 0
        assert checker.is_consistent(serialized_item("/sitecore/content/copy", ITEM_ID))
