"""Tests for the tree sync engine.

The serialized side is an ``InMemorySerializationSource``, the live side a
seeded ``MemoryLiveStore``; the evaluator and loader logger are mocks so the
tests observe exactly which items the walk hands out.
"""

from unittest.mock import MagicMock

import pytest

from tests._support import CONTENT_ID, DATABASE, serialized_item
from treesync.core.errors import ErrorKind, SyncError
from treesync.core.settings import SyncSettings
from treesync.predicates import IncludeEntry, PresetPredicate
from treesync.stores.memory import FOLDER_TEMPLATE_ID
from treesync.sync.consistency import DuplicateIdConsistencyChecker
from treesync.sync.loader import TreeSyncEngine
from treesync.sync.retry import RetryKind, RetryQueue

HOME_ID = "{8E1D2C3B-4A59-4F6E-8D7C-6B5A49382701}"
LEGACY_ID = "{8E1D2C3B-4A59-4F6E-8D7C-6B5A49382702}"
OLD_ID = "{8E1D2C3B-4A59-4F6E-8D7C-6B5A49382703}"
STANDARD_VALUES_ID = "{8E1D2C3B-4A59-4F6E-8D7C-6B5A49382704}"


def content_predicate(*excludes: str) -> PresetPredicate:
    return PresetPredicate([IncludeEntry(DATABASE, "/sitecore/content", excludes=excludes)])


def add_child(source, name: str, item_id: str, parent_path: str = "/sitecore/content", parent_id: str = CONTENT_ID):
    item = serialized_item(f"{parent_path}/{name}", item_id, parent_id=parent_id, template_id=FOLDER_TEMPLATE_ID)
    return source.add(item)


def add_live(live_store, name: str, item_id: str, parent_id: str = CONTENT_ID):
    return live_store.create_node(
        DATABASE, node_id=item_id, name=name, template_id=FOLDER_TEMPLATE_ID, parent_id=parent_id
    )


@pytest.fixture
def evaluator():
    evaluator = MagicMock()
    evaluator.evaluate_new_serialized_item.return_value = None
    evaluator.evaluate_update.return_value = None
    return evaluator


@pytest.fixture
def loader_logger():
    return MagicMock()


@pytest.fixture
def root(source):
    return source.get_reference_by_path(DATABASE, "/sitecore/content")


@pytest.fixture
def make_engine(source, live_store, evaluator, loader_logger):
    def _make(predicate=None, **settings):
        return TreeSyncEngine(
            source,
            live_store,
            predicate or content_predicate(),
            evaluator,
            loader_logger,
            SyncSettings(**settings),
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()


def loaded_paths(evaluator) -> list[str]:
    """Paths handed to the evaluator, in call order."""
    paths = []
    for call in evaluator.method_calls:
        if call[0] in ("evaluate_new_serialized_item", "evaluate_update"):
            paths.append(call.args[0].item_path)
    return paths


class TestArguments:
    @pytest.mark.parametrize("missing", ["serialization_store", "live_store", "predicate", "evaluator"])
    def test_constructor_requires_collaborators(self, source, live_store, evaluator, missing):
        kwargs = {
            "serialization_store": source,
            "live_store": live_store,
            "predicate": content_predicate(),
            "evaluator": evaluator,
        }
        kwargs[missing] = None
        with pytest.raises(ValueError):
            TreeSyncEngine(**kwargs)

    def test_load_tree_requires_root(self, engine):
        with pytest.raises(ValueError):
            engine.load_tree(None, RetryQueue(), DuplicateIdConsistencyChecker())

    def test_load_tree_requires_retry_queue(self, engine, root):
        with pytest.raises(ValueError):
            engine.load_tree(root, None, DuplicateIdConsistencyChecker())

    def test_load_tree_requires_consistency_checker(self, engine, root):
        with pytest.raises(ValueError):
            engine.load_tree(root, RetryQueue(), None)

    def test_load_all_requires_roots(self, engine):
        with pytest.raises(ValueError):
            engine.load_all([], RetryQueue(), DuplicateIdConsistencyChecker())


class TestRoot:
    def test_excluded_root_is_skipped_once(self, make_engine, root, evaluator, loader_logger):
        engine = make_engine(PresetPredicate([IncludeEntry(DATABASE, "/sitecore/templates")]))

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        loader_logger.skipped_item_present_in_serialization.assert_called_once()
        assert loader_logger.skipped_item_present_in_serialization.call_args.args[0] is root
        evaluator.evaluate_new_serialized_item.assert_not_called()
        evaluator.evaluate_update.assert_not_called()

    def test_included_live_root_is_updated(self, engine, root, evaluator, live_store):
        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        item, existing = evaluator.evaluate_update.call_args.args
        assert item.id == CONTENT_ID
        assert existing.id == CONTENT_ID

    def test_included_new_root_is_created(self, engine, source, evaluator):
        home = add_child(source, "home", HOME_ID)

        engine.load_tree(home, RetryQueue(), DuplicateIdConsistencyChecker())

        evaluator.evaluate_new_serialized_item.assert_called_once_with(home)

    def test_root_failure_is_queued_and_children_still_load(self, engine, source, root, evaluator):
        add_child(source, "home", HOME_ID)
        evaluator.evaluate_update.side_effect = SyncError("boom")
        queue = RetryQueue()

        engine.load_tree(root, queue, DuplicateIdConsistencyChecker())

        assert [(e.kind, e.path) for e in queue.pending] == [(RetryKind.ITEM, "/sitecore/content")]
        evaluator.evaluate_new_serialized_item.assert_called_once()

    def test_begin_and_end_are_logged(self, engine, source, root, loader_logger):
        add_child(source, "home", HOME_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        loader_logger.begin_loading_tree.assert_called_once_with(root)
        end_root, processed, elapsed_ms = loader_logger.end_loading_tree.call_args.args
        assert end_root is root
        assert processed == 2
        assert elapsed_ms >= 0
        assert engine.items_processed == 2


class TestChildren:
    def test_new_child_is_created(self, engine, source, root, evaluator):
        home = add_child(source, "home", HOME_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        evaluator.evaluate_new_serialized_item.assert_called_once_with(home)

    def test_live_child_is_updated(self, engine, source, root, evaluator, live_store):
        home = add_child(source, "home", HOME_ID)
        add_live(live_store, "home", HOME_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        updated = [call.args for call in evaluator.evaluate_update.call_args_list]
        assert any(item is home and existing.id == HOME_ID for item, existing in updated)

    def test_excluded_child_is_skipped(self, make_engine, source, root, evaluator, loader_logger):
        add_child(source, "home", HOME_ID)
        legacy = add_child(source, "legacy", LEGACY_ID)
        engine = make_engine(content_predicate("/sitecore/content/legacy"))

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        skipped = [c.args[0] for c in loader_logger.skipped_item_present_in_serialization.call_args_list]
        assert legacy in skipped
        assert "/sitecore/content/legacy" not in loaded_paths(evaluator)
        assert "/sitecore/content/home" in loaded_paths(evaluator)

    def test_excluded_subtree_is_not_visited(self, make_engine, source, root, evaluator):
        add_child(source, "legacy", LEGACY_ID)
        add_child(source, "old", OLD_ID, parent_path="/sitecore/content/legacy", parent_id=LEGACY_ID)
        engine = make_engine(content_predicate("/sitecore/content/legacy"))

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        assert loaded_paths(evaluator) == ["/sitecore/content"]

    def test_grandchildren_are_loaded_depth_first(self, engine, source, root, evaluator):
        add_child(source, "home", HOME_ID)
        add_child(source, "old", OLD_ID, parent_path="/sitecore/content/home", parent_id=HOME_ID)
        add_child(source, "zeta", LEGACY_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        assert loaded_paths(evaluator) == [
            "/sitecore/content",
            "/sitecore/content/home",
            "/sitecore/content/zeta",
            "/sitecore/content/home/old",
        ]

    def test_missing_serialized_item_is_logged(self, engine, source, root, loader_logger):
        missing = source.add_missing(DATABASE, "/sitecore/content/ghost")

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        reference, _ = loader_logger.skipped_item_missing_in_serialization.call_args.args
        assert reference.item_path == missing.item_path

    def test_templates_subtree_is_walked_first(self, engine, source, root, evaluator):
        alpha_id, templates_id = "{A0000000-0000-0000-0000-000000000001}", "{A0000000-0000-0000-0000-000000000002}"
        add_child(source, "alpha", alpha_id)
        add_child(source, "templates", templates_id)
        add_child(source, "a1", HOME_ID, parent_path="/sitecore/content/alpha", parent_id=alpha_id)
        add_child(source, "t1", OLD_ID, parent_path="/sitecore/content/templates", parent_id=templates_id)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        paths = loaded_paths(evaluator)
        assert paths.index("/sitecore/content/templates/t1") < paths.index("/sitecore/content/alpha/a1")


class TestOrphans:
    def test_live_child_missing_from_serialization_is_orphan(self, engine, root, evaluator, live_store):
        add_live(live_store, "old", OLD_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        (orphans,) = evaluator.evaluate_orphans.call_args.args
        assert [o.id for o in orphans] == [OLD_ID]

    def test_serialized_children_are_not_orphans(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        add_live(live_store, "home", HOME_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        evaluator.evaluate_orphans.assert_not_called()

    def test_excluded_live_children_are_not_orphans(self, make_engine, root, evaluator, live_store, loader_logger):
        add_live(live_store, "legacy", LEGACY_ID)
        engine = make_engine(content_predicate("/sitecore/content/legacy"))

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        evaluator.evaluate_orphans.assert_not_called()
        assert loader_logger.skipped_item.call_args.args[0].id == LEGACY_ID

    def test_skipped_serialized_items_are_not_orphans(self, make_engine, source, root, evaluator, live_store):
        add_child(source, "legacy", LEGACY_ID)
        add_live(live_store, "legacy", LEGACY_ID)
        engine = make_engine(content_predicate("/sitecore/content/legacy"))

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        evaluator.evaluate_orphans.assert_not_called()

    def test_failed_items_are_not_orphans(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        add_live(live_store, "home", HOME_ID)

        def update(item, existing):
            if item.id == HOME_ID:
                raise SyncError("boom")
            return None

        evaluator.evaluate_update.side_effect = update
        queue = RetryQueue()

        engine.load_tree(root, queue, DuplicateIdConsistencyChecker())

        evaluator.evaluate_orphans.assert_not_called()
        assert [e.path for e in queue.pending] == ["/sitecore/content/home"]

    def test_standard_values_are_never_orphans(self, engine, root, evaluator, live_store):
        add_live(live_store, "__Standard Values", STANDARD_VALUES_ID)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        evaluator.evaluate_orphans.assert_not_called()

    def test_live_children_of_leaf_are_orphans(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        home = add_live(live_store, "home", HOME_ID)
        add_live(live_store, "old", OLD_ID, parent_id=home.id)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        (orphans,) = evaluator.evaluate_orphans.call_args.args
        assert [o.id for o in orphans] == [OLD_ID]

    def test_orphans_evaluated_with_feedback_suppressed(self, engine, root, evaluator, live_store):
        add_live(live_store, "old", OLD_ID)
        seen = []
        evaluator.evaluate_orphans.side_effect = lambda orphans: seen.append(live_store.feedback.disabled)

        engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        assert seen == [True]
        assert not live_store.feedback.disabled


class TestFailures:
    def test_consistency_violation_aborts(self, engine, source, root, evaluator):
        add_child(source, "home", HOME_ID)
        checker = MagicMock()
        checker.is_consistent.return_value = False

        with pytest.raises(SyncError) as exc_info:
            engine.load_tree(root, RetryQueue(), checker)

        assert exc_info.value.kind is ErrorKind.CONSISTENCY
        evaluator.evaluate_update.assert_not_called()
        evaluator.evaluate_new_serialized_item.assert_not_called()

    def test_duplicate_id_aborts(self, engine, source, root):
        add_child(source, "home", HOME_ID)
        add_child(source, "copy", HOME_ID)

        with pytest.raises(SyncError) as exc_info:
            engine.load_tree(root, RetryQueue(), DuplicateIdConsistencyChecker())

        assert exc_info.value.kind is ErrorKind.CONSISTENCY

    def test_failing_child_does_not_stop_siblings(self, engine, source, root, evaluator):
        add_child(source, "alpha", HOME_ID)
        add_child(source, "beta", LEGACY_ID)

        def create(item):
            if item.id == HOME_ID:
                raise SyncError("boom")
            return None

        evaluator.evaluate_new_serialized_item.side_effect = create
        queue = RetryQueue()

        engine.load_tree(root, queue, DuplicateIdConsistencyChecker())

        assert "/sitecore/content/beta" in loaded_paths(evaluator)
        assert [(e.kind, e.path) for e in queue.pending] == [(RetryKind.ITEM, "/sitecore/content/alpha")]

    def test_depth_guard_queues_tree_retry(self, make_engine, source, root):
        add_child(source, "a", HOME_ID)
        add_child(source, "b", LEGACY_ID, parent_path="/sitecore/content/a", parent_id=HOME_ID)
        add_child(source, "c", OLD_ID, parent_path="/sitecore/content/a/b", parent_id=LEGACY_ID)
        engine = make_engine(max_depth=1)
        queue = RetryQueue()

        engine.load_tree(root, queue, DuplicateIdConsistencyChecker())

        (entry,) = queue.pending
        assert entry.kind is RetryKind.TREE
        assert entry.path == "/sitecore/content/a/b"
        assert entry.error.kind is ErrorKind.DEPTH_EXCEEDED


class TestStructuralRetry:
    def test_standard_values_load_after_siblings(self, engine, source, root, evaluator):
        add_child(source, "__Standard Values", STANDARD_VALUES_ID)
        add_child(source, "home", HOME_ID)
        queue = RetryQueue()

        engine.load_tree(root, queue, DuplicateIdConsistencyChecker())

        paths = loaded_paths(evaluator)
        assert paths.index("/sitecore/content/home") < paths.index("/sitecore/content/__Standard Values")
        assert len(queue) == 0

    def test_failed_structural_retry_is_demoted(self, engine, source, root, evaluator):
        add_child(source, "__Standard Values", STANDARD_VALUES_ID)

        def create(item):
            if item.id == STANDARD_VALUES_ID:
                raise SyncError("still broken")
            return None

        evaluator.evaluate_new_serialized_item.side_effect = create
        queue = RetryQueue()

        engine.load_tree(root, queue, DuplicateIdConsistencyChecker())

        (entry,) = queue.pending
        assert entry.kind is RetryKind.ITEM
        assert entry.path == "/sitecore/content/__Standard Values"


class TestLoadAll:
    def test_replays_queued_failures(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        attempts = []

        def create(item):
            attempts.append(item.item_path)
            if len(attempts) == 1:
                raise SyncError("parent not ready")
            return None

        evaluator.evaluate_new_serialized_item.side_effect = create
        queue = RetryQueue()

        report = engine.load_all([root], queue, DuplicateIdConsistencyChecker())

        assert report.ok
        assert [e.path for e in report.succeeded] == ["/sitecore/content/home"]
        assert attempts == ["/sitecore/content/home", "/sitecore/content/home"]
        assert len(queue) == 0
        assert live_store.completed_databases == [DATABASE]

    def test_reports_failures_that_fail_again(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        evaluator.evaluate_new_serialized_item.side_effect = SyncError("always broken")

        report = engine.load_all([root], RetryQueue(), DuplicateIdConsistencyChecker())

        assert not report.ok
        assert [e.path for e in report.failures] == ["/sitecore/content/home"]
        assert live_store.completed_databases == [DATABASE]

    def test_events_muted_while_loading_but_not_during_replay(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        muted = []

        def create(item):
            muted.append(live_store.events_are_muted)
            if len(muted) == 1:
                raise SyncError("retry me")
            return None

        evaluator.evaluate_new_serialized_item.side_effect = create

        engine.load_all([root], RetryQueue(), DuplicateIdConsistencyChecker())

        assert muted == [True, False]
        assert not live_store.events_are_muted

    def test_feedback_suppressed_during_evaluation(self, engine, source, root, evaluator, live_store):
        add_child(source, "home", HOME_ID)
        seen = []
        evaluator.evaluate_new_serialized_item.side_effect = lambda item: seen.append(live_store.feedback.disabled)

        engine.load_all([root], RetryQueue(), DuplicateIdConsistencyChecker())

        assert seen == [True]
        assert not live_store.feedback.disabled

    def test_on_root_loaded_called_per_root(self, engine, source, root):
        home = add_child(source, "home", HOME_ID)
        loaded = []

        engine.load_all([root, home], RetryQueue(), DuplicateIdConsistencyChecker(), on_root_loaded=loaded.append)

        assert loaded == [root, home]

    def test_consistency_violation_propagates(self, engine, source, root):
        add_child(source, "home", HOME_ID)
        add_child(source, "copy", HOME_ID)

        with pytest.raises(SyncError) as exc_info:
            engine.load_all([root], RetryQueue(), DuplicateIdConsistencyChecker())

        assert exc_info.value.kind is ErrorKind.CONSISTENCY
