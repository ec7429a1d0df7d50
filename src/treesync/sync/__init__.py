"""treesync sync -- tree walk, orphan detection and deferred replay."""

from treesync.sync.consistency import DuplicateIdConsistencyChecker
from treesync.sync.loader import ItemLoadResult, ItemLoadStatus, TreeSyncEngine
from treesync.sync.logger import StructlogLoaderLogger
from treesync.sync.retry import ReplayReport, RetryEntry, RetryKind, RetryQueue

__all__ = [
    "DuplicateIdConsistencyChecker",
    "ItemLoadResult",
    "ItemLoadStatus",
    "TreeSyncEngine",
    "StructlogLoaderLogger",
    "ReplayReport",
    "RetryEntry",
    "RetryKind",
    "RetryQueue",
]
