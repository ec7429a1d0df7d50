"""
treesync - converge a live content tree to a serialized, file-based tree.

- treesync.core: errors, results, logging, settings and value records
- treesync.sync: the tree walk (TreeSyncEngine), retry queue, consistency check
- treesync.merge: the per-item merge engine (ItemMergeEngine)
- treesync.stores: filesystem serialization store and in-memory live store
"""

__version__ = "0.1.0"

from treesync.core import *  # noqa: E402,F403
from treesync.evaluators import NewItemsOnlyEvaluator, SerializedAsMasterEvaluator  # noqa: E402
from treesync.merge import ItemMergeEngine  # noqa: E402
from treesync.sync import DuplicateIdConsistencyChecker, ReplayReport, RetryQueue, TreeSyncEngine  # noqa: E402
