"""Deferred replay of failed item loads and subtree walks.

WHY
───
A sync walk visits items in disk order, but an item can depend on something
that only appears later in the same walk: a parent serialized under another
root, a template defined in a sibling folder. Instead of failing the run,
each failure is captured here and replayed after the walk completes, when
the missing prerequisite has usually been created.

ARCHITECTURE
────────────
::

    RetryQueue(max_attempts=1)
      ├── .add_item_retry(item, error)       ─ one item failed
      ├── .add_tree_retry(reference, error)  ─ a whole subtree walk failed
      ├── .add_structural_retry(level, item) ─ base-state item deferred
      ├── .retry_structural(level, loader)   ─ replay one level's deferrals
      └── .retry_all(item_loader, tree_loader) → ReplayReport

    RetryEntry   ─ kind + reference + last error + attempts
    ReplayReport ─ succeeded / failures after the final pass

POLICY
──────
- Entries are replayed ``max_attempts`` times at most; the default is a
  single deferred pass.
- Entries queued while a pass runs (a re-walked subtree that fails again
  deeper down) are replayed by the next pass, or reported if none remains.
- A consistency violation raised during replay propagates immediately.
- Structural entries that fail their level replay are demoted to
  item-level entries and replayed once more by ``retry_all``.

Example::

    queue = RetryQueue()
    queue.add_item_retry(item, SyncError.parent_not_found(...))
    report = queue.retry_all(load_item, load_tree)
    if not report.ok:
        for entry in report.failures:
            print(entry.path, entry.error)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import partial
from typing import Any

from treesync.core.errors import SyncError, error_kind, is_fatal, is_retryable
from treesync.core.logging import get_logger
from treesync.core.models import SerializedItem, SerializedReference
from treesync.core.result import Err, Ok, try_result

logger = get_logger(__name__)


class RetryKind(str, Enum):
    """How a queued entry is replayed."""

    ITEM = "item"
    TREE = "tree"
    STRUCTURAL = "structural"


@dataclass
class RetryEntry:
    """One failed operation waiting for replay."""

    kind: RetryKind
    reference: SerializedReference
    error: BaseException
    level_path: str | None = None
    attempts: int = 0

    @property
    def path(self) -> str:
        return self.reference.item_path

    @property
    def database(self) -> str:
        return self.reference.database_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "database": self.database,
            "path": self.path,
            "attempts": self.attempts,
            "error_kind": error_kind(self.error).value,
            "error": str(self.error),
        }


@dataclass
class ReplayReport:
    """Outcome of ``RetryQueue.retry_all``."""

    succeeded: list[RetryEntry] = field(default_factory=list)
    failures: list[RetryEntry] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failures),
            "failures": [entry.to_dict() for entry in self.failures],
        }


ItemLoader = Callable[[SerializedItem], Any]
TreeLoader = Callable[[SerializedReference], Any]


class RetryQueue:
    """Single-run, non-concurrent queue of failures awaiting replay."""

    def __init__(self, max_attempts: int = 1):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._entries: list[RetryEntry] = []

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def pending(self) -> list[RetryEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def add_item_retry(self, item: SerializedReference, error: BaseException) -> RetryEntry:
        return self._add(RetryEntry(RetryKind.ITEM, item, error))

    def add_tree_retry(self, reference: SerializedReference, error: BaseException) -> RetryEntry:
        return self._add(RetryEntry(RetryKind.TREE, reference, error))

    def add_structural_retry(
        self, level_path: str, item: SerializedItem, error: BaseException | None = None
    ) -> RetryEntry:
        if error is None:
            error = SyncError.structural_prerequisite(path=item.item_path, item_id=getattr(item, "id", None))
        return self._add(RetryEntry(RetryKind.STRUCTURAL, item, error, level_path=level_path))

    def _add(self, entry: RetryEntry) -> RetryEntry:
        logger.debug(
            "retry_queued",
            kind=entry.kind.value,
            database=entry.database,
            path=entry.path,
            error_kind=error_kind(entry.error).value,
        )
        self._entries.append(entry)
        return entry

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def retry_structural(self, level_path: str, item_loader: ItemLoader) -> list[RetryEntry]:
        """
        Replay the structural entries queued by one tree level.

        Returns the entries that failed again; they stay queued as item-level
        entries for ``retry_all``.
        """
        scoped, remaining = [], []
        for entry in self._entries:
            if entry.kind is RetryKind.STRUCTURAL and entry.level_path == level_path:
                scoped.append(entry)
            else:
                remaining.append(entry)
        if not scoped:
            return []
        self._entries = remaining

        failed = []
        for entry in scoped:
            match try_result(partial(item_loader, entry.reference)):
                case Ok(_):
                    logger.debug("structural_retry_succeeded", path=entry.path)
                case Err(error):
                    if is_fatal(error):
                        raise error
                    demoted = replace(entry, kind=RetryKind.ITEM, error=error, level_path=None)
                    self._add(demoted)
                    failed.append(demoted)
        return failed

    def retry_all(self, item_loader: ItemLoader, tree_loader: TreeLoader) -> ReplayReport:
        """
        Replay every queued entry, at most ``max_attempts`` passes.

        Item-level and structural entries are replayed with ``item_loader``,
        tree-level entries with ``tree_loader`` (a full re-walk of the subtree).
        """
        report = ReplayReport()
        pending = self._drain()

        for attempt in range(1, self._max_attempts + 1):
            if not pending:
                break
            failed: list[RetryEntry] = []
            for entry in pending:
                loader = tree_loader if entry.kind is RetryKind.TREE else item_loader
                match try_result(partial(loader, entry.reference)):
                    case Ok(_):
                        entry.attempts = attempt
                        report.succeeded.append(entry)
                    case Err(error):
                        if is_fatal(error):
                            raise error
                        failed.append(replace(entry, error=error, attempts=attempt))

            # Failures captured inside re-walked subtrees during this pass.
            failed.extend(replace(e, attempts=attempt) for e in self._drain())

            report.failures.extend(e for e in failed if not is_retryable(e.error))
            pending = [e for e in failed if is_retryable(e.error)]

        report.failures.extend(pending)
        for entry in report.failures:
            logger.error("retry_failed", **entry.to_dict())
        if report.attempted:
            logger.info("retry_complete", succeeded=len(report.succeeded), failed=len(report.failures))
        return report

    def _drain(self) -> list[RetryEntry]:
        entries, self._entries = self._entries, []
        return entries


__all__ = ["RetryKind", "RetryEntry", "ReplayReport", "RetryQueue"]
