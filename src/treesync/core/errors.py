"""
Structured error types for treesync.

Every failure raised while reconciling the serialized tree into the live
tree is a ``SyncError`` tagged with an ``ErrorKind``. The kind, not the
Python class, decides how the walk reacts: consistency violations abort the
whole run, everything else is isolated to the smallest scope that preserves
sibling progress and queued for deferred replay.

Manifesto:
    - **Tagged kinds over deep hierarchies:** callers branch on ``error.kind``
    - **Explicit fatality:** only ``ErrorKind.CONSISTENCY`` unwinds a run
    - **Rich context:** errors carry item id, parent id, path and database
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                          SyncError                            │
        │          (kind, retryable, context, cause)                    │
        ├──────────────────────────────────────────────────────────────┤
        │  Fatal            │  Structural prerequisite │  Item failures │
        │  ─────            │  ───────────────────────  │  ───────────── │
        │  CONSISTENCY      │  PARENT_NOT_FOUND         │  RECONCILIATION│
        │                   │  MOVED_PARENT_NOT_FOUND   │  MISSING_      │
        │                   │  TEMPLATE_NOT_FOUND       │   TEMPLATE_FIELD│
        │                   │  STRUCTURAL_PREREQUISITE  │  DEPTH_EXCEEDED│
        │                   │                           │  INVALID_      │
        │                   │                           │   SERIALIZATION│
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = SyncError.parent_not_found(
    ...     database="master", item_id="a1", parent_id="p9", path="/content/home"
    ... )
    >>> error.kind
    <ErrorKind.PARENT_NOT_FOUND: 'PARENT_NOT_FOUND'>
    >>> error.context.parent_id
    'p9'
    >>> is_fatal(error)
    False

    Pattern matching on the kind:

    >>> match error:
    ...     case SyncError(kind=ErrorKind.CONSISTENCY):
    ...         print("abort")
    ...     case SyncError(kind=ErrorKind.PARENT_NOT_FOUND):
    ...         print("retry later")
    retry later

Guardrails:
    ❌ DON'T: Catch ``SyncError`` and swallow ``CONSISTENCY`` kinds
    ✅ DO: Re-raise when ``is_fatal(exc)`` is true

    ❌ DON'T: Lose the original exception when wrapping
    ✅ DO: Pass it as ``cause=``

Tags:
    error-handling, tagged-errors, retry-logic, error-context, treesync
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """
    Classification of reconciliation failures.

    The kind determines the propagation policy of the tree walk. Kinds are
    grouped by how they are handled:

    - **Fatal:** CONSISTENCY - never retried, aborts the entire run
    - **Structural prerequisite:** PARENT_NOT_FOUND, MOVED_PARENT_NOT_FOUND,
      TEMPLATE_NOT_FOUND, STRUCTURAL_PREREQUISITE - resolved once the missing
      parent or template has been materialized elsewhere in the walk
    - **Item failures:** MISSING_TEMPLATE_FIELD, RECONCILIATION,
      DEPTH_EXCEEDED, INVALID_SERIALIZATION - queued for a deferred replay
    - **Reporting:** REPLAY_FAILED - summary of entries that failed again
    """

    CONSISTENCY = "CONSISTENCY"
    PARENT_NOT_FOUND = "PARENT_NOT_FOUND"
    MOVED_PARENT_NOT_FOUND = "MOVED_PARENT_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    STRUCTURAL_PREREQUISITE = "STRUCTURAL_PREREQUISITE"
    MISSING_TEMPLATE_FIELD = "MISSING_TEMPLATE_FIELD"
    RECONCILIATION = "RECONCILIATION"
    DEPTH_EXCEEDED = "DEPTH_EXCEEDED"
    INVALID_SERIALIZATION = "INVALID_SERIALIZATION"
    REPLAY_FAILED = "REPLAY_FAILED"


_NON_RETRYABLE = frozenset({ErrorKind.CONSISTENCY, ErrorKind.REPLAY_FAILED})


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a ``SyncError``.

    Only the fields relevant to a failure are set; ``to_dict()`` drops the
    rest so log lines stay compact.

    Attributes:
        database: Partition the item belongs to
        item_id: Identity of the item being reconciled
        parent_id: Identity of the (serialized) parent
        path: Logical tree path of the item
        field_id: Field involved in a field-level failure
        template_id: Structural type involved in a template failure
        metadata: Additional key-value pairs
    """

    database: str | None = None
    item_id: str | None = None
    parent_id: str | None = None
    path: str | None = None
    field_id: str | None = None
    template_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["database", "item_id", "parent_id", "path", "field_id", "template_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SyncError(Exception):
    """
    The single exception type raised by the sync and merge engines.

    ``SyncError`` carries an ``ErrorKind`` tag instead of relying on a
    subclass per failure mode. All instances carry:

    - **kind:** ``ErrorKind`` deciding fatal / retry behaviour
    - **retryable:** whether a deferred replay may succeed
    - **context:** ``ErrorContext`` with item identity and path
    - **cause:** optional underlying exception (also set as ``__cause__``)

    Use the named constructors (``SyncError.parent_not_found(...)`` etc.) so
    the context fields for each kind are filled consistently.
    """

    __match_args__ = ("kind",)

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.RECONCILIATION,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.retryable = retryable if retryable is not None else kind not in _NON_RETRYABLE
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    # ------------------------------------------------------------------
    # Named constructors
    # ------------------------------------------------------------------

    @classmethod
    def consistency_violation(cls, message: str, *, path: str | None = None, item_id: str | None = None) -> SyncError:
        return cls(message, kind=ErrorKind.CONSISTENCY, context=ErrorContext(path=path, item_id=item_id))

    @classmethod
    def parent_not_found(cls, *, database: str, item_id: str, parent_id: str, path: str) -> SyncError:
        return cls(
            f"Parent {parent_id} of {database}:{path} does not exist",
            kind=ErrorKind.PARENT_NOT_FOUND,
            context=ErrorContext(database=database, item_id=item_id, parent_id=parent_id, path=path),
        )

    @classmethod
    def moved_parent_not_found(cls, *, database: str, item_id: str, parent_id: str, path: str) -> SyncError:
        return cls(
            f"Item {database}:{path} was moved but its new parent {parent_id} does not exist",
            kind=ErrorKind.MOVED_PARENT_NOT_FOUND,
            context=ErrorContext(database=database, item_id=item_id, parent_id=parent_id, path=path),
        )

    @classmethod
    def template_not_found(cls, *, database: str, template_id: str, path: str) -> SyncError:
        return cls(
            f"Template {template_id} for item {database}:{path} not found",
            kind=ErrorKind.TEMPLATE_NOT_FOUND,
            context=ErrorContext(database=database, template_id=template_id, path=path),
        )

    @classmethod
    def missing_template_field(
        cls, *, database: str, path: str, field_id: str, field_name: str, template_name: str
    ) -> SyncError:
        return cls(
            f"Field '{field_name}' ({field_id}) does not exist in template '{template_name}'",
            kind=ErrorKind.MISSING_TEMPLATE_FIELD,
            context=ErrorContext(database=database, path=path, field_id=field_id),
        )

    @classmethod
    def structural_prerequisite(cls, *, path: str, item_id: str | None = None) -> SyncError:
        return cls(
            f"{path} defines base state and is loaded after its siblings",
            kind=ErrorKind.STRUCTURAL_PREREQUISITE,
            context=ErrorContext(path=path, item_id=item_id),
        )

    @classmethod
    def reconciliation_failure(cls, *, database: str, path: str, cause: BaseException) -> SyncError:
        return cls(
            f"Failed to paste item: {path}",
            kind=ErrorKind.RECONCILIATION,
            context=ErrorContext(database=database, path=path),
            cause=cause,
        )

    # ------------------------------------------------------------------

    def with_context(self, **kwargs: Any) -> SyncError:
        """
        Add context to this error (fluent API).

        Usage:
            raise SyncError("Bad document").with_context(path="/content/home")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


# =============================================================================
# HELPERS
# =============================================================================


def is_fatal(error: BaseException) -> bool:
    """Check whether an error must abort the whole run."""
    return isinstance(error, SyncError) and error.kind is ErrorKind.CONSISTENCY


def is_retryable(error: BaseException) -> bool:
    """
    Check if an error is worth a deferred replay.

    Unknown exceptions are treated as retryable: a later pass may find the
    prerequisite that was missing the first time.
    """
    if isinstance(error, SyncError):
        return error.retryable
    return True


def error_kind(error: BaseException) -> ErrorKind:
    """Return the kind of an error, classifying foreign exceptions as RECONCILIATION."""
    if isinstance(error, SyncError):
        return error.kind
    return ErrorKind.RECONCILIATION


__all__ = [
    "ErrorKind",
    "ErrorContext",
    "SyncError",
    "is_fatal",
    "is_retryable",
    "error_kind",
]
