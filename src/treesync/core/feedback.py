"""
Scoped "sync feedback disabled" switch.

While the loader writes into the live store, the store must not treat those
writes as user edits and feed them back into the serialization pipeline.
The switch is owned by the live store and handed to whoever needs it; it is
acquired with ``suppressed()`` and always restored to its previous value,
whether the guarded block returns, is skipped or raises.

Example:
    >>> switch = FeedbackSwitch()
    >>> with switch.suppressed():
    ...     switch.disabled
    True
    >>> switch.disabled
    False
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager


class FeedbackSwitch:
    """Re-entrant on/off flag with scoped acquisition."""

    def __init__(self, disabled: bool = False):
        self._disabled = disabled

    @property
    def disabled(self) -> bool:
        return self._disabled

    @contextmanager
    def suppressed(self) -> Iterator[FeedbackSwitch]:
        previous = self._disabled
        self._disabled = True
        try:
            yield self
        finally:
            self._disabled = previous

    def __repr__(self) -> str:
        return f"FeedbackSwitch(disabled={self._disabled})"
