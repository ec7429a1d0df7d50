"""
Result envelope for the deferred replay of queued sync failures.

Every queued entry must be attempted even when an earlier one fails, so the
replay wraps each attempt with ``try_result`` and matches on the outcome
instead of letting the first exception end the pass.

Examples:
    >>> from treesync.core.result import Ok, Err, try_result
    >>> match try_result(lambda: int("42")):
    ...     case Ok(value):
    ...         print(f"Result: {value}")
    ...     case Err(error):
    ...         print(f"Error: {error}")
    Result: 42
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    error: Exception


Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """Run ``f``; ``Ok`` with its return value, or ``Err`` with what it raised."""
    try:
        return Ok(f())
    except Exception as e:
        return Err(e)


__all__ = ["Ok", "Err", "Result", "try_result"]
