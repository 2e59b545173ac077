"""
Tagged results for object store calls.

Every store operation returns exactly one of:

    Ok(value)            the call succeeded
    NotFound(key)        the key does not exist
    TransientError(...)  network failure, throttling or timeout; retryable
    PermissionDenied(..) credentials rejected; not retryable

Callers branch with isinstance() on these four classes instead of inspecting
ad-hoc flags on loosely shaped responses.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound:
    key: str


@dataclass(frozen=True)
class TransientError:
    key: str
    message: str


@dataclass(frozen=True)
class PermissionDenied:
    key: str
    message: str


StoreResult = Union[Ok[T], NotFound, TransientError, PermissionDenied]


def describe(result: "StoreResult") -> str:
    """Human-readable reason for a non-Ok result."""
    if isinstance(result, NotFound):
        return f"object '{result.key}' does not exist"
    if isinstance(result, TransientError):
        return f"transient storage error on '{result.key}': {result.message}"
    if isinstance(result, PermissionDenied):
        return f"permission denied on '{result.key}': {result.message}"
    return "ok"
