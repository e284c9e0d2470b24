"""
Result type shared by the durable and fast store adapters.

Store adapters never raise for backend trouble: they hand back a ``Failure``
carrying one of the error types below, so callers can tell "the call worked
and found nothing" (``Success(None)``) apart from "the call failed".
The cache engine decides per store what a failure means: durable failures are
re-raised with ``unwrap()``, fast store failures are logged and treated as a miss.

Example:
    result = await store.get("ttl:session")
    match result:
        case Success(None):
            ...  # miss
        case Success(value):
            ...  # hit
        case Failure(error):
            ...  # degrade
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """Represents a successful operation result."""

    value: T

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True, slots=True)
class Failure(Generic[E]):
    """Represents a failed operation result."""

    error: E

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self):
        """Raise the carried error."""
        if isinstance(self.error, BaseException):
            raise self.error
        raise RuntimeError(f"Operation failed: {self.error}")


Result = Union[Success[T], Failure[E]]


def success(value: T) -> Success[T]:
    return Success(value)


def failure(error: E) -> Failure[E]:
    return Failure(error)


class CacheError(Exception):
    """Base class for cache service errors."""


class DurableStoreError(CacheError):
    """The durable store could not complete an operation.

    Always fatal to the cache operation that hit it.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        original_exception: BaseException | None = None,
    ):
        self.operation = operation
        self.message = message
        self.original_exception = original_exception
        super().__init__(f"Durable store error during {operation}: {message}")


class FastStoreError(CacheError):
    """The fast store failed, timed out or is not connected.

    Never leaves the cache engine.
    """

    def __init__(
        self,
        operation: str,
        key: str,
        message: str,
        original_exception: BaseException | None = None,
    ):
        self.operation = operation
        self.key = key
        self.message = message
        self.original_exception = original_exception
        super().__init__(f"Fast store {operation} failed for key {key}: {message}")


class InvalidCacheRequest(CacheError, ValueError):
    """Rejected input (empty key, negative TTL)."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


__all__ = [
    "CacheError",
    "DurableStoreError",
    "Failure",
    "FastStoreError",
    "InvalidCacheRequest",
    "Result",
    "Success",
    "failure",
    "success",
]
