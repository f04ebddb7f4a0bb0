"""
Explicit success/failure return value.

Used where a failure must be turned into a fallback (cache miss, stale
read) instead of propagating.
"""
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True)
class Result(Generic[T, E]):
    """Either a value or an error, never both."""
    value: Optional[T] = None
    error: Optional[E] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T, E]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: E) -> "Result[T, E]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value

    def value_or(self, default: Optional[T]) -> Optional[T]:
        return self.value if self.error is None else default
