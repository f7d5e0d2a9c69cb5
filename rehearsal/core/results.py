from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .exceptions import RehearsalError

T = TypeVar("T")
E = TypeVar("E", bound=RehearsalError)


@dataclass(frozen=True)
class Result(Generic[T, E]):
    """Outcome of an operation whose failures are part of its contract."""
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

    def unwrap(self) -> T:
        """Return the value, raising the carried error if there is one."""
        if self.error is not None:
            raise self.error
        return self.value
