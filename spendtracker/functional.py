from abc import ABC, abstractmethod
from typing import Callable, Generic, TypeVar

from spendtracker.errors import SpendTrackerError

T = TypeVar('T')
U = TypeVar('U')


class Outcome(Generic[T], ABC):
    """Result of a user-facing mutation: Ok, Err or Cancelled.

    Cancelled is not a failure: the user declined a budget warning and
    nothing was changed.
    """

    @abstractmethod
    def map(self, f: Callable[[T], U]) -> 'Outcome[U]':
        pass

    @abstractmethod
    def get_or_else(self, default: T) -> T:
        pass

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return False

    def is_cancelled(self) -> bool:
        return False


class Ok(Outcome[T]):

    def __init__(self, value: T):
        self._value = value

    @property
    def value(self) -> T:
        return self._value

    def map(self, f: Callable[[T], U]) -> 'Outcome[U]':
        return Ok(f(self._value))

    def get_or_else(self, default: T) -> T:
        return self._value

    def is_ok(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"Ok({self._value!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Ok) and self._value == other._value


class Err(Outcome[T]):

    def __init__(self, error: SpendTrackerError):
        self._error = error

    @property
    def error(self) -> SpendTrackerError:
        return self._error

    def map(self, f: Callable[[T], U]) -> 'Outcome[U]':
        return Err(self._error)

    def get_or_else(self, default: T) -> T:
        return default

    def is_err(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"Err({self._error!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Err) and self._error is other._error


class Cancelled(Outcome[T]):

    def __init__(self, reason: str = ""):
        self._reason = reason

    @property
    def reason(self) -> str:
        return self._reason

    def map(self, f: Callable[[T], U]) -> 'Outcome[U]':
        return Cancelled(self._reason)

    def get_or_else(self, default: T) -> T:
        return default

    def is_cancelled(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"Cancelled({self._reason!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, Cancelled)

