"""
Tagged results for remote calls made during reconciliation.

A uniqueness conflict is an expected answer from the store ("someone got
there first"), not a failure. Wrapping each call in capture() turns the
three possible answers into values the engine branches on, instead of
exception handlers scattered through the algorithm.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Generic, TypeVar, Union

from tagsync.services.storage import ConflictError, StorageError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Conflict:
    error: ConflictError


@dataclass(frozen=True)
class Failed:
    error: Exception

    @property
    def reason(self) -> str:
        return describe_error(self.error)


Outcome = Union[Ok[Any], Conflict, Failed]


async def capture(awaitable: Awaitable[T]) -> Outcome:
    """Await a call and classify its result."""
    try:
        return Ok(await awaitable)
    except ConflictError as e:
        return Conflict(e)
    except Exception as e:
        return Failed(e)


def describe_error(error: BaseException) -> str:
    """Short, user-presentable reason for an error."""
    if isinstance(error, StorageError):
        return error.message
    return str(error) or error.__class__.__name__
