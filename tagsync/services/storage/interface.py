"""
Abstract Connection Interface

DESIGN DECISION: We define an abstract interface for the handful of table
operations the sync layer needs. This allows us to:
1. Run the same code against an identity-scoped and an elevated connection
2. Use in-memory storage for testing
3. Inject connections instead of reaching for a shared client
4. Keep reconciliation logic decoupled from Supabase

The interface is intentionally small - we're not building a query builder.
Just find, select, insert and delete with simple filters.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field


# Postgres SQLSTATE codes the sync layer cares about
UNIQUE_VIOLATION = "23505"
INSUFFICIENT_PRIVILEGE = "42501"


class RowFilter(BaseModel):
    """
    Conjunction of simple column conditions.

    eq:  column equals value
    ieq: column equals value, ignoring case (no wildcards)
    in_: column is one of the listed values
    """

    eq: dict[str, Any] = Field(default_factory=dict)
    ieq: dict[str, str] = Field(default_factory=dict)
    in_: dict[str, list[Any]] = Field(default_factory=dict)

    def matches(self, row: dict[str, Any]) -> bool:
        """Evaluate the filter against a row held in memory."""
        for column, value in self.eq.items():
            if row.get(column) != value:
                return False
        for column, value in self.ieq.items():
            cell = row.get(column)
            if not isinstance(cell, str) or cell.lower() != value.lower():
                return False
        for column, values in self.in_.items():
            if row.get(column) not in values:
                return False
        return True

    @property
    def is_empty(self) -> bool:
        return not (self.eq or self.ieq or self.in_)


class ConnectionInterface(ABC):
    """
    Abstract interface for table access.

    Implementations raise StorageError subclasses so callers can tell
    conflicts, transient failures and permission problems apart.
    """

    #: Label used in logs ("primary", "elevated", ...)
    name: str = "connection"

    @abstractmethod
    async def find(self, table: str, filter: RowFilter) -> Optional[dict[str, Any]]:
        """
        Return the first row matching the filter.

        Args:
            table: Table name
            filter: Conditions the row must satisfy

        Returns:
            The row if found, None otherwise

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def select(self, table: str, filter: RowFilter) -> list[dict[str, Any]]:
        """
        Return every row matching the filter.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a row and return it as stored (with generated columns).

        Raises:
            ConflictError: If a uniqueness constraint is violated
            StorageError: If the write fails for any other reason
        """
        pass

    @abstractmethod
    async def delete(self, table: str, filter: RowFilter) -> None:
        """
        Delete every row matching the filter.

        Raises:
            ValueError: If the filter is empty
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def table_exists(self, table: str) -> bool:
        """
        Check whether a table is reachable with this connection.

        Never raises; any failure counts as "does not exist".
        """
        pass


class StorageError(Exception):
    """
    Base exception for storage operations.

    Carries the store's error code (a Postgres SQLSTATE where available)
    and the original exception.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.code = code
        self.cause = cause
        super().__init__(message)


class ConflictError(StorageError):
    """A uniqueness constraint rejected the write."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, code=UNIQUE_VIOLATION, cause=cause)


class TransientError(StorageError):
    """Network failure or timeout; the same call may succeed later."""
    pass


class PermissionDeniedError(StorageError):
    """The connection is not allowed to perform the operation."""
    pass
