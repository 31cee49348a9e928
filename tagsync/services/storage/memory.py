"""
In-Memory Storage Implementation

Keeps tables as lists of dicts and enforces the same uniqueness rules the
hosted database does, so conflict handling can be exercised without a
network. Used by the test suite and by create_app_components(use_storage=False).

Several connections can share one set of tables through view(), which is
how an identity-scoped and an elevated connection are modelled locally.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from tagsync.config import TagSettings
from tagsync.services.storage.interface import (
    ConflictError,
    ConnectionInterface,
    RowFilter,
)


UniqueKey = Callable[[dict[str, Any]], tuple]


def default_unique_keys(tag_settings: Optional[TagSettings] = None) -> dict[str, list[UniqueKey]]:
    """
    Uniqueness rules of the tag tables.

    tags:        (owner, lower(name))
    record_tags: (record, tag)
    """
    tag_settings = tag_settings or TagSettings()
    owner_column = tag_settings.owner_column
    record_column = tag_settings.link_record_column

    return {
        tag_settings.tags_table: [
            lambda row: (row.get(owner_column), str(row.get("name", "")).lower()),
        ],
        tag_settings.links_table: [
            lambda row: (row.get(record_column), row.get("tag_id")),
        ],
    }


class InMemoryConnection(ConnectionInterface):
    """Connection backed by process memory."""

    def __init__(
        self,
        name: str = "memory",
        unique_keys: Optional[dict[str, list[UniqueKey]]] = None,
        tables: Optional[dict[str, list[dict[str, Any]]]] = None,
    ):
        self.name = name
        self._unique_keys = unique_keys if unique_keys is not None else default_unique_keys()
        self._tables: dict[str, list[dict[str, Any]]] = (
            tables if tables is not None else defaultdict(list)
        )

    def view(self, name: str) -> "InMemoryConnection":
        """Another connection over the same tables."""
        return InMemoryConnection(
            name=name,
            unique_keys=self._unique_keys,
            tables=self._tables,
        )

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Snapshot of a table's rows (test and debugging helper)."""
        return [dict(row) for row in self._tables.get(table, [])]

    async def find(self, table: str, filter: RowFilter) -> Optional[dict[str, Any]]:
        for row in self._tables.get(table, []):
            if filter.matches(row):
                return dict(row)
        return None

    async def select(self, table: str, filter: RowFilter) -> list[dict[str, Any]]:
        return [dict(row) for row in self._tables.get(table, []) if filter.matches(row)]

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", str(uuid4()))
        stored.setdefault("created_at", datetime.now(timezone.utc))

        existing = self._tables.setdefault(table, [])
        for key in self._unique_keys.get(table, []):
            new_key = key(stored)
            if any(key(other) == new_key for other in existing):
                raise ConflictError(
                    f"duplicate key value violates unique constraint on {table}: {new_key}"
                )

        existing.append(stored)
        return dict(stored)

    async def delete(self, table: str, filter: RowFilter) -> None:
        if filter.is_empty:
            raise ValueError("Refusing to delete without a filter")
        rows = self._tables.get(table, [])
        rows[:] = [row for row in rows if not filter.matches(row)]

    async def table_exists(self, table: str) -> bool:
        return table in self._tables or table in self._unique_keys
