"""
Supabase Storage Implementation

DESIGN DECISION: The hosted store is Supabase (Postgres behind PostgREST)
with row level security. Two kinds of connection exist:
1. Identity-scoped: anon key plus the signed-in user's JWT, so RLS applies
2. Elevated: service role key, bypasses RLS, used only as a fallback

TRADEOFFS:
- PostgREST has no "case-insensitive equals", so ieq filters are sent as
  escaped ilike patterns and re-checked in Python
- No transactions across calls (the sync layer is written to tolerate that)

Errors from postgrest and httpx are translated into the StorageError
hierarchy so the rest of the code never imports either library.
"""

from typing import Any, Optional

import httpx
import structlog
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from tagsync.config import SupabaseSettings, get_settings
from tagsync.services.storage.interface import (
    INSUFFICIENT_PRIVILEGE,
    UNIQUE_VIOLATION,
    ConflictError,
    ConnectionInterface,
    PermissionDeniedError,
    RowFilter,
    StorageError,
    TransientError,
)


logger = structlog.get_logger(__name__)

# PostgREST / gateway codes that mean "not allowed" rather than "broken"
_PERMISSION_CODES = {INSUFFICIENT_PRIVILEGE, "PGRST301", "PGRST302", "401", "403"}


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the pattern matches the literal value."""
    return (
        value.replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )


def translate_error(error: Exception, table: str, operation: str) -> StorageError:
    """Map a postgrest/httpx exception onto the storage error hierarchy."""
    if isinstance(error, APIError):
        code = str(error.code) if error.code is not None else None
        message = f"{operation} on {table} failed: {error.message}"
        if code == UNIQUE_VIOLATION:
            return ConflictError(message, cause=error)
        if code in _PERMISSION_CODES:
            return PermissionDeniedError(message, code=code, cause=error)
        return StorageError(message, code=code, cause=error)

    if isinstance(error, httpx.TransportError):
        return TransientError(
            f"{operation} on {table} failed: {error.__class__.__name__}: {error}",
            cause=error,
        )

    return StorageError(f"{operation} on {table} failed: {error}", cause=error)


class SupabaseConnection(ConnectionInterface):
    """
    ConnectionInterface over a supabase-py AsyncClient.

    The client is injected; use create_user_connection() or
    create_elevated_connection() to build one from settings.
    """

    def __init__(self, client: AsyncClient, name: str = "primary"):
        self._client = client
        self.name = name

    def _apply_filter(self, query, filter: RowFilter):
        for column, value in filter.eq.items():
            query = query.eq(column, value)
        for column, value in filter.ieq.items():
            query = query.ilike(column, escape_like(value))
        for column, values in filter.in_.items():
            query = query.in_(column, list(values))
        return query

    async def _execute(self, query, table: str, operation: str):
        try:
            return await query.execute()
        except (APIError, httpx.TransportError) as e:
            raise translate_error(e, table, operation) from e

    async def select(self, table: str, filter: RowFilter) -> list[dict[str, Any]]:
        query = self._apply_filter(self._client.table(table).select("*"), filter)
        response = await self._execute(query, table, "select")
        rows = response.data or []
        # ilike may still match more than the literal value
        return [row for row in rows if filter.matches(row)]

    async def find(self, table: str, filter: RowFilter) -> Optional[dict[str, Any]]:
        query = self._apply_filter(self._client.table(table).select("*"), filter)
        if not filter.ieq:
            query = query.limit(1)
        response = await self._execute(query, table, "find")
        for row in response.data or []:
            if filter.matches(row):
                return row
        return None

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        query = self._client.table(table).insert(row)
        response = await self._execute(query, table, "insert")
        if not response.data:
            raise StorageError(f"insert on {table} returned no row")
        return response.data[0]

    async def delete(self, table: str, filter: RowFilter) -> None:
        if filter.is_empty:
            raise ValueError("Refusing to delete without a filter")
        query = self._apply_filter(self._client.table(table).delete(), filter)
        await self._execute(query, table, "delete")

    async def table_exists(self, table: str) -> bool:
        try:
            query = self._client.table(table).select("*", count="exact", head=True).limit(1)
            await query.execute()
            return True
        except Exception as e:
            logger.warning("table_check_failed", table=table, connection=self.name, error=str(e))
            return False


async def create_user_connection(
    access_token: str,
    settings: Optional[SupabaseSettings] = None,
) -> SupabaseConnection:
    """
    Build the identity-scoped connection for a signed-in user.

    Requests carry the user's JWT, so row level security applies.
    """
    settings = settings or get_settings().supabase
    client = await acreate_client(settings.url, settings.anon_key)
    client.postgrest.auth(access_token)
    return SupabaseConnection(client, name="primary")


async def create_elevated_connection(
    settings: Optional[SupabaseSettings] = None,
) -> Optional[SupabaseConnection]:
    """
    Build the service-role connection, or None if no key is configured.

    Never hand this connection to code that does not set owner columns
    itself: it bypasses row level security.
    """
    settings = settings or get_settings().supabase
    if not settings.has_elevated_access:
        logger.info("elevated_connection_disabled", reason="no service role key")
        return None
    client = await acreate_client(settings.url, settings.service_role_key)
    return SupabaseConnection(client, name="elevated")
