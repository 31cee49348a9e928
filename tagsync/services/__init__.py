"""Services package."""

from tagsync.services.storage import (
    ConflictError,
    ConnectionInterface,
    InMemoryConnection,
    PermissionDeniedError,
    RowFilter,
    StorageError,
    SupabaseConnection,
    TransientError,
    create_elevated_connection,
    create_user_connection,
)

__all__ = [
    "ConflictError",
    "ConnectionInterface",
    "InMemoryConnection",
    "PermissionDeniedError",
    "RowFilter",
    "StorageError",
    "SupabaseConnection",
    "TransientError",
    "create_elevated_connection",
    "create_user_connection",
]
