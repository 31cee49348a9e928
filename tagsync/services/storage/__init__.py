"""
Storage Services Package

Provides the abstract connection interface and its implementations.
Supabase is the production backend; the in-memory backend enforces the
same uniqueness rules for tests and local runs.
"""

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
from tagsync.services.storage.memory import (
    InMemoryConnection,
    default_unique_keys,
)
from tagsync.services.storage.supabase_store import (
    SupabaseConnection,
    create_elevated_connection,
    create_user_connection,
    escape_like,
    translate_error,
)

__all__ = [
    # Interface
    "ConnectionInterface",
    "RowFilter",
    "INSUFFICIENT_PRIVILEGE",
    "UNIQUE_VIOLATION",
    # Exceptions
    "ConflictError",
    "PermissionDeniedError",
    "StorageError",
    "TransientError",
    # In-memory implementation
    "InMemoryConnection",
    "default_unique_keys",
    # Supabase implementation
    "SupabaseConnection",
    "create_elevated_connection",
    "create_user_connection",
    "escape_like",
    "translate_error",
]
