"""
Main Orchestrator for Tag Sync

This module ties together all the components and defines the
end-to-end flows for:
1. Save record (record row → tag sync → message + optional warning)
2. Update tags (tag sync for an already saved record)

DESIGN DECISION: The record write and the tag sync are two steps with no
transaction around them. Once the record is saved the user is told so,
whatever happens to the tags. Tag problems become a secondary warning.

This is the "glue" callers (form handlers, API routes) talk to.
"""

from typing import Optional
from uuid import UUID

import structlog

from tagsync.audit import AuditLogger, configure_logging, create_correlation_id
from tagsync.config import TagSettings, get_settings
from tagsync.execution import ExecutionOptions, ResilientExecutor
from tagsync.models.record import NewRecord, SaveOutcome
from tagsync.reconciliation import TagReconciler
from tagsync.services.storage import (
    ConnectionInterface,
    InMemoryConnection,
    StorageError,
    create_elevated_connection,
    create_user_connection,
    default_unique_keys,
)


logger = structlog.get_logger(__name__)


def tag_warning(tag_errors: list[str], verb: str = "saved") -> Optional[str]:
    """Secondary warning shown next to the success message, if any."""
    if not tag_errors:
        return None
    return f"Record {verb}, but failed to process some tags: {', '.join(tag_errors)}"


class RecordSaveFlow:
    """
    Orchestrates saving a financial record together with its tags.

    Flow:
    1. Insert the record (through the executor, with fallback)
    2. Reconcile the tag string against the new record id
    3. Report success, plus a warning if any tag failed

    A failed record insert raises: nothing was saved, so there is no
    success to report. A failed tag sync never raises.

    The record insert falls back to the elevated connection but is not
    retried with backoff by default: an insert whose reply was lost may
    already have landed, and repeating it would save the record twice.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        reconciler: TagReconciler,
        tag_settings: Optional[TagSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        insert_options: Optional[ExecutionOptions] = None,
    ):
        self._executor = executor
        self._reconciler = reconciler
        self._settings = tag_settings or TagSettings()
        self._audit_logger = audit_logger or AuditLogger()
        self._insert_options = insert_options or ExecutionOptions(max_retries=0)

    async def save_record(
        self,
        owner_id: str,
        record: NewRecord,
        raw_tags: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> SaveOutcome:
        """
        Save a record, then sync its tags.

        Returns:
            SaveOutcome with the new record id. message is always the
            success message; warning is set only if tags failed.

        Raises:
            StorageError: If the record itself could not be saved
        """
        correlation_id = correlation_id or create_correlation_id()
        owner_id = str(owner_id)
        row = record.to_row(owner_id, self._settings.owner_column)

        try:
            saved = await self._executor.try_with_fallback(
                lambda conn: conn.insert(self._settings.records_table, row),
                options=self._insert_options,
                label="insert_record",
            )
        except StorageError as e:
            self._audit_logger.log_external_service_error(
                service="storage",
                error_message=str(e),
                correlation_id=correlation_id,
                error_code=e.code,
            )
            raise

        record_id = saved.get("id") if saved else None
        if not record_id:
            raise StorageError(f"Saved {record.record_type.value} has no id")
        record_id = str(record_id)

        self._audit_logger.log_record_saved(
            record_id=record_id,
            record_type=record.record_type.value,
            amount=str(record.amount),
            correlation_id=correlation_id,
        )

        report = await self._reconciler.reconcile_with_report(
            owner_id, record_id, raw_tags, correlation_id=correlation_id
        )
        noun = record.record_type.value.capitalize()
        return SaveOutcome(
            record_id=record_id,
            message=f"{noun} added successfully!",
            tag_errors=list(report.errors),
            warning=tag_warning(report.errors, verb="added"),
        )

    async def update_record_tags(
        self,
        owner_id: str,
        record_id: str,
        raw_tags: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> SaveOutcome:
        """
        Sync tags of a record that is already saved (edit path).

        The caller has already written any field changes to the record.
        """
        errors = (await self._reconciler.reconcile_with_report(
            owner_id, record_id, raw_tags, correlation_id=correlation_id
        )).errors
        return SaveOutcome(
            record_id=str(record_id),
            message="Record updated successfully!",
            tag_errors=list(errors),
            warning=tag_warning(errors, verb="updated"),
        )

    async def load_tag_string(self, record_id: str) -> str:
        """Current tags of a record, formatted for an edit field."""
        return await self._reconciler.current_tag_string(record_id)


def build_components(
    primary: ConnectionInterface,
    elevated: Optional[ConnectionInterface] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> tuple[ResilientExecutor, TagReconciler, RecordSaveFlow]:
    """Wire executor, reconciler and flow around given connections."""
    settings = get_settings()
    executor_settings = settings.executor
    tag_settings = settings.tags
    audit_logger = audit_logger or AuditLogger()

    executor = ResilientExecutor(
        primary=primary,
        elevated=elevated,
        default_options=ExecutionOptions(
            max_retries=executor_settings.max_retries,
            initial_delay_ms=executor_settings.initial_delay_ms,
        ),
    )
    reconciler = TagReconciler(
        executor,
        tag_settings=tag_settings,
        executor_settings=executor_settings,
        audit_logger=audit_logger,
    )
    flow = RecordSaveFlow(
        executor,
        reconciler,
        tag_settings=tag_settings,
        audit_logger=audit_logger,
    )
    return executor, reconciler, flow


async def check_tables(
    connection: ConnectionInterface,
    tag_settings: Optional[TagSettings] = None,
) -> dict[str, bool]:
    """
    Check that every table the sync layer writes is reachable.

    Returns {table_name: reachable}. Use at startup, next to
    validate_all_settings(), to catch a missing migration or RLS policy
    before the first save.
    """
    tag_settings = tag_settings or TagSettings()
    tables = (
        tag_settings.records_table,
        tag_settings.tags_table,
        tag_settings.links_table,
    )
    results = {table: await connection.table_exists(table) for table in tables}
    missing = [table for table, ok in results.items() if not ok]
    if missing:
        logger.warning("tables_unreachable", connection=connection.name, tables=missing)
    return results


async def create_app_components(
    use_storage: bool = True,
    access_token: Optional[str] = None,
) -> tuple[ResilientExecutor, TagReconciler, RecordSaveFlow]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to connect to Supabase.
                    Set to False for local runs and tests; an in-memory
                    store with the same uniqueness rules is used instead.
        access_token: The signed-in user's JWT (required with use_storage)

    Returns:
        (executor, reconciler, record_save_flow)
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)

    if not use_storage:
        store = InMemoryConnection(
            name="primary",
            unique_keys=default_unique_keys(settings.tags),
        )
        return build_components(store, store.view("elevated"))

    if not access_token:
        raise ValueError("access_token is required when use_storage is True")

    supabase_settings = settings.supabase
    primary = await create_user_connection(access_token, supabase_settings)
    elevated = await create_elevated_connection(supabase_settings)
    await check_tables(primary, settings.tags)

    components = build_components(primary, elevated)
    executor = components[0]
    if not executor.has_fallback:
        logger.warning("no_elevated_fallback", reason="SUPABASE_SERVICE_ROLE_KEY not set")
    return components
