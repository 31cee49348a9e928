"""
Tag Reconciliation Engine

DESIGN DECISION: Tag sync runs AFTER the owning record is saved and is
allowed to fail partially. reconcile() never raises; it returns one
human-readable message per problem so the caller can keep its success
message and add a warning.

FLOW (one call):
1. Normalize the raw tag string
2. Read the record's current links (abort with one error if this fails)
3. Diff desired names against current names
4. Remove links that are no longer wanted (failure recorded, not fatal)
5. For each new name, concurrently: find the tag, or create it; a
   uniqueness conflict on create means another client won the race,
   so look it up again
6. Link every resolved tag; "already linked" counts as success
7. Return the collected errors

Two concurrent reconciliations of the same record are not coordinated.
The last writer's link set wins.
"""

import asyncio
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from tagsync.audit import AuditLogger, create_correlation_id
from tagsync.config import ExecutorSettings, TagSettings
from tagsync.execution import ExecutionOptions, ResilientExecutor
from tagsync.models.tag import (
    ReconciliationReport,
    ReconciliationRequest,
    RecordTagLink,
    Tag,
    TagDiff,
)
from tagsync.reconciliation.normalizer import TagNormalizer
from tagsync.reconciliation.outcomes import (
    Conflict,
    Failed,
    Ok,
    capture,
    describe_error,
)
from tagsync.services.storage import ConflictError, ConnectionInterface, RowFilter


logger = structlog.get_logger(__name__)


def _not_a_conflict(error: BaseException) -> bool:
    return not isinstance(error, ConflictError)


def compute_diff(desired: list[str], current: dict[str, str]) -> TagDiff:
    """
    Plan the changes that turn current into desired.

    Args:
        desired: Normalized names, in input order
        current: tag_id -> name of the record's linked tags

    Current names are compared lowercased, so rows written before names
    were normalized still match.
    """
    desired_set = set(desired)
    current_names = {name.lower() for name in current.values()}

    return TagDiff(
        to_add=[name for name in desired if name not in current_names],
        to_remove=[
            tag_id for tag_id, name in current.items()
            if name.lower() not in desired_set
        ],
        unchanged=[name for name in desired if name in current_names],
    )


class TagReconciler:
    """
    Makes a record's persisted tags match a free-form tag string.

    Every remote call goes through the injected ResilientExecutor.
    The reconciler holds no state between calls.
    """

    def __init__(
        self,
        executor: ResilientExecutor,
        tag_settings: Optional[TagSettings] = None,
        executor_settings: Optional[ExecutorSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._executor = executor
        self._settings = tag_settings or TagSettings()
        self._normalizer = TagNormalizer(self._settings)
        self._audit = audit_logger or AuditLogger()

        executor_settings = executor_settings or ExecutorSettings()
        # Whole-record reads and the bulk unlink use the default policy
        self._record_options = ExecutionOptions(
            max_retries=executor_settings.max_retries,
            initial_delay_ms=executor_settings.initial_delay_ms,
        )
        self._tag_read_options = ExecutionOptions(
            max_retries=executor_settings.tag_max_retries,
            initial_delay_ms=executor_settings.initial_delay_ms,
        )
        # Conflicts are answers, not failures: hand them back without backoff
        self._tag_write_options = ExecutionOptions(
            max_retries=executor_settings.tag_max_retries,
            initial_delay_ms=executor_settings.initial_delay_ms,
            retry_if=_not_a_conflict,
        )

    @property
    def normalizer(self) -> TagNormalizer:
        return self._normalizer

    async def reconcile(
        self,
        owner_id: str,
        record_id: str,
        raw_tag_string: Optional[str],
    ) -> list[str]:
        """
        Sync a record's tags to raw_tag_string.

        Returns:
            Error messages, one per failed tag or phase. Empty on success.
            Callers detect partial failure by length, not by catching.
        """
        report = await self.reconcile_with_report(owner_id, record_id, raw_tag_string)
        return list(report.errors)

    async def reconcile_with_report(
        self,
        owner_id: str,
        record_id: str,
        raw_tag_string: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> ReconciliationReport:
        """Like reconcile(), but returns the full report."""
        correlation_id = correlation_id or create_correlation_id()
        request = ReconciliationRequest(
            owner_id=str(owner_id),
            record_id=str(record_id),
            raw_tag_string=raw_tag_string or "",
        )
        report = ReconciliationReport(
            request=request,
            desired=self._normalizer.parse(request.raw_tag_string),
        )

        self._audit.log_reconciliation_started(
            record_id=request.record_id,
            desired=report.desired,
            correlation_id=correlation_id,
        )

        try:
            await self._reconcile(report, correlation_id)
        except Exception as e:
            logger.exception("reconciliation_crashed", record_id=request.record_id)
            self._audit.log_error(
                error_type=e.__class__.__name__,
                error_message=str(e),
                details={"record_id": request.record_id},
                correlation_id=correlation_id,
            )
            report.errors.append(f"Unexpected error while syncing tags: {describe_error(e)}")

        self._audit.log_reconciliation_finished(
            record_id=request.record_id,
            linked=report.linked,
            removed=report.removed,
            errors=report.errors,
            correlation_id=correlation_id,
        )
        return report

    async def _reconcile(self, report: ReconciliationReport, correlation_id: UUID) -> None:
        request = report.request

        # Current state
        current = await capture(self._executor.execute(
            lambda conn: self._load_current(conn, request.record_id),
            options=self._record_options,
            label="load_current_tags",
        ))
        if not isinstance(current, Ok):
            reason = describe_error(current.error)
            report.errors.append(f"Error fetching current tags: {reason}")
            self._audit.log_current_state_unavailable(
                record_id=request.record_id,
                error_message=reason,
                correlation_id=correlation_id,
            )
            return

        diff = compute_diff(report.desired, current.value)
        report.diff = diff
        logger.debug(
            "tag_diff",
            record_id=request.record_id,
            to_add=diff.to_add,
            to_remove=diff.to_remove,
            unchanged=diff.unchanged,
        )

        if diff.to_remove:
            await self._remove_links(report, diff.to_remove, correlation_id)

        if not diff.to_add:
            return

        resolved = await self._gather(
            diff.to_add,
            [self._resolve_tag(request.owner_id, name, correlation_id) for name in diff.to_add],
        )
        tags: list[Tag] = []
        for name, result in resolved:
            if isinstance(result, Tag):
                tags.append(result)
            else:
                self._record_tag_error(report, name, result, correlation_id)

        if not tags:
            return

        linked = await self._gather(
            [tag.name for tag in tags],
            [self._link_tag(request.record_id, tag) for tag in tags],
        )
        for name, result in linked:
            if result is None:
                report.linked.append(name)
            else:
                self._record_tag_error(report, name, result, correlation_id)

        if report.linked:
            self._audit.log_tags_linked(
                record_id=request.record_id,
                names=report.linked,
                correlation_id=correlation_id,
            )

    async def _gather(self, names: list[str], coroutines: list) -> list[tuple[str, Any]]:
        """
        Run per-tag coroutines concurrently and pair results with names.

        One coroutine failing never cancels the others; a stray exception
        becomes that tag's error message.
        """
        results = await asyncio.gather(*coroutines, return_exceptions=True)
        paired = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.exception("tag_task_crashed", tag=name, exc_info=result)
                result = f'Error processing tag "{name}": {describe_error(result)}'
            paired.append((name, result))
        return paired

    def _record_tag_error(
        self,
        report: ReconciliationReport,
        name: str,
        message: str,
        correlation_id: UUID,
    ) -> None:
        report.errors.append(message)
        self._audit.log_tag_failed(
            record_id=report.request.record_id,
            name=name,
            error_message=message,
            correlation_id=correlation_id,
        )

    async def _load_current(self, conn: ConnectionInterface, record_id: str) -> dict[str, str]:
        """tag_id -> name for every tag linked to the record."""
        links = await conn.select(
            self._settings.links_table,
            RowFilter(eq={self._settings.link_record_column: record_id}),
        )
        tag_ids: list[str] = []
        for link in links:
            tag_id = str(link["tag_id"])
            if tag_id not in tag_ids:
                tag_ids.append(tag_id)
        if not tag_ids:
            return {}

        rows = await conn.select(
            self._settings.tags_table,
            RowFilter(in_={"id": tag_ids}),
        )
        names = {str(row["id"]): row["name"] for row in rows}
        # Links whose tag row is gone (or hidden by RLS) are ignored
        return {tag_id: names[tag_id] for tag_id in tag_ids if tag_id in names}

    async def _remove_links(
        self,
        report: ReconciliationReport,
        tag_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        record_id = report.request.record_id
        outcome = await capture(self._executor.execute(
            lambda conn: conn.delete(
                self._settings.links_table,
                RowFilter(
                    eq={self._settings.link_record_column: record_id},
                    in_={"tag_id": tag_ids},
                ),
            ),
            options=self._record_options,
            label="unlink_tags",
        ))
        if isinstance(outcome, Ok):
            report.removed.extend(tag_ids)
            self._audit.log_tags_unlinked(
                record_id=record_id,
                tag_ids=tag_ids,
                correlation_id=correlation_id,
            )
        else:
            report.errors.append(f"Error removing tags: {describe_error(outcome.error)}")

    async def _find_tag(self, owner_id: str, name: str) -> Optional[Tag]:
        row = await self._executor.try_with_fallback(
            lambda conn: conn.find(
                self._settings.tags_table,
                RowFilter(eq={self._settings.owner_column: owner_id}, ieq={"name": name}),
            ),
            options=self._tag_read_options,
            label=f"find_tag:{name}",
        )
        return Tag.from_row(row, self._settings.owner_column) if row else None

    async def _create_tag(self, owner_id: str, name: str) -> Tag:
        row = await self._executor.try_with_fallback(
            lambda conn: conn.insert(
                self._settings.tags_table,
                {self._settings.owner_column: owner_id, "name": name},
            ),
            options=self._tag_write_options,
            label=f"create_tag:{name}",
        )
        return Tag.from_row(row, self._settings.owner_column)

    async def _resolve_tag(
        self,
        owner_id: str,
        name: str,
        correlation_id: UUID,
    ) -> Union[Tag, str]:
        """Find or create the tag; returns the Tag or an error message."""
        found = await capture(self._find_tag(owner_id, name))
        if isinstance(found, Failed):
            return f'Error finding tag "{name}": {found.reason}'
        if found.value is not None:
            return found.value

        created = await capture(self._create_tag(owner_id, name))
        if isinstance(created, Ok):
            self._audit.log_tag_created(
                tag_id=created.value.id,
                owner_id=owner_id,
                name=name,
                correlation_id=correlation_id,
            )
            return created.value

        if isinstance(created, Failed):
            return f'Error creating tag "{name}": {created.reason}'

        # Conflict: another client created the same name first
        retry = await capture(self._find_tag(owner_id, name))
        if isinstance(retry, Failed):
            return f'Error retrying tag fetch "{name}": {retry.reason}'
        if retry.value is None:
            return f'Failed to create or find tag "{name}" after conflict.'

        self._audit.log_tag_conflict_resolved(
            tag_id=retry.value.id,
            name=name,
            correlation_id=correlation_id,
        )
        return retry.value

    async def _link_tag(self, record_id: str, tag: Tag) -> Optional[str]:
        """Link the tag; returns None on success or an error message."""
        link = RecordTagLink(record_id=record_id, tag_id=tag.id)
        outcome = await capture(self._executor.try_with_fallback(
            lambda conn: conn.insert(
                self._settings.links_table,
                link.to_row(self._settings.link_record_column),
            ),
            options=self._tag_write_options,
            label=f"link_tag:{tag.name}",
        ))
        if isinstance(outcome, (Ok, Conflict)):
            return None
        return f'Error linking tag "{tag.name}": {outcome.reason}'

    async def current_tag_string(self, record_id: str) -> str:
        """
        The record's tags as the comma-separated text an edit form shows.

        Raises:
            StorageError: If the links cannot be read
        """
        current = await self._executor.execute(
            lambda conn: self._load_current(conn, str(record_id)),
            options=self._record_options,
            label="load_current_tags",
        )
        return self._normalizer.format(list(current.values()))

    async def list_owner_tags(self, owner_id: str) -> list[Tag]:
        """
        Every tag an owner has, sorted by name.

        Raises:
            StorageError: If the tags cannot be read
        """
        rows = await self._executor.execute(
            lambda conn: conn.select(
                self._settings.tags_table,
                RowFilter(eq={self._settings.owner_column: str(owner_id)}),
            ),
            options=self._record_options,
            label="list_owner_tags",
        )
        tags = [Tag.from_row(row, self._settings.owner_column) for row in rows]
        return sorted(tags, key=lambda tag: tag.name)
