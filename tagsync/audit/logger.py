"""
Audit Logger

DESIGN DECISION: Every step of a tag sync that touches the store is logged.
This provides:
1. Traceability of tag creation, linking and unlinking
2. Debugging capability for partially failed syncs
3. Correlation ids tying a record save to its tag sync

The audit logger:
- Never raises (logging must not break a save)
- Writes structured JSON lines through structlog
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from tagsync.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity


def _configure_structlog() -> None:
    if structlog.is_configured():
        return

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Importing the package configures structlog only; the host application
# owns the root logger until it calls configure_logging().
_configure_structlog()


def configure_logging(level: str = "INFO") -> None:
    """
    Attach a stdlib handler to the root logger and set its level.

    Called by create_app_components(). Safe to call more than once;
    later calls only change the level.
    """
    logging.basicConfig(format="%(message)s", level=level)
    logging.getLogger().setLevel(level)
    _configure_structlog()


class AuditLogger:
    """
    Central audit logging service for tag sync events.
    """

    def __init__(self, logger: Optional[Any] = None):
        """
        Initialize audit logger.

        Args:
            logger: structlog-compatible logger. Defaults to the
                    "tagsync.audit" logger.
        """
        self._logger = logger or structlog.get_logger("tagsync.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Returns False if the logger itself failed.
        """
        log_dict = event.to_log_dict()

        try:
            if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            elif event.severity == AuditSeverity.DEBUG:
                self._logger.debug("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception:
            return False

        return True

    def log_record_saved(
        self,
        record_id: str,
        record_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.record_saved(
            record_id=record_id,
            record_type=record_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    def log_reconciliation_started(
        self,
        record_id: str,
        desired: list[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.reconciliation_started(
            record_id=record_id,
            desired=desired,
            correlation_id=correlation_id,
        ))

    def log_current_state_unavailable(
        self,
        record_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.current_state_unavailable(
            record_id=record_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_tag_created(
        self,
        tag_id: str,
        owner_id: str,
        name: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.tag_created(
            tag_id=tag_id,
            owner_id=owner_id,
            name=name,
            correlation_id=correlation_id,
        ))

    def log_tag_conflict_resolved(
        self,
        tag_id: str,
        name: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.tag_conflict_resolved(
            tag_id=tag_id,
            name=name,
            correlation_id=correlation_id,
        ))

    def log_tag_failed(
        self,
        record_id: str,
        name: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.tag_failed(
            record_id=record_id,
            name=name,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    def log_tags_linked(
        self,
        record_id: str,
        names: list[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.tags_linked(
            record_id=record_id,
            names=names,
            correlation_id=correlation_id,
        ))

    def log_tags_unlinked(
        self,
        record_id: str,
        tag_ids: list[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.tags_unlinked(
            record_id=record_id,
            tag_ids=tag_ids,
            correlation_id=correlation_id,
        ))

    def log_reconciliation_finished(
        self,
        record_id: str,
        linked: list[str],
        removed: list[str],
        errors: list[str],
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.reconciliation_finished(
            record_id=record_id,
            linked=linked,
            removed=removed,
            errors=errors,
            correlation_id=correlation_id,
        ))

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: UUID,
        error_code: Optional[str] = None,
    ) -> None:
        """Log a failed call to Supabase (or another remote service)."""
        self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
            error_code=error_code,
        ))


def create_correlation_id() -> UUID:
    """
    New id tying one user action to all of its audit events.

    Use this at the start of a new user action (e.g., saving an expense).
    Pass it to the reconciler so tag events share it.
    """
    return uuid4()
