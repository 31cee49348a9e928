"""
Audit Models for Tag Sync

Every reconciliation step that touches the store is logged as an event.
This provides:
1. Traceability of which tags were created, linked and unlinked
2. Debugging information when a sync only partly succeeds
3. A correlation id tying together all events of one save

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every phase of a reconciliation has its own event type.
    """
    # Record persistence
    RECORD_SAVED = "record_saved"

    # Reconciliation lifecycle
    RECONCILIATION_STARTED = "reconciliation_started"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECONCILIATION_PARTIAL = "reconciliation_partial"
    CURRENT_STATE_UNAVAILABLE = "current_state_unavailable"

    # Tag and link changes
    TAG_CREATED = "tag_created"
    TAG_CONFLICT_RESOLVED = "tag_conflict_resolved"
    TAGS_LINKED = "tags_linked"
    TAGS_UNLINKED = "tags_unlinked"
    TAG_FAILED = "tag_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    One step of a record save or tag sync, as written to the log.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Identifier of this log entry"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="UTC time the step finished"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Which step of the sync this is"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Maps to the log level the event is written at"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'record', 'tag')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Record or tag id"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one record save)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="One-line summary for humans reading the log"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Names, ids and error lists for this step"
    )

    # Set on failure events only
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Flatten to keyword arguments for structlog.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Constructors for every event the sync layer emits.

    Usage:
        event = AuditEventBuilder.tag_created(tag_id, owner_id, name, correlation_id)
        event = AuditEventBuilder.reconciliation_completed(record_id, ...)
    """

    @staticmethod
    def record_saved(
        record_id: str,
        record_type: str,
        amount: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_SAVED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Saved {record_type} of {amount}",
            details={
                "record_type": record_type,
                "amount": amount,
            },
        )

    @staticmethod
    def reconciliation_started(
        record_id: str,
        desired: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_STARTED,
            severity=AuditSeverity.DEBUG,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Reconciling {len(desired)} tags",
            details={"desired": desired},
        )

    @staticmethod
    def current_state_unavailable(
        record_id: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURRENT_STATE_UNAVAILABLE,
            severity=AuditSeverity.ERROR,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="Could not read current tags; reconciliation aborted",
            error_message=error_message,
        )

    @staticmethod
    def tag_created(
        tag_id: str,
        owner_id: str,
        name: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAG_CREATED,
            entity_type="tag",
            entity_id=tag_id,
            correlation_id=correlation_id,
            description=f"Created tag: {name}",
            details={"owner_id": owner_id, "name": name},
        )

    @staticmethod
    def tag_conflict_resolved(
        tag_id: str,
        name: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAG_CONFLICT_RESOLVED,
            severity=AuditSeverity.WARNING,
            entity_type="tag",
            entity_id=tag_id,
            correlation_id=correlation_id,
            description=f"Tag {name} was created concurrently; reusing it",
            details={"name": name},
        )

    @staticmethod
    def tag_failed(
        record_id: str,
        name: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAG_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Tag {name} could not be applied",
            details={"name": name},
            error_message=error_message,
        )

    @staticmethod
    def tags_linked(
        record_id: str,
        names: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAGS_LINKED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Linked {len(names)} tags",
            details={"names": names},
        )

    @staticmethod
    def tags_unlinked(
        record_id: str,
        tag_ids: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TAGS_UNLINKED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Unlinked {len(tag_ids)} tags",
            details={"tag_ids": tag_ids},
        )

    @staticmethod
    def reconciliation_finished(
        record_id: str,
        linked: list[str],
        removed: list[str],
        errors: list[str],
        correlation_id: UUID
    ) -> AuditEvent:
        if errors:
            return AuditEvent(
                event_type=AuditEventType.RECONCILIATION_PARTIAL,
                severity=AuditSeverity.WARNING,
                entity_type="record",
                entity_id=record_id,
                correlation_id=correlation_id,
                description=f"Tag sync finished with {len(errors)} errors",
                details={
                    "linked": linked,
                    "removed": removed,
                    "errors": errors,
                },
            )
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_COMPLETED,
            entity_type="record",
            entity_id=record_id,
            correlation_id=correlation_id,
            description="Tag sync finished",
            details={
                "linked": linked,
                "removed": removed,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: UUID,
        error_code: Optional[str] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_code=error_code,
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
