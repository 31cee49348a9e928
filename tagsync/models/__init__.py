"""
Data Models Package

This package contains all Pydantic models used by the tag sync layer.
All data flowing through the system must conform to these schemas.
"""

from tagsync.models.tag import (
    ReconciliationReport,
    ReconciliationRequest,
    RecordTagLink,
    Tag,
    TagDiff,
)
from tagsync.models.record import (
    NewRecord,
    RecordType,
    SaveOutcome,
)
from tagsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Tag models
    "ReconciliationReport",
    "ReconciliationRequest",
    "RecordTagLink",
    "Tag",
    "TagDiff",
    # Record models
    "NewRecord",
    "RecordType",
    "SaveOutcome",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
