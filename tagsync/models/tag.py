"""
Tag Data Models

These models describe the rows the sync layer reads and writes, and the
values that flow through one reconciliation run.

DESIGN DECISION: Tag and link rows are plain snapshots of what the store
returned. The sync layer never caches them between runs; every
reconciliation starts from a fresh read.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Tag(BaseModel):
    """
    A user-defined, owner-scoped label.

    Names are case-insensitively unique per owner. The store's uniqueness
    constraint enforces that, not this model.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Tag primary key")
    owner_id: str = Field(..., min_length=1, description="Owner of the tag")
    name: str = Field(..., min_length=1, description="Normalized tag name")
    created_at: Optional[datetime] = Field(
        default=None,
        description="Set by the store on insert"
    )

    @classmethod
    def from_row(cls, row: dict[str, Any], owner_column: str = "owner_id") -> "Tag":
        """Build a Tag from a raw table row."""
        return cls(
            id=str(row["id"]),
            owner_id=str(row[owner_column]),
            name=row["name"],
            created_at=row.get("created_at"),
        )


class RecordTagLink(BaseModel):
    """Association between a financial record and a tag."""
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(..., min_length=1)
    tag_id: str = Field(..., min_length=1)

    def to_row(self, record_column: str = "record_id") -> dict[str, str]:
        return {record_column: self.record_id, "tag_id": self.tag_id}


class ReconciliationRequest(BaseModel):
    """
    Input of one reconciliation run.

    Transient: consumed entirely within one call and never persisted.
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str
    record_id: str
    raw_tag_string: str = ""


class TagDiff(BaseModel):
    """
    Changes needed to turn the current link set into the desired one.

    to_add holds tag names, to_remove holds tag ids.
    """

    to_add: list[str] = Field(default_factory=list)
    to_remove: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


class ReconciliationReport(BaseModel):
    """Everything that happened during one reconciliation run."""

    request: ReconciliationRequest
    desired: list[str] = Field(
        default_factory=list,
        description="Normalized tag names derived from the raw string"
    )
    diff: Optional[TagDiff] = Field(
        default=None,
        description="None when the current state could not be read"
    )
    linked: list[str] = Field(
        default_factory=list,
        description="Names linked (or found already linked) in this run"
    )
    removed: list[str] = Field(
        default_factory=list,
        description="Tag ids unlinked in this run"
    )
    errors: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors
