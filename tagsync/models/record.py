"""
Financial Record Models

Only the fields the record-save flow needs to write an expense or income
row before handing its id to tag reconciliation.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordType(str, Enum):
    """Kind of financial record."""
    EXPENSE = "expense"
    INCOME = "income"


class NewRecord(BaseModel):
    """
    An expense or income entry about to be saved.

    Tags are not part of the record; they are passed alongside it as the
    raw string the user typed.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount in the record's currency"
    )
    currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    record_date: date = Field(
        default_factory=date.today,
        description="Date the money moved"
    )
    record_type: RecordType = RecordType.EXPENSE
    category_id: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def uppercase_currency(cls, v: str) -> str:
        return v.upper()

    def to_row(self, owner_id: str, owner_column: str = "owner_id") -> dict[str, Any]:
        """Convert to a row for the records table."""
        return {
            owner_column: owner_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "description": self.description,
            "date": self.record_date.isoformat(),
            "type": self.record_type.value,
            "category_id": self.category_id,
        }


class SaveOutcome(BaseModel):
    """
    Result of saving a record together with its tags.

    The record write is already committed when this exists. Tag problems
    show up as a warning next to the success message, never instead of it.
    """

    record_id: str
    message: str
    tag_errors: list[str] = Field(default_factory=list)
    warning: Optional[str] = None

    @property
    def has_warning(self) -> bool:
        return self.warning is not None
