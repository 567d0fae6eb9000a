"""
Expense and Budget Models

An Expense is supplied by the expense collaborator (manual entry or a
scanned receipt). The engine is responsible for two fields only:
equivalents and rates_at_creation. Both are populated once, at creation
or by backfill, and are never recomputed on read.
"""

from datetime import date as calendar_date
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from monedero.clock import ensure_utc, utc_now
from monedero.models.currency import Currency, CurrencyEquivalents, RateSnapshot
from monedero.models.money import ZERO

UNCATEGORIZED = "Uncategorized"


class ExpenseCategory(BaseModel):
    """User-defined expense category."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = None
    color: Optional[str] = None


class Expense(BaseModel):
    """
    A single expense record.

    Contains personal fields (description, merchant, receipt link).
    These MUST NOT leave the system - see monedero.advisor.anonymizer.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    # What was spent
    amount: Decimal = Field(..., gt=0, description="Amount in the original currency")
    currency: Currency
    date: datetime = Field(..., description="When the expense happened")

    # Classification
    category_id: Optional[str] = None
    category: Optional[ExpenseCategory] = None

    # Personal data (never sent to the AI)
    description: Optional[str] = Field(default=None, max_length=500)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    receipt_id: Optional[UUID] = None

    # Frozen valuation
    equivalents: Optional[CurrencyEquivalents] = None
    rates_at_creation: Optional[RateSnapshot] = None

    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("date", "created_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def is_valued(self) -> bool:
        """True once equivalents have been frozen onto the record."""
        return self.equivalents is not None and self.rates_at_creation is not None


class Budget(BaseModel):
    """
    A spending budget.

    category_id None denotes a global budget covering all spending.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., ge=0)
    currency: Currency = Currency.USD
    category_id: Optional[str] = None
    category_name: Optional[str] = Field(
        default=None,
        description="Name of the budgeted category, when the collaborator provides it"
    )
    spent: Decimal = Field(default=ZERO, ge=0)

    @property
    def is_global(self) -> bool:
        return self.category_id is None


class AnonymizedExpense(BaseModel):
    """
    An expense stripped of everything but what the advisor needs.

    SECURITY: extra="forbid" - no description, merchant, receipt link or
    identifier can be attached to this model, whatever the input shape.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    amount: Decimal
    currency: str
    category: str = UNCATEGORIZED
    date: calendar_date
    equivalent_usd: Decimal = ZERO


class BackfillResult(BaseModel):
    """Outcome of a backfill run."""

    processed: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.processed + self.errors
