"""
Financial Advisor Models

Types shared by the heuristics engine, the AI synthesis layer and the
insight cache.

CRITICAL: FinancialInsightResponse is the strict contract for the AI
response. Any response that does not validate is a failure of the whole
generation attempt. There is no partial-tip fallback.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from monedero.clock import ensure_utc, utc_now
from monedero.models.currency import WriteOutcome
from monedero.models.money import ZERO


class SupportedLocale(str, Enum):
    ES = "es"
    EN = "en"


class TipType(str, Enum):
    WARNING = "warning"
    TIP = "tip"
    SUCCESS = "success"


# =============================================================================
# HEURISTICS OUTPUT
# =============================================================================

class RateInfo(BaseModel):
    """Rates used for the volatility metric."""

    current_primary: Decimal = Field(default=ZERO, ge=0, description="Current official USD/VES")
    current_secondary: Decimal = Field(default=ZERO, ge=0, description="Current P2P USDT/VES")
    previous_primary: Decimal = Field(default=ZERO, ge=0, description="Official USD/VES one period ago")


class TopCategory(BaseModel):
    name: str
    amount_usd: Decimal
    percentage: Decimal


class FinancialMetrics(BaseModel):
    """Metrics computed per request from anonymized data."""

    # Burn rate per day
    spending_velocity_usd: Decimal = ZERO
    spending_velocity_ves: Decimal = ZERO

    # Share of spending outside any budget (0-1)
    unbudgeted_ratio: Decimal = ZERO
    has_unbudgeted_friction: bool = False

    # End-of-month projection (USD)
    s_proj: Decimal = ZERO
    s_current: Decimal = ZERO

    # Time context
    days_passed: int = Field(default=0, ge=0)
    days_remaining: int = Field(default=0, ge=0)

    # % change of the official rate
    rate_volatility: Decimal = ZERO

    top_categories: list[TopCategory] = Field(default_factory=list)


class BudgetStatus(BaseModel):
    total_budget: Decimal = ZERO
    total_spent: Decimal = ZERO
    utilization_percent: Decimal = ZERO


class RateSummary(BaseModel):
    current_usd_ves: Decimal = ZERO
    current_usdt_ves: Decimal = ZERO
    weekly_change: Decimal = ZERO


class AggregatedFinancialData(BaseModel):
    """
    Everything the AI is allowed to see.

    Built only from anonymized expenses. Must pass the PII check
    immediately before synthesis.
    """

    metrics: FinancialMetrics
    category_totals: dict[str, Decimal] = Field(default_factory=dict)
    budget_status: BudgetStatus = Field(default_factory=BudgetStatus)
    rate_info: RateSummary = Field(default_factory=RateSummary)


# =============================================================================
# AI RESPONSE SCHEMA
# =============================================================================

class FinancialTip(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=60)
    body: str = Field(..., min_length=1, max_length=250)
    type: TipType


class FinancialInsightResponse(BaseModel):
    """What the AI must return: exactly three tips and an optional summary."""
    model_config = ConfigDict(extra="forbid")

    tips: list[FinancialTip] = Field(..., min_length=3, max_length=3)
    summary: Optional[str] = Field(default=None, max_length=120)


# =============================================================================
# INSIGHT CACHE
# =============================================================================

class InsightKey(BaseModel):
    """
    Composite cache key: user x period x locale.

    Frozen so it is hashable and can key a plain dict.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=2000, le=9999)
    locale: SupportedLocale = SupportedLocale.ES

    @classmethod
    def for_period(
        cls,
        user_id: str,
        reference: datetime,
        locale: SupportedLocale = SupportedLocale.ES,
    ) -> "InsightKey":
        return cls(
            user_id=user_id,
            month=reference.month,
            year=reference.year,
            locale=locale,
        )


class StoredInsight(BaseModel):
    """A persisted AI output. Functions as a TTL cache entry."""

    id: UUID = Field(default_factory=uuid4)
    key: InsightKey
    metrics: FinancialMetrics
    tips: list[FinancialTip]
    summary: Optional[str] = None
    generated_at: datetime
    valid_until: datetime

    @field_validator("generated_at", "valid_until")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def is_stale_at(self, now: datetime) -> bool:
        return ensure_utc(now) > self.valid_until


class FinancialInsight(BaseModel):
    """An insight as returned to callers."""

    id: UUID
    tips: list[FinancialTip]
    summary: Optional[str] = None
    metrics: FinancialMetrics
    generated_at: datetime
    valid_until: Optional[datetime] = None
    is_stale: bool = False

    @classmethod
    def from_stored(cls, stored: StoredInsight, now: datetime) -> "FinancialInsight":
        return cls(
            id=stored.id,
            tips=stored.tips,
            summary=stored.summary,
            metrics=stored.metrics,
            generated_at=stored.generated_at,
            valid_until=stored.valid_until,
            is_stale=stored.is_stale_at(now),
        )


class GetInsightResult(BaseModel):
    """
    Read-path result.

    Failures never raise; they come back with success=False and a message
    that is safe to show to the user.
    """

    success: bool
    insight: Optional[FinancialInsight] = None
    error: Optional[str] = None
    from_cache: bool = False
    cache_write: Optional[WriteOutcome] = None
    created_at: datetime = Field(default_factory=utc_now)
