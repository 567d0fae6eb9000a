"""
Currency and Exchange Rate Models

These models describe the four supported currencies, the tracked rate
pairs, and the two value types that get frozen onto every expense:
RateSnapshot and CurrencyEquivalents.

DESIGN DECISION: Currency is a closed enum. Every conversion maps each
member explicitly, so an unknown currency can never fall through to a
default branch.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)

from monedero.clock import ensure_utc, utc_now
from monedero.models.money import ZERO, safe_divide


# =============================================================================
# ENUMS
# =============================================================================

class Currency(str, Enum):
    """Supported expense currencies."""
    USD = "USD"
    VES = "VES"
    USDT = "USDT"
    EUR = "EUR"


class RatePair(str, Enum):
    """
    Tracked conversion pairs.

    Only the three VES pairs participate in snapshots.
    The BTC pairs are tracked for display.
    """
    USD_VES = "USD_VES"
    USDT_VES = "USDT_VES"
    EUR_VES = "EUR_VES"
    BTC_USD = "BTC_USD"
    BTC_USDT = "BTC_USDT"


class RateSource(str, Enum):
    """Where a logged rate came from."""
    BINANCE = "Binance"
    BCV = "BCV"
    COINGECKO = "CoinGecko"


class RateGroup(str, Enum):
    """
    Upstream groups.

    One group is one upstream round trip. Pairs sharing a group
    are refreshed together, never fetched twice in one cycle.
    """
    P2P = "p2p"
    OFFICIAL = "official"
    CRYPTO = "crypto"


class RateTrend(str, Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


# =============================================================================
# RATE LOG
# =============================================================================

class ExchangeRate(BaseModel):
    """
    One row of the append-only rate log.

    Rows are never updated or deleted. The "current" rate for a pair is
    always the most recent row inside a freshness window.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    pair: RatePair
    source: RateSource
    rate: Decimal = Field(
        ...,
        gt=0,
        description="Units of quote currency per 1 unit of base currency"
    )
    fetched_at: datetime = Field(default_factory=utc_now)

    @field_validator("fetched_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RateLogQuery(BaseModel):
    """
    A query against the rate log.

    Consumers never look up a row by ID. They always ask for
    "the most recent N rows for these pairs inside this window".
    """

    pairs: list[RatePair] = Field(..., min_length=1)
    source: Optional[RateSource] = None

    # Window bounds
    fetched_from: Optional[datetime] = Field(
        default=None,
        description="Inclusive lower bound"
    )
    fetched_after: Optional[datetime] = Field(
        default=None,
        description="Exclusive lower bound"
    )
    fetched_to: Optional[datetime] = Field(
        default=None,
        description="Inclusive upper bound"
    )

    oldest_first: bool = False
    limit: int = Field(default=10, ge=1, le=500)

    def matches(self, rate: ExchangeRate) -> bool:
        """Check whether a row satisfies the filters (ordering and limit aside)."""
        if rate.pair not in self.pairs:
            return False
        if self.source is not None and rate.source != self.source:
            return False
        if self.fetched_from is not None and rate.fetched_at < ensure_utc(self.fetched_from):
            return False
        if self.fetched_after is not None and rate.fetched_at <= ensure_utc(self.fetched_after):
            return False
        if self.fetched_to is not None and rate.fetched_at > ensure_utc(self.fetched_to):
            return False
        return True

    def apply(self, rates: list[ExchangeRate]) -> list[ExchangeRate]:
        """Filter, order and limit rows held in memory."""
        matching = [rate for rate in rates if self.matches(rate)]
        matching.sort(key=lambda r: r.fetched_at, reverse=not self.oldest_first)
        return matching[:self.limit]


# =============================================================================
# VALUE TYPES FROZEN ONTO EXPENSES
# =============================================================================

class RateSnapshot(BaseModel):
    """
    The complete set of rates needed to convert an amount into every
    supported currency at one moment.

    CRITICAL: usd_usdt and eur_usdt are always derived from the VES rates.
    They are computed properties, so they can never disagree with the
    three base rates.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    usd_ves: Decimal = Field(default=ZERO, ge=0, description="1 USD = X VES")
    usdt_ves: Decimal = Field(default=ZERO, ge=0, description="1 USDT = X VES")
    eur_ves: Decimal = Field(default=ZERO, ge=0, description="1 EUR = X VES")

    @computed_field
    @property
    def usd_usdt(self) -> Decimal:
        """1 USD = X USDT."""
        return safe_divide(self.usd_ves, self.usdt_ves)

    @computed_field
    @property
    def eur_usdt(self) -> Decimal:
        """1 EUR = X USDT."""
        return safe_divide(self.eur_ves, self.usdt_ves)

    def ves_rate_for(self, currency: Currency) -> Decimal:
        """VES per one unit of the given currency."""
        rates = {
            Currency.VES: Decimal("1"),
            Currency.USD: self.usd_ves,
            Currency.USDT: self.usdt_ves,
            Currency.EUR: self.eur_ves,
        }
        return rates[Currency(currency)]

    @property
    def is_complete(self) -> bool:
        """True if every base rate is known."""
        return self.usd_ves > 0 and self.usdt_ves > 0 and self.eur_ves > 0


class CurrencyEquivalents(BaseModel):
    """
    An expense amount expressed in all four currencies.

    Embedded once into an expense and frozen. Its accuracy is tied
    permanently to the snapshot used at write time.
    """
    model_config = ConfigDict(frozen=True)

    ves: Decimal = Field(..., ge=0)
    usd: Decimal = Field(..., ge=0)
    usdt: Decimal = Field(..., ge=0)
    eur: Decimal = Field(..., ge=0)

    def for_currency(self, currency: Currency) -> Decimal:
        return getattr(self, Currency(currency).value.lower())


class MultiCurrencyTotals(BaseModel):
    """Aggregated totals across all currencies."""

    ves: Decimal = ZERO
    usd: Decimal = ZERO
    usdt: Decimal = ZERO
    eur: Decimal = ZERO


# =============================================================================
# DISPLAY AND REFRESH RESULTS
# =============================================================================

class WriteOutcome(BaseModel):
    """
    Outcome of a best-effort, side-effecting write.

    Returned next to the primary result so callers (and tests) can see
    whether a write-through succeeded without parsing logs.
    """

    target: str
    succeeded: bool
    error: Optional[str] = None


class RateDisplay(BaseModel):
    """A display-ready rate record."""

    pair: str = Field(..., description="Display label, e.g. 'USD / VES'")
    rate: str = Field(..., description="Formatted value or a placeholder")
    trend: RateTrend = RateTrend.FLAT
    change: str = Field(default="0.00%", description="Signed change vs prior value")
    description: str = Field(..., description="Source label")
    value: Decimal = Field(default=ZERO, ge=0)

    key: RatePair
    source: RateSource
    is_fresh: bool = Field(
        default=False,
        description="Value came from this refresh cycle rather than the cache"
    )
    fetched_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.value > 0


class RateRefreshReport(BaseModel):
    """
    Result of one refresh cycle.

    rates is the primary result; writes records each append to the
    rate log and whether it reached storage.
    """

    rates: list[RateDisplay] = Field(default_factory=list)
    refreshed_groups: list[RateGroup] = Field(default_factory=list)
    writes: list[WriteOutcome] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)

    def value_of(self, pair: RatePair) -> Decimal:
        for rate in self.rates:
            if rate.key == pair:
                return rate.value
        return ZERO

    @property
    def snapshot(self) -> RateSnapshot:
        return RateSnapshot(
            usd_ves=self.value_of(RatePair.USD_VES),
            usdt_ves=self.value_of(RatePair.USDT_VES),
            eur_ves=self.value_of(RatePair.EUR_VES),
        )

    @property
    def failed_writes(self) -> list[WriteOutcome]:
        return [w for w in self.writes if not w.succeeded]
