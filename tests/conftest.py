"""
Shared fixtures for the Monedero test suite.

No real API calls in tests: upstream sources are stubs, storage is
in-memory, the AI model is a fake, and the clock is fixed.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest

from monedero.audit import AuditLogger
from monedero.config import AdvisorSettings, RateSourceSettings
from monedero.models.currency import Currency, ExchangeRate, RateGroup, RatePair, RateSource
from monedero.models.expense import Expense, ExpenseCategory
from monedero.services.rates import FetchedRate, RateSourceClient, UpstreamFetchError
from monedero.services.storage import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemoryInsightStorage,
    InMemoryRateLog,
)

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


class StubSource(RateSourceClient):
    """Upstream stub returning canned rates and counting calls."""

    def __init__(self, group, source, rates=None, error: Optional[Exception] = None):
        self.group = group
        self.source = source
        self._rates = rates or {}
        self._error = error
        self.calls = 0
        self.closed = False

    async def fetch(self):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return {pair: FetchedRate(value=Decimal(str(v))) for pair, v in self._rates.items()}

    async def aclose(self):
        self.closed = True


def make_rate(pair, rate, fetched_at, source=None) -> ExchangeRate:
    default_sources = {
        RatePair.USD_VES: RateSource.BCV,
        RatePair.EUR_VES: RateSource.BCV,
        RatePair.USDT_VES: RateSource.BINANCE,
        RatePair.BTC_USD: RateSource.COINGECKO,
        RatePair.BTC_USDT: RateSource.COINGECKO,
    }
    return ExchangeRate(
        pair=pair,
        source=source or default_sources[pair],
        rate=Decimal(str(rate)),
        fetched_at=fetched_at,
    )


def make_expense(
    amount="100",
    currency=Currency.USD,
    when=NOW,
    user_id="user-1",
    category: Optional[str] = "Food",
    **kwargs,
) -> Expense:
    return Expense(
        user_id=user_id,
        amount=Decimal(str(amount)),
        currency=currency,
        date=when,
        category=ExpenseCategory(name=category) if category else None,
        **kwargs,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def rate_settings():
    return RateSourceSettings()


@pytest.fixture
def advisor_settings():
    return AdvisorSettings()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def rate_log():
    return InMemoryRateLog()


@pytest.fixture
def fresh_rate_log():
    """A log where every tracked pair was fetched one minute ago."""
    fetched = NOW - timedelta(minutes=1)
    return InMemoryRateLog([
        make_rate(RatePair.USD_VES, "40", fetched),
        make_rate(RatePair.EUR_VES, "37", fetched),
        make_rate(RatePair.USDT_VES, "41", fetched),
        make_rate(RatePair.BTC_USD, "95000", fetched),
        make_rate(RatePair.BTC_USDT, "95100", fetched),
    ])


@pytest.fixture
def stub_sources():
    return {
        RateGroup.P2P: StubSource(
            RateGroup.P2P, RateSource.BINANCE, {RatePair.USDT_VES: "41"}
        ),
        RateGroup.OFFICIAL: StubSource(
            RateGroup.OFFICIAL,
            RateSource.BCV,
            {RatePair.USD_VES: "40", RatePair.EUR_VES: "37"},
        ),
        RateGroup.CRYPTO: StubSource(
            RateGroup.CRYPTO,
            RateSource.COINGECKO,
            {RatePair.BTC_USD: "95000", RatePair.BTC_USDT: "95100"},
        ),
    }


@pytest.fixture
def failing_source():
    return StubSource(
        RateGroup.P2P,
        RateSource.BINANCE,
        error=UpstreamFetchError("Binance", "unexpected status 503", status_code=503),
    )


@pytest.fixture
def expense_storage():
    return InMemoryExpenseStorage()


@pytest.fixture
def budget_storage():
    return InMemoryBudgetStorage()


@pytest.fixture
def insight_storage():
    return InMemoryInsightStorage()
