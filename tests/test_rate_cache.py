"""Tests for the staleness-aware rate cache."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from monedero.config import RateSourceSettings
from monedero.models.audit import AuditEventType
from monedero.models.currency import RateGroup, RatePair, RateSource, RateTrend
from monedero.models.money import ZERO
from monedero.services.storage import InMemoryRateLog, PersistenceError
from monedero.valuation import RateCache
from monedero.valuation.rate_cache import UNAVAILABLE, format_change, format_rate

from tests.conftest import NOW, StubSource, make_rate


class FailingAppendLog(InMemoryRateLog):
    async def append(self, rate):
        raise PersistenceError("sheet unavailable")


class FailingReadLog(InMemoryRateLog):
    async def query(self, query):
        raise RuntimeError("read timeout")


class SlowSource(StubSource):
    """Holds each fetch open briefly and records the peak in flight."""

    def __init__(self, tracker, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._tracker = tracker

    async def fetch(self):
        self._tracker["in_flight"] += 1
        self._tracker["peak"] = max(self._tracker["peak"], self._tracker["in_flight"])
        try:
            await asyncio.sleep(0.05)
            return await super().fetch()
        finally:
            self._tracker["in_flight"] -= 1


def make_cache(rate_log, sources, audit_logger=None, settings=None):
    return RateCache(
        rate_log,
        sources.values() if isinstance(sources, dict) else sources,
        settings=settings or RateSourceSettings(),
        clock=lambda: NOW,
        audit_logger=audit_logger,
    )


class TestFormatting:

    def test_format_rate_by_pair(self):
        assert format_rate(RatePair.USD_VES, Decimal("36.504")) == "Bs. 36.50"
        assert format_rate(RatePair.BTC_USD, Decimal("95432.1")) == "$95,432.10"
        assert format_rate(RatePair.BTC_USDT, Decimal("95432.1")) == "95,432.10 USDT"

    def test_format_rate_placeholder(self):
        assert format_rate(RatePair.USD_VES, ZERO) == UNAVAILABLE

    def test_format_change(self):
        assert format_change(Decimal("1.234")) == "+1.23%"
        assert format_change(Decimal("-0.5")) == "-0.50%"
        assert format_change(ZERO) == "0.00%"


class TestRefresh:
    """One refresh cycle against stub upstreams and an in-memory log."""

    @pytest.mark.asyncio
    async def test_fresh_log_makes_no_upstream_calls(self, fresh_rate_log, stub_sources):
        cache = make_cache(fresh_rate_log, stub_sources)
        report = await cache.refresh()

        assert all(source.calls == 0 for source in stub_sources.values())
        assert report.refreshed_groups == []
        assert report.writes == []
        assert report.value_of(RatePair.USD_VES) == Decimal("40")
        assert all(not rate.is_fresh for rate in report.rates)

    @pytest.mark.asyncio
    async def test_empty_log_fetches_each_group_once(self, rate_log, stub_sources):
        cache = make_cache(rate_log, stub_sources)
        report = await cache.refresh()

        assert [s.calls for s in stub_sources.values()] == [1, 1, 1]
        assert set(report.refreshed_groups) == {RateGroup.P2P, RateGroup.OFFICIAL, RateGroup.CRYPTO}
        assert len(rate_log.rows) == 5
        assert all(w.succeeded for w in report.writes)
        assert report.snapshot.usd_ves == Decimal("40")
        assert report.snapshot.eur_ves == Decimal("37")
        assert report.snapshot.usdt_ves == Decimal("41")

    @pytest.mark.asyncio
    async def test_stale_groups_are_fetched_concurrently(self, rate_log):
        tracker = {"in_flight": 0, "peak": 0}
        sources = [
            SlowSource(tracker, RateGroup.P2P, RateSource.BINANCE, {RatePair.USDT_VES: "41"}),
            SlowSource(tracker, RateGroup.OFFICIAL, RateSource.BCV, {RatePair.USD_VES: "40"}),
            SlowSource(tracker, RateGroup.CRYPTO, RateSource.COINGECKO, {RatePair.BTC_USD: "95000"}),
        ]

        report = await make_cache(rate_log, sources).refresh()

        assert tracker["peak"] == 3
        assert [s.calls for s in sources] == [1, 1, 1]
        assert len(report.refreshed_groups) == 3

    @pytest.mark.asyncio
    async def test_appended_rows_carry_source_and_time(self, rate_log, stub_sources):
        await make_cache(rate_log, stub_sources).refresh()

        usdt = [r for r in rate_log.rows if r.pair == RatePair.USDT_VES]
        assert len(usdt) == 1
        assert usdt[0].source == RateSource.BINANCE
        assert usdt[0].fetched_at == NOW

    @pytest.mark.asyncio
    async def test_only_stale_group_is_refetched(self, stub_sources):
        fetched = NOW - timedelta(minutes=1)
        log = InMemoryRateLog([
            make_rate(RatePair.USD_VES, "40", fetched),
            make_rate(RatePair.EUR_VES, "37", fetched),
            make_rate(RatePair.USDT_VES, "39", NOW - timedelta(minutes=45)),
            make_rate(RatePair.BTC_USD, "95000", fetched),
            make_rate(RatePair.BTC_USDT, "95100", fetched),
        ])
        report = await make_cache(log, stub_sources).refresh()

        assert stub_sources[RateGroup.P2P].calls == 1
        assert stub_sources[RateGroup.OFFICIAL].calls == 0
        assert stub_sources[RateGroup.CRYPTO].calls == 0
        assert report.refreshed_groups == [RateGroup.P2P]

        usdt = next(r for r in report.rates if r.key == RatePair.USDT_VES)
        assert usdt.is_fresh
        assert usdt.value == Decimal("41")
        assert usdt.trend == RateTrend.UP
        assert usdt.change == "+5.13%"

    @pytest.mark.asyncio
    async def test_row_outside_lookback_window_is_stale(self, stub_sources):
        settings = RateSourceSettings(official_threshold_minutes=10000, lookback_hours=24)
        log = InMemoryRateLog([make_rate(RatePair.USD_VES, "40", NOW - timedelta(hours=30))])
        cache = make_cache(log, stub_sources, settings=settings)

        row = log.rows[0]
        assert not cache.is_fresh(row, RateGroup.OFFICIAL, NOW)

    @pytest.mark.asyncio
    async def test_upstream_failure_falls_back_to_cached(self, failing_source, audit_logger, audit_storage):
        log = InMemoryRateLog([make_rate(RatePair.USDT_VES, "39", NOW - timedelta(days=2))])
        report = await make_cache(log, [failing_source], audit_logger=audit_logger).refresh()

        usdt = next(r for r in report.rates if r.key == RatePair.USDT_VES)
        assert usdt.value == Decimal("39")
        assert not usdt.is_fresh
        assert usdt.rate == "Bs. 39.00"

        events = await audit_storage.get_recent_events()
        assert AuditEventType.RATE_FETCH_FAILED in {e.event_type for e in events}

    @pytest.mark.asyncio
    async def test_no_data_anywhere_gives_placeholder(self, failing_source):
        report = await make_cache(InMemoryRateLog(), [failing_source]).refresh()

        assert len(report.rates) == 5
        for rate in report.rates:
            assert rate.value == ZERO
            assert rate.rate == UNAVAILABLE
            assert not rate.is_available
        assert report.snapshot.usd_ves == ZERO

    @pytest.mark.asyncio
    async def test_missing_source_is_tolerated(self, rate_log, stub_sources):
        del stub_sources[RateGroup.CRYPTO]
        report = await make_cache(rate_log, stub_sources).refresh()

        assert report.value_of(RatePair.BTC_USD) == ZERO
        assert report.value_of(RatePair.USD_VES) == Decimal("40")

    @pytest.mark.asyncio
    async def test_non_positive_value_is_not_logged(self, rate_log):
        source = StubSource(RateGroup.P2P, RateSource.BINANCE, {RatePair.USDT_VES: "0"})
        report = await make_cache(rate_log, [source]).refresh()

        assert rate_log.rows == []
        assert report.value_of(RatePair.USDT_VES) == ZERO

    @pytest.mark.asyncio
    async def test_append_failure_is_reported_not_raised(self, stub_sources, audit_logger, audit_storage):
        log = FailingAppendLog()
        report = await make_cache(log, stub_sources, audit_logger=audit_logger).refresh()

        # Fresh values are still returned
        assert report.value_of(RatePair.USD_VES) == Decimal("40")
        assert len(report.failed_writes) == 5
        assert report.failed_writes[0].target.startswith("rate_log:")

        events = await audit_storage.get_recent_events()
        assert AuditEventType.RATE_PERSIST_FAILED in {e.event_type for e in events}

    @pytest.mark.asyncio
    async def test_read_failure_degrades_to_fetch(self, stub_sources):
        report = await make_cache(FailingReadLog(), stub_sources).refresh()
        assert report.value_of(RatePair.USDT_VES) == Decimal("41")

    @pytest.mark.asyncio
    async def test_refresh_audited_only_when_fetching(self, fresh_rate_log, stub_sources, audit_logger, audit_storage):
        await make_cache(fresh_rate_log, stub_sources, audit_logger=audit_logger).refresh()
        assert await audit_storage.get_recent_events() == []

    @pytest.mark.asyncio
    async def test_current_snapshot(self, fresh_rate_log, stub_sources):
        snapshot = await make_cache(fresh_rate_log, stub_sources).current_snapshot()
        assert snapshot.usd_ves == Decimal("40")
        assert snapshot.is_complete

    @pytest.mark.asyncio
    async def test_aclose_closes_sources(self, rate_log, stub_sources):
        await make_cache(rate_log, stub_sources).aclose()
        assert all(source.closed for source in stub_sources.values())


class TestRateInfo:
    """Read-only lookups for the volatility metric."""

    @pytest.mark.asyncio
    async def test_current_and_week_old_rates(self, stub_sources):
        log = InMemoryRateLog([
            make_rate(RatePair.USD_VES, "36", NOW - timedelta(days=8)),
            make_rate(RatePair.USD_VES, "40", NOW - timedelta(hours=2)),
            make_rate(RatePair.USDT_VES, "42", NOW - timedelta(hours=1)),
        ])
        info = await make_cache(log, stub_sources).rate_info()

        assert info.current_primary == Decimal("40")
        assert info.current_secondary == Decimal("42")
        assert info.previous_primary == Decimal("36")
        assert all(source.calls == 0 for source in stub_sources.values())

    @pytest.mark.asyncio
    async def test_previous_falls_back_to_current(self, stub_sources):
        log = InMemoryRateLog([make_rate(RatePair.USD_VES, "40", NOW - timedelta(hours=2))])
        info = await make_cache(log, stub_sources).rate_info()

        assert info.previous_primary == Decimal("40")
        assert info.current_secondary == ZERO

    @pytest.mark.asyncio
    async def test_ignores_rows_after_now(self, stub_sources):
        log = InMemoryRateLog([
            make_rate(RatePair.USD_VES, "40", NOW - timedelta(hours=2)),
            make_rate(RatePair.USD_VES, "50", NOW + timedelta(hours=2)),
        ])
        info = await make_cache(log, stub_sources).rate_info(NOW)
        assert info.current_primary == Decimal("40")
