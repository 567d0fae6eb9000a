"""
Rate Cache

Staleness-aware cache over the append-only rate log.

DESIGN DECISION: There is no module-level "current rate". The cache is a
function of an explicitly passed rate log plus its append operation, so
every read can be reproduced against a synthetic log in tests.

The refresh cycle:
1. For each tracked pair, read the latest rows from the log. A pair whose
   latest row is missing, outside the lookback window, or older than its
   group's threshold marks that group stale.
2. Fetch each stale group once, all groups concurrently.
3. Log every strictly positive fresh value. Pairs without one fall back to
   the latest cached value of any age, or 0.

CRITICAL: refresh() never raises. Upstream failures, log read failures and
log write failures are all logged and degrade to stale or zero data.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, NamedTuple, Optional

import structlog

from monedero.audit import AuditLogger
from monedero.clock import utc_now
from monedero.config import RateSourceSettings
from monedero.models.advisor import RateInfo
from monedero.models.currency import (
    ExchangeRate,
    RateDisplay,
    RateGroup,
    RateLogQuery,
    RatePair,
    RateRefreshReport,
    RateSnapshot,
    RateSource,
    RateTrend,
    WriteOutcome,
)
from monedero.models.money import ZERO, quantize
from monedero.services.rates import FetchedRate, RateSourceClient
from monedero.services.storage import RateLogInterface

logger = structlog.get_logger(__name__)

UNAVAILABLE = "--"


class TrackedPair(NamedTuple):
    pair: RatePair
    source: RateSource
    group: RateGroup
    label: str
    description: str


TRACKED_PAIRS: tuple[TrackedPair, ...] = (
    TrackedPair(RatePair.USDT_VES, RateSource.BINANCE, RateGroup.P2P, "USDT / VES", "Binance P2P"),
    TrackedPair(RatePair.USD_VES, RateSource.BCV, RateGroup.OFFICIAL, "USD / VES", "BCV Rate"),
    TrackedPair(RatePair.EUR_VES, RateSource.BCV, RateGroup.OFFICIAL, "EUR / VES", "BCV Rate"),
    TrackedPair(RatePair.BTC_USD, RateSource.COINGECKO, RateGroup.CRYPTO, "BTC / USD", "Bitcoin"),
    TrackedPair(RatePair.BTC_USDT, RateSource.COINGECKO, RateGroup.CRYPTO, "BTC / USDT", "Bitcoin"),
)


def format_rate(pair: RatePair, value: Decimal) -> str:
    """Display string for a rate, or the placeholder when unavailable."""
    if value <= 0:
        return UNAVAILABLE
    amount = f"{quantize(value, 2):,.2f}"
    if pair == RatePair.BTC_USD:
        return f"${amount}"
    if pair == RatePair.BTC_USDT:
        return f"{amount} USDT"
    return f"Bs. {amount}"


def format_change(percent: Decimal) -> str:
    percent = quantize(percent, 2)
    if percent > 0:
        return f"+{percent}%"
    if percent < 0:
        return f"{percent}%"
    return "0.00%"


def trend_between(value: Decimal, previous: Optional[Decimal]) -> RateTrend:
    if previous is None or previous <= 0 or value <= 0:
        return RateTrend.FLAT
    if value > previous:
        return RateTrend.UP
    if value < previous:
        return RateTrend.DOWN
    return RateTrend.FLAT


class RateCache:
    """
    Rate cache over a rate log and one client per upstream group.

    Usage:
        cache = RateCache(rate_log, [BinanceP2PSource(), OfficialRateSource(), CryptoPriceSource()])
        report = await cache.refresh()
        snapshot = report.snapshot
    """

    def __init__(
        self,
        rate_log: RateLogInterface,
        sources: Iterable[RateSourceClient],
        settings: Optional[RateSourceSettings] = None,
        clock: Callable[[], datetime] = utc_now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._rate_log = rate_log
        self._sources = {source.group: source for source in sources}
        self._settings = settings or RateSourceSettings()
        self._clock = clock
        self._audit_logger = audit_logger or AuditLogger()

    # =========================================================================
    # REFRESH
    # =========================================================================

    def threshold_for(self, group: RateGroup) -> timedelta:
        minutes = {
            RateGroup.P2P: self._settings.p2p_threshold_minutes,
            RateGroup.OFFICIAL: self._settings.official_threshold_minutes,
            RateGroup.CRYPTO: self._settings.crypto_threshold_minutes,
        }
        return timedelta(minutes=minutes[group])

    def is_fresh(self, row: Optional[ExchangeRate], group: RateGroup, now: datetime) -> bool:
        """True if the row is inside the lookback window and under the group threshold."""
        if row is None:
            return False
        window_start = now - timedelta(hours=self._settings.lookback_hours)
        if row.fetched_at < window_start:
            return False
        return now - row.fetched_at <= self.threshold_for(group)

    async def refresh(self) -> RateRefreshReport:
        """
        Run one refresh cycle.

        Returns the display list for all tracked pairs (unavailable pairs
        carry the placeholder and value 0) plus the outcome of every
        append to the rate log.
        """
        now = self._clock()

        # Two most recent rows per pair: the current value and the one
        # before it, for the trend.
        history: dict[RatePair, list[ExchangeRate]] = {}
        stale_groups: list[RateGroup] = []
        for tracked in TRACKED_PAIRS:
            rows = await self._read(
                RateLogQuery(pairs=[tracked.pair], source=tracked.source, limit=2)
            )
            history[tracked.pair] = rows
            latest = rows[0] if rows else None
            if not self.is_fresh(latest, tracked.group, now) and tracked.group not in stale_groups:
                stale_groups.append(tracked.group)

        fetched = await self._fetch_groups(stale_groups)

        rates: list[RateDisplay] = []
        writes: list[WriteOutcome] = []
        for tracked in TRACKED_PAIRS:
            rows = history[tracked.pair]
            fresh = fetched.get(tracked.group, {}).get(tracked.pair)

            if fresh is not None and fresh.value > 0:
                row = ExchangeRate(
                    pair=tracked.pair,
                    source=tracked.source,
                    rate=fresh.value,
                    fetched_at=now,
                )
                writes.append(await self._append(row))
                rates.append(self._display(
                    tracked,
                    value=fresh.value,
                    previous=rows[0].rate if rows else None,
                    change_24h=fresh.change_24h,
                    is_fresh=True,
                    fetched_at=now,
                ))
                continue

            if fresh is not None:
                logger.warning(
                    "rate_not_positive",
                    pair=tracked.pair.value,
                    value=str(fresh.value),
                )

            current = rows[0] if rows else None
            rates.append(self._display(
                tracked,
                value=current.rate if current else ZERO,
                previous=rows[1].rate if len(rows) > 1 else None,
                change_24h=None,
                is_fresh=False,
                fetched_at=current.fetched_at if current else None,
            ))

        report = RateRefreshReport(
            rates=rates,
            refreshed_groups=stale_groups,
            writes=writes,
            generated_at=now,
        )

        if stale_groups:
            await self._audit_logger.log_rates_refreshed(
                groups=[g.value for g in stale_groups],
                pairs_available=sum(1 for r in rates if r.is_available),
                failed_writes=len(report.failed_writes),
            )

        return report

    async def get_exchange_rates(self) -> list[RateDisplay]:
        """Display-ready rates. Never raises."""
        report = await self.refresh()
        return report.rates

    async def current_snapshot(self) -> RateSnapshot:
        """Refresh as needed and return the snapshot of the three VES rates."""
        report = await self.refresh()
        return report.snapshot

    async def aclose(self) -> None:
        """Close the HTTP clients owned by the upstream sources."""
        for source in self._sources.values():
            await source.aclose()

    # =========================================================================
    # READ-ONLY LOOKUPS
    # =========================================================================

    async def rate_info(self, now: Optional[datetime] = None) -> RateInfo:
        """
        Rates for the volatility metric, without touching upstreams.

        previous_primary is the official USD/VES at or before
        now - volatility_lookback_days, falling back to the current one.
        """
        now = now or self._clock()

        primary = await self._read(RateLogQuery(
            pairs=[RatePair.USD_VES], source=RateSource.BCV, fetched_to=now, limit=1
        ))
        secondary = await self._read(RateLogQuery(
            pairs=[RatePair.USDT_VES], source=RateSource.BINANCE, fetched_to=now, limit=1
        ))
        previous = await self._read(RateLogQuery(
            pairs=[RatePair.USD_VES],
            source=RateSource.BCV,
            fetched_to=now - timedelta(days=self._settings.volatility_lookback_days),
            limit=1,
        ))

        current_primary = primary[0].rate if primary else ZERO
        return RateInfo(
            current_primary=current_primary,
            current_secondary=secondary[0].rate if secondary else ZERO,
            previous_primary=previous[0].rate if previous else current_primary,
        )

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _read(self, query: RateLogQuery) -> list[ExchangeRate]:
        try:
            return await self._rate_log.query(query)
        except Exception as e:
            logger.error(
                "rate_log_read_failed",
                pairs=[p.value for p in query.pairs],
                error=str(e),
            )
            return []

    async def _append(self, row: ExchangeRate) -> WriteOutcome:
        target = f"rate_log:{row.pair.value}"
        try:
            await self._rate_log.append(row)
        except Exception as e:
            logger.error("rate_log_append_failed", pair=row.pair.value, error=str(e))
            await self._audit_logger.log_rate_persist_failed(
                pair=row.pair.value,
                error_message=str(e),
            )
            return WriteOutcome(target=target, succeeded=False, error=str(e))
        return WriteOutcome(target=target, succeeded=True)

    async def _fetch_groups(
        self,
        groups: list[RateGroup],
    ) -> dict[RateGroup, dict[RatePair, FetchedRate]]:
        if not groups:
            return {}
        results = await asyncio.gather(*(self._fetch_group(g) for g in groups))
        return dict(zip(groups, results))

    async def _fetch_group(self, group: RateGroup) -> dict[RatePair, FetchedRate]:
        """Source boundary: any failure here becomes "no new data"."""
        source = self._sources.get(group)
        if source is None:
            logger.warning("rate_source_missing", group=group.value)
            return {}

        try:
            rates = await source.fetch()
        except Exception as e:
            logger.warning("rate_fetch_failed", group=group.value, error=str(e))
            await self._audit_logger.log_rate_fetch_failed(
                group=group.value,
                error_message=str(e),
            )
            return {}

        logger.info(
            "rate_fetched",
            group=group.value,
            pairs={pair.value: str(rate.value) for pair, rate in rates.items()},
        )
        return rates

    def _display(
        self,
        tracked: TrackedPair,
        value: Decimal,
        previous: Optional[Decimal],
        change_24h: Optional[Decimal],
        is_fresh: bool,
        fetched_at: Optional[datetime],
    ) -> RateDisplay:
        if change_24h is not None:
            change = change_24h
        elif previous is not None and previous > 0 and value > 0:
            change = (value - previous) / previous * 100
        else:
            change = ZERO

        if change_24h is not None:
            trend = RateTrend.UP if change > 0 else RateTrend.DOWN if change < 0 else RateTrend.FLAT
        else:
            trend = trend_between(value, previous)

        return RateDisplay(
            pair=tracked.label,
            rate=format_rate(tracked.pair, value),
            trend=trend,
            change=format_change(change),
            description=tracked.description,
            value=value,
            key=tracked.pair,
            source=tracked.source,
            is_fresh=is_fresh,
            fetched_at=fetched_at,
        )
