"""
Historical Rate Resolver

Reconstructs the best available rate snapshot for a past moment from the
rate log. Used only by backfill.

For each required pair:
1. Backward: the newest row with fetched_at <= T.
2. Forward: if none, the oldest row with fetched_at > T.

If EUR/VES is still unresolved while USD/VES is known, it is estimated as
usd_ves * eur_usd_ratio instead of being left at 0.

Each pair gets its own bounded query, so a burst of rows for one pair can
never crowd another pair out of the result window. Given a fixed log, the
result is deterministic; re-running backfill reproduces it exactly.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from monedero.clock import ensure_utc
from monedero.config import RateSourceSettings
from monedero.models.currency import RateLogQuery, RatePair, RateSnapshot
from monedero.models.money import ZERO
from monedero.services.storage import RateLogInterface

logger = structlog.get_logger(__name__)

SNAPSHOT_PAIRS = (RatePair.USD_VES, RatePair.USDT_VES, RatePair.EUR_VES)


class HistoricalRateResolver:

    def __init__(
        self,
        rate_log: RateLogInterface,
        settings: Optional[RateSourceSettings] = None,
    ):
        self._rate_log = rate_log
        self._settings = settings or RateSourceSettings()

    async def resolve_pair(self, pair: RatePair, at: datetime) -> Optional[Decimal]:
        """Nearest rate for one pair: at-or-before first, then after."""
        at = ensure_utc(at)

        backward = await self._rate_log.query(
            RateLogQuery(pairs=[pair], fetched_to=at, limit=1)
        )
        if backward:
            return backward[0].rate

        forward = await self._rate_log.query(
            RateLogQuery(pairs=[pair], fetched_after=at, oldest_first=True, limit=1)
        )
        if forward:
            return forward[0].rate

        return None

    async def resolve(
        self,
        at: datetime,
        pairs: Iterable[RatePair] = SNAPSHOT_PAIRS,
    ) -> RateSnapshot:
        """
        Snapshot valid at a past moment.

        Storage errors propagate; the backfill loop counts them against
        the record being processed.
        """
        resolved: dict[RatePair, Decimal] = {}
        for pair in pairs:
            rate = await self.resolve_pair(pair, at)
            if rate is not None:
                resolved[pair] = rate

        usd_ves = resolved.get(RatePair.USD_VES, ZERO)
        eur_ves = resolved.get(RatePair.EUR_VES, ZERO)
        if eur_ves <= 0 and usd_ves > 0:
            eur_ves = usd_ves * self._settings.eur_usd_ratio
            logger.debug("eur_rate_estimated", at=ensure_utc(at).isoformat(), usd_ves=str(usd_ves))

        return RateSnapshot(
            usd_ves=usd_ves,
            usdt_ves=resolved.get(RatePair.USDT_VES, ZERO),
            eur_ves=eur_ves,
        )
