"""
Insight Cache

TTL cache in front of the (expensive, non-deterministic) AI synthesis call.

Keyed by InsightKey: user x month x year x locale. A write for a key
replaces the previous row for that exact key; an insight in one locale
never overwrites the other.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from monedero.clock import utc_now
from monedero.models.advisor import (
    FinancialInsight,
    FinancialMetrics,
    FinancialTip,
    InsightKey,
    StoredInsight,
)
from monedero.services.storage import InsightStorageInterface

DEFAULT_TTL_HOURS = 24


class InsightCache:

    def __init__(
        self,
        storage: InsightStorageInterface,
        ttl_hours: int = DEFAULT_TTL_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._ttl = timedelta(hours=ttl_hours)
        self._clock = clock

    async def get(self, key: InsightKey) -> Optional[FinancialInsight]:
        """
        Stored insight for this key, flagged stale once now > valid_until.

        Returns None if nothing is stored. Storage errors propagate.
        """
        stored = await self._storage.get_insight(key)
        if stored is None:
            return None
        return FinancialInsight.from_stored(stored, self._clock())

    async def set(
        self,
        key: InsightKey,
        metrics: FinancialMetrics,
        tips: list[FinancialTip],
        summary: Optional[str] = None,
    ) -> StoredInsight:
        """
        Upsert the insight for this key with a fresh TTL.

        Raises:
            PersistenceError: If the write fails
        """
        now = self._clock()
        stored = StoredInsight(
            key=key,
            metrics=metrics,
            tips=tips,
            summary=summary,
            generated_at=now,
            valid_until=now + self._ttl,
        )
        return await self._storage.upsert_insight(stored)
