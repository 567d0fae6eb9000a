"""
Official Rate Source

Two providers behind one group:

1. Primary provider (needs RATES_OFFICIAL_API_KEY), returns
   {"current": {"usd": ..., "eur": ...}} - both USD and EUR.
2. Public fallback, returns {"averagePrice": ...} or {"price": ...} -
   USD only. EUR is left unset.

The fallback is used when the key is absent or the primary call fails
for any reason.
"""

from typing import Any

import structlog

from monedero.models.currency import RateGroup, RatePair, RateSource
from monedero.services.rates.base import (
    FetchedRate,
    RateSourceClient,
    UpstreamError,
    UpstreamParseError,
)

logger = structlog.get_logger(__name__)


class OfficialRateSource(RateSourceClient):
    """Official rate group: USD_VES and EUR_VES."""

    group = RateGroup.OFFICIAL
    source = RateSource.BCV

    async def fetch(self) -> dict[RatePair, FetchedRate]:
        if self._settings.has_official_api_key:
            try:
                return await self._fetch_primary()
            except UpstreamError as e:
                logger.warning("official_primary_failed", error=str(e))

        return await self._fetch_fallback()

    async def _fetch_primary(self) -> dict[RatePair, FetchedRate]:
        body = await self._request_json(
            "GET",
            self._settings.official_url,
            headers={
                "Authorization": f"Bearer {self._settings.official_api_key}",
                "Accept": "application/json",
            },
        )
        current = body.get("current") if isinstance(body, dict) else None
        if not isinstance(current, dict) or "usd" not in current:
            raise UpstreamParseError(self.source.value, "missing current.usd")

        rates = {RatePair.USD_VES: FetchedRate(value=self._parse_price(current["usd"], "current.usd"))}
        if current.get("eur") is not None:
            rates[RatePair.EUR_VES] = FetchedRate(
                value=self._parse_price(current["eur"], "current.eur")
            )
        return rates

    async def _fetch_fallback(self) -> dict[RatePair, FetchedRate]:
        body = await self._request_json(
            "GET",
            self._settings.official_fallback_url,
            headers={"Accept": "application/json"},
        )
        price = self._read_fallback_price(body)
        return {RatePair.USD_VES: FetchedRate(value=self._parse_price(price, "averagePrice"))}

    def _read_fallback_price(self, body: Any) -> Any:
        if isinstance(body, dict):
            if body.get("averagePrice") is not None:
                return body["averagePrice"]
            if body.get("price") is not None:
                return body["price"]
        raise UpstreamParseError(self.source.value, "missing averagePrice/price")
