"""
Crypto Price Source

CoinGecko simple price for bitcoin and tether, with 24h change.
BTC/USDT is taken from bitcoin.usdt when the index returns it,
otherwise derived as bitcoin.usd / tether.usd.
"""

from decimal import Decimal
from typing import Any, Optional

from monedero.models.currency import RateGroup, RatePair, RateSource
from monedero.models.money import safe_divide
from monedero.services.rates.base import FetchedRate, RateSourceClient, UpstreamParseError


class CryptoPriceSource(RateSourceClient):
    """Crypto group: BTC_USD and BTC_USDT."""

    group = RateGroup.CRYPTO
    source = RateSource.COINGECKO

    async def fetch(self) -> dict[RatePair, FetchedRate]:
        body = await self._request_json(
            "GET",
            self._settings.crypto_url,
            params={
                "ids": "bitcoin,tether",
                "vs_currencies": "usd,usdt",
                "include_24hr_change": "true",
            },
            headers={"Accept": "application/json"},
        )
        if not isinstance(body, dict):
            raise UpstreamParseError(self.source.value, "payload must be a JSON object")

        bitcoin = body.get("bitcoin")
        if not isinstance(bitcoin, dict) or bitcoin.get("usd") is None:
            raise UpstreamParseError(self.source.value, "missing bitcoin.usd")

        btc_usd = self._parse_price(bitcoin["usd"], "bitcoin.usd")
        btc_change = self._optional_price(bitcoin.get("usd_24h_change"), "bitcoin.usd_24h_change")
        rates = {RatePair.BTC_USD: FetchedRate(value=btc_usd, change_24h=btc_change)}

        if bitcoin.get("usdt") is not None:
            btc_usdt = self._parse_price(bitcoin["usdt"], "bitcoin.usdt")
        else:
            tether = body.get("tether")
            tether_usd = tether.get("usd") if isinstance(tether, dict) else None
            if tether_usd is None:
                return rates
            btc_usdt = safe_divide(btc_usd, self._parse_price(tether_usd, "tether.usd"))

        rates[RatePair.BTC_USDT] = FetchedRate(value=btc_usdt, change_24h=btc_change)
        return rates

    def _optional_price(self, raw: Any, field: str) -> Optional[Decimal]:
        if raw is None:
            return None
        return self._parse_price(raw, field)
