"""
Binance P2P Rate Source

Reads the marketplace rate for USDT/VES by averaging the top N
sell-side adverts.
"""

from decimal import Decimal

import structlog

from monedero.models.currency import RateGroup, RatePair, RateSource
from monedero.services.rates.base import FetchedRate, RateSourceClient, UpstreamParseError

logger = structlog.get_logger(__name__)


class BinanceP2PSource(RateSourceClient):
    """P2P marketplace group: USDT_VES."""

    group = RateGroup.P2P
    source = RateSource.BINANCE

    async def fetch(self) -> dict[RatePair, FetchedRate]:
        settings = self._settings
        payload = {
            "asset": settings.p2p_asset,
            "fiat": settings.p2p_fiat,
            "tradeType": settings.p2p_trade_type,
            "page": 1,
            "rows": settings.p2p_top_n,
            "payTypes": [],
        }
        body = await self._request_json("POST", settings.p2p_url, json=payload)

        if not isinstance(body, dict) or not isinstance(body.get("data"), list):
            raise UpstreamParseError(self.source.value, "missing advert list")

        prices = []
        for advert in body["data"][:settings.p2p_top_n]:
            try:
                raw_price = advert["adv"]["price"]
            except (KeyError, TypeError) as e:
                raise UpstreamParseError(self.source.value, "advert without price") from e
            prices.append(self._parse_price(raw_price, "adv.price"))

        if not prices:
            logger.info("p2p_no_adverts", asset=settings.p2p_asset, fiat=settings.p2p_fiat)
            return {}

        average = sum(prices, Decimal("0")) / len(prices)
        return {RatePair.USDT_VES: FetchedRate(value=average)}
