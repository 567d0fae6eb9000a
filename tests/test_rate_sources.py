"""Tests for the upstream rate clients, against httpx.MockTransport."""

import json
from decimal import Decimal

import httpx
import pytest

from monedero.config import RateSourceSettings
from monedero.models.currency import RatePair
from monedero.services.rates import (
    BinanceP2PSource,
    CryptoPriceSource,
    OfficialRateSource,
    UpstreamFetchError,
    UpstreamParseError,
)


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_response(payload, status_code=200):
    return httpx.Response(status_code, json=payload)


class TestBinanceP2PSource:
    """Average of the top N adverts."""

    @pytest.mark.asyncio
    async def test_averages_top_adverts(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            adverts = [{"adv": {"price": p}} for p in ("40.00", "41.00", "42.00", "99.00")]
            return json_response({"data": adverts})

        source = BinanceP2PSource(RateSourceSettings(p2p_top_n=3), http_client=client_for(handler))
        rates = await source.fetch()

        assert rates[RatePair.USDT_VES].value == Decimal("41")
        assert seen["body"]["rows"] == 3
        assert seen["body"]["tradeType"] == "SELL"

    @pytest.mark.asyncio
    async def test_no_adverts_returns_nothing(self):
        source = BinanceP2PSource(http_client=client_for(lambda r: json_response({"data": []})))
        assert await source.fetch() == {}

    @pytest.mark.asyncio
    async def test_missing_list_is_parse_error(self):
        source = BinanceP2PSource(http_client=client_for(lambda r: json_response({"data": None})))
        with pytest.raises(UpstreamParseError):
            await source.fetch()

    @pytest.mark.asyncio
    async def test_non_numeric_price_is_parse_error(self):
        payload = {"data": [{"adv": {"price": "n/a"}}]}
        source = BinanceP2PSource(http_client=client_for(lambda r: json_response(payload)))
        with pytest.raises(UpstreamParseError):
            await source.fetch()

    @pytest.mark.asyncio
    async def test_server_error_is_fetch_error(self):
        source = BinanceP2PSource(http_client=client_for(lambda r: httpx.Response(503)))
        with pytest.raises(UpstreamFetchError) as exc_info:
            await source.fetch()
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_transport_error_is_fetch_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        source = BinanceP2PSource(http_client=client_for(handler))
        with pytest.raises(UpstreamFetchError):
            await source.fetch()

    @pytest.mark.asyncio
    async def test_invalid_json_is_parse_error(self):
        source = BinanceP2PSource(http_client=client_for(lambda r: httpx.Response(200, text="<html>")))
        with pytest.raises(UpstreamParseError):
            await source.fetch()


class TestOfficialRateSource:
    """Primary provider with public fallback."""

    @pytest.mark.asyncio
    async def test_primary_with_key(self):
        settings = RateSourceSettings(official_api_key="secret")

        def handler(request):
            assert request.headers["Authorization"] == "Bearer secret"
            return json_response({"current": {"usd": 36.5, "eur": 39.9}})

        rates = await OfficialRateSource(settings, http_client=client_for(handler)).fetch()
        assert rates[RatePair.USD_VES].value == Decimal("36.5")
        assert rates[RatePair.EUR_VES].value == Decimal("39.9")

    @pytest.mark.asyncio
    async def test_fallback_without_key(self):
        settings = RateSourceSettings(official_api_key=None)
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return json_response({"averagePrice": 36.6})

        rates = await OfficialRateSource(settings, http_client=client_for(handler)).fetch()
        assert rates == {RatePair.USD_VES: rates[RatePair.USD_VES]}
        assert rates[RatePair.USD_VES].value == Decimal("36.6")
        assert requested == [settings.official_fallback_url]

    @pytest.mark.asyncio
    async def test_primary_failure_falls_back(self):
        settings = RateSourceSettings(official_api_key="secret")

        def handler(request):
            if str(request.url).startswith(settings.official_url):
                return httpx.Response(500)
            return json_response({"price": "36.7"})

        rates = await OfficialRateSource(settings, http_client=client_for(handler)).fetch()
        assert rates[RatePair.USD_VES].value == Decimal("36.7")
        assert RatePair.EUR_VES not in rates

    @pytest.mark.asyncio
    async def test_fallback_without_price_is_parse_error(self):
        settings = RateSourceSettings(official_api_key=None)
        source = OfficialRateSource(settings, http_client=client_for(lambda r: json_response({})))
        with pytest.raises(UpstreamParseError):
            await source.fetch()


class TestCryptoPriceSource:
    """Bitcoin prices with 24h change."""

    @pytest.mark.asyncio
    async def test_reads_usd_and_usdt(self):
        payload = {"bitcoin": {"usd": 95000, "usdt": 95100, "usd_24h_change": -1.25}}
        rates = await CryptoPriceSource(http_client=client_for(lambda r: json_response(payload))).fetch()

        assert rates[RatePair.BTC_USD].value == Decimal("95000")
        assert rates[RatePair.BTC_USD].change_24h == Decimal("-1.25")
        assert rates[RatePair.BTC_USDT].value == Decimal("95100")

    @pytest.mark.asyncio
    async def test_derives_usdt_from_tether(self):
        payload = {"bitcoin": {"usd": 100000}, "tether": {"usd": 1.25}}
        rates = await CryptoPriceSource(http_client=client_for(lambda r: json_response(payload))).fetch()
        assert rates[RatePair.BTC_USDT].value == Decimal("80000")
        assert rates[RatePair.BTC_USD].change_24h is None

    @pytest.mark.asyncio
    async def test_usd_only_when_tether_missing(self):
        payload = {"bitcoin": {"usd": 100000}}
        rates = await CryptoPriceSource(http_client=client_for(lambda r: json_response(payload))).fetch()
        assert list(rates) == [RatePair.BTC_USD]

    @pytest.mark.asyncio
    async def test_missing_bitcoin_is_parse_error(self):
        source = CryptoPriceSource(http_client=client_for(lambda r: json_response({"tether": {}})))
        with pytest.raises(UpstreamParseError):
            await source.fetch()

    @pytest.mark.asyncio
    async def test_sends_expected_params(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return json_response({"bitcoin": {"usd": 1}})

        await CryptoPriceSource(http_client=client_for(handler)).fetch()
        assert seen["ids"] == "bitcoin,tether"
        assert seen["include_24hr_change"] == "true"
