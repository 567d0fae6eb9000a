"""Upstream exchange rate clients."""

from monedero.services.rates.base import (
    FetchedRate,
    RateSourceClient,
    UpstreamError,
    UpstreamFetchError,
    UpstreamParseError,
)
from monedero.services.rates.binance_p2p import BinanceP2PSource
from monedero.services.rates.crypto import CryptoPriceSource
from monedero.services.rates.official import OfficialRateSource

__all__ = [
    "BinanceP2PSource",
    "CryptoPriceSource",
    "FetchedRate",
    "OfficialRateSource",
    "RateSourceClient",
    "UpstreamError",
    "UpstreamFetchError",
    "UpstreamParseError",
]
