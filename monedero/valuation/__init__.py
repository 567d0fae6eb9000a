"""
Valuation Package

Everything that turns an amount plus a moment in time into frozen
four-currency equivalents.
"""

from monedero.valuation.equivalents import (
    build_rates_snapshot,
    calculate_equivalents,
    format_currency_amount,
    safe_divide,
    sum_by_equivalent,
)
from monedero.valuation.historical import SNAPSHOT_PAIRS, HistoricalRateResolver
from monedero.valuation.rate_cache import TRACKED_PAIRS, RateCache, TrackedPair

__all__ = [
    "HistoricalRateResolver",
    "RateCache",
    "SNAPSHOT_PAIRS",
    "TRACKED_PAIRS",
    "TrackedPair",
    "build_rates_snapshot",
    "calculate_equivalents",
    "format_currency_amount",
    "safe_divide",
    "sum_by_equivalent",
]
