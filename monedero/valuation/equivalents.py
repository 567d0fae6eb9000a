"""
Equivalents Calculator

Converts one amount into all four supported currencies given a rate
snapshot. Pure and deterministic: no I/O, never raises for a non-negative
amount in a supported currency.

CRITICAL: Equivalents are computed once and frozen onto the expense.
Nothing in this module is ever called on the read path to recompute
them from current rates.
"""

from decimal import Decimal
from typing import Iterable

from monedero.models.currency import (
    Currency,
    CurrencyEquivalents,
    MultiCurrencyTotals,
    RateSnapshot,
)
from monedero.models.expense import Expense
from monedero.models.money import ZERO, Number, quantize, safe_divide, to_decimal

# 1 EUR ~ 1.08 USD. Used only when a stored EUR equivalent is missing.
DEFAULT_EUR_USD_RATIO = Decimal("1.08")


def calculate_equivalents(
    amount: Number,
    currency: Currency,
    snapshot: RateSnapshot,
) -> CurrencyEquivalents:
    """
    Express an amount in VES, USD, USDT and EUR.

    The amount is first converted to a VES base using the snapshot rate
    for its currency (VES passes through unchanged), then divided by each
    VES rate. A missing (zero) rate yields 0 for that currency.

    Raises:
        ValueError: If amount is negative
    """
    amount = to_decimal(amount)
    if amount < 0:
        raise ValueError(f"amount must be non-negative, got {amount}")
    currency = Currency(currency)

    if currency is Currency.VES:
        ves_amount = amount
    else:
        ves_amount = amount * snapshot.ves_rate_for(currency)

    return CurrencyEquivalents(
        ves=ves_amount,
        usd=safe_divide(ves_amount, snapshot.usd_ves),
        usdt=safe_divide(ves_amount, snapshot.usdt_ves),
        eur=safe_divide(ves_amount, snapshot.eur_ves),
    )


def build_rates_snapshot(
    usd_ves: Number,
    usdt_ves: Number,
    eur_ves: Number,
) -> RateSnapshot:
    """Build a snapshot from the three VES rates; cross rates are derived."""
    return RateSnapshot(
        usd_ves=to_decimal(usd_ves),
        usdt_ves=to_decimal(usdt_ves),
        eur_ves=to_decimal(eur_ves),
    )


def sum_by_equivalent(
    expenses: Iterable[Expense],
    eur_usd_ratio: Decimal = DEFAULT_EUR_USD_RATIO,
) -> MultiCurrencyTotals:
    """
    Sum expenses by their frozen equivalents.

    An expense valued without an EUR rate contributes usd / eur_usd_ratio
    to the EUR total. An expense with no equivalents at all contributes
    its raw amount to its own currency only.
    """
    totals = {"ves": ZERO, "usd": ZERO, "usdt": ZERO, "eur": ZERO}

    for expense in expenses:
        equivalents = expense.equivalents
        if equivalents is None:
            key = expense.currency.value.lower()
            totals[key] += expense.amount
            continue

        totals["ves"] += equivalents.ves
        totals["usd"] += equivalents.usd
        totals["usdt"] += equivalents.usdt
        if equivalents.eur > 0:
            totals["eur"] += equivalents.eur
        elif equivalents.usd > 0:
            totals["eur"] += safe_divide(equivalents.usd, eur_usd_ratio)

    return MultiCurrencyTotals(**totals)


def _group_thousands(value: Decimal, thousands: str, decimal_mark: str) -> str:
    formatted = f"{quantize(value, 2):,.2f}"
    if thousands == ",":
        return formatted
    return formatted.replace(",", "_").replace(".", decimal_mark).replace("_", thousands)


def format_currency_amount(amount: Number, currency: Currency) -> str:
    """
    Format an amount for display.

        USD   $1,234.56
        VES   Bs. 1.234,56
        USDT  ₮1,234.56
        EUR   €1,234.56
    """
    amount = to_decimal(amount)
    currency = Currency(currency)

    if currency is Currency.VES:
        return f"Bs. {_group_thousands(amount, '.', ',')}"

    symbols = {
        Currency.USD: "$",
        Currency.USDT: "₮",
        Currency.EUR: "€",
    }
    return f"{symbols[currency]}{_group_thousands(amount, ',', '.')}"


__all__ = [
    "DEFAULT_EUR_USD_RATIO",
    "build_rates_snapshot",
    "calculate_equivalents",
    "format_currency_amount",
    "safe_divide",
    "sum_by_equivalent",
]
