"""
Anonymization Layer for the Financial Advisor

Ensures no personally identifiable information is ever sent to the AI
service. Raw expenses are reduced to five fields: amount, currency,
category name, date and USD equivalent.

SECURITY GUARDRAIL: This module is the ONLY path through which expense
data flows before an external AI call. validate_no_pii() is a second,
independent check run on every aggregate immediately before synthesis.
It is not a substitute for anonymize_expense().
"""

import json
import re
from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Union

from pydantic import BaseModel

from monedero.models.currency import Currency
from monedero.models.expense import UNCATEGORIZED, AnonymizedExpense, Expense
from monedero.models.money import ZERO, to_decimal

RawExpense = Union[Expense, Mapping[str, Any]]

PII_PATTERNS: tuple[tuple[str, "re.Pattern[str]"], ...] = (
    ("email", re.compile(r"@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE)),
    ("card_number", re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")),
    ("phone_number", re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")),
)


class PIIValidationError(Exception):
    """
    Potential PII found in data bound for the AI.

    Carries only the kind of pattern that matched. The matched text is
    never stored, logged or shown.
    """

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__("Potential PII detected in anonymized data. Aborting AI request.")


# =============================================================================
# ANONYMIZATION
# =============================================================================

def _field(raw: RawExpense, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def _category_name(raw: RawExpense) -> str:
    category = _field(raw, "category")
    if category is None:
        return UNCATEGORIZED
    name = _field(category, "name") if isinstance(category, (Mapping, BaseModel)) else category
    return str(name).strip() if name else UNCATEGORIZED


def _equivalent_usd(raw: RawExpense) -> Decimal:
    equivalents = _field(raw, "equivalents")
    if equivalents is None:
        return ZERO
    usd = _field(equivalents, "usd")
    return to_decimal(usd) if usd is not None else ZERO


def _calendar_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text).date()


def anonymize_expense(raw: RawExpense) -> AnonymizedExpense:
    """
    Map a raw expense to its anonymized form.

    Accepts an Expense or any mapping with the same keys. Everything not
    named below is dropped, whatever else the input carries.
    """
    currency = _field(raw, "currency")
    if isinstance(currency, Currency):
        currency = currency.value

    return AnonymizedExpense(
        amount=to_decimal(_field(raw, "amount")),
        currency=str(currency),
        category=_category_name(raw),
        date=_calendar_date(_field(raw, "date")),
        equivalent_usd=_equivalent_usd(raw),
    )


def anonymize_expenses(raws: Iterable[RawExpense]) -> list[AnonymizedExpense]:
    """Batch form of anonymize_expense()."""
    return [anonymize_expense(raw) for raw in raws]


# =============================================================================
# AGGREGATION
# =============================================================================

def aggregate_by_category(expenses: Iterable[AnonymizedExpense]) -> dict[str, Decimal]:
    """Category name -> total USD equivalent."""
    totals: dict[str, Decimal] = {}
    for expense in expenses:
        totals[expense.category] = totals.get(expense.category, ZERO) + expense.equivalent_usd
    return totals


def aggregate_by_currency(expenses: Iterable[AnonymizedExpense]) -> dict[str, Decimal]:
    """Original currency -> total of original amounts. Every currency is present."""
    totals = {currency.value: ZERO for currency in Currency}
    for expense in expenses:
        code = expense.currency.upper()
        if code in totals:
            totals[code] += expense.amount
    return totals


# =============================================================================
# PII GATE
# =============================================================================

def _serialize(data: Any) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    return json.dumps(data, default=str, ensure_ascii=False)


def validate_no_pii(data: Any) -> None:
    """
    Scan an arbitrary structure for email, card and phone patterns.

    Raises:
        PIIValidationError: On the first pattern that matches
    """
    serialized = _serialize(data)
    for kind, pattern in PII_PATTERNS:
        if pattern.search(serialized):
            raise PIIValidationError(kind)
