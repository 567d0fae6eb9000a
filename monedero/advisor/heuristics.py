"""
Heuristics Engine for the Financial Advisor

Calculates key financial metrics from anonymized expense data:

1. Spending velocity: daily burn rate (USD and VES)
2. Unbudgeted friction: share of spending outside any budget
3. S_proj: end-of-month spending projection
4. Rate volatility: % change of the official rate over the lookback period

Everything here is pure: no I/O, no clock, inputs are never mutated.
The reference date is always passed in.
"""

import calendar
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from monedero.advisor.anonymizer import aggregate_by_category, aggregate_by_currency
from monedero.models.advisor import (
    AggregatedFinancialData,
    BudgetStatus,
    FinancialMetrics,
    RateInfo,
    RateSummary,
    TopCategory,
)
from monedero.models.expense import UNCATEGORIZED, AnonymizedExpense, Budget
from monedero.models.money import ZERO, Number, quantize, to_decimal

FRICTION_THRESHOLD = Decimal("0.10")
TOP_CATEGORIES_LIMIT = 5


# =============================================================================
# TIME CONTEXT
# =============================================================================

def get_days_passed(reference: date) -> int:
    """Calendar day of month of the reference date."""
    return reference.day


def get_days_in_month(reference: date) -> int:
    return calendar.monthrange(reference.year, reference.month)[1]


def get_days_remaining(reference: date) -> int:
    return get_days_in_month(reference) - get_days_passed(reference)


# =============================================================================
# CORE METRICS
# =============================================================================

def calculate_spending_velocity(total: Number, days_passed: int) -> Decimal:
    """velocity = total / days_passed, or 0 when no day has passed."""
    if days_passed <= 0:
        return ZERO
    return to_decimal(total) / days_passed


def calculate_s_proj(s_current: Number, days_passed: int, days_remaining: int) -> Decimal:
    """
    End-of-month projection.

        S_proj = S_current + (S_current / D_passed) * D_remaining

    Rounded to 2 decimals. With no days passed, S_current is returned
    unchanged.
    """
    s_current = to_decimal(s_current)
    if days_passed <= 0:
        return s_current
    projected = s_current + (s_current / days_passed) * days_remaining
    return quantize(projected, 2)


def calculate_unbudgeted_ratio(unbudgeted: Number, total: Number) -> Decimal:
    """Ratio in [0, 1] of unbudgeted to total spending; 0 if total <= 0."""
    total = to_decimal(total)
    if total <= 0:
        return ZERO
    return to_decimal(unbudgeted) / total


def has_unbudgeted_friction(ratio: Number, threshold: Number = FRICTION_THRESHOLD) -> bool:
    return to_decimal(ratio) > to_decimal(threshold)


def calculate_rate_volatility(current: Number, previous: Number) -> Decimal:
    """Percent change from previous to current, 2 decimals; 0 if previous <= 0."""
    previous = to_decimal(previous)
    if previous <= 0:
        return ZERO
    change = (to_decimal(current) - previous) / previous * 100
    return quantize(change, 2)


def get_top_categories(
    category_totals: dict[str, Decimal],
    total_usd: Number,
    limit: int = TOP_CATEGORIES_LIMIT,
) -> list[TopCategory]:
    """
    Categories sorted by USD amount, descending, cut to limit.

    Each percentage is amount / total * 100 rounded to 2 decimals
    (0 when the total is not positive).
    """
    total_usd = to_decimal(total_usd)
    ranked = sorted(category_totals.items(), key=lambda item: item[1], reverse=True)

    top = []
    for name, amount in ranked[:limit]:
        if total_usd > 0:
            percentage = quantize(to_decimal(amount) / total_usd * 100, 2)
        else:
            percentage = ZERO
        top.append(TopCategory(
            name=name,
            amount_usd=quantize(amount, 2),
            percentage=percentage,
        ))
    return top


# =============================================================================
# AGGREGATE ENTRY POINT
# =============================================================================

def calculate_unbudgeted_spending(
    category_totals: dict[str, Decimal],
    budgets: list[Budget],
) -> Decimal:
    """
    USD spending outside any budget.

    A global budget covers everything. Otherwise Uncategorized spending is
    unbudgeted, plus any category not named by a category budget (when
    budgets carry category names).
    """
    if any(budget.is_global for budget in budgets):
        return ZERO

    budgeted_names = {
        budget.category_name.casefold()
        for budget in budgets
        if budget.category_name
    }

    unbudgeted = ZERO
    for name, amount in category_totals.items():
        if name == UNCATEGORIZED:
            unbudgeted += amount
        elif budgeted_names and name.casefold() not in budgeted_names:
            unbudgeted += amount
    return unbudgeted


def calculate_budget_status(budgets: list[Budget]) -> BudgetStatus:
    total_budget = sum((b.amount for b in budgets), ZERO)
    total_spent = sum((b.spent for b in budgets), ZERO)
    if total_budget > 0:
        utilization = quantize(total_spent / total_budget * 100, 2)
    else:
        utilization = ZERO
    return BudgetStatus(
        total_budget=quantize(total_budget, 2),
        total_spent=quantize(total_spent, 2),
        utilization_percent=utilization,
    )


def calculate_financial_metrics(
    expenses: Iterable[AnonymizedExpense],
    budgets: Iterable[Budget],
    rate_info: RateInfo,
    reference_date: date,
    friction_threshold: Number = FRICTION_THRESHOLD,
    top_categories_limit: int = TOP_CATEGORIES_LIMIT,
) -> AggregatedFinancialData:
    """
    Compute everything the AI is allowed to see.

    All amounts in the result are rounded (2 decimals, ratio 4) so the
    aggregate serializes to short, stable numbers.
    """
    expenses = list(expenses)
    budgets = list(budgets)

    days_passed = get_days_passed(reference_date)
    days_remaining = get_days_remaining(reference_date)

    category_totals = aggregate_by_category(expenses)
    currency_totals = aggregate_by_currency(expenses)
    total_usd = sum((e.equivalent_usd for e in expenses), ZERO)

    unbudgeted = calculate_unbudgeted_spending(category_totals, budgets)
    ratio = calculate_unbudgeted_ratio(unbudgeted, total_usd)
    volatility = calculate_rate_volatility(
        rate_info.current_primary,
        rate_info.previous_primary,
    )

    metrics = FinancialMetrics(
        spending_velocity_usd=quantize(calculate_spending_velocity(total_usd, days_passed), 2),
        spending_velocity_ves=quantize(
            calculate_spending_velocity(currency_totals["VES"], days_passed), 2
        ),
        unbudgeted_ratio=quantize(ratio, 4),
        has_unbudgeted_friction=has_unbudgeted_friction(ratio, friction_threshold),
        s_proj=calculate_s_proj(total_usd, days_passed, days_remaining),
        s_current=quantize(total_usd, 2),
        days_passed=days_passed,
        days_remaining=days_remaining,
        rate_volatility=volatility,
        top_categories=get_top_categories(category_totals, total_usd, top_categories_limit),
    )

    return AggregatedFinancialData(
        metrics=metrics,
        category_totals={name: quantize(amount, 2) for name, amount in category_totals.items()},
        budget_status=calculate_budget_status(budgets),
        rate_info=RateSummary(
            current_usd_ves=quantize(rate_info.current_primary, 2),
            current_usdt_ves=quantize(rate_info.current_secondary, 2),
            weekly_change=volatility,
        ),
    )


def month_bounds(reference: date) -> tuple[date, date]:
    """First day of the reference month and first day of the next month."""
    if isinstance(reference, datetime):
        reference = reference.date()
    start = reference.replace(day=1)
    if reference.month == 12:
        return start, date(reference.year + 1, 1, 1)
    return start, date(reference.year, reference.month + 1, 1)
