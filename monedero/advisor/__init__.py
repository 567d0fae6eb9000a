"""
Financial Advisor Package

Anonymization, heuristics, prompts and the insight cache. The AI call
itself lives in monedero.agents.
"""

from monedero.advisor.anonymizer import (
    PIIValidationError,
    aggregate_by_category,
    aggregate_by_currency,
    anonymize_expense,
    anonymize_expenses,
    validate_no_pii,
)
from monedero.advisor.heuristics import (
    calculate_financial_metrics,
    calculate_rate_volatility,
    calculate_s_proj,
    calculate_spending_velocity,
    calculate_unbudgeted_ratio,
    get_days_in_month,
    get_days_passed,
    get_days_remaining,
    get_top_categories,
    has_unbudgeted_friction,
    month_bounds,
)
from monedero.advisor.insight_cache import InsightCache
from monedero.advisor.prompts import build_system_prompt, build_user_prompt

__all__ = [
    "InsightCache",
    "PIIValidationError",
    "aggregate_by_category",
    "aggregate_by_currency",
    "anonymize_expense",
    "anonymize_expenses",
    "build_system_prompt",
    "build_user_prompt",
    "calculate_financial_metrics",
    "calculate_rate_volatility",
    "calculate_s_proj",
    "calculate_spending_velocity",
    "calculate_unbudgeted_ratio",
    "get_days_in_month",
    "get_days_passed",
    "get_days_remaining",
    "get_top_categories",
    "has_unbudgeted_friction",
    "month_bounds",
    "validate_no_pii",
]
