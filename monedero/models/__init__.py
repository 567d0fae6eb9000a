"""
Data Models Package

This package contains all Pydantic models used by the valuation engine.
All data flowing through the system must conform to these schemas.
"""

from monedero.models.currency import (
    Currency,
    CurrencyEquivalents,
    ExchangeRate,
    MultiCurrencyTotals,
    RateDisplay,
    RateGroup,
    RateLogQuery,
    RatePair,
    RateRefreshReport,
    RateSnapshot,
    RateSource,
    RateTrend,
    WriteOutcome,
)
from monedero.models.expense import (
    UNCATEGORIZED,
    AnonymizedExpense,
    BackfillResult,
    Budget,
    Expense,
    ExpenseCategory,
)
from monedero.models.advisor import (
    AggregatedFinancialData,
    BudgetStatus,
    FinancialInsight,
    FinancialInsightResponse,
    FinancialMetrics,
    FinancialTip,
    GetInsightResult,
    InsightKey,
    RateInfo,
    RateSummary,
    StoredInsight,
    SupportedLocale,
    TipType,
    TopCategory,
)
from monedero.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Currency models
    "Currency",
    "CurrencyEquivalents",
    "ExchangeRate",
    "MultiCurrencyTotals",
    "RateDisplay",
    "RateGroup",
    "RateLogQuery",
    "RatePair",
    "RateRefreshReport",
    "RateSnapshot",
    "RateSource",
    "RateTrend",
    "WriteOutcome",
    # Expense models
    "UNCATEGORIZED",
    "AnonymizedExpense",
    "BackfillResult",
    "Budget",
    "Expense",
    "ExpenseCategory",
    # Advisor models
    "AggregatedFinancialData",
    "BudgetStatus",
    "FinancialInsight",
    "FinancialInsightResponse",
    "FinancialMetrics",
    "FinancialTip",
    "GetInsightResult",
    "InsightKey",
    "RateInfo",
    "RateSummary",
    "StoredInsight",
    "SupportedLocale",
    "TipType",
    "TopCategory",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
