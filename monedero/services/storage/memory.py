"""
In-Memory Storage Implementation

Used by the test suite and for local runs without Google credentials.
Follows the same interfaces as the Google Sheets backend, including the
ordering each interface method promises.

Records are copied on the way in and out so callers can never mutate
stored state by holding a reference.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from monedero.clock import ensure_utc
from monedero.models.advisor import InsightKey, StoredInsight
from monedero.models.audit import AuditEvent
from monedero.models.currency import CurrencyEquivalents, ExchangeRate, RateLogQuery, RateSnapshot
from monedero.models.expense import Budget, Expense
from monedero.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    InsightStorageInterface,
    NotFoundError,
    RateLogInterface,
)


class InMemoryRateLog(RateLogInterface):
    """Append-only list of rate rows."""

    def __init__(self, rates: Optional[list[ExchangeRate]] = None):
        self._rates: list[ExchangeRate] = list(rates or [])

    async def append(self, rate: ExchangeRate) -> None:
        self._rates.append(rate)

    async def query(self, query: RateLogQuery) -> list[ExchangeRate]:
        return query.apply(self._rates)

    @property
    def rows(self) -> list[ExchangeRate]:
        return list(self._rates)


class InMemoryExpenseStorage(ExpenseStorageInterface):

    def __init__(self, expenses: Optional[list[Expense]] = None):
        self._expenses: dict[UUID, Expense] = {}
        for expense in expenses or []:
            self._expenses[expense.id] = expense.model_copy(deep=True)

    async def save_expense(self, expense: Expense) -> bool:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return True

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        expense = self._expenses.get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[Expense]:
        expenses = []
        for expense in self._expenses.values():
            if expense.user_id != user_id:
                continue
            if date_from and expense.date < ensure_utc(date_from):
                continue
            if date_to and expense.date >= ensure_utc(date_to):
                continue
            expenses.append(expense.model_copy(deep=True))

        expenses.sort(key=lambda e: e.date)
        return expenses

    async def list_for_backfill(self, missing_only: bool = True) -> list[Expense]:
        expenses = [
            expense.model_copy(deep=True)
            for expense in self._expenses.values()
            if not (missing_only and expense.equivalents is not None)
        ]
        expenses.sort(key=lambda e: e.date)
        return expenses

    async def update_valuation(
        self,
        expense_id: UUID,
        equivalents: CurrencyEquivalents,
        rates_at_creation: RateSnapshot,
    ) -> bool:
        if expense_id not in self._expenses:
            raise NotFoundError(f"Expense not found: {expense_id}")
        self._expenses[expense_id] = self._expenses[expense_id].model_copy(
            update={
                "equivalents": equivalents,
                "rates_at_creation": rates_at_creation,
            }
        )
        return True


class InMemoryBudgetStorage(BudgetStorageInterface):

    def __init__(self, budgets: Optional[list[Budget]] = None):
        self._budgets: list[Budget] = list(budgets or [])

    async def save_budget(self, budget: Budget) -> bool:
        self._budgets.append(budget)
        return True

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return [b.model_copy() for b in self._budgets if b.user_id == user_id]


class InMemoryInsightStorage(InsightStorageInterface):
    """Insights keyed directly by the hashable InsightKey."""

    def __init__(self):
        self._insights: dict[InsightKey, StoredInsight] = {}

    async def get_insight(self, key: InsightKey) -> Optional[StoredInsight]:
        stored = self._insights.get(key)
        return stored.model_copy(deep=True) if stored else None

    async def upsert_insight(self, insight: StoredInsight) -> StoredInsight:
        self._insights[insight.key] = insight.model_copy(deep=True)
        return insight

    def __len__(self) -> int:
        return len(self._insights)


class InMemoryAuditStorage(AuditStorageInterface):

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
