"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the operations the valuation engine and the advisor need.

CRITICAL: The rate log has no lookup by ID and no update. Consumers
always ask "most recent N rows for these pairs in this window" through
a RateLogQuery.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from uuid import UUID

from monedero.models.advisor import InsightKey, StoredInsight
from monedero.models.audit import AuditEvent
from monedero.models.currency import CurrencyEquivalents, ExchangeRate, RateLogQuery, RateSnapshot
from monedero.models.expense import Budget, Expense


class RateLogInterface(ABC):
    """
    Append-only exchange rate log.

    Rows are pure inserts, so concurrent writers never conflict.
    """

    @abstractmethod
    async def append(self, rate: ExchangeRate) -> None:
        """
        Append one rate row.

        Raises:
            PersistenceError: If the write does not reach storage
        """
        pass

    @abstractmethod
    async def query(self, query: RateLogQuery) -> list[ExchangeRate]:
        """
        Return rows matching the query.

        Ordered by fetched_at, newest first unless query.oldest_first,
        and truncated to query.limit.

        Raises:
            StorageError: If the read fails
        """
        pass


class ExpenseStorageInterface(ABC):
    """Storage for expenses supplied by the expense collaborator."""

    @abstractmethod
    async def save_expense(self, expense: Expense) -> bool:
        """
        Save a new expense.

        Returns:
            True if saved successfully

        Raises:
            DuplicateError: If an expense with the same ID exists
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by ID, or None."""
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[Expense]:
        """
        List a user's expenses, optionally within [date_from, date_to).

        Returns:
            Expenses ordered by date ascending
        """
        pass

    @abstractmethod
    async def list_for_backfill(self, missing_only: bool = True) -> list[Expense]:
        """
        List expenses for backfill across all users.

        Args:
            missing_only: Only expenses without frozen equivalents

        Returns:
            Expenses ordered by date ascending
        """
        pass

    @abstractmethod
    async def update_valuation(
        self,
        expense_id: UUID,
        equivalents: CurrencyEquivalents,
        rates_at_creation: RateSnapshot,
    ) -> bool:
        """
        Write equivalents and the snapshot used onto an existing expense.

        Raises:
            NotFoundError: If the expense doesn't exist
            PersistenceError: If the write fails
        """
        pass


class BudgetStorageInterface(ABC):
    """Storage for user budgets."""

    @abstractmethod
    async def save_budget(self, budget: Budget) -> bool:
        pass

    @abstractmethod
    async def list_budgets(self, user_id: str) -> list[Budget]:
        pass


class InsightStorageInterface(ABC):
    """
    Storage for generated insights.

    Keyed by InsightKey (user x month x year x locale). There is at most
    one row per key.
    """

    @abstractmethod
    async def get_insight(self, key: InsightKey) -> Optional[StoredInsight]:
        """Return the stored insight for this exact key, or None."""
        pass

    @abstractmethod
    async def upsert_insight(self, insight: StoredInsight) -> StoredInsight:
        """
        Insert, or replace the row with the same key.

        No locking: the last writer wins.

        Raises:
            PersistenceError: If the write fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one backfill run).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class PersistenceError(StorageError):
    """A write did not reach storage."""
    pass
