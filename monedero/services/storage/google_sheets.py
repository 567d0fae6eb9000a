"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the initial storage backend because:
1. Non-technical users can view their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions (the rate log is append-only, so it never needs them)
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing business logic.
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from monedero.clock import ensure_utc
from monedero.config import GoogleSheetsSettings, get_settings
from monedero.models.advisor import (
    FinancialMetrics,
    FinancialTip,
    InsightKey,
    StoredInsight,
    SupportedLocale,
)
from monedero.models.audit import AuditEvent, AuditEventType, AuditSeverity
from monedero.models.currency import (
    Currency,
    CurrencyEquivalents,
    ExchangeRate,
    RateLogQuery,
    RatePair,
    RateSnapshot,
    RateSource,
)
from monedero.models.expense import Budget, Expense, ExpenseCategory
from monedero.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    ExpenseStorageInterface,
    InsightStorageInterface,
    NotFoundError,
    PersistenceError,
    RateLogInterface,
    StorageError,
)


# Column mappings for the ExchangeRates sheet
RATE_COLUMNS = [
    "id",
    "pair",
    "source",
    "rate",
    "fetched_at",
]

# Column mappings for the Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "user_id",
    "amount",
    "currency",
    "date",
    "category_id",
    "category_json",
    "description",
    "merchant_name",
    "receipt_id",
    "equivalents_json",
    "rates_at_creation_json",
    "created_at",
]

# Column mappings for the Budgets sheet
BUDGET_COLUMNS = [
    "id",
    "user_id",
    "amount",
    "currency",
    "category_id",
    "category_name",
    "spent",
]

# Column mappings for the Insights sheet
INSIGHT_COLUMNS = [
    "id",
    "user_id",
    "month",
    "year",
    "locale",
    "metrics_json",
    "tips_json",
    "summary",
    "generated_at",
    "valid_until",
]

# Column mappings for the Audit sheet (matches AuditEvent.to_sheets_row)
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_code",
    "error_message",
]

# 1-based sheet column of the valuation cells
EQUIVALENTS_COLUMN = EXPENSE_COLUMNS.index("equivalents_json") + 1
RATES_AT_CREATION_COLUMN = EXPENSE_COLUMNS.index("rates_at_creation_json") + 1


def _safe_getter(row: list):
    """Build a column accessor that tolerates short rows."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default
    return safe_get


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(
        self,
        title: str,
        columns: list[str],
        rows: int = 1000,
    ) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class GoogleSheetsRateLog(RateLogInterface):
    """
    Append-only rate log in a worksheet.

    One row per fetched rate. Queries read the whole sheet and filter in
    Python; the log grows by at most a few rows per refresh cycle.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.rates_sheet_name,
            RATE_COLUMNS,
            rows=5000,
        )

    def _rate_to_row(self, rate: ExchangeRate) -> list:
        return [
            str(rate.id),
            rate.pair.value,
            rate.source.value,
            str(rate.rate),
            rate.fetched_at.isoformat(),
        ]

    def _row_to_rate(self, row: list) -> ExchangeRate:
        safe_get = _safe_getter(row)
        return ExchangeRate(
            id=UUID(safe_get(0)),
            pair=RatePair(safe_get(1)),
            source=RateSource(safe_get(2)),
            rate=Decimal(safe_get(3)),
            fetched_at=datetime.fromisoformat(safe_get(4)),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append(self, rate: ExchangeRate) -> None:
        """Append one rate row."""
        try:
            self._sheet().append_row(self._rate_to_row(rate), value_input_option="RAW")
        except Exception as e:
            raise PersistenceError(f"Failed to append rate: {e}")

    async def query(self, query: RateLogQuery) -> list[ExchangeRate]:
        """Read all rows and let the query filter, order and limit them."""
        try:
            all_rows = self._sheet().get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to read rate log: {e}")

        rates = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                rates.append(self._row_to_rate(row))
            except Exception:
                continue  # Skip malformed rows

        return query.apply(rates)


class GoogleSheetsExpenseStorage(ExpenseStorageInterface):
    """
    Google Sheets implementation of expense storage.

    Nested values (category, equivalents, rate snapshot) are stored as
    JSON in their own columns.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.expenses_sheet_name,
            EXPENSE_COLUMNS,
        )

    def _expense_to_row(self, expense: Expense) -> list:
        return [
            str(expense.id),
            expense.user_id,
            str(expense.amount),
            expense.currency.value,
            expense.date.isoformat(),
            expense.category_id or "",
            expense.category.model_dump_json() if expense.category else "",
            expense.description or "",
            expense.merchant_name or "",
            str(expense.receipt_id) if expense.receipt_id else "",
            expense.equivalents.model_dump_json() if expense.equivalents else "",
            expense.rates_at_creation.model_dump_json() if expense.rates_at_creation else "",
            expense.created_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        safe_get = _safe_getter(row)
        return Expense(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            amount=Decimal(safe_get(2)),
            currency=Currency(safe_get(3)),
            date=datetime.fromisoformat(safe_get(4)),
            category_id=safe_get(5) or None,
            category=ExpenseCategory.model_validate_json(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7) or None,
            merchant_name=safe_get(8) or None,
            receipt_id=UUID(safe_get(9)) if safe_get(9) else None,
            equivalents=(
                CurrencyEquivalents.model_validate_json(safe_get(10)) if safe_get(10) else None
            ),
            rates_at_creation=(
                RateSnapshot.model_validate_json(safe_get(11)) if safe_get(11) else None
            ),
            created_at=datetime.fromisoformat(safe_get(12)),
        )

    def _all_expenses(self) -> list[Expense]:
        all_rows = self._sheet().get_all_values()[1:]
        expenses = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except Exception:
                continue  # Skip malformed rows
        return expenses

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_expense(self, expense: Expense) -> bool:
        """Save an expense to Google Sheets."""
        try:
            self._sheet().append_row(self._expense_to_row(expense), value_input_option="RAW")
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to save expense: {e}")

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        try:
            all_rows = self._sheet().get_all_values()[1:]
            for row in all_rows:
                if row and row[0] == str(expense_id):
                    return self._row_to_expense(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get expense: {e}")

    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> list[Expense]:
        """List a user's expenses within [date_from, date_to)."""
        try:
            expenses = self._all_expenses()
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        result = []
        for expense in expenses:
            if expense.user_id != user_id:
                continue
            if date_from and expense.date < ensure_utc(date_from):
                continue
            if date_to and expense.date >= ensure_utc(date_to):
                continue
            result.append(expense)

        result.sort(key=lambda e: e.date)
        return result

    async def list_for_backfill(self, missing_only: bool = True) -> list[Expense]:
        try:
            expenses = self._all_expenses()
        except Exception as e:
            raise StorageError(f"Failed to list expenses: {e}")

        if missing_only:
            expenses = [e for e in expenses if e.equivalents is None]
        expenses.sort(key=lambda e: e.date)
        return expenses

    async def update_valuation(
        self,
        expense_id: UUID,
        equivalents: CurrencyEquivalents,
        rates_at_creation: RateSnapshot,
    ) -> bool:
        """Write the two valuation cells of an existing expense row."""
        try:
            sheet = self._sheet()
            all_rows = sheet.get_all_values()

            # Start from 2 (row 1 is header)
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(expense_id):
                    sheet.update_cell(idx, EQUIVALENTS_COLUMN, equivalents.model_dump_json())
                    sheet.update_cell(
                        idx,
                        RATES_AT_CREATION_COLUMN,
                        rates_at_creation.model_dump_json(),
                    )
                    return True

            raise NotFoundError(f"Expense not found: {expense_id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update expense valuation: {e}")


class GoogleSheetsBudgetStorage(BudgetStorageInterface):

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.budgets_sheet_name,
            BUDGET_COLUMNS,
        )

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            str(budget.id),
            budget.user_id,
            str(budget.amount),
            budget.currency.value,
            budget.category_id or "",
            budget.category_name or "",
            str(budget.spent),
        ]

    def _row_to_budget(self, row: list) -> Budget:
        safe_get = _safe_getter(row)
        return Budget(
            id=UUID(safe_get(0)),
            user_id=safe_get(1),
            amount=Decimal(safe_get(2, "0")),
            currency=Currency(safe_get(3, "USD")),
            category_id=safe_get(4) or None,
            category_name=safe_get(5) or None,
            spent=Decimal(safe_get(6, "0")),
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def save_budget(self, budget: Budget) -> bool:
        try:
            self._sheet().append_row(self._budget_to_row(budget), value_input_option="RAW")
            return True
        except Exception as e:
            raise PersistenceError(f"Failed to save budget: {e}")

    async def list_budgets(self, user_id: str) -> list[Budget]:
        try:
            all_rows = self._sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list budgets: {e}")

        budgets = []
        for row in all_rows:
            if not row or len(row) < 2 or row[1] != user_id:
                continue
            try:
                budgets.append(self._row_to_budget(row))
            except Exception:
                continue
        return budgets


class GoogleSheetsInsightStorage(InsightStorageInterface):
    """
    Insight cache in a worksheet.

    The row key is the four columns user_id, month, year, locale.
    An upsert rewrites the matching row in place, or appends a new one.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.insights_sheet_name,
            INSIGHT_COLUMNS,
        )

    @staticmethod
    def _key_cells(key: InsightKey) -> list[str]:
        return [key.user_id, str(key.month), str(key.year), key.locale.value]

    def _insight_to_row(self, insight: StoredInsight) -> list:
        return [
            str(insight.id),
            *self._key_cells(insight.key),
            insight.metrics.model_dump_json(),
            json.dumps([tip.model_dump(mode="json") for tip in insight.tips]),
            insight.summary or "",
            insight.generated_at.isoformat(),
            insight.valid_until.isoformat(),
        ]

    def _row_to_insight(self, row: list) -> StoredInsight:
        safe_get = _safe_getter(row)
        return StoredInsight(
            id=UUID(safe_get(0)),
            key=InsightKey(
                user_id=safe_get(1),
                month=int(safe_get(2)),
                year=int(safe_get(3)),
                locale=SupportedLocale(safe_get(4)),
            ),
            metrics=FinancialMetrics.model_validate_json(safe_get(5)),
            tips=[FinancialTip(**tip) for tip in json.loads(safe_get(6, "[]"))],
            summary=safe_get(7) or None,
            generated_at=datetime.fromisoformat(safe_get(8)),
            valid_until=datetime.fromisoformat(safe_get(9)),
        )

    async def get_insight(self, key: InsightKey) -> Optional[StoredInsight]:
        try:
            all_rows = self._sheet().get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to read insights: {e}")

        wanted = self._key_cells(key)
        for row in all_rows:
            if row and row[1:5] == wanted:
                return self._row_to_insight(row)
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_insight(self, insight: StoredInsight) -> StoredInsight:
        try:
            sheet = self._sheet()
            all_rows = sheet.get_all_values()
            new_row = self._insight_to_row(insight)
            wanted = self._key_cells(insight.key)

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[1:5] == wanted:
                    for col_idx, value in enumerate(new_row, start=1):
                        sheet.update_cell(idx, col_idx, value)
                    return insight

            sheet.append_row(new_row, value_input_option="RAW")
            return insight
        except Exception as e:
            raise PersistenceError(f"Failed to upsert insight: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(
            self._client.settings.audit_sheet_name,
            AUDIT_COLUMNS,
            rows=5000,  # More rows for audit log
        )

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        safe_get = _safe_getter(row)
        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=UUID(safe_get(5)) if safe_get(5) else None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_code=safe_get(9) or None,
            error_message=safe_get(10) or None,
        )

    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event.

        Returns False instead of raising. AuditLogger records the failure
        in the structured log.
        """
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception:
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort chronologically
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get recent events."""
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        # Sort newest first
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]


__all__ = [
    "GoogleSheetsAuditStorage",
    "GoogleSheetsBudgetStorage",
    "GoogleSheetsClient",
    "GoogleSheetsExpenseStorage",
    "GoogleSheetsInsightStorage",
    "GoogleSheetsRateLog",
]
