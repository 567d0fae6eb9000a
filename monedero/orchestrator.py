"""
Main Orchestrator for Monedero

This module ties together all the components and defines the
end-to-end flows for:
1. Expense valuation (new expense -> current snapshot -> frozen equivalents)
2. Backfill (expenses without equivalents -> historical snapshot -> update)
3. Financial insight (expenses -> anonymize -> heuristics -> PII gate
   -> AI synthesis -> cache)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Equivalents are frozen once and never recomputed on read
- Nothing reaches the AI without passing the PII gate
- Failures on the read paths degrade to an explanatory result, never an
  exception
- Every step is audited

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

import asyncio
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

import structlog

from monedero.advisor import (
    InsightCache,
    PIIValidationError,
    anonymize_expenses,
    build_system_prompt,
    build_user_prompt,
    calculate_financial_metrics,
    month_bounds,
    validate_no_pii,
)
from monedero.agents import AISchemaError, InsightAgent, InsightGenerationError
from monedero.audit import AuditLogger, create_correlation_id
from monedero.clock import ensure_utc, start_of_day, utc_now
from monedero.config import AdvisorSettings, get_settings
from monedero.models.advisor import (
    FinancialInsight,
    GetInsightResult,
    InsightKey,
    SupportedLocale,
)
from monedero.models.currency import WriteOutcome
from monedero.models.expense import BackfillResult, Expense
from monedero.services.rates import BinanceP2PSource, CryptoPriceSource, OfficialRateSource
from monedero.services.storage import (
    BudgetStorageInterface,
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsBudgetStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    GoogleSheetsInsightStorage,
    GoogleSheetsRateLog,
    InMemoryBudgetStorage,
    InMemoryExpenseStorage,
    InMemoryInsightStorage,
    InMemoryRateLog,
)
from monedero.valuation import HistoricalRateResolver, RateCache, calculate_equivalents

logger = structlog.get_logger(__name__)


# User-facing messages. Never include exception text or matched content.
MESSAGES = {
    SupportedLocale.ES: {
        "no_expenses": "No hay gastos registrados este mes. ¡Agrega algunos gastos primero!",
        "generation_failed": "No pudimos generar tus consejos financieros. Intenta de nuevo más tarde.",
    },
    SupportedLocale.EN: {
        "no_expenses": "No expenses found for this month. Add some expenses first!",
        "generation_failed": "We couldn't generate your financial tips. Please try again later.",
    },
}


class BackfillRecordError(Exception):
    """One expense could not be backfilled. The batch continues."""

    def __init__(self, expense_id: UUID, message: str):
        self.expense_id = expense_id
        super().__init__(f"Expense {expense_id}: {message}")


class ExpenseValuationFlow:
    """
    Freezes equivalents onto new expenses.

    Flow:
    1. Refresh rates as needed and take the current snapshot
    2. Compute equivalents from that snapshot
    3. Save the expense with both equivalents and the snapshot

    An expense that already carries equivalents and a snapshot is saved
    as is.
    """

    def __init__(
        self,
        rate_cache: RateCache,
        expense_storage: ExpenseStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._rate_cache = rate_cache
        self._expense_storage = expense_storage
        self._audit_logger = audit_logger or AuditLogger()

    async def value_expense(self, expense: Expense) -> Expense:
        """Return a copy of the expense with equivalents frozen onto it."""
        if expense.is_valued:
            return expense

        snapshot = await self._rate_cache.current_snapshot()
        equivalents = calculate_equivalents(expense.amount, expense.currency, snapshot)
        return expense.model_copy(update={
            "equivalents": equivalents,
            "rates_at_creation": snapshot,
        })

    async def create_expense(
        self,
        expense: Expense,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Value and persist a new expense.

        Raises:
            StorageError: If the expense cannot be saved
        """
        valued = await self.value_expense(expense)
        await self._expense_storage.save_expense(valued)

        await self._audit_logger.log_expense_valued(
            expense_id=valued.id,
            currency=valued.currency.value,
            amount=str(valued.amount),
            correlation_id=correlation_id,
        )
        return valued


class BackfillFlow:
    """
    Reprocesses expenses with historical snapshots.

    Each record depends only on its own date, so records are independent.
    They run one at a time by default; max_concurrency > 1 runs a bounded
    number in parallel. A failed record is counted and skipped, never
    fatal for the batch. Re-running against an unchanged rate log
    reproduces identical equivalents.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        resolver: HistoricalRateResolver,
        audit_logger: Optional[AuditLogger] = None,
        max_concurrency: int = 1,
    ):
        self._expense_storage = expense_storage
        self._resolver = resolver
        self._audit_logger = audit_logger or AuditLogger()
        self._max_concurrency = max(1, max_concurrency)

    async def backfill_expense_rates(self, force_all: bool = False) -> BackfillResult:
        """
        Backfill equivalents and rates_at_creation.

        Args:
            force_all: Recompute every expense, not only those missing equivalents

        Returns:
            Counts of processed and failed records
        """
        correlation_id = create_correlation_id()

        try:
            expenses = await self._expense_storage.list_for_backfill(missing_only=not force_all)
        except Exception as e:
            logger.error("backfill_fetch_failed", error=str(e))
            await self._audit_logger.log_error(
                error_type="backfill_fetch_failed",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return BackfillResult(processed=0, errors=1)

        logger.info("backfill_started", total=len(expenses), force_all=force_all)
        await self._audit_logger.log_backfill_started(
            total=len(expenses),
            force_all=force_all,
            correlation_id=correlation_id,
        )

        if self._max_concurrency == 1:
            outcomes = []
            for expense in expenses:
                outcomes.append(await self._process(expense, correlation_id))
        else:
            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def bounded(expense: Expense) -> bool:
                async with semaphore:
                    return await self._process(expense, correlation_id)

            outcomes = await asyncio.gather(*(bounded(e) for e in expenses))

        processed = sum(1 for ok in outcomes if ok)
        result = BackfillResult(processed=processed, errors=len(outcomes) - processed)

        logger.info("backfill_complete", processed=result.processed, errors=result.errors)
        await self._audit_logger.log_backfill_completed(
            processed=result.processed,
            errors=result.errors,
            correlation_id=correlation_id,
        )
        return result

    async def _process(self, expense: Expense, correlation_id: UUID) -> bool:
        try:
            await self._backfill_record(expense)
        except BackfillRecordError as e:
            logger.error("backfill_record_failed", expense_id=str(expense.id), error=str(e))
            await self._audit_logger.log_backfill_record_failed(
                expense_id=expense.id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return False
        return True

    async def _backfill_record(self, expense: Expense) -> None:
        """
        Resolve, compute and write one record.

        Raises:
            BackfillRecordError: On any failure for this record
        """
        try:
            snapshot = await self._resolver.resolve(expense.date)
            equivalents = calculate_equivalents(expense.amount, expense.currency, snapshot)
            updated = await self._expense_storage.update_valuation(
                expense.id,
                equivalents,
                snapshot,
            )
        except Exception as e:
            raise BackfillRecordError(expense.id, str(e)) from e

        if not updated:
            raise BackfillRecordError(expense.id, "update was not applied")

        logger.info(
            "backfill_record",
            date=expense.date.date().isoformat(),
            amount=str(expense.amount),
            currency=expense.currency.value,
            equivalents={
                "usd": f"{equivalents.usd:.2f}",
                "usdt": f"{equivalents.usdt:.2f}",
                "eur": f"{equivalents.eur:.2f}",
            },
            rates={
                "usd_ves": f"{snapshot.usd_ves:.2f}",
                "usdt_ves": f"{snapshot.usdt_ves:.2f}",
                "eur_ves": f"{snapshot.eur_ves:.2f}",
            },
        )


class InsightFlow:
    """
    Orchestrates the financial insight read path.

    Flow:
    1. Cache check (skipped on forced refresh)
    2. Load the month's expenses, budgets and rate info
    3. Anonymize -> heuristics -> PII gate
    4. AI synthesis from the locale's prompt
    5. Best-effort cache write

    The PII gate is MANDATORY and runs immediately before synthesis.
    This flow never raises: every failure becomes success=False with a
    message safe to show the user.
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        budget_storage: BudgetStorageInterface,
        rate_cache: RateCache,
        insight_cache: InsightCache,
        agent: Optional[InsightAgent] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AdvisorSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._expense_storage = expense_storage
        self._budget_storage = budget_storage
        self._rate_cache = rate_cache
        self._insight_cache = insight_cache
        self._agent = agent
        self._audit_logger = audit_logger or AuditLogger()
        self._settings = settings or AdvisorSettings()
        self._clock = clock

    @property
    def agent(self) -> InsightAgent:
        # Created on first use so flows that never reach the AI need no key
        if self._agent is None:
            self._agent = InsightAgent()
        return self._agent

    async def get_financial_insight(
        self,
        user_id: str,
        locale: Optional[SupportedLocale] = None,
        force_refresh: bool = False,
        reference_date: Optional[datetime] = None,
    ) -> GetInsightResult:
        """
        Insight for the user's current month.

        Returns a cached non-stale insight unless force_refresh; otherwise
        runs the full pipeline.
        """
        locale = SupportedLocale(locale or self._settings.default_locale)
        reference = ensure_utc(reference_date) if reference_date else self._clock()
        key = InsightKey.for_period(user_id, reference, locale)
        correlation_id = create_correlation_id()

        if not force_refresh:
            cached = await self._read_cache(key)
            if cached is not None and not cached.is_stale:
                await self._audit_logger.log_insight_cache_hit(
                    insight_id=cached.id,
                    locale=locale.value,
                    correlation_id=correlation_id,
                )
                return GetInsightResult(success=True, insight=cached, from_cache=True)

        try:
            return await self._generate(key, reference, force_refresh, correlation_id)
        except PIIValidationError as e:
            logger.error("pii_check_failed", pattern_kind=e.kind)
            await self._audit_logger.log_pii_check_failed(
                pattern_kind=e.kind,
                correlation_id=correlation_id,
            )
        except AISchemaError as e:
            await self._audit_logger.log_ai_schema_rejected(
                error_message=str(e),
                correlation_id=correlation_id,
            )
        except InsightGenerationError as e:
            logger.error("ai_service_failed", error=str(e))
            await self._audit_logger.log_external_service_error(
                service="gemini",
                error_message=str(e),
                correlation_id=correlation_id,
            )
        except Exception as e:
            logger.error("insight_generation_failed", error=str(e))
            await self._audit_logger.log_insight_generation_failed(
                reason=str(e),
                correlation_id=correlation_id,
            )

        return GetInsightResult(
            success=False,
            error=MESSAGES[locale]["generation_failed"],
        )

    async def refresh_financial_insight(
        self,
        user_id: str,
        locale: Optional[SupportedLocale] = None,
        reference_date: Optional[datetime] = None,
    ) -> GetInsightResult:
        """Regenerate regardless of what is cached."""
        return await self.get_financial_insight(
            user_id,
            locale=locale,
            force_refresh=True,
            reference_date=reference_date,
        )

    async def _read_cache(self, key: InsightKey) -> Optional[FinancialInsight]:
        try:
            return await self._insight_cache.get(key)
        except Exception as e:
            logger.warning("insight_cache_read_failed", error=str(e))
            return None

    async def _generate(
        self,
        key: InsightKey,
        reference: datetime,
        forced: bool,
        correlation_id: UUID,
    ) -> GetInsightResult:
        month_start, next_month = month_bounds(reference)
        expenses = await self._expense_storage.list_expenses(
            key.user_id,
            date_from=start_of_day(month_start),
            date_to=start_of_day(next_month),
        )
        if not expenses:
            return GetInsightResult(
                success=False,
                error=MESSAGES[key.locale]["no_expenses"],
            )

        budgets = await self._budget_storage.list_budgets(key.user_id)
        rate_info = await self._rate_cache.rate_info(reference)

        data = calculate_financial_metrics(
            anonymize_expenses(expenses),
            budgets,
            rate_info,
            reference.date(),
            friction_threshold=self._settings.friction_threshold,
            top_categories_limit=self._settings.top_categories_limit,
        )

        # SECURITY: last check before anything leaves the system
        validate_no_pii(data)

        response = await self.agent.synthesize(
            build_system_prompt(key.locale, data),
            build_user_prompt(key.locale),
        )

        now = self._clock()
        try:
            stored = await self._insight_cache.set(
                key,
                data.metrics,
                response.tips,
                response.summary,
            )
            insight = FinancialInsight.from_stored(stored, now)
            cache_write = WriteOutcome(target="insight_cache", succeeded=True)
        except Exception as e:
            logger.warning("insight_cache_write_failed", error=str(e))
            await self._audit_logger.log_insight_cache_write_failed(
                error_message=str(e),
                correlation_id=correlation_id,
            )
            insight = FinancialInsight(
                id=uuid4(),
                tips=response.tips,
                summary=response.summary,
                metrics=data.metrics,
                generated_at=now,
            )
            cache_write = WriteOutcome(target="insight_cache", succeeded=False, error=str(e))

        await self._audit_logger.log_insight_generated(
            insight_id=insight.id,
            locale=key.locale.value,
            forced=forced,
            correlation_id=correlation_id,
        )
        return GetInsightResult(
            success=True,
            insight=insight,
            from_cache=False,
            cache_write=cache_write,
        )


def create_app_components(
    use_storage: bool = True,
) -> tuple[RateCache, ExpenseValuationFlow, BackfillFlow, InsightFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Falls back to in-memory storage when False or when
                    Sheets is not configured.

    Returns:
        (rate_cache, valuation_flow, backfill_flow, insight_flow, sheets_client)
    """
    settings = get_settings()
    sheets_client = None

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None

    if sheets_client is not None:
        rate_log = GoogleSheetsRateLog(sheets_client)
        expense_storage = GoogleSheetsExpenseStorage(sheets_client)
        budget_storage = GoogleSheetsBudgetStorage(sheets_client)
        insight_storage = GoogleSheetsInsightStorage(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    else:
        rate_log = InMemoryRateLog()
        expense_storage = InMemoryExpenseStorage()
        budget_storage = InMemoryBudgetStorage()
        insight_storage = InMemoryInsightStorage()
        audit_logger = AuditLogger()  # Local-only logging

    rate_settings = settings.rates
    advisor_settings = settings.advisor

    rate_cache = RateCache(
        rate_log,
        [
            BinanceP2PSource(rate_settings),
            OfficialRateSource(rate_settings),
            CryptoPriceSource(rate_settings),
        ],
        settings=rate_settings,
        audit_logger=audit_logger,
    )

    valuation_flow = ExpenseValuationFlow(
        rate_cache=rate_cache,
        expense_storage=expense_storage,
        audit_logger=audit_logger,
    )

    backfill_flow = BackfillFlow(
        expense_storage=expense_storage,
        resolver=HistoricalRateResolver(rate_log, rate_settings),
        audit_logger=audit_logger,
        max_concurrency=settings.app.backfill_max_concurrency,
    )

    insight_flow = InsightFlow(
        expense_storage=expense_storage,
        budget_storage=budget_storage,
        rate_cache=rate_cache,
        insight_cache=InsightCache(insight_storage, ttl_hours=advisor_settings.insight_ttl_hours),
        audit_logger=audit_logger,
        settings=advisor_settings,
    )

    return rate_cache, valuation_flow, backfill_flow, insight_flow, sheets_client
