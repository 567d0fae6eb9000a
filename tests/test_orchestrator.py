"""
Integration tests for the orchestrator flows.

All external services are replaced: stub upstreams, in-memory storage,
and a fake agent standing in for Gemini.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from monedero.advisor import InsightCache
from monedero.agents import AISchemaError, InsightGenerationError
from monedero.models.advisor import (
    FinancialInsightResponse,
    FinancialMetrics,
    FinancialTip,
    InsightKey,
    SupportedLocale,
    TipType,
)
from monedero.models.audit import AuditEventType
from monedero.models.currency import Currency, CurrencyEquivalents, RatePair, RateSnapshot
from monedero.models.money import quantize
from monedero.orchestrator import BackfillFlow, ExpenseValuationFlow, InsightFlow
from monedero.services.storage import (
    InMemoryExpenseStorage,
    InMemoryInsightStorage,
    InMemoryRateLog,
    PersistenceError,
)
from monedero.valuation import HistoricalRateResolver, RateCache

from tests.conftest import NOW, make_expense, make_rate

TIPS = [
    FinancialTip(title="Protect liquidity", body="Keep a week in USDT.", type=TipType.TIP),
    FinancialTip(title="Rate moved", body="The official rate rose.", type=TipType.WARNING),
    FinancialTip(title="On track", body="Spending is under budget.", type=TipType.SUCCESS),
]


class FakeAgent:
    """Records prompts and returns canned tips (or raises)."""

    def __init__(self, error=None):
        self._error = error
        self.calls = []

    async def synthesize(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if self._error is not None:
            raise self._error
        return FinancialInsightResponse(tips=TIPS, summary="Steady month")


class FailingUpdateStorage(InMemoryExpenseStorage):
    """Fails the valuation write for one expense id."""

    def __init__(self, expenses, failing_id):
        super().__init__(expenses)
        self._failing_id = failing_id

    async def update_valuation(self, expense_id, equivalents, rates_at_creation):
        if expense_id == self._failing_id:
            raise PersistenceError("sheet unavailable")
        return await super().update_valuation(expense_id, equivalents, rates_at_creation)


class FailingListStorage(InMemoryExpenseStorage):
    async def list_for_backfill(self, missing_only=True):
        raise PersistenceError("sheet unavailable")


class FailingUpsertStorage(InMemoryInsightStorage):
    async def upsert_insight(self, insight):
        raise PersistenceError("quota exceeded")


def event_types(events):
    return [e.event_type for e in events]


# =============================================================================
# EXPENSE VALUATION
# =============================================================================

class TestExpenseValuationFlow:

    @pytest.fixture
    def flow(self, fresh_rate_log, stub_sources, expense_storage, audit_logger, rate_settings):
        cache = RateCache(
            fresh_rate_log,
            stub_sources.values(),
            settings=rate_settings,
            clock=lambda: NOW,
            audit_logger=audit_logger,
        )
        return ExpenseValuationFlow(cache, expense_storage, audit_logger)

    @pytest.mark.asyncio
    async def test_freezes_equivalents(self, flow, expense_storage, audit_storage):
        saved = await flow.create_expense(make_expense(amount="100", currency=Currency.USD))

        assert saved.is_valued
        assert saved.equivalents.ves == Decimal("4000")
        assert quantize(saved.equivalents.usdt) == Decimal("97.56")
        assert saved.rates_at_creation.usd_ves == Decimal("40")

        stored = await expense_storage.get_expense(saved.id)
        assert stored.equivalents == saved.equivalents

        events = await audit_storage.get_recent_events()
        assert AuditEventType.EXPENSE_VALUED in event_types(events)

    @pytest.mark.asyncio
    async def test_keeps_existing_valuation(self, flow, stub_sources):
        snapshot = RateSnapshot(usd_ves=Decimal("30"), usdt_ves=Decimal("31"), eur_ves=Decimal("33"))
        equivalents = CurrencyEquivalents(
            ves=Decimal("3000"), usd=Decimal("100"), usdt=Decimal("96.77"), eur=Decimal("90.90")
        )
        expense = make_expense(equivalents=equivalents, rates_at_creation=snapshot)

        saved = await flow.create_expense(expense)
        assert saved.equivalents == equivalents
        assert saved.rates_at_creation == snapshot


# =============================================================================
# BACKFILL
# =============================================================================

class TestBackfillFlow:

    @pytest.fixture
    def history(self):
        return InMemoryRateLog([
            make_rate(RatePair.USD_VES, "30", NOW - timedelta(days=10)),
            make_rate(RatePair.USDT_VES, "32", NOW - timedelta(days=10)),
            make_rate(RatePair.EUR_VES, "33", NOW - timedelta(days=10)),
            make_rate(RatePair.USD_VES, "40", NOW - timedelta(days=1)),
            make_rate(RatePair.USDT_VES, "41", NOW - timedelta(days=1)),
            make_rate(RatePair.EUR_VES, "37", NOW - timedelta(days=1)),
        ])

    @pytest.fixture
    def expenses(self):
        return [
            make_expense(amount="100", when=NOW - timedelta(days=5)),
            make_expense(amount="100", when=NOW),
        ]

    def make_flow(self, storage, history, audit_logger, max_concurrency=1):
        return BackfillFlow(
            storage,
            HistoricalRateResolver(history),
            audit_logger,
            max_concurrency=max_concurrency,
        )

    @pytest.mark.asyncio
    async def test_uses_rates_from_each_expense_date(self, expenses, history, audit_logger):
        storage = InMemoryExpenseStorage(expenses)
        result = await self.make_flow(storage, history, audit_logger).backfill_expense_rates()

        assert (result.processed, result.errors) == (2, 0)
        older = await storage.get_expense(expenses[0].id)
        newer = await storage.get_expense(expenses[1].id)
        assert older.rates_at_creation.usd_ves == Decimal("30")
        assert older.equivalents.ves == Decimal("3000")
        assert newer.rates_at_creation.usd_ves == Decimal("40")

    @pytest.mark.asyncio
    async def test_skips_valued_unless_forced(self, expenses, history, audit_logger):
        storage = InMemoryExpenseStorage(expenses)
        flow = self.make_flow(storage, history, audit_logger)

        await flow.backfill_expense_rates()
        second = await flow.backfill_expense_rates()
        assert second.total == 0

        forced = await flow.backfill_expense_rates(force_all=True)
        assert forced.processed == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, expenses, history, audit_logger):
        storage = InMemoryExpenseStorage(expenses)
        flow = self.make_flow(storage, history, audit_logger)

        await flow.backfill_expense_rates(force_all=True)
        first = [(await storage.get_expense(e.id)).equivalents for e in expenses]
        await flow.backfill_expense_rates(force_all=True)
        second = [(await storage.get_expense(e.id)).equivalents for e in expenses]
        assert first == second

    @pytest.mark.asyncio
    async def test_record_failure_is_counted(self, expenses, history, audit_logger, audit_storage):
        storage = FailingUpdateStorage(expenses, failing_id=expenses[0].id)
        result = await self.make_flow(storage, history, audit_logger).backfill_expense_rates()

        assert (result.processed, result.errors) == (1, 1)
        assert (await storage.get_expense(expenses[1].id)).is_valued

        events = await audit_storage.get_recent_events()
        failed = [e for e in events if e.event_type == AuditEventType.BACKFILL_RECORD_FAILED]
        assert len(failed) == 1
        assert failed[0].entity_id == expenses[0].id

    @pytest.mark.asyncio
    async def test_listing_failure(self, history, audit_logger):
        result = await self.make_flow(FailingListStorage(), history, audit_logger).backfill_expense_rates()
        assert (result.processed, result.errors) == (0, 1)

    @pytest.mark.asyncio
    async def test_concurrent_matches_sequential(self, expenses, history, audit_logger):
        sequential = InMemoryExpenseStorage(expenses)
        concurrent = InMemoryExpenseStorage(expenses)

        await self.make_flow(sequential, history, audit_logger).backfill_expense_rates()
        result = await self.make_flow(concurrent, history, audit_logger, max_concurrency=4).backfill_expense_rates()

        assert result.processed == 2
        for expense in expenses:
            a = await sequential.get_expense(expense.id)
            b = await concurrent.get_expense(expense.id)
            assert a.equivalents == b.equivalents

    @pytest.mark.asyncio
    async def test_run_is_correlated_in_audit(self, expenses, history, audit_logger, audit_storage):
        await self.make_flow(InMemoryExpenseStorage(expenses), history, audit_logger).backfill_expense_rates()

        events = await audit_storage.get_recent_events()
        started = next(e for e in events if e.event_type == AuditEventType.BACKFILL_STARTED)
        run = await audit_storage.get_events_by_correlation_id(started.correlation_id)
        assert event_types(run) == [AuditEventType.BACKFILL_STARTED, AuditEventType.BACKFILL_COMPLETED]


# =============================================================================
# FINANCIAL INSIGHT
# =============================================================================

class TestInsightFlow:

    @pytest.fixture
    def valued_expenses(self):
        snapshot = RateSnapshot(usd_ves=Decimal("40"), usdt_ves=Decimal("41"), eur_ves=Decimal("37"))
        return [
            make_expense(
                amount="300",
                when=NOW - timedelta(days=3),
                description="Dinner with ana@correo.com",
                merchant_name="Restaurante La Casa",
                equivalents=CurrencyEquivalents(
                    ves=Decimal("12000"), usd=Decimal("300"), usdt=Decimal("292.68"), eur=Decimal("324.32")
                ),
                rates_at_creation=snapshot,
            ),
            make_expense(
                amount="150",
                category=None,
                when=NOW - timedelta(days=1),
                equivalents=CurrencyEquivalents(
                    ves=Decimal("6000"), usd=Decimal("150"), usdt=Decimal("146.34"), eur=Decimal("162.16")
                ),
                rates_at_creation=snapshot,
            ),
            # Previous month, excluded
            make_expense(amount="999", when=NOW - timedelta(days=40)),
        ]

    @pytest.fixture
    def rate_cache(self, fresh_rate_log, stub_sources, audit_logger, rate_settings):
        return RateCache(
            fresh_rate_log,
            stub_sources.values(),
            settings=rate_settings,
            clock=lambda: NOW,
            audit_logger=audit_logger,
        )

    def make_flow(
        self,
        expenses,
        rate_cache,
        budget_storage,
        audit_logger,
        advisor_settings,
        agent=None,
        insight_storage=None,
    ):
        insight_cache = InsightCache(
            insight_storage if insight_storage is not None else InMemoryInsightStorage(),
            ttl_hours=24,
            clock=lambda: NOW,
        )
        return InsightFlow(
            expense_storage=InMemoryExpenseStorage(expenses),
            budget_storage=budget_storage,
            rate_cache=rate_cache,
            insight_cache=insight_cache,
            agent=agent or FakeAgent(),
            audit_logger=audit_logger,
            settings=advisor_settings,
            clock=lambda: NOW,
        )

    @pytest.mark.asyncio
    async def test_generates_and_caches(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, insight_storage
    ):
        agent = FakeAgent()
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings,
            agent=agent, insight_storage=insight_storage,
        )

        result = await flow.get_financial_insight("user-1", locale=SupportedLocale.EN)

        assert result.success
        assert not result.from_cache
        assert result.cache_write.succeeded
        assert result.insight.summary == "Steady month"
        assert result.insight.metrics.s_current == Decimal("450.00")
        assert len(insight_storage) == 1
        assert len(agent.calls) == 1

    @pytest.mark.asyncio
    async def test_prompt_has_no_personal_data(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings
    ):
        agent = FakeAgent()
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent
        )
        await flow.get_financial_insight("user-1")

        system_prompt, _ = agent.calls[0]
        assert "ana@correo.com" not in system_prompt
        assert "Restaurante" not in system_prompt
        assert "user-1" not in system_prompt

    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, audit_storage
    ):
        agent = FakeAgent()
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent
        )

        first = await flow.get_financial_insight("user-1")
        second = await flow.get_financial_insight("user-1")

        assert second.from_cache
        assert second.insight.id == first.insight.id
        assert len(agent.calls) == 1
        events = await audit_storage.get_recent_events()
        assert AuditEventType.INSIGHT_CACHE_HIT in event_types(events)

    @pytest.mark.asyncio
    async def test_refresh_bypasses_cache(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings
    ):
        agent = FakeAgent()
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent
        )

        await flow.get_financial_insight("user-1")
        refreshed = await flow.refresh_financial_insight("user-1")

        assert not refreshed.from_cache
        assert len(agent.calls) == 2

    @pytest.mark.asyncio
    async def test_stale_cache_regenerates(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, insight_storage
    ):
        stale_cache = InsightCache(insight_storage, ttl_hours=1, clock=lambda: NOW - timedelta(hours=5))
        await stale_cache.set(InsightKey.for_period("user-1", NOW), FinancialMetrics(), TIPS, "old")

        agent = FakeAgent()
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings,
            agent=agent, insight_storage=insight_storage,
        )
        result = await flow.get_financial_insight("user-1")

        assert not result.from_cache
        assert result.insight.summary == "Steady month"
        assert len(agent.calls) == 1

    @pytest.mark.asyncio
    async def test_no_expenses(self, rate_cache, budget_storage, audit_logger, advisor_settings):
        agent = FakeAgent()
        flow = self.make_flow([], rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent)

        result = await flow.get_financial_insight("user-1", locale=SupportedLocale.EN)
        assert not result.success
        assert "No expenses" in result.error
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_pii_blocks_ai_call(
        self, rate_cache, budget_storage, audit_logger, advisor_settings, audit_storage
    ):
        # A category name is user-controlled text that reaches the aggregate
        expenses = [
            make_expense(
                category="ana@correo.com",
                equivalents=CurrencyEquivalents(
                    ves=Decimal("4000"), usd=Decimal("100"), usdt=Decimal("97.56"), eur=Decimal("108.11")
                ),
            ),
        ]
        agent = FakeAgent()
        flow = self.make_flow(expenses, rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent)

        result = await flow.get_financial_insight("user-1")

        assert not result.success
        assert "ana@correo.com" not in result.error
        assert agent.calls == []

        events = await audit_storage.get_recent_events()
        pii = [e for e in events if e.event_type == AuditEventType.PII_CHECK_FAILED]
        assert pii[0].details == {"pattern_kind": "email"}

    @pytest.mark.asyncio
    async def test_schema_rejection_is_failure(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, audit_storage
    ):
        agent = FakeAgent(error=AISchemaError("AI response failed schema validation (1 errors)"))
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent
        )

        result = await flow.get_financial_insight("user-1")
        assert not result.success
        assert result.insight is None
        events = await audit_storage.get_recent_events()
        assert AuditEventType.AI_SCHEMA_REJECTED in event_types(events)

    @pytest.mark.asyncio
    async def test_ai_failure_never_raises(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, audit_storage
    ):
        agent = FakeAgent(error=InsightGenerationError("AI call failed: quota"))
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, agent=agent
        )

        result = await flow.get_financial_insight("user-1", locale=SupportedLocale.ES)
        assert not result.success
        assert result.error

        events = await audit_storage.get_recent_events()
        failed = [e for e in events if e.event_type == AuditEventType.EXTERNAL_SERVICE_ERROR]
        assert failed[0].details == {"service": "gemini"}
        assert failed[0].error_message == "AI call failed: quota"
        assert AuditEventType.AI_SCHEMA_REJECTED not in event_types(events)

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_returns_insight(
        self, valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings, audit_storage
    ):
        flow = self.make_flow(
            valued_expenses, rate_cache, budget_storage, audit_logger, advisor_settings,
            insight_storage=FailingUpsertStorage(),
        )

        result = await flow.get_financial_insight("user-1")

        assert result.success
        assert result.insight.tips == TIPS
        assert not result.cache_write.succeeded
        assert "quota exceeded" in result.cache_write.error
        events = await audit_storage.get_recent_events()
        assert AuditEventType.INSIGHT_CACHE_WRITE_FAILED in event_types(events)

    @pytest.mark.asyncio
    async def test_volatility_uses_logged_rates(
        self, valued_expenses, budget_storage, audit_logger, advisor_settings, stub_sources, rate_settings
    ):
        log = InMemoryRateLog([
            make_rate(RatePair.USD_VES, "36", NOW - timedelta(days=8)),
            make_rate(RatePair.USD_VES, "40", NOW - timedelta(hours=1)),
        ])
        cache = RateCache(log, stub_sources.values(), settings=rate_settings, clock=lambda: NOW)
        flow = self.make_flow(valued_expenses, cache, budget_storage, audit_logger, advisor_settings)

        result = await flow.get_financial_insight("user-1")
        assert result.insight.metrics.rate_volatility == Decimal("11.11")
