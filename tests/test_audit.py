"""Tests for the audit logger."""

import logging

import pytest

from monedero.audit import AuditLogger, configure_logging, create_correlation_id
from monedero.models.audit import AuditEventBuilder, AuditEventType
from monedero.services.storage import InMemoryAuditStorage


class RaisingAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise RuntimeError("sheet unavailable")


class RejectingAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        return False


class TestAuditLogger:

    @pytest.mark.asyncio
    async def test_local_only(self):
        assert await AuditLogger().log(AuditEventBuilder.pii_check_failed("email"))

    @pytest.mark.asyncio
    async def test_persists_event(self, audit_logger, audit_storage):
        correlation_id = create_correlation_id()
        await audit_logger.log_backfill_started(total=3, force_all=False, correlation_id=correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.BACKFILL_STARTED]
        assert events[0].details == {"total": 3, "force_all": False}

    @pytest.mark.asyncio
    async def test_storage_exception_is_swallowed(self):
        logger = AuditLogger(RaisingAuditStorage())
        assert not await logger.log(AuditEventBuilder.rate_fetch_failed("p2p", "timeout"))

    @pytest.mark.asyncio
    async def test_storage_rejection_returns_false(self):
        logger = AuditLogger(RejectingAuditStorage())
        assert not await logger.log(AuditEventBuilder.rate_fetch_failed("p2p", "timeout"))

    def test_correlation_ids_are_unique(self):
        assert create_correlation_id() != create_correlation_id()


class TestConfigureLogging:

    def test_debug_and_info_levels(self):
        root = logging.getLogger()
        previous = root.level
        try:
            configure_logging(debug=True)
            assert root.level == logging.DEBUG
            configure_logging()
            assert root.level == logging.INFO
        finally:
            root.setLevel(previous)
