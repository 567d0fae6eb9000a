"""
Audit Logger

DESIGN DECISION: Every significant action in the engine is logged.
This provides:
1. Complete traceability of rate refreshes and frozen valuations
2. Debugging capability for backfill runs
3. A record of every advisor generation and every blocked one

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from monedero.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from monedero.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """Send local logs to stderr at INFO, or DEBUG when debug is set."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage is None:
            return True

        try:
            stored = await self._storage.append_event(event)
        except Exception as e:
            # Log failure but don't raise
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

        if not stored:
            self._logger.error("audit_storage_failed", event_id=str(event.event_id))
        return stored

    async def log_rates_refreshed(
        self,
        groups: list[str],
        pairs_available: int,
        failed_writes: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.rates_refreshed(
            groups=groups,
            pairs_available=pairs_available,
            failed_writes=failed_writes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rate_fetch_failed(
        self,
        group: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.rate_fetch_failed(
            group=group,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_rate_persist_failed(
        self,
        pair: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.rate_persist_failed(
            pair=pair,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_expense_valued(
        self,
        expense_id: UUID,
        currency: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log equivalents frozen onto a new expense."""
        event = AuditEventBuilder.expense_valued(
            expense_id=expense_id,
            currency=currency,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backfill_started(
        self,
        total: int,
        force_all: bool,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.backfill_started(
            total=total,
            force_all=force_all,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backfill_record_failed(
        self,
        expense_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.backfill_record_failed(
            expense_id=expense_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_backfill_completed(
        self,
        processed: int,
        errors: int,
        correlation_id: UUID,
    ) -> None:
        event = AuditEventBuilder.backfill_completed(
            processed=processed,
            errors=errors,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_insight_cache_hit(
        self,
        insight_id: UUID,
        locale: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.insight_cache_hit(
            insight_id=insight_id,
            locale=locale,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_insight_generated(
        self,
        insight_id: UUID,
        locale: str,
        forced: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.insight_generated(
            insight_id=insight_id,
            locale=locale,
            forced=forced,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_insight_generation_failed(
        self,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.insight_generation_failed(
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_pii_check_failed(
        self,
        pattern_kind: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a blocked AI request. Only the pattern kind is recorded."""
        event = AuditEventBuilder.pii_check_failed(
            pattern_kind=pattern_kind,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_ai_schema_rejected(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.ai_schema_rejected(
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_insight_cache_write_failed(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.insight_cache_write_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new action (e.g., a backfill run).
    Pass it through all subsequent operations.
    """
    return uuid4()
