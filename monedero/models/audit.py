"""
Audit Models for Monedero

Every significant action of the engine is logged for audit purposes:
rate refreshes, valuations frozen onto expenses, backfill runs and
advisor generations.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.

SECURITY: Audit events about the advisor never carry expense content.
A failed PII check records which kind of pattern matched, never the text.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from monedero.clock import utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Rate cache
    RATES_REFRESHED = "rates_refreshed"
    RATE_FETCH_FAILED = "rate_fetch_failed"
    RATE_PERSIST_FAILED = "rate_persist_failed"

    # Valuation
    EXPENSE_VALUED = "expense_valued"

    # Backfill
    BACKFILL_STARTED = "backfill_started"
    BACKFILL_RECORD_FAILED = "backfill_record_failed"
    BACKFILL_COMPLETED = "backfill_completed"

    # Advisor
    INSIGHT_CACHE_HIT = "insight_cache_hit"
    INSIGHT_GENERATED = "insight_generated"
    INSIGHT_GENERATION_FAILED = "insight_generation_failed"
    PII_CHECK_FAILED = "pii_check_failed"
    AI_SCHEMA_REJECTED = "ai_schema_rejected"
    INSIGHT_CACHE_WRITE_FAILED = "insight_cache_write_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'rate', 'insight')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one backfill run)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_valued(expense_id, "USD", "100", correlation_id)
        event = AuditEventBuilder.backfill_completed(processed, errors, correlation_id)
    """

    @staticmethod
    def rates_refreshed(
        groups: list[str],
        pairs_available: int,
        failed_writes: int,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATES_REFRESHED,
            severity=AuditSeverity.WARNING if failed_writes else AuditSeverity.INFO,
            entity_type="rate",
            correlation_id=correlation_id,
            description=f"Rate refresh fetched {len(groups)} upstream group(s)",
            details={
                "groups": groups,
                "pairs_available": pairs_available,
                "failed_writes": failed_writes,
            },
        )

    @staticmethod
    def rate_fetch_failed(
        group: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_FETCH_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="rate",
            correlation_id=correlation_id,
            description=f"Upstream {group} fetch failed, using cached rates",
            error_message=error_message,
            details={"group": group},
        )

    @staticmethod
    def rate_persist_failed(
        pair: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_PERSIST_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="rate",
            correlation_id=correlation_id,
            description=f"Could not append {pair} to the rate log",
            error_message=error_message,
            details={"pair": pair},
        )

    @staticmethod
    def expense_valued(
        expense_id: UUID,
        currency: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_VALUED,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Equivalents frozen for {amount} {currency}",
            details={
                "currency": currency,
                "amount": amount,
            },
        )

    @staticmethod
    def backfill_started(
        total: int,
        force_all: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKFILL_STARTED,
            entity_type="backfill",
            correlation_id=correlation_id,
            description=f"Backfill started for {total} expenses",
            details={
                "total": total,
                "force_all": force_all,
            },
        )

    @staticmethod
    def backfill_record_failed(
        expense_id: UUID,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKFILL_RECORD_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Backfill failed for one expense",
            error_message=error_message,
        )

    @staticmethod
    def backfill_completed(
        processed: int,
        errors: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKFILL_COMPLETED,
            severity=AuditSeverity.WARNING if errors else AuditSeverity.INFO,
            entity_type="backfill",
            correlation_id=correlation_id,
            description=f"Backfill complete: {processed} processed, {errors} errors",
            details={
                "processed": processed,
                "errors": errors,
            },
        )

    @staticmethod
    def insight_cache_hit(
        insight_id: UUID,
        locale: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_CACHE_HIT,
            entity_type="insight",
            entity_id=insight_id,
            correlation_id=correlation_id,
            description="Served financial insight from cache",
            details={"locale": locale},
        )

    @staticmethod
    def insight_generated(
        insight_id: UUID,
        locale: str,
        forced: bool,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_GENERATED,
            entity_type="insight",
            entity_id=insight_id,
            correlation_id=correlation_id,
            description="Generated a new financial insight",
            details={
                "locale": locale,
                "forced": forced,
            },
        )

    @staticmethod
    def insight_generation_failed(
        reason: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_GENERATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="insight",
            correlation_id=correlation_id,
            description="Financial insight generation failed",
            error_message=reason,
        )

    @staticmethod
    def pii_check_failed(
        pattern_kind: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PII_CHECK_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="insight",
            correlation_id=correlation_id,
            description="PII check failed, AI request aborted",
            details={"pattern_kind": pattern_kind},
        )

    @staticmethod
    def ai_schema_rejected(
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AI_SCHEMA_REJECTED,
            severity=AuditSeverity.ERROR,
            entity_type="insight",
            correlation_id=correlation_id,
            description="AI response rejected by schema validation",
            error_message=error_message,
        )

    @staticmethod
    def insight_cache_write_failed(
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_CACHE_WRITE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="insight",
            correlation_id=correlation_id,
            description="Could not write financial insight to cache",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
