"""
Audit Models for Ledger Reconciler

Every change the engine makes to the ledger is logged for audit purposes.
This provides:
1. Complete traceability of synthetic adjustments
2. Debugging information when a recalculation aborts
3. Compliance and accountability
4. Ability to reconstruct history

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from reconciler.models.ledger import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Checkpoints
    CHECKPOINT_CREATED = "checkpoint_created"
    CHECKPOINT_UPDATED = "checkpoint_updated"
    CHECKPOINT_DELETED = "checkpoint_deleted"

    # Synthetic adjustments
    ADJUSTMENT_CREATED = "adjustment_created"
    ADJUSTMENT_UPDATED = "adjustment_updated"
    ADJUSTMENT_REMOVED = "adjustment_removed"

    # Batch operations
    RECALCULATION_COMPLETED = "recalculation_completed"
    OPENING_DATE_REFRESHED = "opening_date_refreshed"
    IMPORT_ROLLED_BACK = "import_rolled_back"
    ORPHANED_ADJUSTMENTS_REMOVED = "orphaned_adjustments_removed"
    INTEGRITY_VIOLATION = "integrity_violation"

    # System events
    SYSTEM_ERROR = "system_error"


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
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
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
        description="Type of entity (e.g., 'checkpoint', 'transaction', 'account')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    account_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one recalculation pass)"
    )

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

    actor: Optional[str] = Field(
        default=None,
        description="Who triggered the action, if known"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "account_id": str(self.account_id) if self.account_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "actor": self.actor,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         account_id, correlation_id, description, details_json, error_message, actor]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.account_id) if self.account_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            self.actor or "",
        ]


def _money(value: Decimal) -> str:
    return str(value)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.checkpoint_saved(checkpoint, created=True)
        event = AuditEventBuilder.adjustment_removed(transaction_id, ...)
    """

    @staticmethod
    def checkpoint_saved(
        checkpoint_id: UUID,
        account_id: UUID,
        checkpoint_date: date,
        declared_balance: Decimal,
        calculated_balance: Decimal,
        adjustment_amount: Decimal,
        created: bool,
        actor: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.CHECKPOINT_CREATED
            if created
            else AuditEventType.CHECKPOINT_UPDATED
        )
        verb = "created" if created else "updated"
        return AuditEvent(
            event_type=event_type,
            entity_type="checkpoint",
            entity_id=checkpoint_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Checkpoint {verb} for {checkpoint_date.isoformat()}",
            details={
                "checkpoint_date": checkpoint_date.isoformat(),
                "declared_balance": _money(declared_balance),
                "calculated_balance": _money(calculated_balance),
                "adjustment_amount": _money(adjustment_amount),
            },
            actor=actor,
        )

    @staticmethod
    def checkpoint_deleted(
        checkpoint_id: UUID,
        account_id: UUID,
        checkpoint_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECKPOINT_DELETED,
            entity_type="checkpoint",
            entity_id=checkpoint_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Checkpoint deleted for {checkpoint_date.isoformat()}",
            details={"checkpoint_date": checkpoint_date.isoformat()},
        )

    @staticmethod
    def adjustment_synced(
        transaction_id: UUID,
        checkpoint_id: UUID,
        account_id: UUID,
        signed_amount: Decimal,
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.ADJUSTMENT_CREATED
            if created
            else AuditEventType.ADJUSTMENT_UPDATED
        )
        direction = "credit" if signed_amount > 0 else "debit"
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Unexplained {direction} of {abs(signed_amount)} recorded as balance adjustment",
            details={
                "checkpoint_id": str(checkpoint_id),
                "signed_amount": _money(signed_amount),
            },
        )

    @staticmethod
    def adjustment_removed(
        transaction_id: UUID,
        checkpoint_id: UUID,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ADJUSTMENT_REMOVED,
            entity_type="transaction",
            entity_id=transaction_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description="Balance adjustment removed",
            details={"checkpoint_id": str(checkpoint_id)},
        )

    @staticmethod
    def recalculation_completed(
        account_id: UUID,
        processed: int,
        changed: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECALCULATION_COMPLETED,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Recalculated {processed} checkpoints, {changed} changed",
            details={
                "processed": processed,
                "changed": changed,
            },
        )

    @staticmethod
    def opening_date_refreshed(
        account_id: UUID,
        opening_balance_date: Optional[date],
        earliest_transaction_date: Optional[date],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPENING_DATE_REFRESHED,
            severity=AuditSeverity.DEBUG,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description="Opening balance date refreshed",
            details={
                "opening_balance_date": (
                    opening_balance_date.isoformat() if opening_balance_date else None
                ),
                "earliest_transaction_date": (
                    earliest_transaction_date.isoformat() if earliest_transaction_date else None
                ),
            },
        )

    @staticmethod
    def import_rolled_back(
        checkpoint_id: UUID,
        account_id: UUID,
        import_batch_id: UUID,
        transactions_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_ROLLED_BACK,
            severity=AuditSeverity.WARNING,
            entity_type="checkpoint",
            entity_id=checkpoint_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Import rolled back: {transactions_deleted} transactions deleted",
            details={
                "import_batch_id": str(import_batch_id),
                "transactions_deleted": transactions_deleted,
            },
        )

    @staticmethod
    def orphaned_adjustments_removed(
        transaction_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ORPHANED_ADJUSTMENTS_REMOVED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            correlation_id=correlation_id,
            description=f"Removed {len(transaction_ids)} orphaned balance adjustments",
            details={"transaction_ids": [str(tid) for tid in transaction_ids]},
        )

    @staticmethod
    def integrity_violation(
        account_id: UUID,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTEGRITY_VIOLATION,
            severity=AuditSeverity.ERROR,
            entity_type="account",
            entity_id=account_id,
            account_id=account_id,
            correlation_id=correlation_id,
            description=f"Ledger integrity check found {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        account_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            account_id=account_id,
            description=f"System error: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
