"""
Audit Logger

DESIGN DECISION: Every ledger mutation the engine makes is logged.
This provides:
1. Complete traceability of synthetic adjustments
2. Debugging capability when a recalculation aborts
3. User can see the history of their reconciliations
4. Compliance readiness

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the engine if logging fails)
- Supports correlation IDs to trace related events
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from reconciler.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from reconciler.models.ledger import Checkpoint, IntegrityIssue, LedgerTransaction
from reconciler.services.storage import AuditStorageInterface


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


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
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
        self._logger = structlog.get_logger("reconciler.audit")

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
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_checkpoint_saved(
        self,
        checkpoint: Checkpoint,
        created: bool,
        actor: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log checkpoint create/update."""
        event = AuditEventBuilder.checkpoint_saved(
            checkpoint_id=checkpoint.id,
            account_id=checkpoint.account_id,
            checkpoint_date=checkpoint.checkpoint_date,
            declared_balance=checkpoint.declared_balance,
            calculated_balance=checkpoint.calculated_balance,
            adjustment_amount=checkpoint.adjustment_amount,
            created=created,
            actor=actor,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_checkpoint_deleted(
        self,
        checkpoint: Checkpoint,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log checkpoint deletion."""
        event = AuditEventBuilder.checkpoint_deleted(
            checkpoint_id=checkpoint.id,
            account_id=checkpoint.account_id,
            checkpoint_date=checkpoint.checkpoint_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_adjustment_synced(
        self,
        transaction: LedgerTransaction,
        created: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a synthetic adjustment being written."""
        event = AuditEventBuilder.adjustment_synced(
            transaction_id=transaction.id,
            checkpoint_id=transaction.checkpoint_id,
            account_id=transaction.account_id,
            signed_amount=transaction.signed_amount,
            created=created,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_adjustment_removed(
        self,
        transaction: LedgerTransaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a synthetic adjustment being deleted."""
        event = AuditEventBuilder.adjustment_removed(
            transaction_id=transaction.id,
            checkpoint_id=transaction.checkpoint_id,
            account_id=transaction.account_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_recalculation_completed(
        self,
        account_id: UUID,
        processed: int,
        changed: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log the end of a recalculation pass."""
        event = AuditEventBuilder.recalculation_completed(
            account_id=account_id,
            processed=processed,
            changed=changed,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_opening_date_refreshed(
        self,
        account_id: UUID,
        opening_balance_date: Optional[date],
        earliest_transaction_date: Optional[date],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log opening balance date refresh."""
        event = AuditEventBuilder.opening_date_refreshed(
            account_id=account_id,
            opening_balance_date=opening_balance_date,
            earliest_transaction_date=earliest_transaction_date,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_import_rolled_back(
        self,
        checkpoint: Checkpoint,
        transactions_deleted: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an import rollback."""
        event = AuditEventBuilder.import_rolled_back(
            checkpoint_id=checkpoint.id,
            account_id=checkpoint.account_id,
            import_batch_id=checkpoint.import_batch_id,
            transactions_deleted=transactions_deleted,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_orphaned_adjustments_removed(
        self,
        transaction_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log orphaned adjustment cleanup."""
        event = AuditEventBuilder.orphaned_adjustments_removed(
            transaction_ids=transaction_ids,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_integrity_violation(
        self,
        account_id: UUID,
        issues: list[IntegrityIssue],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log integrity check failures."""
        event = AuditEventBuilder.integrity_violation(
            account_id=account_id,
            issues=[issue.model_dump(mode="json") for issue in issues],
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        account_id: Optional[UUID] = None,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            account_id=account_id,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new operation (e.g., a checkpoint upsert).
    Pass it through all subsequent operations.
    """
    return uuid4()
