"""
Adjustment Transaction Synthesizer

Turns a checkpoint's unexplained balance gap into a flagged ledger
transaction ("no money without origin").

CRITICAL: This is the only code that creates, edits or deletes
synthetic adjustment transactions. Each checkpoint owns zero or one.
"""

from typing import Optional
from uuid import UUID

from reconciler.audit import AuditLogger
from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine.errors import ConsistencyError
from reconciler.models.ledger import (
    Checkpoint,
    LedgerTransaction,
    TransactionOrigin,
    utcnow,
)
from reconciler.services.storage import LedgerStoreInterface


class AdjustmentSynthesizer:
    """Keeps a checkpoint's synthetic transaction in line with its adjustment."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[ReconciliationSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().reconciliation
        self._audit = audit_logger or AuditLogger()

    async def find_adjustment_transaction(
        self,
        checkpoint: Checkpoint,
    ) -> Optional[LedgerTransaction]:
        """
        Find the synthetic transaction owned by a checkpoint.

        Raises:
            ConsistencyError: If more than one is linked to the checkpoint
        """
        linked = await self._store.list_transactions(
            checkpoint.account_id,
            is_balance_adjustment=True,
            checkpoint_id=checkpoint.id,
        )
        if len(linked) > 1:
            raise ConsistencyError(
                f"Checkpoint {checkpoint.id} has {len(linked)} balance adjustment "
                "transactions, expected at most one",
                checkpoint_id=checkpoint.id,
            )
        return linked[0] if linked else None

    async def sync_adjustment_transaction(
        self,
        checkpoint: Checkpoint,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[LedgerTransaction]:
        """
        Create, update or delete the checkpoint's synthetic transaction.

        Returns:
            The synthetic transaction, or None when the checkpoint is
            reconciled and no adjustment is needed
        """
        existing = await self.find_adjustment_transaction(checkpoint)
        amount = checkpoint.adjustment_amount

        if abs(amount) < self._settings.threshold:
            if existing is not None:
                await self._store.delete_transaction(existing.id)
                await self._audit.log_adjustment_removed(existing, correlation_id)
            return None

        fields = {
            "account_id": checkpoint.account_id,
            "transaction_date": checkpoint.checkpoint_date,
            "description": self._settings.adjustment_description,
            "credit_amount": amount if amount > 0 else None,
            "debit_amount": -amount if amount < 0 else None,
            "origin": TransactionOrigin.AUTO_ADJUSTMENT,
            "is_flagged": True,
            "is_balance_adjustment": True,
            "checkpoint_id": checkpoint.id,
        }

        if existing is not None:
            unchanged = all(
                getattr(existing, name) == value for name, value in fields.items()
            )
            if unchanged:
                return existing
            transaction = LedgerTransaction(
                id=existing.id,
                created_at=existing.created_at,
                updated_at=utcnow(),
                **fields,
            )
        else:
            transaction = LedgerTransaction(**fields)

        await self._store.save_transaction(transaction)
        await self._audit.log_adjustment_synced(
            transaction,
            created=existing is None,
            correlation_id=correlation_id,
        )
        return transaction
