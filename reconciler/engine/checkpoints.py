"""
Checkpoint Manager

Creates, updates and deletes balance checkpoints.

Upsert flow:
1. Validate the declared balance and notes
2. Find the existing checkpoint for (account, date), if any
3. Calculate the balance, leaving out the checkpoint's own adjustment
4. adjustment = declared - calculated, reconciled = |adjustment| < threshold
5. Persist the checkpoint (one row per account and date)
6. Bring the synthetic adjustment transaction in line
7. Refresh the opening balance date and the account balance cache

DESIGN DECISION: Steps 2-7 run inside the store's unit of work. Stores
that support it make the sequence atomic; for the others every step is
idempotent and a later recalculation repairs a partial failure.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from reconciler.audit import AuditLogger
from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine.account_balance import AccountBalanceSync
from reconciler.engine.calculator import BalanceCalculator, reconcile_amounts
from reconciler.engine.errors import CheckpointValidationError
from reconciler.engine.opening_date import OpeningDateUpdater
from reconciler.engine.synthesizer import AdjustmentSynthesizer
from reconciler.models.ledger import Checkpoint, utcnow
from reconciler.services.storage import LedgerStoreInterface, NotFoundError
from reconciler.validation.validator import CheckpointValidator


class CheckpointManager:
    """Orchestrates checkpoint upsert and delete for one store."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        calculator: BalanceCalculator,
        synthesizer: AdjustmentSynthesizer,
        opening_date_updater: OpeningDateUpdater,
        balance_sync: AccountBalanceSync,
        validator: Optional[CheckpointValidator] = None,
        settings: Optional[ReconciliationSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._calculator = calculator
        self._synthesizer = synthesizer
        self._opening_date = opening_date_updater
        self._balance_sync = balance_sync
        self._settings = settings or get_settings().reconciliation
        self._validator = validator or CheckpointValidator(self._settings)
        self._audit = audit_logger or AuditLogger()

    async def upsert_checkpoint(
        self,
        account_id: UUID,
        checkpoint_date: date,
        declared_balance: Decimal,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
        import_batch_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Checkpoint:
        """
        Create or update the checkpoint for (account, date).

        Calling it again with the same input and an unchanged ledger
        returns the same checkpoint and writes nothing new.

        Args:
            account_id: Account being reconciled
            checkpoint_date: Statement date
            declared_balance: Balance stated on the statement
            notes: Free-text notes; None keeps the existing notes
            actor: Who declared the balance
            import_batch_id: Import batch that produced the checkpoint
            correlation_id: For tracing related audit events

        Returns:
            The persisted checkpoint

        Raises:
            CheckpointValidationError: If the input is out of bounds
            NotFoundError: If the account doesn't exist
            ConsistencyError: If the checkpoint has several adjustments
        """
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        validation = self._validator.validate_checkpoint(
            declared_balance=declared_balance,
            checkpoint_date=checkpoint_date,
            notes=notes,
            account=account,
        )
        if validation.has_errors:
            messages = "; ".join(
                issue.message for issue in validation.issues if issue.severity == "error"
            )
            raise CheckpointValidationError(
                f"Invalid checkpoint: {messages}",
                issues=validation.issues,
            )

        async with self._store.unit_of_work():
            existing = await self._store.get_checkpoint_by_date(account_id, checkpoint_date)
            own_adjustment = (
                await self._synthesizer.find_adjustment_transaction(existing)
                if existing is not None
                else None
            )

            calculation = await self._calculator.calculate_balance(
                account_id,
                checkpoint_date,
                exclude_transaction_id=own_adjustment.id if own_adjustment else None,
            )
            adjustment, reconciled = reconcile_amounts(
                declared_balance,
                calculation.balance,
                self._settings.threshold,
            )

            if existing is None:
                checkpoint = Checkpoint(
                    account_id=account_id,
                    checkpoint_date=checkpoint_date,
                    declared_balance=declared_balance,
                    calculated_balance=calculation.balance,
                    adjustment_amount=adjustment,
                    is_reconciled=reconciled,
                    notes=notes,
                    created_by=actor,
                    import_batch_id=import_batch_id,
                )
                changed = True
            else:
                updates = {
                    "declared_balance": declared_balance,
                    "calculated_balance": calculation.balance,
                    "adjustment_amount": adjustment,
                    "is_reconciled": reconciled,
                }
                if notes is not None:
                    updates["notes"] = notes
                if import_batch_id is not None:
                    updates["import_batch_id"] = import_batch_id
                changed = any(getattr(existing, k) != v for k, v in updates.items())
                checkpoint = existing
                if changed:
                    checkpoint = existing.model_copy(
                        update={**updates, "updated_at": utcnow()}
                    )

            if changed:
                await self._store.save_checkpoint(checkpoint)

            await self._synthesizer.sync_adjustment_transaction(checkpoint, correlation_id)
            await self._opening_date.refresh_opening_date(account_id, correlation_id)
            await self._balance_sync.sync_account_balance(account_id)

        if changed:
            await self._audit.log_checkpoint_saved(
                checkpoint,
                created=existing is None,
                actor=actor,
                correlation_id=correlation_id,
            )
        return checkpoint

    async def delete_checkpoint(
        self,
        checkpoint_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Checkpoint:
        """
        Delete a checkpoint and its synthetic adjustment.

        Later checkpoints are not recalculated here; callers that need
        them current run a recalculation afterwards.

        Returns:
            The deleted checkpoint

        Raises:
            NotFoundError: If the checkpoint doesn't exist
        """
        checkpoint = await self._store.get_checkpoint(checkpoint_id)
        if checkpoint is None:
            raise NotFoundError(f"Checkpoint not found: {checkpoint_id}")

        async with self._store.unit_of_work():
            own_adjustment = await self._synthesizer.find_adjustment_transaction(checkpoint)
            await self._store.delete_checkpoint(checkpoint_id)
            await self._opening_date.refresh_opening_date(checkpoint.account_id, correlation_id)
            await self._balance_sync.sync_account_balance(checkpoint.account_id)

        if own_adjustment is not None:
            await self._audit.log_adjustment_removed(own_adjustment, correlation_id)
        await self._audit.log_checkpoint_deleted(checkpoint, correlation_id)
        return checkpoint
