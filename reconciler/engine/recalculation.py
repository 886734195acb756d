"""
Recalculation Engine

Re-derives an account's checkpoints after ledger data changes.

CRITICAL: Checkpoints are processed in ascending date order. A
checkpoint's calculated balance includes the adjustments written for
earlier checkpoints in the same pass, so any other order reads stale
adjustments.

Failure model: each checkpoint is its own unit of work. The pass stops
at the first error and checkpoints processed before it stay committed.
Re-running the pass is the repair path; recomputation is deterministic,
so a second run over an unchanged ledger reports no changes.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from reconciler.audit import AuditLogger
from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine.account_balance import AccountBalanceSync
from reconciler.engine.calculator import BalanceCalculator, reconcile_amounts
from reconciler.engine.errors import CheckpointValidationError
from reconciler.engine.opening_date import OpeningDateUpdater
from reconciler.engine.synthesizer import AdjustmentSynthesizer
from reconciler.models.ledger import Checkpoint, RecalculationDelta, utcnow
from reconciler.services.storage import LedgerStoreInterface, NotFoundError
from reconciler.validation.validator import CheckpointValidator


class RecalculationEngine:
    """Runs ordered recalculation passes over an account's checkpoints."""

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

    async def recalculate(
        self,
        account_id: UUID,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        checkpoint_ids: Optional[list[UUID]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[RecalculationDelta]:
        """
        Recalculate the selected checkpoints of an account.

        Args:
            account_id: Account to recalculate
            from_date: Only checkpoints on or after this date
            to_date: Only checkpoints on or before this date
            checkpoint_ids: Only these checkpoints
            correlation_id: For tracing related audit events

        Returns:
            Deltas for the checkpoints whose stored values changed,
            in processing order

        Raises:
            CheckpointValidationError: If from_date is after to_date
            NotFoundError: If the account doesn't exist
            ConsistencyError: If a checkpoint has several adjustments
        """
        validation = self._validator.validate_date_range(from_date, to_date)
        if validation.has_errors:
            raise CheckpointValidationError(
                validation.issues[0].message,
                issues=validation.issues,
            )

        if await self._store.get_account(account_id) is None:
            raise NotFoundError(f"Account not found: {account_id}")

        checkpoints = await self._store.list_checkpoints(
            account_id,
            date_from=from_date,
            date_to=to_date,
            checkpoint_ids=checkpoint_ids,
        )

        deltas = []
        for checkpoint in checkpoints:
            async with self._store.unit_of_work():
                delta = await self._recalculate_checkpoint(checkpoint, correlation_id)
            if delta.changed:
                deltas.append(delta)

        await self._opening_date.refresh_opening_date(account_id, correlation_id)
        await self._balance_sync.sync_account_balance(account_id)

        await self._audit.log_recalculation_completed(
            account_id=account_id,
            processed=len(checkpoints),
            changed=len(deltas),
            correlation_id=correlation_id,
        )
        return deltas

    async def _recalculate_checkpoint(
        self,
        checkpoint: Checkpoint,
        correlation_id: Optional[UUID],
    ) -> RecalculationDelta:
        own_adjustment = await self._synthesizer.find_adjustment_transaction(checkpoint)
        calculation = await self._calculator.calculate_balance(
            checkpoint.account_id,
            checkpoint.checkpoint_date,
            exclude_transaction_id=own_adjustment.id if own_adjustment else None,
        )
        adjustment, reconciled = reconcile_amounts(
            checkpoint.declared_balance,
            calculation.balance,
            self._settings.threshold,
        )

        delta = RecalculationDelta(
            checkpoint_id=checkpoint.id,
            checkpoint_date=checkpoint.checkpoint_date,
            old_calculated_balance=checkpoint.calculated_balance,
            new_calculated_balance=calculation.balance,
            old_adjustment_amount=checkpoint.adjustment_amount,
            new_adjustment_amount=adjustment,
            old_is_reconciled=checkpoint.is_reconciled,
            new_is_reconciled=reconciled,
        )

        if delta.changed:
            checkpoint = checkpoint.model_copy(update={
                "calculated_balance": calculation.balance,
                "adjustment_amount": adjustment,
                "is_reconciled": reconciled,
                "updated_at": utcnow(),
            })
            await self._store.save_checkpoint(checkpoint)

        # Always resync: also repairs an adjustment lost to a partial failure
        await self._synthesizer.sync_adjustment_transaction(checkpoint, correlation_id)
        return delta
