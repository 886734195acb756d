"""
Ledger Integrity Check

Re-derives every checkpoint of an account and reports where stored
state disagrees with the reconciliation invariants. Read-only: it never
repairs anything. Running recalculation is the repair path.
"""

from typing import Optional
from uuid import UUID

from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine.calculator import BalanceCalculator, reconcile_amounts
from reconciler.models.ledger import IntegrityIssue, IntegrityReport
from reconciler.services.storage import LedgerStoreInterface, NotFoundError


class LedgerIntegrityChecker:
    """Checks checkpoints against their synthetic transactions and the ledger."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        calculator: BalanceCalculator,
        settings: Optional[ReconciliationSettings] = None,
    ):
        self._store = store
        self._calculator = calculator
        self._settings = settings or get_settings().reconciliation

    async def verify_account(self, account_id: UUID) -> IntegrityReport:
        """
        Check every checkpoint of an account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        if await self._store.get_account(account_id) is None:
            raise NotFoundError(f"Account not found: {account_id}")

        checkpoints = await self._store.list_checkpoints(account_id)
        adjustments = await self._store.list_balance_adjustments(account_id)

        by_checkpoint: dict[UUID, list] = {}
        for tx in adjustments:
            by_checkpoint.setdefault(tx.checkpoint_id, []).append(tx)

        issues: list[IntegrityIssue] = []
        known_ids = {c.id for c in checkpoints}

        for tx in adjustments:
            if tx.checkpoint_id not in known_ids:
                issues.append(IntegrityIssue(
                    issue_type="orphaned_adjustment",
                    message=f"Adjustment references missing checkpoint {tx.checkpoint_id}",
                    transaction_id=tx.id,
                ))

        for checkpoint in checkpoints:
            linked = by_checkpoint.get(checkpoint.id, [])

            if len(linked) > 1:
                issues.append(IntegrityIssue(
                    issue_type="duplicate_adjustment",
                    message=f"{len(linked)} adjustments linked to one checkpoint",
                    checkpoint_id=checkpoint.id,
                ))
            elif checkpoint.is_reconciled and linked:
                issues.append(IntegrityIssue(
                    issue_type="unexpected_adjustment",
                    message="Reconciled checkpoint still has an adjustment",
                    checkpoint_id=checkpoint.id,
                    transaction_id=linked[0].id,
                ))
            elif not checkpoint.is_reconciled and not linked:
                issues.append(IntegrityIssue(
                    issue_type="missing_adjustment",
                    message="Unreconciled checkpoint has no adjustment transaction",
                    checkpoint_id=checkpoint.id,
                ))
            elif linked:
                own = linked[0]
                if own.signed_amount != checkpoint.adjustment_amount:
                    issues.append(IntegrityIssue(
                        issue_type="amount_mismatch",
                        message=(
                            f"Adjustment amount {own.signed_amount} differs from "
                            f"checkpoint adjustment {checkpoint.adjustment_amount}"
                        ),
                        checkpoint_id=checkpoint.id,
                        transaction_id=own.id,
                    ))
                if own.transaction_date != checkpoint.checkpoint_date:
                    issues.append(IntegrityIssue(
                        issue_type="date_mismatch",
                        message=(
                            f"Adjustment dated {own.transaction_date}, checkpoint "
                            f"dated {checkpoint.checkpoint_date}"
                        ),
                        checkpoint_id=checkpoint.id,
                        transaction_id=own.id,
                    ))

            exclude = linked[0].id if len(linked) == 1 else None
            calculation = await self._calculator.calculate_balance(
                account_id,
                checkpoint.checkpoint_date,
                exclude_transaction_id=exclude,
            )
            adjustment, reconciled = reconcile_amounts(
                checkpoint.declared_balance,
                calculation.balance,
                self._settings.threshold,
            )
            if (
                calculation.balance != checkpoint.calculated_balance
                or adjustment != checkpoint.adjustment_amount
                or reconciled != checkpoint.is_reconciled
            ):
                issues.append(IntegrityIssue(
                    issue_type="stale_calculation",
                    message=(
                        f"Stored calculated balance {checkpoint.calculated_balance}, "
                        f"ledger gives {calculation.balance}"
                    ),
                    checkpoint_id=checkpoint.id,
                ))

        return IntegrityReport(
            account_id=account_id,
            checkpoints_checked=len(checkpoints),
            issues=issues,
        )
