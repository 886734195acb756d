"""
Checkpoint Report Queries

DESIGN DECISION: Reports are DETERMINISTIC reads over stored data.
They never recalculate; what they show is what the last checkpoint
upsert or recalculation pass persisted. verify_account is the tool for
checking that stored state still matches the ledger.
"""

from typing import Optional
from uuid import UUID

from reconciler.models.ledger import (
    ZERO,
    Checkpoint,
    CheckpointFilter,
    CheckpointLink,
    CheckpointOrder,
    CheckpointSummary,
    FlaggedTransaction,
)
from reconciler.services.storage import LedgerStoreInterface


class CheckpointReports:
    """
    Read-only views over an account's checkpoints.

    GUARANTEES:
    - Only returns real data from storage
    - Never writes
    - Empty results, never errors, for accounts without checkpoints
    """

    def __init__(self, store: LedgerStoreInterface):
        self._store = store

    async def list_checkpoints(
        self,
        account_id: UUID,
        filters: Optional[CheckpointFilter] = None,
    ) -> list[Checkpoint]:
        """List checkpoints, newest first unless the filter says otherwise."""
        filters = filters or CheckpointFilter()
        checkpoints = await self._store.list_checkpoints(
            account_id,
            date_from=filters.date_from,
            date_to=filters.date_to,
        )

        if not filters.include_reconciled:
            checkpoints = [c for c in checkpoints if not c.is_reconciled]

        if filters.order_by == CheckpointOrder.DATE_DESC:
            checkpoints.reverse()

        end = filters.offset + filters.limit if filters.limit else None
        return checkpoints[filters.offset:end]

    async def checkpoint_summary(self, account_id: UUID) -> CheckpointSummary:
        """Counts, adjustment totals and date range of an account's checkpoints."""
        checkpoints = await self._store.list_checkpoints(account_id)
        if not checkpoints:
            return CheckpointSummary(account_id=account_id)

        unreconciled = [c for c in checkpoints if not c.is_reconciled]
        return CheckpointSummary(
            account_id=account_id,
            total_checkpoints=len(checkpoints),
            reconciled_checkpoints=len(checkpoints) - len(unreconciled),
            unreconciled_checkpoints=len(unreconciled),
            total_adjustment_amount=sum(
                (c.adjustment_amount for c in checkpoints), ZERO
            ),
            unreconciled_adjustment_amount=sum(
                (c.adjustment_amount for c in unreconciled), ZERO
            ),
            earliest_checkpoint_date=checkpoints[0].checkpoint_date,
            latest_checkpoint_date=checkpoints[-1].checkpoint_date,
        )

    async def list_flagged_transactions(self, account_id: UUID) -> list[FlaggedTransaction]:
        """
        Audit view: flagged transactions joined to their checkpoint.

        Synthetic adjustments carry the checkpoint that produced them;
        transactions flagged for other reasons have no checkpoint link.
        Newest first.
        """
        transactions = await self._store.list_transactions(account_id, is_flagged=True)
        checkpoints = {c.id: c for c in await self._store.list_checkpoints(account_id)}

        results = []
        for tx in reversed(transactions):
            checkpoint = checkpoints.get(tx.checkpoint_id) if tx.checkpoint_id else None
            link = None
            if checkpoint is not None:
                link = CheckpointLink(
                    checkpoint_id=checkpoint.id,
                    checkpoint_date=checkpoint.checkpoint_date,
                    declared_balance=checkpoint.declared_balance,
                    adjustment_amount=checkpoint.adjustment_amount,
                    is_reconciled=checkpoint.is_reconciled,
                )
            results.append(FlaggedTransaction(transaction=tx, checkpoint=link))
        return results
