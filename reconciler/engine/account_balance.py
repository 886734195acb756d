"""
Account Balance Sync

Refreshes the cached Account.current_balance after checkpoints change.
The latest checkpoint wins; without checkpoints the cache is the sum of
recorded (non-synthetic) transactions.
"""

from decimal import Decimal
from uuid import UUID

from reconciler.engine.calculator import BalanceCalculator
from reconciler.models.ledger import utcnow
from reconciler.services.storage import LedgerStoreInterface, NotFoundError


class AccountBalanceSync:
    """Keeps the account balance cache in line with the ledger."""

    def __init__(self, store: LedgerStoreInterface, calculator: BalanceCalculator):
        self._store = store
        self._calculator = calculator

    async def sync_account_balance(self, account_id: UUID) -> Decimal:
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        checkpoints = await self._store.list_checkpoints(account_id)
        if checkpoints:
            latest = checkpoints[-1]
            balance = latest.calculated_balance + latest.adjustment_amount
        else:
            balance = await self._calculator.calculate_recorded_total(account_id)

        if account.current_balance != balance:
            await self._store.save_account(
                account.model_copy(update={
                    "current_balance": balance,
                    "updated_at": utcnow(),
                })
            )
        return balance
