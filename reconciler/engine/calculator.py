"""
Balance Calculator

Derives an account's balance purely from recorded transactions.
Credits increase the balance, debits decrease it, for every account kind;
liability accounts carry negative balances.

DESIGN DECISION: The transaction to leave out is an explicit argument.
A checkpoint's own synthetic adjustment must be excluded from its own
calculation, while adjustments owned by other checkpoints are ordinary
ledger facts and are included. Passing the id explicitly keeps that
exclusion visible at every call site.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from reconciler.models.ledger import ZERO, BalanceCalculation
from reconciler.services.storage import LedgerStoreInterface, NotFoundError


def reconcile_amounts(
    declared_balance: Decimal,
    calculated_balance: Decimal,
    threshold: Decimal,
) -> tuple[Decimal, bool]:
    """
    Compare declared and calculated balances.

    Returns:
        (adjustment_amount, is_reconciled) where adjustment_amount is
        declared - calculated and is_reconciled is |adjustment| < threshold
    """
    adjustment = declared_balance - calculated_balance
    return adjustment, abs(adjustment) < threshold


class BalanceCalculator:
    """Sums signed transaction amounts for one account."""

    def __init__(self, store: LedgerStoreInterface):
        self._store = store

    async def calculate_balance(
        self,
        account_id: UUID,
        as_of_date: date,
        exclude_transaction_id: Optional[UUID] = None,
    ) -> BalanceCalculation:
        """
        Calculate the balance of an account as of a date (inclusive).

        Args:
            account_id: Account to sum
            as_of_date: Include transactions dated on or before this date
            exclude_transaction_id: One transaction to leave out, normally
                the calling checkpoint's own synthetic adjustment

        Returns:
            BalanceCalculation with the balance and the number of
            non-synthetic transactions counted

        Raises:
            NotFoundError: If the account doesn't exist
            DataAccessError: If the store cannot be read
        """
        if await self._store.get_account(account_id) is None:
            raise NotFoundError(f"Account not found: {account_id}")

        transactions = await self._store.list_transactions(
            account_id,
            date_to=as_of_date,
        )

        balance = ZERO
        non_adjustment_count = 0
        for tx in transactions:
            if exclude_transaction_id is not None and tx.id == exclude_transaction_id:
                continue
            balance += tx.signed_amount
            if not tx.is_balance_adjustment:
                non_adjustment_count += 1

        return BalanceCalculation(
            account_id=account_id,
            as_of_date=as_of_date,
            balance=balance,
            non_adjustment_count=non_adjustment_count,
            excluded_transaction_id=exclude_transaction_id,
        )

    async def calculate_recorded_total(self, account_id: UUID) -> Decimal:
        """Sum of every non-synthetic transaction on the account, any date."""
        transactions = await self._store.list_transactions(
            account_id,
            is_balance_adjustment=False,
        )
        return sum((tx.signed_amount for tx in transactions), ZERO)
