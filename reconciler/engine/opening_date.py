"""
Opening Balance Date Updater

Keeps the account's ledger-start marker strictly before its earliest
transaction, real or synthetic. Touches nothing but the account.
"""

from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from reconciler.audit import AuditLogger
from reconciler.config import ReconciliationSettings, get_settings
from reconciler.models.ledger import utcnow
from reconciler.services.storage import LedgerStoreInterface, NotFoundError


class OpeningDateUpdater:
    """Derives Account.opening_balance_date from the ledger."""

    def __init__(
        self,
        store: LedgerStoreInterface,
        settings: Optional[ReconciliationSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().reconciliation
        self._audit = audit_logger or AuditLogger()

    async def refresh_opening_date(
        self,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> date:
        """
        Recompute the opening balance date.

        With transactions on record the marker is the earliest transaction
        date minus the configured offset. With none, it is reset to today
        and earliest_transaction_date is cleared.

        Returns:
            The opening balance date now stored on the account

        Raises:
            NotFoundError: If the account doesn't exist
        """
        account = await self._store.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")

        transactions = await self._store.list_transactions(account_id)
        if transactions:
            earliest = min(tx.transaction_date for tx in transactions)
            opening = earliest - timedelta(days=self._settings.opening_date_offset_days)
        else:
            earliest = None
            opening = utcnow().date()

        if (
            account.opening_balance_date == opening
            and account.earliest_transaction_date == earliest
        ):
            return opening

        await self._store.save_account(
            account.model_copy(update={
                "opening_balance_date": opening,
                "earliest_transaction_date": earliest,
                "updated_at": utcnow(),
            })
        )
        await self._audit.log_opening_date_refreshed(
            account_id=account_id,
            opening_balance_date=opening,
            earliest_transaction_date=earliest,
            correlation_id=correlation_id,
        )
        return opening
