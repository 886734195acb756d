"""
In-Memory Storage Implementation

Keeps accounts, transactions and checkpoints in dictionaries.
Used for tests and for embedding the engine without a backend.

Unlike Google Sheets, this store supports real units of work: every
write made inside unit_of_work() is journaled and undone if the block
raises. The journal lives in a ContextVar, so concurrent tasks working
on different accounts only ever roll back their own writes.
"""

from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date
from typing import AsyncIterator, Optional
from uuid import UUID

from reconciler.models.audit import AuditEvent
from reconciler.models.ledger import Account, Checkpoint, LedgerTransaction
from reconciler.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
)


class InMemoryLedgerStore(LedgerStoreInterface):
    """Dictionary-backed ledger store with journaled units of work."""

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}
        self._transactions: dict[UUID, LedgerTransaction] = {}
        self._checkpoints: dict[UUID, Checkpoint] = {}
        self._journal: ContextVar[Optional[list]] = ContextVar(
            f"ledger_journal_{id(self)}", default=None
        )

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    def _record(self, table: dict, key: UUID) -> None:
        """Remember the previous value of table[key] for rollback."""
        journal = self._journal.get()
        if journal is not None:
            journal.append((table, key, table.get(key)))

    def _rollback(self, journal: list) -> None:
        for table, key, previous in reversed(journal):
            if previous is None:
                table.pop(key, None)
            else:
                table[key] = previous

    @property
    def supports_transactions(self) -> bool:
        return True

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        if self._journal.get() is not None:
            # Nested: the outermost unit owns the journal
            yield
            return

        journal: list = []
        token = self._journal.set(journal)
        try:
            yield
        except BaseException:
            self._rollback(journal)
            raise
        finally:
            self._journal.reset(token)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def save_account(self, account: Account) -> Account:
        self._record(self._accounts, account.id)
        self._accounts[account.id] = account.model_copy(deep=True)
        return account

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[LedgerTransaction]:
        transaction = self._transactions.get(transaction_id)
        return transaction.model_copy(deep=True) if transaction else None

    async def list_transactions(
        self,
        account_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        is_balance_adjustment: Optional[bool] = None,
        is_flagged: Optional[bool] = None,
        checkpoint_id: Optional[UUID] = None,
        import_batch_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        results = []
        for tx in self._transactions.values():
            if tx.account_id != account_id:
                continue
            if date_from and tx.transaction_date < date_from:
                continue
            if date_to and tx.transaction_date > date_to:
                continue
            if is_balance_adjustment is not None and tx.is_balance_adjustment != is_balance_adjustment:
                continue
            if is_flagged is not None and tx.is_flagged != is_flagged:
                continue
            if checkpoint_id and tx.checkpoint_id != checkpoint_id:
                continue
            if import_batch_id and tx.import_batch_id != import_batch_id:
                continue
            results.append(tx.model_copy(deep=True))

        results.sort(key=lambda t: (t.transaction_date, t.created_at))
        return results

    async def list_balance_adjustments(
        self,
        account_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        results = [
            tx.model_copy(deep=True)
            for tx in self._transactions.values()
            if tx.is_balance_adjustment
            and (account_id is None or tx.account_id == account_id)
        ]
        results.sort(key=lambda t: (t.transaction_date, t.created_at))
        return results

    async def save_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        if transaction.account_id not in self._accounts:
            raise NotFoundError(f"Account not found: {transaction.account_id}")
        self._record(self._transactions, transaction.id)
        self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        if transaction_id not in self._transactions:
            return False
        self._record(self._transactions, transaction_id)
        del self._transactions[transaction_id]
        return True

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    async def get_checkpoint(self, checkpoint_id: UUID) -> Optional[Checkpoint]:
        checkpoint = self._checkpoints.get(checkpoint_id)
        return checkpoint.model_copy(deep=True) if checkpoint else None

    async def get_checkpoint_by_date(
        self,
        account_id: UUID,
        checkpoint_date: date,
    ) -> Optional[Checkpoint]:
        for checkpoint in self._checkpoints.values():
            if (
                checkpoint.account_id == account_id
                and checkpoint.checkpoint_date == checkpoint_date
            ):
                return checkpoint.model_copy(deep=True)
        return None

    async def list_checkpoints(
        self,
        account_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        checkpoint_ids: Optional[list[UUID]] = None,
    ) -> list[Checkpoint]:
        wanted = set(checkpoint_ids) if checkpoint_ids is not None else None
        results = []
        for checkpoint in self._checkpoints.values():
            if checkpoint.account_id != account_id:
                continue
            if date_from and checkpoint.checkpoint_date < date_from:
                continue
            if date_to and checkpoint.checkpoint_date > date_to:
                continue
            if wanted is not None and checkpoint.id not in wanted:
                continue
            results.append(checkpoint.model_copy(deep=True))

        results.sort(key=lambda c: (c.checkpoint_date, c.created_at))
        return results

    async def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        if checkpoint.account_id not in self._accounts:
            raise NotFoundError(f"Account not found: {checkpoint.account_id}")

        existing = await self.get_checkpoint_by_date(
            checkpoint.account_id, checkpoint.checkpoint_date
        )
        if existing and existing.id != checkpoint.id:
            raise DuplicateError(
                f"Checkpoint already exists for account {checkpoint.account_id} "
                f"on {checkpoint.checkpoint_date}"
            )

        self._record(self._checkpoints, checkpoint.id)
        self._checkpoints[checkpoint.id] = checkpoint.model_copy(deep=True)
        return checkpoint

    async def delete_checkpoint(self, checkpoint_id: UUID) -> bool:
        if checkpoint_id not in self._checkpoints:
            return False

        # Cascade to the checkpoint's synthetic transaction
        linked = [
            tx.id
            for tx in self._transactions.values()
            if tx.checkpoint_id == checkpoint_id and tx.is_balance_adjustment
        ]
        for transaction_id in linked:
            await self.delete_transaction(transaction_id)

        self._record(self._checkpoints, checkpoint_id)
        del self._checkpoints[checkpoint_id]
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only in-memory audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
