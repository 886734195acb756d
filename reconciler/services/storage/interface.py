"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the ledger store.
This allows us to:
1. Use in-memory storage for deterministic testing
2. Keep Google Sheets (or a real database) swappable
3. Inject the store into the reconciliation service instead of
   reaching for a module-level client
4. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just the reads and writes the reconciliation engine needs.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional
from uuid import UUID

from reconciler.models.audit import AuditEvent
from reconciler.models.ledger import Account, Checkpoint, LedgerTransaction


class LedgerStoreInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (in-memory, Google Sheets, PostgreSQL, etc.)
    must implement these methods. Reads return copies; mutating a returned
    model never changes stored state until it is saved.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """
        Retrieve an account by its ID.

        Returns:
            The account if found, None otherwise

        Raises:
            DataAccessError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """Insert or update an account."""
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[LedgerTransaction]:
        """Retrieve a transaction by its ID."""
        pass

    @abstractmethod
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
        """
        List an account's transactions with optional filters.

        Args:
            account_id: Account to read
            date_from: Only transactions on or after this date
            date_to: Only transactions on or before this date
            is_balance_adjustment: Filter on the synthetic-entry marker
            is_flagged: Filter on the audit flag
            checkpoint_id: Only transactions linked to this checkpoint
            import_batch_id: Only transactions from this import batch

        Returns:
            Matching transactions ordered by date, then creation time
        """
        pass

    @abstractmethod
    async def list_balance_adjustments(
        self,
        account_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        """List synthetic adjustment transactions, for one account or all."""
        pass

    @abstractmethod
    async def save_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        """
        Insert or update a transaction.

        Raises:
            NotFoundError: If the transaction's account doesn't exist
            DataAccessError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction by ID.

        Returns:
            True if a transaction was deleted
        """
        pass

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_checkpoint(self, checkpoint_id: UUID) -> Optional[Checkpoint]:
        """Retrieve a checkpoint by its ID."""
        pass

    @abstractmethod
    async def get_checkpoint_by_date(
        self,
        account_id: UUID,
        checkpoint_date: date,
    ) -> Optional[Checkpoint]:
        """Retrieve the checkpoint for (account, date), if any."""
        pass

    @abstractmethod
    async def list_checkpoints(
        self,
        account_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        checkpoint_ids: Optional[list[UUID]] = None,
    ) -> list[Checkpoint]:
        """
        List an account's checkpoints.

        Returns:
            Matching checkpoints ordered ascending by checkpoint date,
            ties broken by creation time
        """
        pass

    @abstractmethod
    async def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        """
        Insert or update a checkpoint.

        Raises:
            DuplicateError: If a different checkpoint already exists
                for the same account and date
            NotFoundError: If the checkpoint's account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_checkpoint(self, checkpoint_id: UUID) -> bool:
        """
        Delete a checkpoint and, by cascade, its synthetic transaction.

        Returns:
            True if the checkpoint existed
        """
        pass

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    @property
    def supports_transactions(self) -> bool:
        """Whether unit_of_work() actually rolls back on failure."""
        return False

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        """
        Group several writes into one unit.

        The default implementation provides no atomicity: every write
        commits on its own. Stores that can roll back override this.
        """
        yield


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DataAccessError(StorageError):
    """Store unreachable or a query failed."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(DataAccessError):
    """Could not connect to storage backend."""
    pass
