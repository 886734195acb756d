"""
Reconciliation Service

This module ties together all the engine components and exposes the
operations collaborators use:
1. Checkpoints (upsert, delete, import rollback)
2. Recalculation (explicit, or as a post-commit hook after transaction edits)
3. Reports (checkpoint list, summary, flagged transactions)
4. Maintenance (orphaned adjustment cleanup, integrity check)

DESIGN DECISION: The service enforces the boundaries:
- The store is injected; there is no module-level client
- Mutations of one account are serialized by a per-account lock
- Every mutation is audited, and every failure is audited before it
  propagates unchanged to the caller

Collaborator contract: anything that adds, edits or deletes a
non-synthetic transaction must call on_transactions_changed() with the
earliest affected date after committing.
"""

from contextlib import asynccontextmanager
from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncIterator, Optional, Union
from uuid import UUID

import structlog

from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.config import ReconciliationSettings, get_settings
from reconciler.engine import (
    AccountBalanceSync,
    AccountLockRegistry,
    AdjustmentSynthesizer,
    BalanceCalculator,
    CheckpointManager,
    CheckpointValidationError,
    OpeningDateUpdater,
    RecalculationEngine,
)
from reconciler.models.ledger import (
    BalanceCalculation,
    Checkpoint,
    CheckpointFilter,
    CheckpointSummary,
    FlaggedTransaction,
    IntegrityReport,
    LedgerTransaction,
    RecalculationDelta,
)
from reconciler.queries import CheckpointReports
from reconciler.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
    InMemoryAuditStorage,
    InMemoryLedgerStore,
    LedgerStoreInterface,
    NotFoundError,
)
from reconciler.validation import CheckpointValidator, LedgerIntegrityChecker


logger = structlog.get_logger("reconciler.orchestrator")


Amount = Union[Decimal, int, float, str]


def _to_decimal(value: Amount) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Go through str so 0.1 stays 0.1
        return Decimal(str(value))
    return Decimal(value)


def _posted_adjustment(checkpoint: Optional[Checkpoint]) -> Decimal:
    """Signed amount the checkpoint contributes to the ledger."""
    if checkpoint is None or checkpoint.is_reconciled:
        return Decimal("0")
    return checkpoint.adjustment_amount


class ReconciliationService:
    """
    Entry point for the balance checkpoint and reconciliation engine.

    Usage:
        service = ReconciliationService(InMemoryLedgerStore())
        checkpoint = await service.upsert_checkpoint(
            account_id, date(2024, 1, 10), Decimal("1200000")
        )
    """

    def __init__(
        self,
        store: LedgerStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[ReconciliationSettings] = None,
        locks: Optional[AccountLockRegistry] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().reconciliation
        self._audit = audit_logger or AuditLogger()
        self._locks = locks or AccountLockRegistry()

        validator = CheckpointValidator(self._settings)
        self._calculator = BalanceCalculator(store)
        self._synthesizer = AdjustmentSynthesizer(store, self._settings, self._audit)
        self._opening_date = OpeningDateUpdater(store, self._settings, self._audit)
        self._balance_sync = AccountBalanceSync(store, self._calculator)
        self._checkpoints = CheckpointManager(
            store,
            self._calculator,
            self._synthesizer,
            self._opening_date,
            self._balance_sync,
            validator=validator,
            settings=self._settings,
            audit_logger=self._audit,
        )
        self._recalculation = RecalculationEngine(
            store,
            self._calculator,
            self._synthesizer,
            self._opening_date,
            self._balance_sync,
            validator=validator,
            settings=self._settings,
            audit_logger=self._audit,
        )
        self._reports = CheckpointReports(store)
        self._integrity = LedgerIntegrityChecker(store, self._calculator, self._settings)

    @property
    def store(self) -> LedgerStoreInterface:
        return self._store

    @asynccontextmanager
    async def _audited(
        self,
        operation: str,
        account_id: Optional[UUID],
        correlation_id: UUID,
    ) -> AsyncIterator[None]:
        """Record a failure in the audit log, then let it propagate."""
        try:
            yield
        except Exception as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                account_id=account_id,
                details={"operation": operation},
                correlation_id=correlation_id,
            )
            raise

    # =========================================================================
    # Checkpoints
    # =========================================================================

    async def upsert_checkpoint(
        self,
        account_id: UUID,
        checkpoint_date: date,
        declared_balance: Amount,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
        import_batch_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Checkpoint:
        """
        Declare a statement balance for (account, date).

        Creates the checkpoint or updates the existing one, then writes,
        updates or removes its balance adjustment transaction. When the
        posted adjustment changes, later checkpoints are recalculated
        because their balances include it.
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("upsert_checkpoint", account_id, correlation_id):
            async with self._locks.hold(account_id):
                previous = await self._store.get_checkpoint_by_date(account_id, checkpoint_date)
                checkpoint = await self._checkpoints.upsert_checkpoint(
                    account_id=account_id,
                    checkpoint_date=checkpoint_date,
                    declared_balance=_to_decimal(declared_balance),
                    notes=notes,
                    actor=actor,
                    import_batch_id=import_batch_id,
                    correlation_id=correlation_id,
                )

                if _posted_adjustment(previous) != _posted_adjustment(checkpoint):
                    next_day = checkpoint_date + timedelta(days=1)
                    if await self._store.list_checkpoints(account_id, date_from=next_day):
                        await self._recalculation.recalculate(
                            account_id,
                            from_date=next_day,
                            correlation_id=correlation_id,
                        )
                return checkpoint

    async def delete_checkpoint(
        self,
        checkpoint_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Checkpoint:
        """Delete a checkpoint with its adjustment and refresh the opening date."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("delete_checkpoint", None, correlation_id):
            checkpoint = await self._store.get_checkpoint(checkpoint_id)
            if checkpoint is None:
                raise NotFoundError(f"Checkpoint not found: {checkpoint_id}")
            async with self._locks.hold(checkpoint.account_id):
                return await self._checkpoints.delete_checkpoint(checkpoint_id, correlation_id)

    async def rollback_import(
        self,
        checkpoint_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Undo a statement import.

        Deletes the import batch's transactions and the checkpoint it
        created, then recalculates the account's remaining checkpoints.

        Returns:
            Number of imported transactions deleted

        Raises:
            NotFoundError: If the checkpoint doesn't exist
            CheckpointValidationError: If the checkpoint wasn't created by an import
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("rollback_import", None, correlation_id):
            checkpoint = await self._store.get_checkpoint(checkpoint_id)
            if checkpoint is None:
                raise NotFoundError(f"Checkpoint not found: {checkpoint_id}")
            if checkpoint.import_batch_id is None:
                raise CheckpointValidationError(
                    f"Checkpoint {checkpoint_id} was not created by an import"
                )

            async with self._locks.hold(checkpoint.account_id):
                async with self._store.unit_of_work():
                    imported = await self._store.list_transactions(
                        checkpoint.account_id,
                        is_balance_adjustment=False,
                        import_batch_id=checkpoint.import_batch_id,
                    )
                    for tx in imported:
                        await self._store.delete_transaction(tx.id)
                    await self._checkpoints.delete_checkpoint(checkpoint_id, correlation_id)

                await self._recalculation.recalculate(
                    checkpoint.account_id,
                    correlation_id=correlation_id,
                )

            await self._audit.log_import_rolled_back(
                checkpoint,
                transactions_deleted=len(imported),
                correlation_id=correlation_id,
            )
            return len(imported)

    # =========================================================================
    # Recalculation
    # =========================================================================

    async def recalculate(
        self,
        account_id: UUID,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        checkpoint_ids: Optional[list[UUID]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[RecalculationDelta]:
        """Re-derive checkpoints in ascending date order; returns the changed ones."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("recalculate", account_id, correlation_id):
            async with self._locks.hold(account_id):
                return await self._recalculation.recalculate(
                    account_id,
                    from_date=from_date,
                    to_date=to_date,
                    checkpoint_ids=checkpoint_ids,
                    correlation_id=correlation_id,
                )

    async def on_transactions_changed(
        self,
        account_id: UUID,
        earliest_affected_date: date,
        correlation_id: Optional[UUID] = None,
    ) -> list[RecalculationDelta]:
        """Post-commit hook for transaction add/edit/delete."""
        logger.debug(
            "transactions_changed",
            account_id=str(account_id),
            earliest_affected_date=earliest_affected_date.isoformat(),
        )
        return await self.recalculate(
            account_id,
            from_date=earliest_affected_date,
            correlation_id=correlation_id,
        )

    async def calculate_balance(
        self,
        account_id: UUID,
        as_of_date: date,
        exclude_transaction_id: Optional[UUID] = None,
    ) -> BalanceCalculation:
        """Balance of an account as of a date, straight from the ledger."""
        return await self._calculator.calculate_balance(
            account_id,
            as_of_date,
            exclude_transaction_id=exclude_transaction_id,
        )

    # =========================================================================
    # Reports
    # =========================================================================

    async def list_checkpoints(
        self,
        account_id: UUID,
        filters: Optional[CheckpointFilter] = None,
    ) -> list[Checkpoint]:
        return await self._reports.list_checkpoints(account_id, filters)

    async def checkpoint_summary(self, account_id: UUID) -> CheckpointSummary:
        return await self._reports.checkpoint_summary(account_id)

    async def list_flagged_transactions(self, account_id: UUID) -> list[FlaggedTransaction]:
        return await self._reports.list_flagged_transactions(account_id)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def cleanup_orphaned_adjustments(
        self,
        correlation_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        """
        Delete balance adjustments whose checkpoint no longer exists.

        Only needed after partial failures on stores without units of work.

        Returns:
            The deleted transactions
        """
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("cleanup_orphaned_adjustments", None, correlation_id):
            removed: list[LedgerTransaction] = []
            for tx in await self._store.list_balance_adjustments():
                if await self._store.get_checkpoint(tx.checkpoint_id) is not None:
                    continue
                async with self._locks.hold(tx.account_id):
                    await self._store.delete_transaction(tx.id)
                removed.append(tx)

            for account_id in {tx.account_id for tx in removed}:
                async with self._locks.hold(account_id):
                    await self._opening_date.refresh_opening_date(account_id, correlation_id)

            if removed:
                await self._audit.log_orphaned_adjustments_removed(
                    [tx.id for tx in removed],
                    correlation_id=correlation_id,
                )
            return removed

    async def verify_account(
        self,
        account_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> IntegrityReport:
        """Check stored checkpoints against the ledger without changing anything."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("verify_account", account_id, correlation_id):
            report = await self._integrity.verify_account(account_id)
            if not report.is_consistent:
                await self._audit.log_integrity_violation(
                    account_id,
                    report.issues,
                    correlation_id=correlation_id,
                )
            return report


def create_reconciliation_service(
    backend: Optional[str] = None,
) -> tuple[ReconciliationService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create the reconciliation service.

    Args:
        backend: "memory" or "google_sheets". Defaults to the
                configured storage_backend setting.

    Returns:
        (service, sheets_client); sheets_client is None for the memory backend
    """
    settings = get_settings()
    backend = backend or settings.app.storage_backend

    sheets_client = None
    store: LedgerStoreInterface
    audit_storage: AuditStorageInterface

    if backend == "google_sheets":
        sheets_client = GoogleSheetsClient(settings.google_sheets)
        store = GoogleSheetsLedgerStore(sheets_client)
        audit_storage = GoogleSheetsAuditStorage(sheets_client)
    elif backend == "memory":
        store = InMemoryLedgerStore()
        audit_storage = InMemoryAuditStorage()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info("reconciliation_service_created", backend=backend)

    service = ReconciliationService(
        store,
        audit_logger=AuditLogger(audit_storage),
        settings=settings.reconciliation,
    )
    return service, sheets_client
