"""Tests for the reconciliation service maintenance operations and factory."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from reconciler.engine.errors import CheckpointValidationError
from reconciler.models.audit import AuditEventType
from reconciler.models.ledger import LedgerTransaction, TransactionOrigin
from reconciler.orchestrator import ReconciliationService, create_reconciliation_service
from reconciler.services.storage import InMemoryLedgerStore, NotFoundError


class TestRollbackImport:
    """Tests for ReconciliationService.rollback_import."""

    @pytest.mark.asyncio
    async def test_rollback_removes_batch_and_checkpoint(self, service, store, account, add_transaction, audit_storage):
        """Test that an import's transactions and checkpoint are removed, manual ones kept."""
        batch = uuid4()
        manual = await add_transaction(account.id, date(2024, 1, 2), credit="500")
        await add_transaction(account.id, date(2024, 1, 5), credit="1000", import_batch_id=batch,
                              origin=TransactionOrigin.IMPORTED)
        await add_transaction(account.id, date(2024, 1, 6), debit="200", import_batch_id=batch,
                              origin=TransactionOrigin.IMPORTED)
        checkpoint = await service.upsert_checkpoint(
            account.id, date(2024, 1, 10), Decimal("1400"), import_batch_id=batch
        )
        assert checkpoint.is_reconciled is False

        deleted = await service.rollback_import(checkpoint.id)

        assert deleted == 2
        assert await store.get_checkpoint(checkpoint.id) is None
        remaining = await store.list_transactions(account.id)
        assert [tx.id for tx in remaining] == [manual.id]
        assert (await store.get_account(account.id)).current_balance == Decimal("500")
        rolled_back = [
            e for e in audit_storage.events if e.event_type == AuditEventType.IMPORT_ROLLED_BACK
        ]
        assert rolled_back[0].details["transactions_deleted"] == 2

    @pytest.mark.asyncio
    async def test_rollback_recalculates_later_checkpoints(self, service, store, account, add_transaction):
        """Test that later checkpoints are re-derived after the rollback."""
        batch = uuid4()
        await add_transaction(account.id, date(2024, 1, 5), credit="1000", import_batch_id=batch)
        imported = await service.upsert_checkpoint(
            account.id, date(2024, 1, 10), Decimal("1000"), import_batch_id=batch
        )
        later = await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1000"))
        assert later.is_reconciled is True

        await service.rollback_import(imported.id)

        stored = await store.get_checkpoint(later.id)
        assert stored.calculated_balance == Decimal("0")
        assert stored.adjustment_amount == Decimal("1000")
        assert stored.is_reconciled is False

    @pytest.mark.asyncio
    async def test_rollback_requires_import(self, service, account):
        """Test that manual checkpoints can't be rolled back."""
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("0"))
        with pytest.raises(CheckpointValidationError):
            await service.rollback_import(checkpoint.id)

    @pytest.mark.asyncio
    async def test_rollback_unknown(self, service):
        """Test that an unknown checkpoint raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.rollback_import(uuid4())


class TestOrphanedAdjustments:
    """Tests for ReconciliationService.cleanup_orphaned_adjustments."""

    @pytest.mark.asyncio
    async def test_removes_only_orphans(self, service, store, account, audit_storage):
        """Test that adjustments with a live checkpoint survive."""
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("10"))
        orphan = LedgerTransaction(
            account_id=account.id,
            transaction_date=date(2024, 1, 3),
            credit_amount=Decimal("7"),
            origin=TransactionOrigin.AUTO_ADJUSTMENT,
            is_flagged=True,
            is_balance_adjustment=True,
            checkpoint_id=uuid4(),
        )
        await store.save_transaction(orphan)

        removed = await service.cleanup_orphaned_adjustments()

        assert [tx.id for tx in removed] == [orphan.id]
        remaining = await store.list_balance_adjustments(account.id)
        assert [tx.checkpoint_id for tx in remaining] == [checkpoint.id]
        assert (await store.get_account(account.id)).opening_balance_date == date(2024, 1, 9)
        assert any(
            e.event_type == AuditEventType.ORPHANED_ADJUSTMENTS_REMOVED
            for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_nothing_to_clean(self, service, account):
        """Test a clean ledger."""
        assert await service.cleanup_orphaned_adjustments() == []


class TestVerifyAccount:
    """Tests for ReconciliationService.verify_account."""

    @pytest.mark.asyncio
    async def test_consistent_ledger(self, service, account, add_transaction):
        """Test that engine-maintained state verifies cleanly."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1200000"))

        report = await service.verify_account(account.id)

        assert report.is_consistent is True
        assert report.checkpoints_checked == 2

    @pytest.mark.asyncio
    async def test_detects_stale_and_missing(self, service, store, account, add_transaction, audit_storage):
        """Test that out-of-band edits are reported and audited, not repaired."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        own = (await store.list_transactions(account.id, checkpoint_id=checkpoint.id))[0]
        await store.delete_transaction(own.id)
        await add_transaction(account.id, date(2024, 1, 6), credit="1")

        report = await service.verify_account(account.id)

        assert {i.issue_type for i in report.issues} == {"missing_adjustment", "stale_calculation"}
        assert await store.list_transactions(account.id, checkpoint_id=checkpoint.id) == []
        assert any(
            e.event_type == AuditEventType.INTEGRITY_VIOLATION for e in audit_storage.events
        )

    @pytest.mark.asyncio
    async def test_detects_amount_mismatch(self, service, store, account):
        """Test that a tampered adjustment amount is reported."""
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("100"))
        own = (await store.list_transactions(account.id, checkpoint_id=checkpoint.id))[0]
        await store.save_transaction(own.model_copy(update={"credit_amount": Decimal("99")}))

        report = await service.verify_account(account.id)

        assert [i.issue_type for i in report.issues] == ["amount_mismatch"]


class TestCalculateBalance:
    """Tests for ReconciliationService.calculate_balance."""

    @pytest.mark.asyncio
    async def test_includes_adjustments(self, service, account, add_transaction):
        """Test that the balance includes synthetic entries."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        calculation = await service.calculate_balance(account.id, date(2024, 1, 31))

        assert calculation.balance == Decimal("1200000")
        assert calculation.non_adjustment_count == 1


class TestFactory:
    """Tests for create_reconciliation_service."""

    def test_memory_backend(self):
        """Test the in-memory wiring."""
        service, sheets_client = create_reconciliation_service(backend="memory")
        assert isinstance(service, ReconciliationService)
        assert isinstance(service.store, InMemoryLedgerStore)
        assert sheets_client is None

    def test_unknown_backend(self):
        """Test that an unknown backend is rejected."""
        with pytest.raises(ValueError):
            create_reconciliation_service(backend="postgres")
