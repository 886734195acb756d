"""Tests for recalculation passes."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from reconciler.engine.errors import CheckpointValidationError, ConsistencyError
from reconciler.models.audit import AuditEventType
from reconciler.services.storage import NotFoundError


async def _chained_account(service, account, add_transaction):
    """1,000,000 credit, then checkpoints of 1,200,000 on Jan 10 and Feb 1."""
    await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
    first = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
    second = await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1200000"))
    return first, second


class TestRecalculate:
    """Tests for ReconciliationService.recalculate."""

    @pytest.mark.asyncio
    async def test_nothing_changed(self, service, account, add_transaction):
        """Test that a fresh ledger recalculates with no deltas."""
        await _chained_account(service, account, add_transaction)
        assert await service.recalculate(account.id) == []

    @pytest.mark.asyncio
    async def test_ascending_order(self, service, store, account, add_transaction):
        """Test that later checkpoints see adjustments rewritten earlier in the pass."""
        first, second = await _chained_account(service, account, add_transaction)
        await add_transaction(account.id, date(2024, 1, 7), credit="100000")

        deltas = await service.recalculate(
            account.id, checkpoint_ids=[second.id, first.id]
        )

        assert [d.checkpoint_id for d in deltas] == [first.id]
        assert deltas[0].old_adjustment_amount == Decimal("200000")
        assert deltas[0].new_adjustment_amount == Decimal("100000")
        stored_second = await store.get_checkpoint(second.id)
        assert stored_second.is_reconciled is True
        assert stored_second.calculated_balance == Decimal("1200000")
        adjustment = await store.list_transactions(account.id, checkpoint_id=first.id)
        assert adjustment[0].credit_amount == Decimal("100000")

    @pytest.mark.asyncio
    async def test_empty_id_set_selects_nothing(self, service, store, account, add_transaction):
        """Test that an explicit empty checkpoint id list processes no checkpoints."""
        first, _ = await _chained_account(service, account, add_transaction)
        await add_transaction(account.id, date(2024, 1, 7), credit="1")

        assert await service.recalculate(account.id, checkpoint_ids=[]) == []
        stored = await store.get_checkpoint(first.id)
        assert stored.adjustment_amount == Decimal("200000")

    @pytest.mark.asyncio
    async def test_converges(self, service, account, add_transaction):
        """Test that a second consecutive pass reports nothing."""
        await _chained_account(service, account, add_transaction)
        await add_transaction(account.id, date(2024, 1, 20), debit="300000")

        assert await service.recalculate(account.id) != []
        assert await service.recalculate(account.id) == []

    @pytest.mark.asyncio
    async def test_flips_to_reconciled(self, service, store, account, add_transaction):
        """Test that a late transaction explaining the gap reconciles the checkpoint."""
        first, _ = await _chained_account(service, account, add_transaction)
        await add_transaction(account.id, date(2024, 1, 8), credit="200000")

        deltas = await service.recalculate(account.id)

        assert deltas[0].checkpoint_id == first.id
        assert deltas[0].new_is_reconciled is True
        assert await store.list_transactions(account.id, is_balance_adjustment=True) == []

    @pytest.mark.asyncio
    async def test_date_window(self, service, audit_storage, account, add_transaction):
        """Test that from_date limits the checkpoints processed."""
        await _chained_account(service, account, add_transaction)

        await service.recalculate(account.id, from_date=date(2024, 1, 15))

        completed = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.RECALCULATION_COMPLETED
        ]
        assert completed[-1].details["processed"] == 1

    @pytest.mark.asyncio
    async def test_invalid_range(self, service, account):
        """Test that from_date after to_date is rejected."""
        with pytest.raises(CheckpointValidationError):
            await service.recalculate(
                account.id, from_date=date(2024, 2, 1), to_date=date(2024, 1, 1)
            )

    @pytest.mark.asyncio
    async def test_unknown_account(self, service):
        """Test that an unknown account raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.recalculate(uuid4())

    @pytest.mark.asyncio
    async def test_abort_keeps_earlier_checkpoints(self, service, store, audit_storage, account, add_transaction):
        """Test that an error stops the pass without undoing earlier checkpoints."""
        await add_transaction(account.id, date(2024, 1, 1), credit="100")
        first = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("100"))
        second = await service.upsert_checkpoint(account.id, date(2024, 1, 20), Decimal("300"))

        # Break the second checkpoint's link with a duplicate adjustment
        own = (await store.list_transactions(account.id, checkpoint_id=second.id))[0]
        await store.save_transaction(own.model_copy(update={"id": uuid4()}))
        await add_transaction(account.id, date(2024, 1, 5), credit="50")

        with pytest.raises(ConsistencyError):
            await service.recalculate(account.id)

        stored_first = await store.get_checkpoint(first.id)
        assert stored_first.calculated_balance == Decimal("150")
        assert stored_first.adjustment_amount == Decimal("-50")
        assert await store.get_checkpoint(second.id) == second
        errors = [e for e in audit_storage.events if e.event_type == AuditEventType.SYSTEM_ERROR]
        assert errors[-1].error_code == "ConsistencyError"

    @pytest.mark.asyncio
    async def test_repairs_missing_adjustment(self, service, store, account, add_transaction):
        """Test that a lost adjustment is recreated by the next pass."""
        first, _ = await _chained_account(service, account, add_transaction)
        own = (await store.list_transactions(account.id, checkpoint_id=first.id))[0]
        await store.delete_transaction(own.id)

        await service.recalculate(account.id)

        restored = await store.list_transactions(account.id, checkpoint_id=first.id)
        assert len(restored) == 1
        assert restored[0].credit_amount == Decimal("200000")


class TestTransactionsChangedHook:
    """Tests for ReconciliationService.on_transactions_changed."""

    @pytest.mark.asyncio
    async def test_recalculates_from_affected_date(self, service, store, account, add_transaction):
        """Test that the hook brings affected checkpoints up to date."""
        first, second = await _chained_account(service, account, add_transaction)
        await add_transaction(account.id, date(2024, 1, 25), debit="200000")

        deltas = await service.on_transactions_changed(account.id, date(2024, 1, 25))

        assert [d.checkpoint_id for d in deltas] == [second.id]
        stored = await store.get_checkpoint(second.id)
        assert stored.adjustment_amount == Decimal("200000")
        assert (await store.get_checkpoint(first.id)).adjustment_amount == Decimal("200000")
