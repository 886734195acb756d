"""Tests for checkpoint upsert and delete through the reconciliation service."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from reconciler.engine.errors import CheckpointValidationError
from reconciler.models.audit import AuditEventType, AuditSeverity
from reconciler.services.storage import DataAccessError, NotFoundError


class TestUpsertCheckpoint:
    """Tests for ReconciliationService.upsert_checkpoint."""

    @pytest.mark.asyncio
    async def test_reconciled_checkpoint(self, service, store, account, add_transaction):
        """Test that a matching declared balance creates no adjustment."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")

        checkpoint = await service.upsert_checkpoint(
            account.id, date(2024, 1, 10), Decimal("1000000")
        )

        assert checkpoint.calculated_balance == Decimal("1000000")
        assert checkpoint.adjustment_amount == Decimal("0")
        assert checkpoint.is_reconciled is True
        adjustments = await store.list_transactions(account.id, is_balance_adjustment=True)
        assert adjustments == []

    @pytest.mark.asyncio
    async def test_unreconciled_checkpoint(self, service, store, account, add_transaction):
        """Test that a gap produces exactly one matching adjustment."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")

        checkpoint = await service.upsert_checkpoint(
            account.id, date(2024, 1, 10), Decimal("1200000"), notes="January statement"
        )

        assert checkpoint.adjustment_amount == Decimal("200000")
        assert checkpoint.is_reconciled is False
        assert checkpoint.notes == "January statement"
        adjustments = await store.list_transactions(account.id, is_balance_adjustment=True)
        assert len(adjustments) == 1
        assert adjustments[0].signed_amount == checkpoint.adjustment_amount
        assert adjustments[0].transaction_date == checkpoint.checkpoint_date

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, service, store, account, add_transaction):
        """Test that repeating an upsert yields identical fields and one adjustment."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")

        first = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        second = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        assert second == first
        assert len(await store.list_checkpoints(account.id)) == 1
        adjustments = await store.list_transactions(account.id, is_balance_adjustment=True)
        assert len(adjustments) == 1

    @pytest.mark.asyncio
    async def test_update_excludes_own_adjustment(self, service, store, account, add_transaction):
        """Test that re-declaring a balance ignores the checkpoint's own adjustment."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        first = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        updated = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("900000"))

        assert updated.id == first.id
        assert updated.calculated_balance == Decimal("1000000")
        assert updated.adjustment_amount == Decimal("-100000")
        adjustments = await store.list_transactions(account.id, is_balance_adjustment=True)
        assert len(adjustments) == 1
        assert adjustments[0].debit_amount == Decimal("100000")

    @pytest.mark.asyncio
    async def test_update_to_reconciled_removes_adjustment(self, service, store, account, add_transaction):
        """Test that fixing the declared balance removes the adjustment."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        updated = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1000000"))

        assert updated.is_reconciled is True
        assert await store.list_transactions(account.id, is_balance_adjustment=True) == []

    @pytest.mark.asyncio
    async def test_none_notes_keep_existing(self, service, account):
        """Test that an upsert without notes keeps the stored notes."""
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("0"), notes="keep me")
        updated = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("5"))
        assert updated.notes == "keep me"

    @pytest.mark.asyncio
    async def test_accepts_plain_numbers(self, service, account):
        """Test that int and str balances are converted to Decimal."""
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), 1500)
        assert checkpoint.declared_balance == Decimal("1500")
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 11), "0.10")
        assert checkpoint.declared_balance == Decimal("0.10")

    @pytest.mark.asyncio
    async def test_updates_opening_date_and_balance_cache(self, service, store, account, add_transaction):
        """Test that upsert refreshes the derived account fields."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        stored = await store.get_account(account.id)
        assert stored.opening_balance_date == date(2024, 1, 4)
        assert stored.earliest_transaction_date == date(2024, 1, 5)
        assert stored.current_balance == Decimal("1200000")

    @pytest.mark.asyncio
    async def test_rejects_out_of_range_balance(self, service, store, account):
        """Test that an absurd declared balance is rejected before any write."""
        with pytest.raises(CheckpointValidationError) as exc_info:
            await service.upsert_checkpoint(
                account.id, date(2024, 1, 10), Decimal("1000000000000")
            )

        assert exc_info.value.issues[0].issue_type == "out_of_range"
        assert await store.list_checkpoints(account.id) == []

    @pytest.mark.asyncio
    async def test_rejects_long_notes(self, service, account):
        """Test that notes over the limit are rejected."""
        with pytest.raises(CheckpointValidationError):
            await service.upsert_checkpoint(
                account.id, date(2024, 1, 10), Decimal("1"), notes="x" * 1001
            )

    @pytest.mark.asyncio
    async def test_unknown_account(self, service, audit_storage):
        """Test that an unknown account raises NotFoundError and is audited."""
        with pytest.raises(NotFoundError):
            await service.upsert_checkpoint(uuid4(), date(2024, 1, 10), Decimal("1"))

        errors = [e for e in audit_storage.events if e.event_type == AuditEventType.SYSTEM_ERROR]
        assert len(errors) == 1
        assert errors[0].error_code == "NotFoundError"
        assert errors[0].severity == AuditSeverity.ERROR

    @pytest.mark.asyncio
    async def test_failure_rolls_back_checkpoint(self, service, store, account, add_transaction, monkeypatch):
        """Test that a failed adjustment write leaves no half-saved checkpoint."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")

        async def failing_save(transaction):
            raise DataAccessError("store unreachable")

        monkeypatch.setattr(store, "save_transaction", failing_save)

        with pytest.raises(DataAccessError):
            await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        assert await store.list_checkpoints(account.id) == []
        assert (await store.get_account(account.id)).opening_balance_date is None

    @pytest.mark.asyncio
    async def test_audits_create_then_update(self, service, audit_storage, account):
        """Test that checkpoint writes are audited, and no-op repeats are not."""
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("0"))
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("0"))
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("0.5"))

        types = [
            e.event_type for e in audit_storage.events
            if e.entity_type == "checkpoint"
        ]
        assert types == [
            AuditEventType.CHECKPOINT_CREATED,
            AuditEventType.CHECKPOINT_UPDATED,
        ]


class TestChainingAndCascade:
    """The chaining and cascade scenarios from a single manual credit."""

    @pytest.mark.asyncio
    async def test_chaining(self, service, store, account, add_transaction):
        """Test that an earlier adjustment counts as money for a later checkpoint."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")

        first = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        assert first.calculated_balance == Decimal("1000000")
        assert first.adjustment_amount == Decimal("200000")
        assert first.is_reconciled is False

        adjustments = await store.list_transactions(account.id, is_balance_adjustment=True)
        assert len(adjustments) == 1
        assert adjustments[0].credit_amount == Decimal("200000")
        assert adjustments[0].transaction_date == date(2024, 1, 10)

        second = await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1200000"))
        assert second.calculated_balance == Decimal("1200000")
        assert second.adjustment_amount == Decimal("0")
        assert second.is_reconciled is True
        adjustments = await store.list_transactions(account.id, is_balance_adjustment=True)
        assert [tx.checkpoint_id for tx in adjustments] == [first.id]

    @pytest.mark.asyncio
    async def test_earlier_insert_updates_later_checkpoint(self, service, store, account, add_transaction):
        """Test that a checkpoint dated before an existing one re-derives the later one."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        later = await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1000000"))
        assert later.is_reconciled is True

        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))

        refreshed = await store.get_checkpoint(later.id)
        assert refreshed.calculated_balance == Decimal("1200000")
        assert refreshed.adjustment_amount == Decimal("-200000")
        assert refreshed.is_reconciled is False
        own = await store.list_transactions(account.id, checkpoint_id=later.id)
        assert len(own) == 1
        assert own[0].debit_amount == Decimal("200000")
        assert (await service.verify_account(account.id)).issues == []

    @pytest.mark.asyncio
    async def test_earlier_edit_updates_later_checkpoint(self, service, store, account, add_transaction):
        """Test that re-declaring an earlier balance re-derives later checkpoints."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        later = await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1200000"))
        assert later.is_reconciled is True

        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1100000"))

        refreshed = await store.get_checkpoint(later.id)
        assert refreshed.calculated_balance == Decimal("1100000")
        assert refreshed.adjustment_amount == Decimal("100000")
        assert refreshed.is_reconciled is False
        assert (await service.verify_account(account.id)).issues == []

    @pytest.mark.asyncio
    async def test_unchanged_adjustment_skips_later_recalculation(self, service, audit_storage, account, add_transaction):
        """Test that a notes-only edit leaves later checkpoints alone."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1200000"))

        await service.upsert_checkpoint(
            account.id, date(2024, 1, 10), Decimal("1200000"), notes="checked"
        )

        completed = [
            e for e in audit_storage.events
            if e.event_type == AuditEventType.RECALCULATION_COMPLETED
        ]
        assert completed == []

    @pytest.mark.asyncio
    async def test_cascade(self, service, store, account, add_transaction):
        """Test that deleting the first checkpoint unreconciles the second after recalculation."""
        await add_transaction(account.id, date(2024, 1, 5), credit="1000000")
        first = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("1200000"))
        second = await service.upsert_checkpoint(account.id, date(2024, 2, 1), Decimal("1200000"))

        await service.delete_checkpoint(first.id)
        assert await store.list_transactions(account.id, checkpoint_id=first.id) == []

        deltas = await service.recalculate(account.id)

        refreshed = await store.get_checkpoint(second.id)
        assert refreshed.calculated_balance == Decimal("1000000")
        assert refreshed.is_reconciled is False
        assert [d.checkpoint_id for d in deltas] == [second.id]
        assert deltas[0].old_is_reconciled is True
        assert deltas[0].new_is_reconciled is False


class TestDeleteCheckpoint:
    """Tests for ReconciliationService.delete_checkpoint."""

    @pytest.mark.asyncio
    async def test_delete_removes_adjustment(self, service, store, account, audit_storage):
        """Test that deleting a checkpoint cascades to its adjustment and is audited."""
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("50"))

        deleted = await service.delete_checkpoint(checkpoint.id)

        assert deleted.id == checkpoint.id
        assert await store.get_checkpoint(checkpoint.id) is None
        assert await store.list_transactions(account.id) == []
        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.CHECKPOINT_DELETED in types
        assert AuditEventType.ADJUSTMENT_REMOVED in types

    @pytest.mark.asyncio
    async def test_delete_resets_opening_date(self, service, store, account):
        """Test that removing the only (synthetic) transaction resets the opening date to today."""
        checkpoint = await service.upsert_checkpoint(account.id, date(2024, 1, 10), Decimal("50"))
        assert (await store.get_account(account.id)).opening_balance_date == date(2024, 1, 9)

        await service.delete_checkpoint(checkpoint.id)

        stored = await store.get_account(account.id)
        assert stored.earliest_transaction_date is None
        assert abs(stored.opening_balance_date - date.today()) <= timedelta(days=1)

    @pytest.mark.asyncio
    async def test_delete_unknown(self, service):
        """Test that deleting an unknown checkpoint raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.delete_checkpoint(uuid4())
