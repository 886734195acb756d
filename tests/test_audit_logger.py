"""Tests for the audit logger."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from reconciler.audit import AuditLogger, create_correlation_id
from reconciler.models.audit import AuditEvent, AuditEventType, AuditSeverity
from reconciler.models.ledger import Checkpoint, IntegrityIssue
from reconciler.services.storage import InMemoryAuditStorage, StorageError


class FailingAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise StorageError("sheet unavailable")


class TestAuditLogger:
    """Tests for AuditLogger."""

    @pytest.mark.asyncio
    async def test_log_persists(self, audit_logger, audit_storage):
        """Test that events reach storage."""
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="x")
        assert await audit_logger.log(event) is True
        assert audit_storage.events == [event]

    @pytest.mark.asyncio
    async def test_local_only(self):
        """Test that logging without storage succeeds."""
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="x")
        assert await AuditLogger().log(event) is True

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self):
        """Test that a storage failure returns False instead of raising."""
        logger = AuditLogger(FailingAuditStorage())
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="x")
        assert await logger.log(event) is False

    @pytest.mark.asyncio
    async def test_log_checkpoint_saved(self, audit_logger, audit_storage):
        """Test the checkpoint helper carries amounts and actor."""
        checkpoint = Checkpoint(
            account_id=uuid4(),
            checkpoint_date=date(2024, 1, 10),
            declared_balance=Decimal("1200"),
            calculated_balance=Decimal("1000"),
            adjustment_amount=Decimal("200"),
            is_reconciled=False,
        )
        correlation_id = create_correlation_id()

        await audit_logger.log_checkpoint_saved(
            checkpoint, created=True, actor="importer", correlation_id=correlation_id
        )

        event = audit_storage.events[0]
        assert event.event_type == AuditEventType.CHECKPOINT_CREATED
        assert event.actor == "importer"
        assert event.account_id == checkpoint.account_id
        assert event.details["declared_balance"] == "1200"
        found = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert found == [event]

    @pytest.mark.asyncio
    async def test_log_integrity_violation(self, audit_logger, audit_storage):
        """Test that integrity issues are serialized into details."""
        checkpoint_id = uuid4()
        await audit_logger.log_integrity_violation(
            uuid4(),
            [IntegrityIssue(
                issue_type="missing_adjustment",
                message="gone",
                checkpoint_id=checkpoint_id,
            )],
        )

        event = audit_storage.events[0]
        assert event.severity == AuditSeverity.ERROR
        assert event.details["issues"][0]["checkpoint_id"] == str(checkpoint_id)

    @pytest.mark.asyncio
    async def test_log_error(self, audit_logger, audit_storage):
        """Test the error helper."""
        await audit_logger.log_error("DataAccessError", "timeout", details={"operation": "recalculate"})

        event = audit_storage.events[0]
        assert event.error_code == "DataAccessError"
        assert event.error_message == "timeout"
        assert event.details["operation"] == "recalculate"

    def test_correlation_ids_are_unique(self):
        """Test create_correlation_id."""
        assert create_correlation_id() != create_correlation_id()
