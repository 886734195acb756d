"""
Reconciliation Engine Errors

Storage failures (DataAccessError, NotFoundError) come from the storage
interface and bubble through the engine unmodified. The errors below are
raised by the engine itself.
"""

from typing import Optional
from uuid import UUID

from reconciler.models.ledger import ValidationIssue


class ReconciliationError(Exception):
    """Base exception for reconciliation engine errors."""
    pass


class ConsistencyError(ReconciliationError):
    """A checkpoint's link to its synthetic transaction is broken."""

    def __init__(self, message: str, checkpoint_id: Optional[UUID] = None):
        super().__init__(message)
        self.checkpoint_id = checkpoint_id


class CheckpointValidationError(ReconciliationError):
    """Malformed checkpoint input or recalculation date range."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []
