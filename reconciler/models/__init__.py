"""
Data Models Package

This package contains all Pydantic models used in the Ledger Reconciler.
All data flowing through the system must conform to these schemas.
"""

from reconciler.models.ledger import (
    Account,
    AccountKind,
    BalanceCalculation,
    Checkpoint,
    CheckpointFilter,
    CheckpointLink,
    CheckpointOrder,
    CheckpointSummary,
    FlaggedTransaction,
    IntegrityIssue,
    IntegrityReport,
    LedgerTransaction,
    RecalculationDelta,
    TransactionOrigin,
    ValidationIssue,
    ValidationResult,
)
from reconciler.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountKind",
    "BalanceCalculation",
    "Checkpoint",
    "CheckpointFilter",
    "CheckpointLink",
    "CheckpointOrder",
    "CheckpointSummary",
    "FlaggedTransaction",
    "IntegrityIssue",
    "IntegrityReport",
    "LedgerTransaction",
    "RecalculationDelta",
    "TransactionOrigin",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
