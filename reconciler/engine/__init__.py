"""Reconciliation engine package."""

from reconciler.engine.errors import (
    CheckpointValidationError,
    ConsistencyError,
    ReconciliationError,
)
from reconciler.engine.calculator import BalanceCalculator, reconcile_amounts
from reconciler.engine.synthesizer import AdjustmentSynthesizer
from reconciler.engine.opening_date import OpeningDateUpdater
from reconciler.engine.account_balance import AccountBalanceSync
from reconciler.engine.locks import AccountLockRegistry
from reconciler.engine.checkpoints import CheckpointManager
from reconciler.engine.recalculation import RecalculationEngine

__all__ = [
    # Errors
    "CheckpointValidationError",
    "ConsistencyError",
    "ReconciliationError",
    # Components
    "AccountBalanceSync",
    "AccountLockRegistry",
    "AdjustmentSynthesizer",
    "BalanceCalculator",
    "CheckpointManager",
    "OpeningDateUpdater",
    "RecalculationEngine",
    "reconcile_amounts",
]
