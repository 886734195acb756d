"""Validation package."""

from reconciler.validation.integrity import LedgerIntegrityChecker
from reconciler.validation.validator import CheckpointValidator

__all__ = ["CheckpointValidator", "LedgerIntegrityChecker"]
