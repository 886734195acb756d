"""
Checkpoint Input Validation

DESIGN DECISION: Validation happens before anything touches the ledger.

STAGE 1 - INPUT VALIDATION:
- Declared balance is a finite number within bounds
- Notes fit the storage column
- This catches malformed statement imports

STAGE 2 - SEMANTIC VALIDATION:
- Checkpoint date in the future
- Checkpoint date before the account's first transaction
- These are suspicious but legal, so they are warnings only

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the caller decides whether to proceed.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from reconciler.config import ReconciliationSettings, get_settings
from reconciler.models.ledger import (
    Account,
    ValidationIssue,
    ValidationResult,
    utcnow,
)


class CheckpointValidator:
    """
    Validates checkpoint input and recalculation ranges.

    Stage 1: Input validation (errors block the operation)
    Stage 2: Semantic validation (warnings only, needs the account)
    """

    def __init__(self, settings: Optional[ReconciliationSettings] = None):
        self._settings = settings or get_settings().reconciliation

    def _validate_input(
        self,
        declared_balance: Decimal,
        notes: Optional[str],
    ) -> list[ValidationIssue]:
        """Stage 1: bounds and lengths."""
        issues = []

        if not isinstance(declared_balance, Decimal) or not declared_balance.is_finite():
            issues.append(ValidationIssue(
                field="declared_balance",
                issue_type="invalid_value",
                message="Declared balance must be a finite decimal amount",
                severity="error",
            ))
        elif abs(declared_balance) > self._settings.max_declared_balance:
            issues.append(ValidationIssue(
                field="declared_balance",
                issue_type="out_of_range",
                message=(
                    f"Declared balance {declared_balance} exceeds the maximum of "
                    f"{self._settings.max_declared_balance}"
                ),
                severity="error",
                suggested_fix="Check the statement amount was read correctly",
            ))

        if notes is not None and len(notes) > self._settings.max_notes_length:
            issues.append(ValidationIssue(
                field="notes",
                issue_type="too_long",
                message=(
                    f"Notes are {len(notes)} characters, maximum is "
                    f"{self._settings.max_notes_length}"
                ),
                severity="error",
                suggested_fix="Shorten the notes",
            ))

        return issues

    def _validate_semantic(
        self,
        checkpoint_date: date,
        account: Optional[Account],
    ) -> list[ValidationIssue]:
        """Stage 2: dates that are legal but worth a second look."""
        issues = []
        today = utcnow().date()

        if checkpoint_date > today:
            issues.append(ValidationIssue(
                field="checkpoint_date",
                issue_type="future_date",
                message=f"Checkpoint date ({checkpoint_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the statement date",
            ))

        if (
            account is not None
            and account.earliest_transaction_date is not None
            and checkpoint_date < account.earliest_transaction_date
        ):
            issues.append(ValidationIssue(
                field="checkpoint_date",
                issue_type="before_first_transaction",
                message=(
                    f"Checkpoint date ({checkpoint_date}) is before the first "
                    f"transaction ({account.earliest_transaction_date}); "
                    "the whole declared balance will become an adjustment"
                ),
                severity="warning",
            ))

        return issues

    def validate_checkpoint(
        self,
        declared_balance: Decimal,
        checkpoint_date: date,
        notes: Optional[str] = None,
        account: Optional[Account] = None,
    ) -> ValidationResult:
        """
        Run both validation stages on checkpoint input.

        Stage 2 is skipped when stage 1 finds errors.
        """
        issues = self._validate_input(declared_balance, notes)
        if not any(issue.severity == "error" for issue in issues):
            issues.extend(self._validate_semantic(checkpoint_date, account))
        return ValidationResult(issues=issues)

    def validate_date_range(
        self,
        from_date: Optional[date],
        to_date: Optional[date],
    ) -> ValidationResult:
        """A recalculation range is malformed when from_date is after to_date."""
        issues = []
        if from_date is not None and to_date is not None and from_date > to_date:
            issues.append(ValidationIssue(
                field="from_date",
                issue_type="invalid_range",
                message=f"from_date ({from_date}) is after to_date ({to_date})",
                severity="error",
            ))
        return ValidationResult(issues=issues)
