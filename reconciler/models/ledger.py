"""
Core Data Models for Ledger Reconciler

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce ledger invariants at runtime (one amount side per transaction)
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Support the audit trail

DESIGN DECISION: Money is always Decimal. Floats never enter the ledger,
so sums are exact and re-derivation is deterministic.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


ZERO = Decimal("0")


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp used for all created/updated fields."""
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountKind(str, Enum):
    """Supported account kinds."""
    BANK = "bank"
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    INVESTMENT = "investment"
    CREDIT_LINE = "credit_line"
    TERM_LOAN = "term_loan"


class TransactionOrigin(str, Enum):
    """
    Where a ledger transaction came from.

    CRITICAL: AUTO_ADJUSTMENT entries are created only by the
    adjustment synthesizer. No other actor writes them.
    """
    IMPORTED = "imported"                # Statement import pipeline
    MANUAL = "manual"                    # Entered by a user
    SYSTEM_OPENING = "system_opening"    # Opening balance entry
    AUTO_ADJUSTMENT = "auto_adjustment"  # Synthetic checkpoint adjustment


class CheckpointOrder(str, Enum):
    """Sort order for checkpoint listings."""
    DATE_ASC = "date_asc"
    DATE_DESC = "date_desc"


# =============================================================================
# CORE LEDGER MODELS
# =============================================================================

class Account(BaseModel):
    """
    A ledger account.

    opening_balance_date, earliest_transaction_date and current_balance
    are derived by the engine and are never edited by users.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique account ID"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name"
    )
    currency: str = Field(
        default="VND",
        pattern="^[A-Z]{3}$",
        description="ISO 4217 currency code (no conversion is performed)"
    )
    kind: AccountKind = Field(
        default=AccountKind.BANK,
        description="Account kind"
    )
    credit_limit: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Credit limit for credit cards and credit lines"
    )

    # Derived fields
    opening_balance_date: Optional[date] = Field(
        default=None,
        description="Ledger-start marker, strictly before the earliest transaction"
    )
    earliest_transaction_date: Optional[date] = None
    current_balance: Decimal = Field(
        default=ZERO,
        description="Cached balance, recomputed from checkpoints and transactions"
    )

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LedgerTransaction(BaseModel):
    """
    A dated debit or credit against one account.

    Exactly one of debit_amount / credit_amount is populated.
    Credits increase the balance, debits decrease it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique transaction ID"
    )
    account_id: UUID
    transaction_date: date
    description: str = Field(
        default="",
        max_length=500,
    )
    debit_amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Money leaving the account"
    )
    credit_amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Money entering the account"
    )
    origin: TransactionOrigin = TransactionOrigin.MANUAL

    # Audit markers
    is_flagged: bool = False
    is_balance_adjustment: bool = Field(
        default=False,
        description="True only for synthetic checkpoint adjustments"
    )
    checkpoint_id: Optional[UUID] = Field(
        default=None,
        description="Owning checkpoint when this is a synthetic adjustment"
    )
    import_batch_id: Optional[UUID] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_amounts(self) -> 'LedgerTransaction':
        """Enforce exactly one amount side and synthetic-entry consistency."""
        has_debit = self.debit_amount is not None
        has_credit = self.credit_amount is not None
        if has_debit and has_credit:
            raise ValueError("Transaction cannot have both debit and credit amounts")
        if not has_debit and not has_credit:
            raise ValueError("Transaction must have either a debit or a credit amount")

        if self.is_balance_adjustment:
            if self.checkpoint_id is None:
                raise ValueError("Balance adjustment transactions must reference a checkpoint")
            if self.origin != TransactionOrigin.AUTO_ADJUSTMENT:
                raise ValueError("Balance adjustment transactions must have auto_adjustment origin")

        return self

    @property
    def signed_amount(self) -> Decimal:
        """Credit as positive, debit as negative."""
        if self.credit_amount is not None:
            return self.credit_amount
        return -self.debit_amount


class Checkpoint(BaseModel):
    """
    A declared statement balance for an account as of a date.

    adjustment_amount = declared_balance - calculated_balance.
    is_reconciled is never set directly; the engine derives it
    from adjustment_amount and the reconciliation threshold.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique checkpoint ID"
    )
    account_id: UUID
    checkpoint_date: date
    declared_balance: Decimal = Field(
        ...,
        description="Balance from the statement or user"
    )
    calculated_balance: Decimal = Field(
        default=ZERO,
        description="Balance derived from the ledger (cached)"
    )
    adjustment_amount: Decimal = ZERO
    is_reconciled: bool = True

    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    created_by: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Actor that created the checkpoint"
    )
    import_batch_id: Optional[UUID] = Field(
        default=None,
        description="Import batch the checkpoint came from, if any"
    )

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# DERIVED RESULT MODELS
# =============================================================================

class BalanceCalculation(BaseModel):
    """Result of summing an account's ledger up to a date."""

    account_id: UUID
    as_of_date: date
    balance: Decimal
    # Counts only non-synthetic transactions, while balance includes
    # adjustments from other checkpoints.
    non_adjustment_count: int = Field(ge=0)
    excluded_transaction_id: Optional[UUID] = None


class RecalculationDelta(BaseModel):
    """Before/after state of one checkpoint in a recalculation pass."""

    checkpoint_id: UUID
    checkpoint_date: date
    old_calculated_balance: Decimal
    new_calculated_balance: Decimal
    old_adjustment_amount: Decimal
    new_adjustment_amount: Decimal
    old_is_reconciled: bool
    new_is_reconciled: bool

    @property
    def changed(self) -> bool:
        return (
            self.old_calculated_balance != self.new_calculated_balance
            or self.old_adjustment_amount != self.new_adjustment_amount
            or self.old_is_reconciled != self.new_is_reconciled
        )


class CheckpointFilter(BaseModel):
    """Filters for listing checkpoints."""

    include_reconciled: bool = True
    order_by: CheckpointOrder = CheckpointOrder.DATE_DESC
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: Optional[int] = Field(default=None, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)


class CheckpointSummary(BaseModel):
    """Aggregate statistics over an account's checkpoints."""

    account_id: UUID
    total_checkpoints: int = 0
    reconciled_checkpoints: int = 0
    unreconciled_checkpoints: int = 0
    total_adjustment_amount: Decimal = ZERO
    unreconciled_adjustment_amount: Decimal = ZERO
    earliest_checkpoint_date: Optional[date] = None
    latest_checkpoint_date: Optional[date] = None


class CheckpointLink(BaseModel):
    """The checkpoint fields shown next to a flagged transaction."""

    checkpoint_id: UUID
    checkpoint_date: date
    declared_balance: Decimal
    adjustment_amount: Decimal
    is_reconciled: bool


class FlaggedTransaction(BaseModel):
    """Audit view: a flagged transaction joined to its checkpoint."""

    transaction: LedgerTransaction
    checkpoint: Optional[CheckpointLink] = None


class IntegrityIssue(BaseModel):
    """A single ledger invariant violation."""

    issue_type: str = Field(
        ...,
        pattern="^(missing_adjustment|unexpected_adjustment|duplicate_adjustment"
                "|amount_mismatch|date_mismatch|stale_calculation"
                "|orphaned_adjustment)$",
    )
    message: str
    checkpoint_id: Optional[UUID] = None
    transaction_id: Optional[UUID] = None


class IntegrityReport(BaseModel):
    """Result of checking an account's reconciliation invariants."""

    account_id: UUID
    checked_at: datetime = Field(default_factory=utcnow)
    checkpoints_checked: int = 0
    issues: list[IntegrityIssue] = Field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.issues


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'out_of_range', 'invalid_range', 'too_long')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested action to resolve"
    )


class ValidationResult(BaseModel):
    """Result of validating checkpoint input."""

    validated_at: datetime = Field(default_factory=utcnow)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
