"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a storage backend because:
1. Non-technical users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for personal use)
- No transactions: unit_of_work() is a no-op here, so a crash between
  writes can leave a stale adjustment behind. Re-running recalculation
  repairs it (eventually consistent, repair-by-recompute).
- Limited query capabilities (we filter in Python)

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing business logic.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional, TypeVar
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reconciler.config import GoogleSheetsSettings, get_settings
from reconciler.models.audit import AuditEvent, AuditEventType, AuditSeverity
from reconciler.models.ledger import (
    Account,
    AccountKind,
    Checkpoint,
    LedgerTransaction,
    TransactionOrigin,
)
from reconciler.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DataAccessError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)


# Column mappings for the Accounts sheet
ACCOUNT_COLUMNS = [
    "id",
    "name",
    "currency",
    "kind",
    "credit_limit",
    "opening_balance_date",
    "earliest_transaction_date",
    "current_balance",
    "created_at",
    "updated_at",
]

# Column mappings for the Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "account_id",
    "transaction_date",
    "description",
    "debit_amount",
    "credit_amount",
    "origin",
    "is_flagged",
    "is_balance_adjustment",
    "checkpoint_id",
    "import_batch_id",
    "created_at",
    "updated_at",
]

# Column mappings for the Checkpoints sheet
CHECKPOINT_COLUMNS = [
    "id",
    "account_id",
    "checkpoint_date",
    "declared_balance",
    "calculated_balance",
    "adjustment_amount",
    "is_reconciled",
    "notes",
    "created_by",
    "import_batch_id",
    "created_at",
    "updated_at",
]

# Column mappings for the Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "account_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "actor",
]


# Only transient API failures are worth retrying
api_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    reraise=True,
)


T = TypeVar("T")


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


# =============================================================================
# Cell conversion helpers
# =============================================================================

def _cell(row: list, index: int) -> str:
    """Read a cell, tolerating short rows."""
    try:
        return row[index] if row[index] else ""
    except IndexError:
        return ""


def _opt(value: str, parse: Callable[[str], T]) -> Optional[T]:
    return parse(value) if value else None


def _str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def _bool(value: str) -> bool:
    return value.lower() == "true"


class _SheetTable:
    """
    Row-level access to one worksheet keyed by the id in column A.

    Every call re-reads the sheet; there is no local cache to go stale.
    """

    def __init__(self, client: GoogleSheetsClient, title: str, columns: list[str]):
        self._client = client
        self._title = title
        self._columns = columns

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._title, self._columns)

    @api_retry
    def rows(self) -> list[list]:
        """All data rows (header excluded, empty rows skipped)."""
        values = self._sheet().get_all_values()[1:]
        return [row for row in values if row and row[0]]

    @api_retry
    def upsert(self, key: str, row: list) -> None:
        sheet = self._sheet()
        all_rows = sheet.get_all_values()
        for idx, existing in enumerate(all_rows[1:], start=2):  # Row 1 is header
            if existing and existing[0] == key:
                sheet.update(range_name=f"A{idx}", values=[row])
                return
        sheet.append_row(row, value_input_option="RAW")

    @api_retry
    def delete(self, key: str) -> bool:
        sheet = self._sheet()
        all_rows = sheet.get_all_values()
        for idx, existing in enumerate(all_rows[1:], start=2):
            if existing and existing[0] == key:
                sheet.delete_rows(idx)
                return True
        return False


class GoogleSheetsLedgerStore(LedgerStoreInterface):
    """
    Google Sheets implementation of the ledger store.

    Accounts, transactions and checkpoints each live in their own
    worksheet, one entity per row.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        settings = self._client.settings
        self._accounts = _SheetTable(self._client, settings.accounts_sheet_name, ACCOUNT_COLUMNS)
        self._transactions = _SheetTable(
            self._client, settings.transactions_sheet_name, TRANSACTION_COLUMNS
        )
        self._checkpoints = _SheetTable(
            self._client, settings.checkpoints_sheet_name, CHECKPOINT_COLUMNS
        )

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _account_to_row(self, account: Account) -> list:
        return [
            str(account.id),
            account.name,
            account.currency,
            account.kind.value,
            _str(account.credit_limit),
            _str(account.opening_balance_date),
            _str(account.earliest_transaction_date),
            str(account.current_balance),
            account.created_at.isoformat(),
            account.updated_at.isoformat(),
        ]

    def _row_to_account(self, row: list) -> Account:
        return Account(
            id=UUID(_cell(row, 0)),
            name=_cell(row, 1),
            currency=_cell(row, 2),
            kind=AccountKind(_cell(row, 3)),
            credit_limit=_opt(_cell(row, 4), Decimal),
            opening_balance_date=_opt(_cell(row, 5), date.fromisoformat),
            earliest_transaction_date=_opt(_cell(row, 6), date.fromisoformat),
            current_balance=Decimal(_cell(row, 7) or "0"),
            created_at=datetime.fromisoformat(_cell(row, 8)),
            updated_at=datetime.fromisoformat(_cell(row, 9)),
        )

    def _transaction_to_row(self, tx: LedgerTransaction) -> list:
        return [
            str(tx.id),
            str(tx.account_id),
            tx.transaction_date.isoformat(),
            tx.description,
            _str(tx.debit_amount),
            _str(tx.credit_amount),
            tx.origin.value,
            str(tx.is_flagged),
            str(tx.is_balance_adjustment),
            _str(tx.checkpoint_id),
            _str(tx.import_batch_id),
            tx.created_at.isoformat(),
            tx.updated_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> LedgerTransaction:
        return LedgerTransaction(
            id=UUID(_cell(row, 0)),
            account_id=UUID(_cell(row, 1)),
            transaction_date=date.fromisoformat(_cell(row, 2)),
            description=_cell(row, 3),
            debit_amount=_opt(_cell(row, 4), Decimal),
            credit_amount=_opt(_cell(row, 5), Decimal),
            origin=TransactionOrigin(_cell(row, 6)),
            is_flagged=_bool(_cell(row, 7)),
            is_balance_adjustment=_bool(_cell(row, 8)),
            checkpoint_id=_opt(_cell(row, 9), UUID),
            import_batch_id=_opt(_cell(row, 10), UUID),
            created_at=datetime.fromisoformat(_cell(row, 11)),
            updated_at=datetime.fromisoformat(_cell(row, 12)),
        )

    def _checkpoint_to_row(self, checkpoint: Checkpoint) -> list:
        return [
            str(checkpoint.id),
            str(checkpoint.account_id),
            checkpoint.checkpoint_date.isoformat(),
            str(checkpoint.declared_balance),
            str(checkpoint.calculated_balance),
            str(checkpoint.adjustment_amount),
            str(checkpoint.is_reconciled),
            checkpoint.notes or "",
            checkpoint.created_by or "",
            _str(checkpoint.import_batch_id),
            checkpoint.created_at.isoformat(),
            checkpoint.updated_at.isoformat(),
        ]

    def _row_to_checkpoint(self, row: list) -> Checkpoint:
        return Checkpoint(
            id=UUID(_cell(row, 0)),
            account_id=UUID(_cell(row, 1)),
            checkpoint_date=date.fromisoformat(_cell(row, 2)),
            declared_balance=Decimal(_cell(row, 3)),
            calculated_balance=Decimal(_cell(row, 4) or "0"),
            adjustment_amount=Decimal(_cell(row, 5) or "0"),
            is_reconciled=_bool(_cell(row, 6)),
            notes=_cell(row, 7) or None,
            created_by=_cell(row, 8) or None,
            import_batch_id=_opt(_cell(row, 9), UUID),
            created_at=datetime.fromisoformat(_cell(row, 10)),
            updated_at=datetime.fromisoformat(_cell(row, 11)),
        )

    def _read(self, table: _SheetTable, convert: Callable[[list], T], what: str) -> list[T]:
        try:
            return [convert(row) for row in table.rows()]
        except StorageError:
            raise
        except Exception as e:
            raise DataAccessError(f"Failed to read {what}: {e}")

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        for account in self._read(self._accounts, self._row_to_account, "accounts"):
            if account.id == account_id:
                return account
        return None

    async def save_account(self, account: Account) -> Account:
        try:
            self._accounts.upsert(str(account.id), self._account_to_row(account))
        except StorageError:
            raise
        except Exception as e:
            raise DataAccessError(f"Failed to save account: {e}")
        return account

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def get_transaction(self, transaction_id: UUID) -> Optional[LedgerTransaction]:
        for tx in self._read(self._transactions, self._row_to_transaction, "transactions"):
            if tx.id == transaction_id:
                return tx
        return None

    async def list_transactions(
        self,
        account_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        is_balance_adjustment: Optional[bool] = None,
        is_flagged: Optional[bool] = None,
        checkpoint_id: Optional[UUID] = None,
        import_batch_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        results = []
        for tx in self._read(self._transactions, self._row_to_transaction, "transactions"):
            if tx.account_id != account_id:
                continue
            if date_from and tx.transaction_date < date_from:
                continue
            if date_to and tx.transaction_date > date_to:
                continue
            if is_balance_adjustment is not None and tx.is_balance_adjustment != is_balance_adjustment:
                continue
            if is_flagged is not None and tx.is_flagged != is_flagged:
                continue
            if checkpoint_id and tx.checkpoint_id != checkpoint_id:
                continue
            if import_batch_id and tx.import_batch_id != import_batch_id:
                continue
            results.append(tx)

        results.sort(key=lambda t: (t.transaction_date, t.created_at))
        return results

    async def list_balance_adjustments(
        self,
        account_id: Optional[UUID] = None,
    ) -> list[LedgerTransaction]:
        results = [
            tx
            for tx in self._read(self._transactions, self._row_to_transaction, "transactions")
            if tx.is_balance_adjustment
            and (account_id is None or tx.account_id == account_id)
        ]
        results.sort(key=lambda t: (t.transaction_date, t.created_at))
        return results

    async def save_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        if await self.get_account(transaction.account_id) is None:
            raise NotFoundError(f"Account not found: {transaction.account_id}")
        try:
            self._transactions.upsert(
                str(transaction.id), self._transaction_to_row(transaction)
            )
        except StorageError:
            raise
        except Exception as e:
            raise DataAccessError(f"Failed to save transaction: {e}")
        return transaction

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        try:
            return self._transactions.delete(str(transaction_id))
        except Exception as e:
            raise DataAccessError(f"Failed to delete transaction: {e}")

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    async def get_checkpoint(self, checkpoint_id: UUID) -> Optional[Checkpoint]:
        for checkpoint in self._read(self._checkpoints, self._row_to_checkpoint, "checkpoints"):
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None

    async def get_checkpoint_by_date(
        self,
        account_id: UUID,
        checkpoint_date: date,
    ) -> Optional[Checkpoint]:
        for checkpoint in self._read(self._checkpoints, self._row_to_checkpoint, "checkpoints"):
            if (
                checkpoint.account_id == account_id
                and checkpoint.checkpoint_date == checkpoint_date
            ):
                return checkpoint
        return None

    async def list_checkpoints(
        self,
        account_id: UUID,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        checkpoint_ids: Optional[list[UUID]] = None,
    ) -> list[Checkpoint]:
        wanted = set(checkpoint_ids) if checkpoint_ids is not None else None
        results = []
        for checkpoint in self._read(self._checkpoints, self._row_to_checkpoint, "checkpoints"):
            if checkpoint.account_id != account_id:
                continue
            if date_from and checkpoint.checkpoint_date < date_from:
                continue
            if date_to and checkpoint.checkpoint_date > date_to:
                continue
            if wanted is not None and checkpoint.id not in wanted:
                continue
            results.append(checkpoint)

        results.sort(key=lambda c: (c.checkpoint_date, c.created_at))
        return results

    async def save_checkpoint(self, checkpoint: Checkpoint) -> Checkpoint:
        if await self.get_account(checkpoint.account_id) is None:
            raise NotFoundError(f"Account not found: {checkpoint.account_id}")

        existing = await self.get_checkpoint_by_date(
            checkpoint.account_id, checkpoint.checkpoint_date
        )
        if existing and existing.id != checkpoint.id:
            raise DuplicateError(
                f"Checkpoint already exists for account {checkpoint.account_id} "
                f"on {checkpoint.checkpoint_date}"
            )

        try:
            self._checkpoints.upsert(str(checkpoint.id), self._checkpoint_to_row(checkpoint))
        except StorageError:
            raise
        except Exception as e:
            raise DataAccessError(f"Failed to save checkpoint: {e}")
        return checkpoint

    async def delete_checkpoint(self, checkpoint_id: UUID) -> bool:
        checkpoint = await self.get_checkpoint(checkpoint_id)
        if checkpoint is None:
            return False

        # No foreign keys in Sheets: cascade by hand, adjustment first
        linked = await self.list_transactions(
            checkpoint.account_id,
            is_balance_adjustment=True,
            checkpoint_id=checkpoint_id,
        )
        for tx in linked:
            await self.delete_transaction(tx.id)

        try:
            return self._checkpoints.delete(str(checkpoint_id))
        except Exception as e:
            raise DataAccessError(f"Failed to delete checkpoint: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self._client.settings.audit_sheet_name, AUDIT_COLUMNS)

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(_cell(row, 0)),
            timestamp=datetime.fromisoformat(_cell(row, 1)),
            event_type=AuditEventType(_cell(row, 2)),
            severity=AuditSeverity(_cell(row, 3)),
            entity_type=_cell(row, 4) or None,
            entity_id=_opt(_cell(row, 5), UUID),
            account_id=_opt(_cell(row, 6), UUID),
            correlation_id=_opt(_cell(row, 7), UUID),
            description=_cell(row, 8),
            details=json.loads(_cell(row, 9)) if _cell(row, 9) else {},
            error_message=_cell(row, 10) or None,
            actor=_cell(row, 11) or None,
        )

    @api_retry
    def _all_events(self) -> list[AuditEvent]:
        events = []
        for row in self._sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue  # Skip malformed rows
        return events

    @api_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            self._sheet().append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except gspread.exceptions.APIError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise DataAccessError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise DataAccessError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._all_events()
        except Exception as e:
            raise DataAccessError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
