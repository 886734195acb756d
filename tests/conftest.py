"""
Shared fixtures for reconciler tests.

Everything runs against the in-memory store; no real API calls.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

import pytest
import pytest_asyncio

from reconciler.audit import AuditLogger
from reconciler.config import ReconciliationSettings
from reconciler.models.ledger import Account, LedgerTransaction, TransactionOrigin
from reconciler.orchestrator import ReconciliationService
from reconciler.services.storage import InMemoryAuditStorage, InMemoryLedgerStore


@pytest.fixture
def settings() -> ReconciliationSettings:
    """Default reconciliation settings."""
    return ReconciliationSettings()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def service(store, audit_logger, settings) -> ReconciliationService:
    return ReconciliationService(store, audit_logger=audit_logger, settings=settings)


@pytest_asyncio.fixture
async def account(store) -> Account:
    """A saved bank account with an empty ledger."""
    account = Account(name="Checking", currency="VND")
    await store.save_account(account)
    return account


@pytest.fixture
def add_transaction(store):
    """Save a manual transaction: add_transaction(account_id, date, credit=..., debit=...)."""

    async def _add(
        account_id: UUID,
        transaction_date: date,
        credit: Optional[str] = None,
        debit: Optional[str] = None,
        **fields,
    ) -> LedgerTransaction:
        fields.setdefault("origin", TransactionOrigin.MANUAL)
        tx = LedgerTransaction(
            account_id=account_id,
            transaction_date=transaction_date,
            credit_amount=Decimal(credit) if credit is not None else None,
            debit_amount=Decimal(debit) if debit is not None else None,
            **fields,
        )
        await store.save_transaction(tx)
        return tx

    return _add
