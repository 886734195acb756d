"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Ships an in-memory store and a Google Sheets backend; both are swappable
behind LedgerStoreInterface.
"""

from reconciler.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DataAccessError,
    DuplicateError,
    LedgerStoreInterface,
    NotFoundError,
    StorageError,
)
from reconciler.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStore,
)
from reconciler.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStoreInterface",
    # Exceptions
    "ConnectionError",
    "DataAccessError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
]
