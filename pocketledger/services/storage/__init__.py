"""
Storage Services Package

Provides the abstract ledger store and its concrete implementations.
The ledger only ever talks to `LedgerStore`; the backend is chosen at startup.
"""

from pocketledger.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    LedgerStore,
    NotFoundError,
    StorageError,
    TransactionsUnsupportedError,
)
from pocketledger.services.storage.memory import MemoryLedgerStore
from pocketledger.services.storage.mongodb import MongoLedgerStore
from pocketledger.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsLedgerStore,
)

__all__ = [
    # Interface
    "LedgerStore",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "TransactionsUnsupportedError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStore",
    "MemoryLedgerStore",
    "MongoLedgerStore",
]
