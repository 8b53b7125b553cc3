"""Services package."""

from pocketledger.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsLedgerStore,
    LedgerStore,
    MemoryLedgerStore,
    MongoLedgerStore,
    NotFoundError,
    StorageError,
    TransactionsUnsupportedError,
)
from pocketledger.services.identity import (
    IdentityResolver,
    MappingIdentityResolver,
)

__all__ = [
    # Identity
    "IdentityResolver",
    "MappingIdentityResolver",
    # Storage services
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsLedgerStore",
    "LedgerStore",
    "MemoryLedgerStore",
    "MongoLedgerStore",
    "NotFoundError",
    "StorageError",
    "TransactionsUnsupportedError",
]
