"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements SQLite as the backend, but designed to be swappable.
"""

from finance_tracker.services.storage.interface import (
    AccessDeniedError,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from finance_tracker.services.storage.sqlite import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "AccessDeniedError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # SQLite implementation
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
]
