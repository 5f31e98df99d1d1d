"""Services package."""

from finance_tracker.services.storage import (
    AccessDeniedError,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    StorageError,
)

__all__ = [
    # Storage services
    "AccessDeniedError",
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "LedgerStorageInterface",
    "NotFoundError",
    "SQLiteAuditStorage",
    "SQLiteClient",
    "SQLiteLedgerStorage",
    "StorageError",
]
