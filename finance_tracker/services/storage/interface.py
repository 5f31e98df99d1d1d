"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the balance rules independent of the database
2. Use a throwaway in-memory database for testing
3. Swap SQLite for a server database later

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger needs, each one scoped by user id where
the record carries an owner.

ATOMICITY: `transaction()` opens one atomic unit. Every call made inside
it (in the same task) commits or rolls back together. Calls made outside
a unit are atomic on their own.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Optional
from uuid import UUID

from finance_tracker.models.items import (
    EntityKind,
    InvestmentValueUpdate,
    Item,
    ItemType,
    NamedEntity,
    Transaction,
)
from finance_tracker.models.audit import AuditEvent


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the ledger store.

    Owns four collections: items, transactions (which also holds
    investment value updates), currencies and persons.
    """

    @abstractmethod
    def transaction(self, readonly: bool = False) -> AbstractAsyncContextManager[None]:
        """
        Open an atomic unit: commit on success, roll back on any other exit
        (cancellation included), always release. Nested calls join the
        outer unit.

        `readonly` units only read: they see one consistent snapshot
        without taking the write lock.
        """

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_item(self, item: Item) -> None:
        """
        Insert a new item.

        Raises:
            DuplicateError: If the id is already taken
        """

    @abstractmethod
    async def get_item(
        self,
        item_id: str,
        user_id: str,
        item_type: Optional[ItemType] = None,
    ) -> Optional[Item]:
        """
        Retrieve an item owned by `user_id`.

        Returns:
            The item if found (and of `item_type` when given), None otherwise
        """

    @abstractmethod
    async def list_items(
        self,
        user_id: str,
        item_type: Optional[ItemType] = None,
        currency: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> list[Item]:
        """
        List a user's items, oldest first.

        Args:
            user_id: Owner
            item_type: Only items of this kind
            currency: Only items with this currency label
            archived: Only archived (True) or only active (False) items
        """

    @abstractmethod
    async def replace_item(self, item: Item) -> bool:
        """
        Overwrite every field of the item matching (item.id, item.user_id).

        Returns:
            True if an item was matched
        """

    @abstractmethod
    async def delete_item(self, item_id: str, user_id: str) -> bool:
        """
        Delete an item.

        Returns:
            True if an item was deleted
        """

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_transaction(self, transaction: Transaction) -> None:
        """Append a balance-affecting transaction."""

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """
        Retrieve a transaction by id alone.

        Ownership is not checked here; callers verify it through the parent item.
        """

    @abstractmethod
    async def list_transactions(
        self,
        item_ids: list[str],
        newest_first: bool = False,
    ) -> list[Transaction]:
        """
        List the transactions of the given items, ordered by date
        (insertion order breaks ties).
        """

    @abstractmethod
    async def delete_transaction(self, transaction_id: str) -> bool:
        """Delete one transaction. Returns True if it existed."""

    @abstractmethod
    async def delete_transactions_for_item(self, item_id: str) -> int:
        """Delete every transaction of an item. Returns the number deleted."""

    # -------------------------------------------------------------------------
    # Investment value updates
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_value_update(self, update: InvestmentValueUpdate) -> None:
        """Append an investment valuation."""

    @abstractmethod
    async def get_value_update(
        self,
        update_id: str,
        user_id: str,
    ) -> Optional[InvestmentValueUpdate]:
        """Retrieve a value update owned by `user_id`."""

    @abstractmethod
    async def list_value_updates(
        self,
        investment_ids: list[str],
        user_id: str,
    ) -> list[InvestmentValueUpdate]:
        """List value updates of the given investments, oldest first."""

    @abstractmethod
    async def delete_value_update(self, update_id: str, user_id: str) -> bool:
        """Delete a value update. Returns True if it existed."""

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    @abstractmethod
    async def find_entity(
        self,
        kind: EntityKind,
        user_id: str,
        name: str,
    ) -> Optional[NamedEntity]:
        """Look up the entity registered under `name` for this user."""

    @abstractmethod
    async def insert_entity(self, kind: EntityKind, entity: NamedEntity) -> None:
        """
        Insert a new entity.

        Raises:
            DuplicateError: If (user_id, name) is already registered
        """

    @abstractmethod
    async def list_entities(self, kind: EntityKind, user_id: str) -> list[NamedEntity]:
        """List a user's entities of one kind, sorted by name."""


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events of one operation in chronological order."""

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity in chronological order."""

    @abstractmethod
    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
        since: Optional[datetime] = None,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""


class StorageError(Exception):
    """Base exception for storage operations."""

    kind = "store_failure"


class NotFoundError(StorageError):
    """Entity not found in storage, or not owned by the caller."""

    kind = "not_found"


class AccessDeniedError(NotFoundError):
    """
    A referenced record belongs to another user.

    Subclasses NotFoundError so callers cannot tell a foreign record
    from a missing one.
    """


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""

    kind = "duplicate"


class ConnectionError(StorageError):
    """Could not connect to storage backend."""

    kind = "connection_failure"
