"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the ledger backend because:
1. It gives real multi-table transactions, which the balance rules need
   (an item and its transactions change together or not at all)
2. No server to run for a personal app
3. ':memory:' databases make tests fast and isolated

TRADEOFFS:
- One connection per store; statements from concurrent requests are
  serialized behind an asyncio lock (fine at personal-finance scale)
- Items are polymorphic, so variant fields are kept as JSON beside the
  indexed envelope columns

Money is stored as TEXT (str(Decimal)) so no value ever passes through
a float on its way to or from disk.
"""

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import aiosqlite
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.config import DatabaseSettings, get_settings
from finance_tracker.models.items import (
    ENTITY_MODELS,
    EntityKind,
    InvestmentValueUpdate,
    Item,
    ItemType,
    NamedEntity,
    Transaction,
    TransactionKind,
    ensure_utc,
    parse_item,
)
from finance_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finance_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

# Envelope fields live in their own columns; the rest goes to data_json
ITEM_ENVELOPE_FIELDS = {"id", "user_id", "create_date", "edit_date", "archived"}

ENTITY_TABLES = {
    EntityKind.CURRENCY: "currencies",
    EntityKind.PERSON: "persons",
}

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS items (
        seq          INTEGER PRIMARY KEY AUTOINCREMENT,
        id           TEXT NOT NULL UNIQUE,
        user_id      TEXT NOT NULL,
        type         TEXT NOT NULL,
        currency     TEXT,
        archived     INTEGER NOT NULL DEFAULT 0,
        create_date  TEXT NOT NULL,
        edit_date    TEXT NOT NULL,
        data_json    TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_items_user_type
    ON items(user_id, type)
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        seq      INTEGER PRIMARY KEY AUTOINCREMENT,
        id       TEXT NOT NULL UNIQUE,
        kind     TEXT NOT NULL,
        item_id  TEXT NOT NULL,
        user_id  TEXT NOT NULL,
        amount   TEXT NOT NULL,
        note     TEXT NOT NULL DEFAULT '',
        date     TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_transactions_item
    ON transactions(item_id, kind, date)
    """,
    """
    CREATE TABLE IF NOT EXISTS currencies (
        seq          INTEGER PRIMARY KEY AUTOINCREMENT,
        id           TEXT NOT NULL UNIQUE,
        user_id      TEXT NOT NULL,
        name         TEXT NOT NULL,
        create_date  TEXT NOT NULL,
        edit_date    TEXT NOT NULL,
        UNIQUE(user_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS persons (
        seq          INTEGER PRIMARY KEY AUTOINCREMENT,
        id           TEXT NOT NULL UNIQUE,
        user_id      TEXT NOT NULL,
        name         TEXT NOT NULL,
        create_date  TEXT NOT NULL,
        edit_date    TEXT NOT NULL,
        UNIQUE(user_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        seq             INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id        TEXT NOT NULL UNIQUE,
        timestamp       TEXT NOT NULL,
        event_type      TEXT NOT NULL,
        severity        TEXT NOT NULL,
        user_id         TEXT,
        entity_type     TEXT,
        entity_id       TEXT,
        correlation_id  TEXT,
        description     TEXT NOT NULL,
        details_json    TEXT,
        error_code      TEXT,
        error_message   TEXT,
        is_user_action  INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_audit_log_entity
    ON audit_log(entity_type, entity_id)
    """,
]


def _iso(value: datetime) -> str:
    """Fixed-width UTC ISO string, so text order is time order."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


class SQLiteClient:
    """
    Low-level SQLite client wrapper.

    Owns the connection, creates the schema on first connect and hands out
    atomic units. Connection setup is retried; statements are not.
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        settings = settings or get_settings().database
        if db_path:
            settings = settings.model_copy(update={"path": db_path})
        self._settings = settings
        self._db_path = settings.path
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        # Task currently holding an atomic unit
        self._owner: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def in_transaction(self) -> bool:
        return self._conn is not None and self._conn.in_transaction

    async def _open(self) -> aiosqlite.Connection:
        if not self._settings.is_memory:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: we issue BEGIN/COMMIT/ROLLBACK ourselves
        conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        await conn.execute(f"PRAGMA busy_timeout={int(self._settings.busy_timeout_ms)}")
        if not self._settings.is_memory:
            await conn.execute("PRAGMA journal_mode=WAL")
        return conn

    async def connect(self) -> aiosqlite.Connection:
        """
        Open the database and make sure the schema exists.

        Retries transient open failures (locked or busy file).
        """
        if self._conn is None:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self._settings.connect_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=10),
                retry=retry_if_exception_type(sqlite3.OperationalError),
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        conn = await self._open()
                for statement in SCHEMA:
                    await conn.execute(statement)
            except (sqlite3.Error, OSError) as e:
                raise ConnectionError(
                    f"Failed to open ledger database {self._db_path}: {e}"
                ) from e
            self._conn = conn
            logger.info("ledger_db_connected", db_path=self._db_path)

        return self._conn

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("ledger_db_closed", db_path=self._db_path)

    async def __aenter__(self) -> "SQLiteClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _holds_unit(self) -> bool:
        return self._owner is not None and self._owner is asyncio.current_task()

    @asynccontextmanager
    async def transaction(self, readonly: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """
        Atomic unit: BEGIN, then COMMIT on success or ROLLBACK on any exit
        that is not a success, cancellation included. The lock is always
        released.

        Write units take SQLite's write lock up front (BEGIN IMMEDIATE).
        Read-only units use a deferred BEGIN: a consistent snapshot that
        does not hold writers back.

        A nested call from the task that already holds the unit joins it.
        """
        conn = await self.connect()
        if self._holds_unit():
            yield conn
            return

        async with self._lock:
            self._owner = asyncio.current_task()
            try:
                await conn.execute("BEGIN DEFERRED" if readonly else "BEGIN IMMEDIATE")
                try:
                    yield conn
                    await conn.execute("COMMIT")
                except BaseException:
                    # CancelledError and GeneratorExit must not leave the
                    # connection inside an open transaction
                    if conn.in_transaction:
                        await conn.execute("ROLLBACK")
                    raise
            except sqlite3.Error as e:
                raise StorageError(f"Ledger transaction failed: {e}") from e
            finally:
                self._owner = None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """The connection, exclusively: inside the caller's unit or behind the lock."""
        conn = await self.connect()
        if self._holds_unit():
            yield conn
        else:
            async with self._lock:
                yield conn

    async def execute(self, sql: str, parameters: tuple = ()) -> int:
        """Run one write statement. Returns the number of affected rows."""
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, parameters)
            except sqlite3.IntegrityError as e:
                raise DuplicateError(str(e)) from e
            except sqlite3.Error as e:
                raise StorageError(f"Statement failed: {e}") from e
            rowcount = cursor.rowcount
            await cursor.close()
            return rowcount

    async def fetchone(self, sql: str, parameters: tuple = ()) -> Optional[aiosqlite.Row]:
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, parameters)
                row = await cursor.fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}") from e
            await cursor.close()
            return row

    async def fetchall(self, sql: str, parameters: tuple = ()) -> list[aiosqlite.Row]:
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(sql, parameters)
                rows = await cursor.fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}") from e
            await cursor.close()
            return list(rows)


class SQLiteLedgerStorage(LedgerStorageInterface):
    """
    SQLite implementation of the ledger store.

    Transactions and investment value updates share one table,
    told apart by the `kind` column.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    @property
    def client(self) -> SQLiteClient:
        return self._client

    def transaction(self, readonly: bool = False):
        return self._client.transaction(readonly)

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    def _item_to_row(self, item: Item) -> tuple:
        """Convert an item to (type, currency, archived, create, edit, data_json)."""
        data = item.model_dump(exclude=ITEM_ENVELOPE_FIELDS)
        return (
            item.type,
            getattr(item, "currency", None),
            int(item.archived),
            _iso(item.create_date),
            _iso(item.edit_date),
            json.dumps(data, default=str),
        )

    def _row_to_item(self, row: aiosqlite.Row) -> Item:
        data = json.loads(row["data_json"])
        data.update(
            id=row["id"],
            user_id=row["user_id"],
            archived=bool(row["archived"]),
            create_date=datetime.fromisoformat(row["create_date"]),
            edit_date=datetime.fromisoformat(row["edit_date"]),
        )
        return parse_item(data)

    def _row_to_transaction(self, row: aiosqlite.Row) -> Transaction:
        return Transaction(
            id=row["id"],
            item_id=row["item_id"],
            amount=Decimal(row["amount"]),
            note=row["note"],
            date=datetime.fromisoformat(row["date"]),
            user_id=row["user_id"],
        )

    def _row_to_value_update(self, row: aiosqlite.Row) -> InvestmentValueUpdate:
        return InvestmentValueUpdate(
            id=row["id"],
            investment_id=row["item_id"],
            value=Decimal(row["amount"]),
            note=row["note"],
            date=datetime.fromisoformat(row["date"]),
            user_id=row["user_id"],
        )

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def insert_item(self, item: Item) -> None:
        await self._client.execute(
            """
            INSERT INTO items (
                id, user_id, type, currency, archived,
                create_date, edit_date, data_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (item.id, item.user_id, *self._item_to_row(item)),
        )

    async def get_item(
        self,
        item_id: str,
        user_id: str,
        item_type: Optional[ItemType] = None,
    ) -> Optional[Item]:
        sql = "SELECT * FROM items WHERE id = ? AND user_id = ?"
        params: list = [item_id, user_id]
        if item_type is not None:
            sql += " AND type = ?"
            params.append(ItemType(item_type).value)

        row = await self._client.fetchone(sql, tuple(params))
        return self._row_to_item(row) if row else None

    async def list_items(
        self,
        user_id: str,
        item_type: Optional[ItemType] = None,
        currency: Optional[str] = None,
        archived: Optional[bool] = None,
    ) -> list[Item]:
        sql = "SELECT * FROM items WHERE user_id = ?"
        params: list = [user_id]
        if item_type is not None:
            sql += " AND type = ?"
            params.append(ItemType(item_type).value)
        if currency is not None:
            sql += " AND currency = ?"
            params.append(currency)
        if archived is not None:
            sql += " AND archived = ?"
            params.append(int(archived))
        sql += " ORDER BY seq"

        rows = await self._client.fetchall(sql, tuple(params))
        return [self._row_to_item(row) for row in rows]

    async def replace_item(self, item: Item) -> bool:
        rowcount = await self._client.execute(
            """
            UPDATE items
            SET type = ?, currency = ?, archived = ?,
                create_date = ?, edit_date = ?, data_json = ?
            WHERE id = ? AND user_id = ?
            """,
            (*self._item_to_row(item), item.id, item.user_id),
        )
        return rowcount > 0

    async def delete_item(self, item_id: str, user_id: str) -> bool:
        rowcount = await self._client.execute(
            "DELETE FROM items WHERE id = ? AND user_id = ?",
            (item_id, user_id),
        )
        return rowcount > 0

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert_transaction(self, transaction: Transaction) -> None:
        await self._client.execute(
            """
            INSERT INTO transactions (id, kind, item_id, user_id, amount, note, date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transaction.id,
                TransactionKind.TRANSACTION.value,
                transaction.item_id,
                transaction.user_id,
                str(transaction.amount),
                transaction.note,
                _iso(transaction.date),
            ),
        )

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        row = await self._client.fetchone(
            "SELECT * FROM transactions WHERE id = ? AND kind = ?",
            (transaction_id, TransactionKind.TRANSACTION.value),
        )
        return self._row_to_transaction(row) if row else None

    async def list_transactions(
        self,
        item_ids: list[str],
        newest_first: bool = False,
    ) -> list[Transaction]:
        if not item_ids:
            return []
        order = "DESC" if newest_first else "ASC"
        rows = await self._client.fetchall(
            f"""
            SELECT * FROM transactions
            WHERE kind = ? AND item_id IN ({_placeholders(item_ids)})
            ORDER BY date {order}, seq {order}
            """,
            (TransactionKind.TRANSACTION.value, *item_ids),
        )
        return [self._row_to_transaction(row) for row in rows]

    async def delete_transaction(self, transaction_id: str) -> bool:
        rowcount = await self._client.execute(
            "DELETE FROM transactions WHERE id = ? AND kind = ?",
            (transaction_id, TransactionKind.TRANSACTION.value),
        )
        return rowcount > 0

    async def delete_transactions_for_item(self, item_id: str) -> int:
        return await self._client.execute(
            "DELETE FROM transactions WHERE item_id = ? AND kind = ?",
            (item_id, TransactionKind.TRANSACTION.value),
        )

    # -------------------------------------------------------------------------
    # Investment value updates
    # -------------------------------------------------------------------------

    async def insert_value_update(self, update: InvestmentValueUpdate) -> None:
        await self._client.execute(
            """
            INSERT INTO transactions (id, kind, item_id, user_id, amount, note, date)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                update.id,
                TransactionKind.INVESTMENT_VALUE_UPDATE.value,
                update.investment_id,
                update.user_id,
                str(update.value),
                update.note,
                _iso(update.date),
            ),
        )

    async def get_value_update(
        self,
        update_id: str,
        user_id: str,
    ) -> Optional[InvestmentValueUpdate]:
        row = await self._client.fetchone(
            "SELECT * FROM transactions WHERE id = ? AND user_id = ? AND kind = ?",
            (update_id, user_id, TransactionKind.INVESTMENT_VALUE_UPDATE.value),
        )
        return self._row_to_value_update(row) if row else None

    async def list_value_updates(
        self,
        investment_ids: list[str],
        user_id: str,
    ) -> list[InvestmentValueUpdate]:
        if not investment_ids:
            return []
        rows = await self._client.fetchall(
            f"""
            SELECT * FROM transactions
            WHERE kind = ? AND user_id = ?
              AND item_id IN ({_placeholders(investment_ids)})
            ORDER BY date ASC, seq ASC
            """,
            (TransactionKind.INVESTMENT_VALUE_UPDATE.value, user_id, *investment_ids),
        )
        return [self._row_to_value_update(row) for row in rows]

    async def delete_value_update(self, update_id: str, user_id: str) -> bool:
        rowcount = await self._client.execute(
            "DELETE FROM transactions WHERE id = ? AND user_id = ? AND kind = ?",
            (update_id, user_id, TransactionKind.INVESTMENT_VALUE_UPDATE.value),
        )
        return rowcount > 0

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def _row_to_entity(self, kind: EntityKind, row: aiosqlite.Row) -> NamedEntity:
        return ENTITY_MODELS[kind](
            id=row["id"],
            name=row["name"],
            user_id=row["user_id"],
            create_date=datetime.fromisoformat(row["create_date"]),
            edit_date=datetime.fromisoformat(row["edit_date"]),
        )

    async def find_entity(
        self,
        kind: EntityKind,
        user_id: str,
        name: str,
    ) -> Optional[NamedEntity]:
        row = await self._client.fetchone(
            f"SELECT * FROM {ENTITY_TABLES[kind]} WHERE user_id = ? AND name = ?",
            (user_id, name),
        )
        return self._row_to_entity(kind, row) if row else None

    async def insert_entity(self, kind: EntityKind, entity: NamedEntity) -> None:
        await self._client.execute(
            f"""
            INSERT INTO {ENTITY_TABLES[kind]} (id, user_id, name, create_date, edit_date)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                entity.id,
                entity.user_id,
                entity.name,
                _iso(entity.create_date),
                _iso(entity.edit_date),
            ),
        )

    async def list_entities(self, kind: EntityKind, user_id: str) -> list[NamedEntity]:
        rows = await self._client.fetchall(
            f"SELECT * FROM {ENTITY_TABLES[kind]} WHERE user_id = ? ORDER BY name",
            (user_id,),
        )
        return [self._row_to_entity(kind, row) for row in rows]


class SQLiteAuditStorage(AuditStorageInterface):
    """
    SQLite implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[SQLiteClient] = None):
        self._client = client or SQLiteClient()

    def _event_to_row(self, event: AuditEvent) -> tuple:
        return (
            str(event.event_id),
            _iso(event.timestamp),
            event.event_type.value,
            event.severity.value,
            event.user_id,
            event.entity_type,
            event.entity_id,
            str(event.correlation_id) if event.correlation_id else None,
            event.description,
            json.dumps(event.details, default=str) if event.details else None,
            event.error_code,
            event.error_message,
            int(event.is_user_action),
        )

    def _row_to_event(self, row: aiosqlite.Row) -> AuditEvent:
        return AuditEvent(
            event_id=UUID(row["event_id"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row["severity"]),
            user_id=row["user_id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            correlation_id=UUID(row["correlation_id"]) if row["correlation_id"] else None,
            description=row["description"],
            details=json.loads(row["details_json"]) if row["details_json"] else {},
            error_code=row["error_code"],
            error_message=row["error_message"],
            is_user_action=bool(row["is_user_action"]),
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            await self._client.execute(
                """
                INSERT INTO audit_log (
                    event_id, timestamp, event_type, severity, user_id,
                    entity_type, entity_id, correlation_id, description,
                    details_json, error_code, error_message, is_user_action
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._event_to_row(event),
            )
            return True
        except StorageError as e:
            # Audit logging should not break the main flow
            logger.warning(
                "audit_event_write_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        rows = await self._client.fetchall(
            "SELECT * FROM audit_log WHERE correlation_id = ? ORDER BY timestamp, seq",
            (str(correlation_id),),
        )
        return [self._row_to_event(row) for row in rows]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        rows = await self._client.fetchall(
            """
            SELECT * FROM audit_log
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY timestamp, seq
            """,
            (entity_type, entity_id),
        )
        return [self._row_to_event(row) for row in rows]

    async def get_recent_events(
        self,
        user_id: Optional[str] = None,
        limit: int = 100,
        since: Optional[datetime] = None,
    ) -> list[AuditEvent]:
        sql = "SELECT * FROM audit_log WHERE 1 = 1"
        params: list = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        if since is not None:
            sql += " AND timestamp >= ?"
            params.append(_iso(since))
        sql += " ORDER BY timestamp DESC, seq DESC LIMIT ?"
        params.append(limit)

        rows = await self._client.fetchall(sql, tuple(params))
        return [self._row_to_event(row) for row in rows]
