"""
Main Orchestrator for Finance Tracker

This module ties together all the components and defines the public
operations the dashboard calls:
1. Item lifecycle (create → update → archive → delete)
2. Balance log (transactions, balance corrections, debt payments)
3. Investment valuations
4. Read models (rollups, payment status, evolution, dashboard)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Every call is scoped to the caller's user id
- A failed operation returns nothing partial; it raises
- Every mutation, and every failure, is audited

This is the "glue" the UI talks to. It never touches storage directly.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Optional, Union
from uuid import UUID

from finance_tracker.audit import AuditLogger, create_correlation_id
from finance_tracker.config import LedgerSettings, get_settings
from finance_tracker.ledger import BalanceMutator, EntityResolver
from finance_tracker.models.items import (
    AccountItem,
    CurrencyRollup,
    DashboardSnapshot,
    DebtPaymentStatus,
    EntityKind,
    EvolutionDataPoint,
    InvestmentPerformance,
    InvestmentValueUpdate,
    Item,
    NamedEntity,
    Transaction,
    utc_now,
)
from finance_tracker.queries import Aggregator
from finance_tracker.services.storage import (
    LedgerStorageInterface,
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
    StorageError,
)
from finance_tracker.validation import InvalidArgumentError


Number = Union[Decimal, int, float, str]


def error_kind(error: BaseException) -> str:
    """
    Stable error kind for the UI: missing_argument, invalid_argument,
    not_found, duplicate, store_failure, connection_failure.

    Anything unexpected is reported as a store failure.
    """
    return getattr(error, "kind", StorageError.kind)


class FinanceTracker:
    """
    Public operation boundary of the ledger.

    Usage:
        async with create_app_components() as tracker:
            account = await tracker.create_item(
                {"type": "account", "name": "Checking", "currency": "USD"}, user_id
            )
            await tracker.create_transaction(account.id, 100, "deposit", user_id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        settings = settings or get_settings().ledger
        self._storage = storage
        self._resolver = EntityResolver(storage, clock)
        self._mutator = BalanceMutator(storage, self._resolver, settings, clock)
        self._aggregator = Aggregator(storage, settings, clock)
        self._audit_logger = audit_logger or AuditLogger()

    @asynccontextmanager
    async def _audited(
        self,
        operation: str,
        user_id: Optional[str],
        correlation_id: UUID,
    ) -> AsyncIterator[None]:
        """Record a failure of `operation` and re-raise it unchanged."""
        try:
            yield
        except (StorageError, InvalidArgumentError) as e:
            await self._audit_logger.log_operation_failed(
                user_id=user_id,
                operation=operation,
                error_kind=error_kind(e),
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise
        except Exception as e:
            await self._audit_logger.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation, "user_id": user_id},
                correlation_id=correlation_id,
            )
            raise

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def create_item(
        self,
        draft: Any,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Item:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("create_item", user_id, correlation_id):
            item = await self._mutator.create_item(draft, user_id)

        await self._audit_logger.log_item_created(
            user_id=user_id,
            item_id=item.id,
            item_type=item.type,
            correlation_id=correlation_id,
        )
        return item

    async def update_item(
        self,
        item: Any,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Item:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("update_item", user_id, correlation_id):
            updated = await self._mutator.update_item(item, user_id)

        await self._audit_logger.log_item_updated(
            user_id=user_id,
            item_id=updated.id,
            item_type=updated.type,
            correlation_id=correlation_id,
        )
        return updated

    async def delete_item(
        self,
        item_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Delete an item (and, for accounts and debts, its transactions)."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("delete_item", user_id, correlation_id):
            deleted = await self._mutator.delete_item(item_id, user_id)

        await self._audit_logger.log_item_deleted(
            user_id=user_id,
            item_id=item_id,
            correlation_id=correlation_id,
        )
        return deleted

    async def archive_item(
        self,
        item_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Item]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("archive_item", user_id, correlation_id):
            item = await self._mutator.archive_item(item_id, user_id)

        if item is not None:
            await self._audit_logger.log_archive_changed(
                user_id, item.id, True, correlation_id
            )
        return item

    async def unarchive_item(
        self,
        item_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Item]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("unarchive_item", user_id, correlation_id):
            item = await self._mutator.unarchive_item(item_id, user_id)

        if item is not None:
            await self._audit_logger.log_archive_changed(
                user_id, item.id, False, correlation_id
            )
        return item

    # -------------------------------------------------------------------------
    # Balance log
    # -------------------------------------------------------------------------

    async def update_account_balance(
        self,
        item_id: str,
        new_balance: Number,
        note: Optional[str],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AccountItem:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("update_account_balance", user_id, correlation_id):
            account = await self._mutator.update_account_balance(
                item_id, new_balance, note, user_id
            )

        await self._audit_logger.log_balance_adjusted(
            user_id=user_id,
            item_id=account.id,
            new_balance=account.balance,
            correlation_id=correlation_id,
        )
        return account

    async def create_transaction(
        self,
        item_id: str,
        amount: Number,
        note: Optional[str],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("create_transaction", user_id, correlation_id):
            transaction = await self._mutator.create_transaction(
                item_id, amount, note, user_id
            )

        await self._audit_logger.log_transaction_created(
            user_id=user_id,
            transaction_id=transaction.id,
            item_id=transaction.item_id,
            amount=transaction.amount,
            correlation_id=correlation_id,
        )
        return transaction

    async def get_transactions(
        self,
        item_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """Transactions of one item, newest first."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_transactions", user_id, correlation_id):
            return await self._aggregator.get_transactions(item_id, user_id)

    async def delete_transaction(
        self,
        transaction_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("delete_transaction", user_id, correlation_id):
            deleted = await self._mutator.delete_transaction(transaction_id, user_id)

        await self._audit_logger.log_transaction_deleted(
            user_id, transaction_id, correlation_id
        )
        return deleted

    async def get_debt_payment_status(
        self,
        item_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> DebtPaymentStatus:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_debt_payment_status", user_id, correlation_id):
            return await self._aggregator.debt_payment_status(item_id, user_id)

    async def create_debt_payment(
        self,
        debt_id: str,
        amount: Number,
        note: Optional[str],
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("create_debt_payment", user_id, correlation_id):
            payment = await self._mutator.create_debt_payment(
                debt_id, amount, note, user_id
            )

        await self._audit_logger.log_debt_payment(
            user_id=user_id,
            transaction_id=payment.id,
            debt_id=payment.item_id,
            amount=payment.amount,
            correlation_id=correlation_id,
        )
        return payment

    # -------------------------------------------------------------------------
    # Investments
    # -------------------------------------------------------------------------

    async def add_investment_value_update(
        self,
        investment_id: str,
        value: Number,
        note: Optional[str],
        user_id: str,
        date: Optional[Union[datetime, str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> InvestmentValueUpdate:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("add_investment_value_update", user_id, correlation_id):
            update = await self._mutator.add_investment_value_update(
                investment_id, value, note, user_id, date=date
            )

        await self._audit_logger.log_value_update_added(
            user_id=user_id,
            update_id=update.id,
            investment_id=update.investment_id,
            value=update.value,
            correlation_id=correlation_id,
        )
        return update

    async def get_investment_value_history(
        self,
        investment_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[InvestmentValueUpdate]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_investment_value_history", user_id, correlation_id):
            return await self._aggregator.get_investment_value_history(
                investment_id, user_id
            )

    async def delete_investment_value_update(
        self,
        update_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("delete_investment_value_update", user_id, correlation_id):
            await self._mutator.delete_investment_value_update(update_id, user_id)

        await self._audit_logger.log_value_update_deleted(
            user_id, update_id, correlation_id
        )

    async def finish_investment(
        self,
        investment_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Item]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("finish_investment", user_id, correlation_id):
            investment = await self._mutator.finish_investment(investment_id, user_id)

        if investment is not None:
            await self._audit_logger.log_investment_finish_changed(
                user_id, investment.id, True, correlation_id
            )
        return investment

    async def unfinish_investment(
        self,
        investment_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Item]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("unfinish_investment", user_id, correlation_id):
            investment = await self._mutator.unfinish_investment(investment_id, user_id)

        if investment is not None:
            await self._audit_logger.log_investment_finish_changed(
                user_id, investment.id, False, correlation_id
            )
        return investment

    async def get_investment_performance(
        self,
        investment_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> InvestmentPerformance:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_investment_performance", user_id, correlation_id):
            return await self._aggregator.investment_performance(investment_id, user_id)

    # -------------------------------------------------------------------------
    # Read models
    # -------------------------------------------------------------------------

    async def get_currency_rollups(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[CurrencyRollup]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_currency_rollups", user_id, correlation_id):
            return await self._aggregator.currency_rollups(user_id)

    async def get_currency_evolution_data(
        self,
        currency: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[EvolutionDataPoint]:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_currency_evolution_data", user_id, correlation_id):
            return await self._aggregator.currency_evolution(currency, user_id)

    async def get_dashboard(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> DashboardSnapshot:
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("get_dashboard", user_id, correlation_id):
            return await self._aggregator.dashboard(user_id)

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    async def list_currencies(self, user_id: str) -> list[NamedEntity]:
        return await self._resolver.list_entities(user_id, EntityKind.CURRENCY)

    async def list_persons(self, user_id: str) -> list[NamedEntity]:
        return await self._resolver.list_entities(user_id, EntityKind.PERSON)

    async def backfill_entity_links(
        self,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """Link pre-existing items to currency/person entities."""
        correlation_id = correlation_id or create_correlation_id()
        async with self._audited("backfill_entity_links", user_id, correlation_id):
            counts = await self._resolver.backfill_links(user_id)

        await self._audit_logger.log_entity_links_backfilled(
            user_id, counts, correlation_id
        )
        return counts


@asynccontextmanager
async def create_app_components(
    db_path: Optional[str] = None,
    clock: Callable[[], datetime] = utc_now,
) -> AsyncIterator[FinanceTracker]:
    """
    Factory to create all application components on one SQLite connection.

    Args:
        db_path: Database file; defaults to LEDGER_DB_PATH.
        clock: Source of "now" (tests freeze it).

    Yields:
        A ready FinanceTracker. The connection is closed on exit.
    """
    settings = get_settings()
    client = SQLiteClient(db_path)
    await client.connect()
    try:
        audit_storage = (
            SQLiteAuditStorage(client) if settings.app.persist_audit_events else None
        )
        yield FinanceTracker(
            storage=SQLiteLedgerStorage(client),
            audit_logger=AuditLogger(audit_storage),
            settings=settings.ledger,
            clock=clock,
        )
    finally:
        await client.close()
