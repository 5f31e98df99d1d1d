"""Tests for the SQLite ledger store."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, account_draft
from finance_tracker.config import DatabaseSettings
from finance_tracker.models import (
    AccountItem,
    AuditEventBuilder,
    CurrencyEntity,
    DebtItem,
    EntityKind,
    InvestmentValueUpdate,
    ItemType,
    Transaction,
)
from finance_tracker.services.storage import (
    DuplicateError,
    SQLiteClient,
    SQLiteLedgerStorage,
    StorageError,
)


T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_account(**overrides) -> AccountItem:
    fields = dict(
        name="Checking",
        currency="USD",
        balance=Decimal("10.10"),
        user_id=USER,
        create_date=T0,
        edit_date=T0,
    )
    fields.update(overrides)
    return AccountItem(**fields)


class TestItems:
    """Item rows keep every variant field."""

    @pytest.mark.asyncio
    async def test_insert_and_get_round_trips_exactly(self, storage):
        """Test that decimals and dates survive storage unchanged."""
        account = make_account(balance=Decimal("0.1"))
        await storage.insert_item(account)

        loaded = await storage.get_item(account.id, USER)
        assert loaded == account
        assert loaded.balance == Decimal("0.1")

    @pytest.mark.asyncio
    async def test_get_is_scoped_by_user(self, storage):
        """Test that another user's item is invisible."""
        account = make_account()
        await storage.insert_item(account)
        assert await storage.get_item(account.id, OTHER_USER) is None

    @pytest.mark.asyncio
    async def test_get_filters_by_type(self, storage):
        account = make_account()
        await storage.insert_item(account)
        assert await storage.get_item(account.id, USER, ItemType.DEBT) is None
        assert await storage.get_item(account.id, USER, ItemType.ACCOUNT) is not None

    @pytest.mark.asyncio
    async def test_list_filters(self, storage):
        """Test type, currency and archived filters."""
        usd = make_account(name="A")
        eur = make_account(name="B", currency="EUR")
        archived = make_account(name="C", archived=True)
        debt = DebtItem(
            description="x", with_who="y", amount=Decimal("5"), currency="USD",
            user_id=USER, create_date=T0, edit_date=T0,
        )
        for item in (usd, eur, archived, debt):
            await storage.insert_item(item)

        assert [i.name for i in await storage.list_items(USER, ItemType.ACCOUNT)] == ["A", "B", "C"]
        assert [i.id for i in await storage.list_items(USER, currency="USD", archived=False)] == [usd.id, debt.id]
        assert [i.id for i in await storage.list_items(USER, archived=True)] == [archived.id]
        assert await storage.list_items(OTHER_USER) == []

    @pytest.mark.asyncio
    async def test_replace_and_delete(self, storage):
        account = make_account()
        await storage.insert_item(account)

        assert await storage.replace_item(account.model_copy(update={"name": "Renamed"}))
        assert (await storage.get_item(account.id, USER)).name == "Renamed"

        assert await storage.delete_item(account.id, USER) is True
        assert await storage.delete_item(account.id, USER) is False
        assert await storage.replace_item(account) is False

    @pytest.mark.asyncio
    async def test_duplicate_id_raises(self, storage):
        account = make_account()
        await storage.insert_item(account)
        with pytest.raises(DuplicateError) as exc_info:
            await storage.insert_item(account)
        assert exc_info.value.kind == "duplicate"


class TestTransactionLog:
    """Transactions and value updates share one table."""

    @pytest.mark.asyncio
    async def test_list_orders_by_date_then_insertion(self, storage):
        """Test ascending and descending order, ties broken by insertion."""
        first = Transaction(item_id="a", amount=Decimal("1"), date=T0, user_id=USER)
        second = Transaction(item_id="a", amount=Decimal("2"), date=T0, user_id=USER)
        older = Transaction(item_id="a", amount=Decimal("3"), date=T0 - timedelta(days=1), user_id=USER)
        for t in (first, second, older):
            await storage.insert_transaction(t)

        ascending = await storage.list_transactions(["a"])
        assert [t.id for t in ascending] == [older.id, first.id, second.id]

        descending = await storage.list_transactions(["a"], newest_first=True)
        assert [t.id for t in descending] == [second.id, first.id, older.id]

    @pytest.mark.asyncio
    async def test_value_updates_are_not_transactions(self, storage):
        """Test the kind discriminator keeps the two logs apart."""
        await storage.insert_transaction(
            Transaction(item_id="inv", amount=Decimal("1"), date=T0, user_id=USER)
        )
        update = InvestmentValueUpdate(investment_id="inv", value=Decimal("1200"), date=T0, user_id=USER)
        await storage.insert_value_update(update)

        assert len(await storage.list_transactions(["inv"])) == 1
        assert await storage.list_value_updates(["inv"], USER) == [update]
        assert await storage.get_transaction(update.id) is None
        assert await storage.get_value_update(update.id, OTHER_USER) is None

        assert await storage.delete_transactions_for_item("inv") == 1
        assert await storage.list_value_updates(["inv"], USER) == [update]

    @pytest.mark.asyncio
    async def test_empty_id_list(self, storage):
        assert await storage.list_transactions([]) == []
        assert await storage.list_value_updates([], USER) == []


class TestEntities:

    @pytest.mark.asyncio
    async def test_unique_per_user_and_name(self, storage):
        """Test the (user_id, name) unique index."""
        await storage.insert_entity(EntityKind.CURRENCY, CurrencyEntity(name="USD", user_id=USER))
        await storage.insert_entity(EntityKind.CURRENCY, CurrencyEntity(name="USD", user_id=OTHER_USER))

        with pytest.raises(DuplicateError):
            await storage.insert_entity(EntityKind.CURRENCY, CurrencyEntity(name="USD", user_id=USER))

        found = await storage.find_entity(EntityKind.CURRENCY, USER, "USD")
        assert found.user_id == USER
        assert await storage.find_entity(EntityKind.PERSON, USER, "USD") is None


class TestAtomicUnits:
    """transaction() commits or rolls back everything inside it."""

    @pytest.mark.asyncio
    async def test_commit(self, storage):
        account = make_account()
        async with storage.transaction():
            await storage.insert_item(account)
            await storage.insert_transaction(
                Transaction(item_id=account.id, amount=Decimal("10.10"), date=T0, user_id=USER)
            )
        assert await storage.get_item(account.id, USER) is not None
        assert len(await storage.list_transactions([account.id])) == 1

    @pytest.mark.asyncio
    async def test_rollback_on_error(self, storage):
        """Test that an exception undoes every write of the unit."""
        account = make_account()
        with pytest.raises(RuntimeError):
            async with storage.transaction():
                await storage.insert_item(account)
                await storage.insert_transaction(
                    Transaction(item_id=account.id, amount=Decimal("1"), date=T0, user_id=USER)
                )
                raise RuntimeError("boom")

        assert await storage.get_item(account.id, USER) is None
        assert await storage.list_transactions([account.id]) == []

    @pytest.mark.asyncio
    async def test_nested_units_join_the_outer_one(self, storage):
        """Test that an inner unit's writes roll back with the outer unit."""
        account = make_account()
        with pytest.raises(RuntimeError):
            async with storage.transaction():
                async with storage.transaction():
                    await storage.insert_item(account)
                raise RuntimeError("boom")

        assert await storage.get_item(account.id, USER) is None

    @pytest.mark.asyncio
    async def test_unit_survives_a_caught_constraint_error(self, storage):
        """Test that a handled duplicate insert does not abort the unit."""
        account = make_account()
        async with storage.transaction():
            await storage.insert_item(account)
            with pytest.raises(DuplicateError):
                await storage.insert_item(account)
        assert await storage.get_item(account.id, USER) is not None

    @pytest.mark.asyncio
    async def test_cancelled_unit_rolls_back(self, storage, mutator):
        """Test a unit cancelled mid-flight leaves nothing pending and the store writable."""
        account = await mutator.create_item(account_draft(balance="10"), USER)
        inside = asyncio.Event()

        async def interrupted():
            async with storage.transaction():
                await storage.replace_item(account.model_copy(update={"balance": Decimal("999")}))
                inside.set()
                await asyncio.sleep(3600)

        task = asyncio.create_task(interrupted())
        await inside.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not storage.client.in_transaction
        await mutator.create_transaction(account.id, Decimal("5"), None, USER)
        assert (await storage.get_item(account.id, USER)).balance == Decimal("15")

    @pytest.mark.asyncio
    async def test_read_unit_does_not_block_writers(self, tmp_path):
        """Test a read-only unit keeps its snapshot while another connection writes."""
        settings = DatabaseSettings(path=str(tmp_path / "ledger.db"), busy_timeout_ms=0)
        async with SQLiteClient(settings=settings) as reader, SQLiteClient(settings=settings) as writer:
            reading = SQLiteLedgerStorage(reader)
            writing = SQLiteLedgerStorage(writer)

            async with reading.transaction(readonly=True):
                assert await reading.list_items(USER) == []
                await writing.insert_item(make_account())
                assert await reading.list_items(USER) == []

            assert len(await reading.list_items(USER)) == 1

    @pytest.mark.asyncio
    async def test_write_unit_holds_the_write_lock(self, tmp_path):
        settings = DatabaseSettings(path=str(tmp_path / "ledger.db"), busy_timeout_ms=0)
        async with SQLiteClient(settings=settings) as first, SQLiteClient(settings=settings) as second:
            async with SQLiteLedgerStorage(first).transaction():
                with pytest.raises(StorageError):
                    await SQLiteLedgerStorage(second).insert_item(make_account())

    @pytest.mark.asyncio
    async def test_store_errors_are_wrapped(self, client):
        """Test that raw sqlite errors surface as StorageError."""
        with pytest.raises(StorageError) as exc_info:
            await client.fetchall("SELECT * FROM no_such_table")
        assert exc_info.value.kind == "store_failure"


class TestAuditStorage:

    @pytest.mark.asyncio
    async def test_append_and_query(self, audit_storage):
        event = AuditEventBuilder.item_deleted(USER, "i1")
        assert await audit_storage.append_event(event) is True

        by_entity = await audit_storage.get_events_by_entity("item", "i1")
        assert [e.event_id for e in by_entity] == [event.event_id]
        assert await audit_storage.get_recent_events(user_id=OTHER_USER) == []
        assert len(await audit_storage.get_recent_events(user_id=USER, limit=5)) == 1
