"""
Shared fixtures.

Every test gets its own in-memory SQLite database and a clock it can move.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from finance_tracker.audit import AuditLogger
from finance_tracker.config import DatabaseSettings, LedgerSettings
from finance_tracker.ledger import BalanceMutator, EntityResolver
from finance_tracker.orchestrator import FinanceTracker
from finance_tracker.queries import Aggregator
from finance_tracker.services.storage import (
    SQLiteAuditStorage,
    SQLiteClient,
    SQLiteLedgerStorage,
)


USER = "user-1"
OTHER_USER = "user-2"


class FrozenClock:
    """Returns the same instant until told to move."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger_settings() -> LedgerSettings:
    """Defaults spelled out so LEDGER_* variables in the environment don't leak in."""
    return LedgerSettings(
        touch_on_zero_balance_change=True,
        evolution_max_points=30,
        evolution_top_accounts=3,
        balance_adjustment_note="Balance adjustment",
        debt_payment_note="Debt payment",
        initial_balance_note="Initial balance",
    )


@pytest_asyncio.fixture
async def client():
    """In-memory database with the schema created."""
    client = SQLiteClient(":memory:", settings=DatabaseSettings(path=":memory:"))
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
def storage(client) -> SQLiteLedgerStorage:
    return SQLiteLedgerStorage(client)


@pytest.fixture
def audit_storage(client) -> SQLiteAuditStorage:
    return SQLiteAuditStorage(client)


@pytest.fixture
def resolver(storage, clock) -> EntityResolver:
    return EntityResolver(storage, clock)


@pytest.fixture
def mutator(storage, resolver, ledger_settings, clock) -> BalanceMutator:
    return BalanceMutator(storage, resolver, ledger_settings, clock)


@pytest.fixture
def aggregator(storage, ledger_settings, clock) -> Aggregator:
    return Aggregator(storage, ledger_settings, clock)


@pytest.fixture
def tracker(storage, audit_storage, ledger_settings, clock) -> FinanceTracker:
    return FinanceTracker(
        storage=storage,
        audit_logger=AuditLogger(audit_storage),
        settings=ledger_settings,
        clock=clock,
    )


def account_draft(name: str = "Checking", currency: str = "USD", balance="0") -> dict:
    return {"type": "account", "name": name, "currency": currency, "balance": balance}


def debt_draft(
    description: str = "Dinner",
    with_who: str = "Alice",
    amount="100",
    currency: str = "USD",
) -> dict:
    return {
        "type": "debt",
        "description": description,
        "withWho": with_who,
        "amount": amount,
        "currency": currency,
    }


def investment_draft(name: str = "Index fund", initial_value="1000", currency: str = "USD") -> dict:
    return {
        "type": "investment",
        "name": name,
        "initialValue": initial_value,
        "currency": currency,
    }
