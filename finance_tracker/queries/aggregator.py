"""
Aggregation Engine

DESIGN DECISION: Aggregates are DERIVED, never stored.
Currency totals, debt payment status, investment gain/loss and the
evolution chart are recomputed from the items and the transaction log on
every read.

The computations are plain functions over models so they can be tested
without a database; `Aggregator` only fetches the inputs.
"""

from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from itertools import groupby
from typing import Callable, Iterable, Mapping, Optional

from finance_tracker.config import LedgerSettings, get_settings
from finance_tracker.models.items import (
    AccountBreakdownEntry,
    AccountItem,
    CurrencyItem,
    CurrencyRollup,
    DashboardSnapshot,
    DebtItem,
    DebtPaymentStatus,
    EntityKind,
    EvolutionDataPoint,
    InvestmentItem,
    InvestmentPerformance,
    InvestmentValueUpdate,
    ItemType,
    PaymentStatus,
    TopAccount,
    Transaction,
    round_money,
    utc_now,
)
from finance_tracker.services.storage import LedgerStorageInterface, NotFoundError
from finance_tracker.validation import require_id


ZERO = Decimal("0")


# =============================================================================
# Pure computations
# =============================================================================

def compute_payment_status(
    debt: DebtItem,
    payments: Iterable[Transaction],
) -> DebtPaymentStatus:
    """
    Derive where a debt stands from its payments.

    Overpayment is not an error: status is `paid` and the remaining
    amount is clamped at zero, while `total_paid` shows the real sum.
    """
    payments = list(payments)
    total_paid = sum((p.amount for p in payments), ZERO)
    remaining = debt.amount - total_paid

    if total_paid <= 0:
        status = PaymentStatus.UNPAID
    elif remaining <= 0:
        status = PaymentStatus.PAID
    else:
        status = PaymentStatus.PARTIALLY_PAID

    return DebtPaymentStatus(
        total_paid=total_paid,
        remaining_amount=max(ZERO, remaining),
        payment_status=status,
        transaction_count=len(payments),
    )


def build_currency_rollup(
    currency_item: CurrencyItem,
    accounts: Iterable[AccountItem],
) -> CurrencyRollup:
    """Total and per-account split (largest balance first) of one currency."""
    matching = [a for a in accounts if a.currency == currency_item.currency]
    breakdown = sorted(
        (
            AccountBreakdownEntry(id=a.id, name=a.name, balance=a.balance)
            for a in matching
        ),
        key=lambda entry: entry.balance,
        reverse=True,
    )
    return CurrencyRollup(
        item=currency_item,
        value=sum((a.balance for a in matching), ZERO),
        account_breakdown=breakdown,
    )


def compute_investment_performance(
    investment: InvestmentItem,
    history: Iterable[InvestmentValueUpdate] = (),
) -> InvestmentPerformance:
    """Gain/loss of an investment; the percentage is 0 when nothing was invested."""
    current = (
        investment.current_value
        if investment.current_value is not None
        else investment.initial_value
    )
    gain_loss = current - investment.initial_value

    if investment.initial_value == 0:
        percentage = ZERO
    else:
        percentage = round_money(gain_loss / investment.initial_value * 100)

    return InvestmentPerformance(
        investment_id=investment.id,
        initial_value=investment.initial_value,
        current_value=current,
        total_gain_loss=gain_loss,
        gain_loss_percentage=percentage,
        value_history=list(history),
    )


def _data_point(
    day: date,
    balances: Mapping[str, Decimal],
    names: Mapping[str, str],
    top_n: int,
) -> EvolutionDataPoint:
    # sorted() is stable: equal magnitudes keep account order
    top = sorted(balances.items(), key=lambda kv: abs(kv[1]), reverse=True)[:top_n]
    return EvolutionDataPoint(
        date=day,
        value=round_money(sum(balances.values(), ZERO)),
        top_accounts=[TopAccount(name=names[account_id], balance=b) for account_id, b in top],
    )


def build_evolution_series(
    accounts: list[AccountItem],
    transactions: Iterable[Transaction],
    today: date,
    max_points: int = 30,
    top_n: int = 3,
) -> list[EvolutionDataPoint]:
    """
    Rebuild a currency's balance history one day at a time.

    Balances start at zero and each day's transactions (UTC calendar date)
    are applied together, giving one point per day. A final point for
    `today` uses the accounts' cached balances, unless the history already
    ends today. Only the last `max_points` points are kept.
    """
    if not accounts:
        return []

    names = {a.id: a.name for a in accounts}
    running = {a.id: ZERO for a in accounts}
    ordered = sorted(
        (t for t in transactions if t.item_id in running),
        key=lambda t: t.date,
    )

    series: list[EvolutionDataPoint] = []
    for day, day_transactions in groupby(ordered, key=lambda t: t.date.date()):
        for t in day_transactions:
            running[t.item_id] += t.amount
        series.append(_data_point(day, running, names, top_n))

    if not series or series[-1].date != today:
        cached = {a.id: a.balance for a in accounts}
        series.append(_data_point(today, cached, names, top_n))

    return series[-max_points:]


# =============================================================================
# Aggregator
# =============================================================================

class Aggregator:
    """
    Read side of the ledger.

    GUARANTEES:
    - Only returns values derived from stored data
    - Every read is scoped to the caller's user id
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger
        self._clock = clock

    async def _require_item(self, item_id: str, user_id: str, item_type: Optional[ItemType] = None):
        item = await self._storage.get_item(item_id, user_id, item_type)
        if item is None:
            label = item_type.value if item_type else "item"
            raise NotFoundError(f"{label.capitalize()} {item_id} not found")
        return item

    async def currency_rollups(self, user_id: str) -> list[CurrencyRollup]:
        """One rollup per active currency item, over the active accounts."""
        user_id = require_id(user_id, "user_id")
        async with self._storage.transaction(readonly=True):
            currency_items = await self._storage.list_items(
                user_id, ItemType.CURRENCY, archived=False
            )
            accounts = await self._storage.list_items(
                user_id, ItemType.ACCOUNT, archived=False
            )
        return [build_currency_rollup(c, accounts) for c in currency_items]

    async def debt_payment_status(self, item_id: str, user_id: str) -> DebtPaymentStatus:
        item_id = require_id(item_id, "item_id")
        user_id = require_id(user_id, "user_id")
        async with self._storage.transaction(readonly=True):
            debt = await self._require_item(item_id, user_id, ItemType.DEBT)
            payments = await self._storage.list_transactions([debt.id])
        return compute_payment_status(debt, payments)

    async def investment_performance(
        self,
        item_id: str,
        user_id: str,
    ) -> InvestmentPerformance:
        item_id = require_id(item_id, "item_id")
        user_id = require_id(user_id, "user_id")
        async with self._storage.transaction(readonly=True):
            investment = await self._require_item(item_id, user_id, ItemType.INVESTMENT)
            history = await self._storage.list_value_updates([investment.id], user_id)
        return compute_investment_performance(investment, history)

    async def currency_evolution(
        self,
        currency: str,
        user_id: str,
    ) -> list[EvolutionDataPoint]:
        """
        Daily evolution of the total held in one currency.

        Covers every account in the currency, archived ones included.
        """
        currency = require_id(currency, "currency")
        user_id = require_id(user_id, "user_id")

        # One unit so the cached balances match the log we replay
        async with self._storage.transaction(readonly=True):
            accounts = await self._storage.list_items(
                user_id, ItemType.ACCOUNT, currency=currency
            )
            transactions = await self._storage.list_transactions([a.id for a in accounts])

        return build_evolution_series(
            accounts,
            transactions,
            today=self._clock().date(),
            max_points=self._settings.evolution_max_points,
            top_n=self._settings.evolution_top_accounts,
        )

    async def get_transactions(self, item_id: str, user_id: str) -> list[Transaction]:
        """Transactions of an item the caller owns, newest first."""
        item_id = require_id(item_id, "item_id")
        user_id = require_id(user_id, "user_id")
        async with self._storage.transaction(readonly=True):
            item = await self._require_item(item_id, user_id)
            return await self._storage.list_transactions([item.id], newest_first=True)

    async def get_investment_value_history(
        self,
        investment_id: str,
        user_id: str,
    ) -> list[InvestmentValueUpdate]:
        """Valuations of an investment the caller owns, oldest first."""
        investment_id = require_id(investment_id, "investment_id")
        user_id = require_id(user_id, "user_id")
        async with self._storage.transaction(readonly=True):
            investment = await self._require_item(investment_id, user_id, ItemType.INVESTMENT)
            return await self._storage.list_value_updates([investment.id], user_id)

    async def dashboard(self, user_id: str) -> DashboardSnapshot:
        """Everything the dashboard shows, read in one unit."""
        user_id = require_id(user_id, "user_id")

        async with self._storage.transaction(readonly=True):
            items = await self._storage.list_items(user_id)
            debts = [i for i in items if isinstance(i, DebtItem)]
            investments = [i for i in items if isinstance(i, InvestmentItem)]

            payments = await self._storage.list_transactions([d.id for d in debts])
            history = await self._storage.list_value_updates(
                [i.id for i in investments], user_id
            )
            currencies = await self._storage.list_entities(EntityKind.CURRENCY, user_id)
            persons = await self._storage.list_entities(EntityKind.PERSON, user_id)

        payments_by_debt: dict[str, list[Transaction]] = defaultdict(list)
        for payment in payments:
            payments_by_debt[payment.item_id].append(payment)

        history_by_investment: dict[str, list[InvestmentValueUpdate]] = defaultdict(list)
        for update in history:
            history_by_investment[update.investment_id].append(update)

        active = [i for i in items if not i.archived]
        active_accounts = [i for i in active if isinstance(i, AccountItem)]

        return DashboardSnapshot(
            items=active,
            archived_items=[i for i in items if i.archived],
            currency_rollups=[
                build_currency_rollup(c, active_accounts)
                for c in active
                if isinstance(c, CurrencyItem)
            ],
            debt_statuses={
                d.id: compute_payment_status(d, payments_by_debt[d.id]) for d in debts
            },
            investments={
                i.id: compute_investment_performance(i, history_by_investment[i.id])
                for i in investments
            },
            currencies=[c.name for c in currencies],
            persons=[p.name for p in persons],
        )
