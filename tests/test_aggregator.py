"""Tests for derived views: rollups, debt status, investments, evolution."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, account_draft, debt_draft, investment_draft
from finance_tracker.models import (
    AccountItem,
    CurrencyItem,
    DebtItem,
    InvestmentItem,
    PaymentStatus,
    Transaction,
)
from finance_tracker.queries import (
    build_currency_rollup,
    build_evolution_series,
    compute_investment_performance,
    compute_payment_status,
)
from finance_tracker.services.storage import NotFoundError


def at(day: int, hour: int = 12) -> datetime:
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


def tx(account: AccountItem, amount: str, when: datetime) -> Transaction:
    return Transaction(item_id=account.id, amount=Decimal(amount), date=when)


class TestPaymentStatus:
    """Pure status derivation."""

    DEBT = DebtItem(description="Loan", with_who="Bob", amount=Decimal("100"), currency="USD")

    def payments(self, *amounts):
        return [Transaction(item_id=self.DEBT.id, amount=Decimal(a)) for a in amounts]

    def test_unpaid(self):
        status = compute_payment_status(self.DEBT, [])
        assert status.payment_status == PaymentStatus.UNPAID
        assert status.remaining_amount == Decimal("100")
        assert status.transaction_count == 0

    def test_partially_paid(self):
        status = compute_payment_status(self.DEBT, self.payments("30", "20"))
        assert status.payment_status == PaymentStatus.PARTIALLY_PAID
        assert status.total_paid == Decimal("50")
        assert status.remaining_amount == Decimal("50")

    def test_exactly_paid(self):
        status = compute_payment_status(self.DEBT, self.payments("100"))
        assert status.model_dump() == {
            "total_paid": Decimal("100"),
            "remaining_amount": Decimal("0"),
            "payment_status": PaymentStatus.PAID,
            "transaction_count": 1,
        }

    def test_overpayment_clamps_remaining_only(self):
        """Overpayment is accepted: total_paid shows it, remaining stays at 0.

        Whether overpaying should be refused outright is an open product
        question; today it is recorded and reported as paid.
        """
        status = compute_payment_status(self.DEBT, self.payments("100", "10"))
        assert status.total_paid == Decimal("110")
        assert status.remaining_amount == Decimal("0")
        assert status.payment_status == PaymentStatus.PAID
        assert status.transaction_count == 2

    def test_net_negative_payments_are_unpaid(self):
        status = compute_payment_status(self.DEBT, self.payments("20", "-30"))
        assert status.payment_status == PaymentStatus.UNPAID
        assert status.remaining_amount == Decimal("110")


class TestInvestmentPerformance:

    def test_gain(self):
        investment = InvestmentItem(
            name="ETF", currency="USD", initial_value=Decimal("1000"), current_value=Decimal("1250")
        )
        performance = compute_investment_performance(investment)
        assert performance.total_gain_loss == Decimal("250")
        assert performance.gain_loss_percentage == Decimal("25.00")

    def test_loss_is_rounded(self):
        investment = InvestmentItem(
            name="ETF", currency="USD", initial_value=Decimal("300"), current_value=Decimal("200")
        )
        assert compute_investment_performance(investment).gain_loss_percentage == Decimal("-33.33")

    def test_zero_initial_value_reports_zero_percent(self):
        investment = InvestmentItem(
            name="Gift", currency="USD", initial_value=Decimal("0"), current_value=Decimal("50")
        )
        performance = compute_investment_performance(investment)
        assert performance.total_gain_loss == Decimal("50")
        assert performance.gain_loss_percentage == Decimal("0")

    def test_missing_current_value_uses_initial(self):
        investment = InvestmentItem(name="ETF", currency="USD", initial_value=Decimal("1000"))
        assert compute_investment_performance(investment).current_value == Decimal("1000")


class TestCurrencyRollup:

    def test_sums_matching_accounts_sorted_desc(self):
        usd = CurrencyItem(currency="USD")
        a = AccountItem(name="A", currency="USD", balance=Decimal("10"))
        b = AccountItem(name="B", currency="USD", balance=Decimal("60"))
        c = AccountItem(name="C", currency="EUR", balance=Decimal("999"))

        rollup = build_currency_rollup(usd, [a, b, c])

        assert rollup.value == Decimal("70")
        assert [(e.name, e.balance) for e in rollup.account_breakdown] == [
            ("B", Decimal("60")),
            ("A", Decimal("10")),
        ]

    def test_no_accounts(self):
        rollup = build_currency_rollup(CurrencyItem(currency="JPY"), [])
        assert rollup.value == Decimal("0")
        assert rollup.account_breakdown == []


class TestEvolutionSeries:
    """Pure reconstruction of a currency's history."""

    TODAY = date(2024, 3, 20)

    def test_no_accounts_no_points(self):
        assert build_evolution_series([], [], self.TODAY) == []

    def test_same_day_transactions_collapse(self):
        """Test one point per day, values accumulate across days."""
        a = AccountItem(name="A", currency="USD", balance=Decimal("70"))
        transactions = [
            tx(a, "100", at(1, 9)),
            tx(a, "-30", at(1, 18)),
            tx(a, "0.005", at(2)),
            tx(a, "-0.005", at(3)),
        ]

        series = build_evolution_series([a], transactions, self.TODAY)

        assert [(p.date, p.value) for p in series] == [
            (date(2024, 3, 1), Decimal("70.00")),
            (date(2024, 3, 2), Decimal("70.01")),
            (date(2024, 3, 3), Decimal("70.00")),
            (self.TODAY, Decimal("70.00")),
        ]

    def test_today_point_uses_cached_balances(self):
        """Test the final point is anchored to the stored balances."""
        a = AccountItem(name="A", currency="USD", balance=Decimal("500"))
        series = build_evolution_series([a], [tx(a, "100", at(1))], self.TODAY)

        assert series[-1].date == self.TODAY
        assert series[-1].value == Decimal("500.00")
        assert series[0].value == Decimal("100.00")

    def test_no_duplicate_today(self):
        a = AccountItem(name="A", currency="USD", balance=Decimal("999"))
        series = build_evolution_series([a], [tx(a, "5", at(20))], self.TODAY)

        assert [(p.date, p.value) for p in series] == [(self.TODAY, Decimal("5.00"))]

    def test_top_accounts_by_magnitude(self):
        """Test top 3 by absolute balance, negative balances included."""
        accounts = [
            AccountItem(name=name, currency="USD", balance=Decimal(balance))
            for name, balance in [("A", "10"), ("B", "-500"), ("C", "200"), ("D", "50")]
        ]
        series = build_evolution_series(accounts, [], self.TODAY)

        assert [(t.name, t.balance) for t in series[0].top_accounts] == [
            ("B", Decimal("-500")),
            ("C", Decimal("200")),
            ("D", Decimal("50")),
        ]

    def test_truncated_to_max_points(self):
        a = AccountItem(name="A", currency="USD", balance=Decimal("40"))
        start = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        transactions = [tx(a, "1", start + timedelta(days=i)) for i in range(40)]

        series = build_evolution_series([a], transactions, self.TODAY, max_points=30)

        assert len(series) == 30
        assert series[-1].date == self.TODAY
        assert series[-1].value == Decimal("40.00")
        assert series[0].date == date(2024, 1, 12)
        assert series[0].value == Decimal("12.00")

    def test_uses_utc_calendar_day(self):
        """Test 23:30 UTC and 00:30 UTC the next day land in different buckets."""
        a = AccountItem(name="A", currency="USD", balance=Decimal("2"))
        transactions = [
            tx(a, "1", datetime(2024, 3, 1, 23, 30, tzinfo=timezone.utc)),
            tx(a, "1", datetime(2024, 3, 2, 0, 30, tzinfo=timezone.utc)),
        ]
        series = build_evolution_series([a], transactions, self.TODAY)
        assert [p.date for p in series[:2]] == [date(2024, 3, 1), date(2024, 3, 2)]


class TestAggregatorQueries:
    """Aggregator against stored data."""

    @pytest.mark.asyncio
    async def test_end_to_end_rollup(self, mutator, aggregator):
        """Test account A: +100, -30, then a USD currency item totals 70."""
        account = await mutator.create_item(account_draft("A", "USD"), USER)
        await mutator.create_transaction(account.id, 100, "deposit", USER)
        await mutator.create_transaction(account.id, -30, "withdrawal", USER)
        await mutator.create_item({"type": "currency", "currency": "USD"}, USER)

        rollups = await aggregator.currency_rollups(USER)

        assert len(rollups) == 1
        assert rollups[0].value == Decimal("70")
        assert [(e.id, e.name, e.balance) for e in rollups[0].account_breakdown] == [
            (account.id, "A", Decimal("70"))
        ]

    @pytest.mark.asyncio
    async def test_rollup_skips_archived(self, mutator, aggregator):
        kept = await mutator.create_item(account_draft("A", balance="10"), USER)
        hidden = await mutator.create_item(account_draft("B", balance="5"), USER)
        await mutator.archive_item(hidden.id, USER)
        await mutator.create_item({"type": "currency", "currency": "USD"}, USER)

        rollup = (await aggregator.currency_rollups(USER))[0]

        assert rollup.value == Decimal("10")
        assert [e.id for e in rollup.account_breakdown] == [kept.id]

    @pytest.mark.asyncio
    async def test_debt_status_boundary(self, mutator, aggregator):
        """Test paying 100 of 100 is paid; a further 10 stays paid with remaining 0."""
        debt = await mutator.create_item(debt_draft(amount="100"), USER)

        await mutator.create_debt_payment(debt.id, 100, None, USER)
        status = await aggregator.debt_payment_status(debt.id, USER)
        assert status.to_record() == {
            "totalPaid": 100.0,
            "remainingAmount": 0.0,
            "paymentStatus": "paid",
            "transactionCount": 1,
        }

        await mutator.create_debt_payment(debt.id, 10, None, USER)
        status = await aggregator.debt_payment_status(debt.id, USER)
        assert status.to_record() == {
            "totalPaid": 110.0,
            "remainingAmount": 0.0,
            "paymentStatus": "paid",
            "transactionCount": 2,
        }

    @pytest.mark.asyncio
    async def test_debt_status_follows_amount_edits(self, mutator, aggregator):
        debt = await mutator.create_item(debt_draft(amount="100"), USER)
        await mutator.create_debt_payment(debt.id, 100, None, USER)

        await mutator.update_item({**debt.to_record(), "amount": 150}, USER)

        status = await aggregator.debt_payment_status(debt.id, USER)
        assert status.payment_status == PaymentStatus.PARTIALLY_PAID
        assert status.remaining_amount == Decimal("50")

    @pytest.mark.asyncio
    async def test_debt_status_of_foreign_debt(self, mutator, aggregator):
        debt = await mutator.create_item(debt_draft(), USER)
        with pytest.raises(NotFoundError):
            await aggregator.debt_payment_status(debt.id, OTHER_USER)

    @pytest.mark.asyncio
    async def test_evolution_is_deterministic_and_anchored(self, mutator, aggregator, storage, clock):
        """Test repeated calls agree and the last point equals the sum of balances."""
        a = await mutator.create_item(account_draft("A"), USER)
        b = await mutator.create_item(account_draft("B"), USER)
        await mutator.create_item(account_draft("Euro", currency="EUR", balance="1000"), USER)

        await mutator.create_transaction(a.id, "100.25", None, USER)
        clock.advance(days=1)
        await mutator.create_transaction(b.id, "40.10", None, USER)
        await mutator.create_transaction(a.id, "-0.35", None, USER)
        clock.advance(days=2)

        first = await aggregator.currency_evolution("USD", USER)
        second = await aggregator.currency_evolution("USD", USER)

        assert [(p.date, p.value) for p in first] == [(p.date, p.value) for p in second]
        assert [p.date for p in first] == [
            date(2024, 3, 10),
            date(2024, 3, 11),
            date(2024, 3, 13),
        ]

        accounts = await storage.list_items(USER, currency="USD")
        assert first[-1].value == sum(acc.balance for acc in accounts)
        assert first[-1].value == Decimal("140.00")

    @pytest.mark.asyncio
    async def test_evolution_for_unknown_currency(self, aggregator):
        assert await aggregator.currency_evolution("XYZ", USER) == []

    @pytest.mark.asyncio
    async def test_get_transactions_newest_first(self, mutator, aggregator, clock):
        account = await mutator.create_item(account_draft(), USER)
        older = await mutator.create_transaction(account.id, "1", None, USER)
        clock.advance(hours=1)
        newer = await mutator.create_transaction(account.id, "2", None, USER)

        transactions = await aggregator.get_transactions(account.id, USER)

        assert [t.id for t in transactions] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_get_transactions_checks_ownership(self, mutator, aggregator):
        account = await mutator.create_item(account_draft(), USER)
        with pytest.raises(NotFoundError):
            await aggregator.get_transactions(account.id, OTHER_USER)

    @pytest.mark.asyncio
    async def test_value_history_oldest_first(self, mutator, aggregator, clock):
        investment = await mutator.create_item(investment_draft(), USER)
        first = await mutator.add_investment_value_update(investment.id, "1100", None, USER)
        earlier = await mutator.add_investment_value_update(
            investment.id, "1050", None, USER, date=clock() - timedelta(days=1)
        )

        history = await aggregator.get_investment_value_history(investment.id, USER)

        assert [u.id for u in history] == [earlier.id, first.id]

    @pytest.mark.asyncio
    async def test_value_history_checks_ownership(self, mutator, aggregator):
        """Test a foreign, unknown or non-investment id fails like the other reads."""
        investment = await mutator.create_item(investment_draft(), USER)
        account = await mutator.create_item(account_draft(), USER)

        with pytest.raises(NotFoundError):
            await aggregator.get_investment_value_history(investment.id, OTHER_USER)
        with pytest.raises(NotFoundError):
            await aggregator.get_investment_value_history("missing", USER)
        with pytest.raises(NotFoundError):
            await aggregator.get_investment_value_history(account.id, USER)

    @pytest.mark.asyncio
    async def test_investment_performance(self, mutator, aggregator):
        investment = await mutator.create_item(investment_draft(initial_value="1000"), USER)
        await mutator.add_investment_value_update(investment.id, "1200", None, USER)

        performance = await aggregator.investment_performance(investment.id, USER)

        assert performance.current_value == Decimal("1200")
        assert performance.gain_loss_percentage == Decimal("20.00")
        assert len(performance.value_history) == 1

    @pytest.mark.asyncio
    async def test_dashboard(self, mutator, aggregator):
        account = await mutator.create_item(account_draft("A", balance="25"), USER)
        archived = await mutator.create_item(account_draft("Old"), USER)
        await mutator.archive_item(archived.id, USER)
        await mutator.create_item({"type": "currency", "currency": "USD"}, USER)
        debt = await mutator.create_item(debt_draft(with_who="Zed"), USER)
        investment = await mutator.create_item(investment_draft(currency="EUR"), USER)
        await mutator.create_item(account_draft("Other", balance="1"), OTHER_USER)

        snapshot = await aggregator.dashboard(USER)

        assert account.id in [i.id for i in snapshot.items]
        assert [i.id for i in snapshot.archived_items] == [archived.id]
        assert snapshot.currency_rollups[0].value == Decimal("25")
        assert snapshot.debt_statuses[debt.id].payment_status == PaymentStatus.UNPAID
        assert snapshot.investments[investment.id].current_value == Decimal("1000")
        assert snapshot.currencies == ["EUR", "USD"]
        assert snapshot.persons == ["Zed"]
