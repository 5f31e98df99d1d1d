"""
Streamlit Frontend for Finance Tracker

The dashboard users interact with daily: accounts, debts, services,
currencies and investments, with their balances and history.

DESIGN PRINCIPLES:
1. Simple, clear interface
2. Every change goes through a ledger operation (never straight to storage)
3. Clear error messages in simple language
4. Visual feedback for all operations

Each action opens the ledger, runs one operation and closes it again,
so nothing is shared between Streamlit reruns except the database file.
"""

import asyncio
import logging
from decimal import Decimal

import streamlit as st

from finance_tracker.config import get_settings, validate_all_settings
from finance_tracker.models import ItemType, PaymentStatus
from finance_tracker.orchestrator import create_app_components, error_kind


# Page configuration
st.set_page_config(
    page_title="Finance Tracker",
    page_icon="💰",
    layout="wide",
    initial_sidebar_state="expanded",
)

st.markdown("""
<style>
    .stButton>button {
        width: 100%;
        margin-top: 10px;
    }
    .big-number {
        font-size: 2.5em;
        font-weight: bold;
        color: #2c3e50;
    }
</style>
""", unsafe_allow_html=True)

logging.basicConfig(format="%(message)s", level=get_settings().app.effective_log_level)

ERROR_MESSAGES = {
    "missing_argument": "Some required information is missing.",
    "invalid_argument": "Some of the values entered are not valid.",
    "not_found": "That record no longer exists.",
    "duplicate": "That record already exists.",
    "connection_failure": "The database could not be opened.",
    "store_failure": "Something went wrong while saving. Nothing was changed.",
}


def run_async(coro):
    """Helper to run async functions in Streamlit."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def call(operation):
    """Run `operation(tracker)` against a freshly opened ledger."""
    async def _run():
        async with create_app_components() as tracker:
            return await operation(tracker)
    return run_async(_run())


def error_message(error: Exception) -> str:
    """User-facing text for a failed operation; details only in debug mode."""
    message = ERROR_MESSAGES.get(error_kind(error), ERROR_MESSAGES["store_failure"])
    if get_settings().app.debug_mode:
        message += f" ({error})"
    return message


def attempt(operation, success_message: str) -> bool:
    """Run a mutation and report the outcome to the user."""
    try:
        call(operation)
    except Exception as e:
        st.error(error_message(e))
        return False
    st.success(success_message)
    return True


def main():
    """Main application entry point."""
    app_settings = get_settings().app
    user_id = app_settings.app_user_id

    st.sidebar.title("💰 Finance Tracker")
    if not app_settings.is_production:
        st.sidebar.caption(f"Environment: {app_settings.app_environment}")
    st.sidebar.markdown("---")

    page = st.sidebar.radio(
        "Navigate to:",
        ["📊 Dashboard", "➕ Add Item", "🏦 Accounts", "🤝 Debts",
         "📈 Investments", "⚙️ Settings"],
        index=0,
    )

    if page == "📊 Dashboard":
        render_dashboard_page(user_id)
    elif page == "➕ Add Item":
        render_add_item_page(user_id)
    elif page == "🏦 Accounts":
        render_accounts_page(user_id)
    elif page == "🤝 Debts":
        render_debts_page(user_id)
    elif page == "📈 Investments":
        render_investments_page(user_id)
    elif page == "⚙️ Settings":
        render_settings_page(user_id)


def render_dashboard_page(user_id: str):
    """Currency totals, their evolution, and every active item."""
    st.title("📊 Dashboard")

    snapshot = call(lambda t: t.get_dashboard(user_id))

    if not snapshot.currency_rollups:
        st.info("Add a currency item to see totals per currency.")

    for rollup in snapshot.currency_rollups:
        currency = rollup.item.currency
        st.markdown(f"### {currency}")
        st.markdown(f'<div class="big-number">{rollup.value:,.2f}</div>', unsafe_allow_html=True)

        col1, col2 = st.columns(2)
        with col1:
            for entry in rollup.account_breakdown:
                st.markdown(f"- **{entry.name}**: {entry.balance:,.2f}")
        with col2:
            points = call(lambda t, c=currency: t.get_currency_evolution_data(c, user_id))
            if points:
                st.line_chart(
                    {p.date.isoformat(): float(p.value) for p in points},
                )

        if st.button("🗄️ Archive", key=f"archive-{rollup.item.id}"):
            if attempt(lambda t, i=rollup.item.id: t.archive_item(i, user_id), "Archived"):
                st.rerun()

    st.markdown("---")
    st.subheader("All items")
    for item in snapshot.items:
        label = getattr(item, "name", None) or getattr(item, "description", None) or item.currency
        with st.expander(f"{item.type.title()}: {label}"):
            st.json(item.to_record())
            col1, col2 = st.columns(2)
            with col1:
                if st.button("🗄️ Archive", key=f"archive-item-{item.id}"):
                    if attempt(lambda t, i=item.id: t.archive_item(i, user_id), "Archived"):
                        st.rerun()
            with col2:
                if st.button("🗑️ Delete", key=f"delete-{item.id}"):
                    if attempt(lambda t, i=item.id: t.delete_item(i, user_id), "Deleted"):
                        st.rerun()

    if snapshot.archived_items:
        st.subheader("Archived")
        for item in snapshot.archived_items:
            label = getattr(item, "name", None) or getattr(item, "description", None) or item.currency
            if st.button(f"↩️ Restore {item.type}: {label}", key=f"unarchive-{item.id}"):
                if attempt(lambda t, i=item.id: t.unarchive_item(i, user_id), "Restored"):
                    st.rerun()


def render_add_item_page(user_id: str):
    """Form for creating any kind of item."""
    st.title("➕ Add Item")

    item_type = st.selectbox(
        "What do you want to track?",
        options=list(ItemType),
        format_func=lambda x: x.value.title(),
    )
    known_currencies = [c.name for c in call(lambda t: t.list_currencies(user_id))]
    currency = st.text_input(
        "Currency *",
        help="Known: " + ", ".join(known_currencies) if known_currencies else None,
    )

    draft = {"type": item_type.value, "currency": currency}

    if item_type == ItemType.ACCOUNT:
        draft["name"] = st.text_input("Account name *")
        draft["balance"] = str(st.number_input("Opening balance", value=0.0, step=0.01, format="%.2f"))
    elif item_type == ItemType.DEBT:
        draft["description"] = st.text_input("Description *")
        draft["withWho"] = st.text_input("With who *")
        draft["amount"] = str(st.number_input("Amount *", min_value=0.0, step=0.01, format="%.2f"))
        draft["theyPayMe"] = st.checkbox("They owe me")
        draft["details"] = st.text_area("Details (optional)") or None
    elif item_type == ItemType.SERVICE:
        draft["name"] = st.text_input("Service name *")
        draft["cost"] = str(st.number_input("Cost", min_value=0.0, step=0.01, format="%.2f"))
        draft["isManual"] = st.checkbox("Paid manually")
        draft["notes"] = st.text_area("Notes (optional)") or None
    elif item_type == ItemType.INVESTMENT:
        draft["name"] = st.text_input("Investment name *")
        draft["tag"] = st.text_input("Tag (optional)") or None
        draft["initialValue"] = str(st.number_input("Initial value", min_value=0.0, step=0.01, format="%.2f"))

    if st.button("💾 Save", type="primary"):
        attempt(lambda t: t.create_item(draft, user_id), "Item saved")


def _items_of(user_id: str, item_type: ItemType) -> list:
    snapshot = call(lambda t: t.get_dashboard(user_id))
    return [i for i in snapshot.items if i.type == item_type.value]


def render_accounts_page(user_id: str):
    """Transactions and balance corrections for one account."""
    st.title("🏦 Accounts")

    accounts = _items_of(user_id, ItemType.ACCOUNT)
    if not accounts:
        st.info("No accounts yet. Use 'Add Item' to create one.")
        return

    account = st.selectbox(
        "Account",
        options=accounts,
        format_func=lambda a: f"{a.name} ({a.currency})",
    )
    st.markdown(f'<div class="big-number">{account.balance:,.2f}</div>', unsafe_allow_html=True)

    col1, col2 = st.columns(2)
    with col1:
        st.subheader("New transaction")
        amount = st.number_input("Amount (negative to withdraw)", value=0.0, step=0.01, format="%.2f")
        note = st.text_input("Note", key="transaction-note")
        if st.button("➕ Record", type="primary"):
            if attempt(
                lambda t: t.create_transaction(account.id, Decimal(str(amount)), note, user_id),
                "Transaction recorded",
            ):
                st.rerun()
    with col2:
        st.subheader("Correct balance")
        new_balance = st.number_input("Actual balance", value=float(account.balance), step=0.01, format="%.2f")
        adjust_note = st.text_input("Note", key="adjust-note")
        if st.button("✏️ Set balance"):
            if attempt(
                lambda t: t.update_account_balance(
                    account.id, Decimal(str(new_balance)), adjust_note or None, user_id
                ),
                "Balance updated",
            ):
                st.rerun()

    st.subheader("History")
    for transaction in call(lambda t: t.get_transactions(account.id, user_id)):
        col1, col2, col3 = st.columns([2, 3, 1])
        col1.markdown(f"**{transaction.amount:+,.2f}**")
        col2.markdown(f"{transaction.date:%d %b %Y} · {transaction.note}")
        if col3.button("↩️", key=f"reverse-{transaction.id}", help="Delete and reverse"):
            if attempt(lambda t, i=transaction.id: t.delete_transaction(i, user_id), "Reversed"):
                st.rerun()


def render_debts_page(user_id: str):
    """Payment status and payments for one debt."""
    st.title("🤝 Debts")

    debts = _items_of(user_id, ItemType.DEBT)
    if not debts:
        st.info("No debts recorded.")
        return

    debt = st.selectbox(
        "Debt",
        options=debts,
        format_func=lambda d: f"{d.description} ({d.with_who})",
    )
    status = call(lambda t: t.get_debt_payment_status(debt.id, user_id))

    badge = {
        PaymentStatus.PAID: "🟢 Paid",
        PaymentStatus.PARTIALLY_PAID: "🟡 Partially paid",
        PaymentStatus.UNPAID: "🔴 Unpaid",
    }[status.payment_status]
    st.markdown(f"**{badge}** · paid {status.total_paid:,.2f} of {debt.amount:,.2f} {debt.currency}")
    st.progress(min(1.0, float(status.total_paid / debt.amount)) if debt.amount else 0.0)
    st.markdown(f"Remaining: **{status.remaining_amount:,.2f}** ({status.transaction_count} payments)")

    amount = st.number_input("Payment amount", min_value=0.0, step=0.01, format="%.2f")
    note = st.text_input("Note (optional)")
    if st.button("💸 Record payment", type="primary"):
        if attempt(
            lambda t: t.create_debt_payment(debt.id, Decimal(str(amount)), note or None, user_id),
            "Payment recorded",
        ):
            st.rerun()


def render_investments_page(user_id: str):
    """Valuation history and gain/loss for one investment."""
    st.title("📈 Investments")

    investments = _items_of(user_id, ItemType.INVESTMENT)
    if not investments:
        st.info("No investments recorded.")
        return

    investment = st.selectbox("Investment", options=investments, format_func=lambda i: i.name)
    performance = call(lambda t: t.get_investment_performance(investment.id, user_id))

    col1, col2, col3 = st.columns(3)
    col1.metric("Invested", f"{performance.initial_value:,.2f}")
    col2.metric("Current", f"{performance.current_value:,.2f}")
    col3.metric(
        "Gain / loss",
        f"{performance.total_gain_loss:,.2f}",
        f"{performance.gain_loss_percentage}%",
    )

    if performance.value_history:
        st.line_chart({u.date.isoformat(): float(u.value) for u in performance.value_history})

    value = st.number_input("New valuation", min_value=0.0, step=0.01, format="%.2f")
    note = st.text_input("Note (optional)")
    if st.button("📌 Add valuation", type="primary"):
        if attempt(
            lambda t: t.add_investment_value_update(
                investment.id, Decimal(str(value)), note or None, user_id
            ),
            "Valuation added",
        ):
            st.rerun()

    for update in reversed(performance.value_history):
        col1, col2 = st.columns([4, 1])
        col1.markdown(f"{update.date:%d %b %Y} · **{update.value:,.2f}** {update.note}")
        if col2.button("🗑️", key=f"delete-update-{update.id}"):
            if attempt(
                lambda t, i=update.id: t.delete_investment_value_update(i, user_id),
                "Valuation removed",
            ):
                st.rerun()

    if investment.is_finished:
        if st.button("🔓 Reopen investment"):
            if attempt(lambda t: t.unfinish_investment(investment.id, user_id), "Reopened"):
                st.rerun()
    elif st.button("🏁 Mark as finished"):
        if attempt(lambda t: t.finish_investment(investment.id, user_id), "Finished"):
            st.rerun()


def render_settings_page(user_id: str):
    """Render the settings page."""
    st.title("⚙️ Settings")

    st.markdown("### Configuration Status")
    status = validate_all_settings()
    for name in ("database", "ledger", "app"):
        if status.get(name, False):
            st.success(f"✅ {name.title()} settings - OK")
        else:
            st.error(f"❌ {name.title()} settings - {status.get(f'{name}_error', 'Invalid')}")

    st.markdown("---")
    st.markdown("### Maintenance")
    st.markdown("Link older items to the shared currency and person lists.")
    if st.button("🔗 Link currencies and people"):
        try:
            counts = call(lambda t: t.backfill_entity_links(user_id))
            st.success(
                f"Scanned {counts['items_scanned']} items, linked {counts['items_updated']}."
            )
        except Exception as e:
            st.error(error_message(e))

    st.markdown("---")
    st.markdown(
        "Configuration is read from environment variables or a `.env` file "
        "(`LEDGER_DB_PATH`, `LEDGER_TOUCH_ON_ZERO_BALANCE_CHANGE`, `LOG_LEVEL`, ...)."
    )


if __name__ == "__main__":
    main()
