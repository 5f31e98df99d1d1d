"""
Balance Mutator

Every write that changes a balance-like field or appends to the
transaction log goes through here.

CRITICAL RULE: An account's `balance` is a cache of the sum of its
transactions, and an investment's `current_value` is a cache of its
latest value update. Each operation below writes the log and the cache
in ONE atomic unit, so a failure part-way leaves both untouched.

DESIGN DECISION: Items are replaced whole (validated pydantic models),
never patched field by field.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from finance_tracker.config import LedgerSettings, get_settings
from finance_tracker.ledger.entities import EntityResolver
from finance_tracker.models.items import (
    TRANSACTION_BEARING_TYPES,
    AccountItem,
    DebtItem,
    EntityKind,
    InvestmentItem,
    InvestmentValueUpdate,
    Item,
    ItemType,
    Transaction,
    new_object_id,
    utc_now,
)
from finance_tracker.services.storage import (
    AccessDeniedError,
    LedgerStorageInterface,
    NotFoundError,
)
from finance_tracker.validation import (
    InvalidArgumentError,
    MissingArgumentError,
    require_amount,
    require_id,
    validate_item_draft,
)


logger = structlog.get_logger(__name__)


def _draft_id(draft: Any) -> Optional[str]:
    """The id the caller put on an item, before validation fills in a default."""
    if isinstance(draft, dict):
        return draft.get("_id") or draft.get("id")
    return getattr(draft, "id", None)


class BalanceMutator:
    """
    Write side of the ledger.

    Usage:
        mutator = BalanceMutator(storage)
        account = await mutator.create_item({"type": "account", ...}, user_id)
        await mutator.create_transaction(account.id, Decimal("100"), "deposit", user_id)
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        resolver: Optional[EntityResolver] = None,
        settings: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._resolver = resolver or EntityResolver(storage, clock)
        self._settings = settings or get_settings().ledger
        self._clock = clock

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _require_item(
        self,
        item_id: str,
        user_id: str,
        item_type: Optional[ItemType] = None,
    ) -> Item:
        item = await self._storage.get_item(item_id, user_id, item_type)
        if item is None:
            label = item_type.value if item_type else "item"
            raise NotFoundError(f"{label.capitalize()} {item_id} not found")
        return item

    async def _save(self, item: Item) -> None:
        if not await self._storage.replace_item(item):
            raise NotFoundError(f"Item {item.id} not found")

    async def _link_entities(self, item: Item, user_id: str, previous: Optional[Item] = None) -> Item:
        """
        Point the item's currency (and, for debts, person) at canonical entities.

        A link is kept when the label is unchanged and already linked;
        otherwise the label is resolved again. Links sent by the caller are
        never trusted.
        """
        changes: dict[str, Any] = {}

        currency = getattr(item, "currency", None)
        if currency is not None:
            if previous is not None and previous.currency == currency and previous.currency_id:
                changes["currency_id"] = previous.currency_id
            else:
                entity = await self._resolver.resolve(user_id, currency, EntityKind.CURRENCY)
                changes["currency_id"] = entity.id if entity else None

        if isinstance(item, DebtItem):
            if previous is not None and previous.with_who == item.with_who and previous.person_id:
                changes["person_id"] = previous.person_id
            else:
                entity = await self._resolver.resolve(user_id, item.with_who, EntityKind.PERSON)
                changes["person_id"] = entity.id if entity else None

        return item.model_copy(update=changes)

    async def _latest_value(self, investment: InvestmentItem, user_id: str) -> Decimal:
        """Value of the latest update by date, falling back to initial_value."""
        updates = await self._storage.list_value_updates([investment.id], user_id)
        if updates:
            return updates[-1].value
        return investment.initial_value

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    async def create_item(self, draft: Any, user_id: str) -> Item:
        """
        Persist a new item.

        Currency (and person, for debts) labels are resolved to entities in
        the same unit. An account created with a non-zero balance gets an
        opening transaction so its balance matches its log from the start.
        """
        user_id = require_id(user_id, "user_id")
        item = validate_item_draft(draft)
        now = self._clock()

        async with self._storage.transaction():
            item = await self._link_entities(item, user_id)
            envelope: dict[str, Any] = {
                "id": new_object_id(),
                "user_id": user_id,
                "create_date": now,
                "edit_date": now,
            }
            if isinstance(item, InvestmentItem):
                envelope["current_value"] = item.initial_value
            item = item.model_copy(update=envelope)

            await self._storage.insert_item(item)

            if isinstance(item, AccountItem) and item.balance != 0:
                await self._storage.insert_transaction(
                    Transaction(
                        item_id=item.id,
                        amount=item.balance,
                        note=self._settings.initial_balance_note,
                        date=now,
                        user_id=user_id,
                    )
                )

        logger.debug("item_created", item_id=item.id, item_type=item.type, user_id=user_id)
        return item

    async def update_item(self, draft: Any, user_id: str) -> Item:
        """
        Overwrite an item with the caller's version.

        Kept from the stored item: id, owner, create_date, the cached
        account balance, and `archived` unless the caller sets it.
        """
        user_id = require_id(user_id, "user_id")
        if draft is None:
            raise MissingArgumentError("Missing item")
        item_id = require_id(_draft_id(draft), "_id")
        incoming = validate_item_draft(draft)

        async with self._storage.transaction():
            existing = await self._require_item(item_id, user_id)
            if incoming.type != existing.type:
                raise InvalidArgumentError(
                    f"Cannot change item {item_id} from {existing.type} to {incoming.type}"
                )

            changes: dict[str, Any] = {
                "id": existing.id,
                "user_id": user_id,
                "create_date": existing.create_date,
                "edit_date": self._clock(),
            }
            if "archived" not in incoming.model_fields_set:
                changes["archived"] = existing.archived
            if isinstance(existing, AccountItem):
                changes["balance"] = existing.balance

            updated = incoming.model_copy(update=changes)
            if isinstance(updated, InvestmentItem):
                updated = updated.model_copy(
                    update={"current_value": await self._latest_value(updated, user_id)}
                )
            updated = await self._link_entities(updated, user_id, previous=existing)

            await self._save(updated)

        return updated

    async def delete_item(self, item_id: str, user_id: str) -> bool:
        """
        Delete an item. Accounts and debts take their transactions with them.

        Deleting an item that does not exist succeeds.
        """
        item_id = require_id(item_id)
        user_id = require_id(user_id, "user_id")

        async with self._storage.transaction():
            item = await self._storage.get_item(item_id, user_id)
            if item is None:
                return True

            removed = 0
            if ItemType(item.type) in TRANSACTION_BEARING_TYPES:
                removed = await self._storage.delete_transactions_for_item(item.id)
            await self._storage.delete_item(item.id, user_id)

        logger.debug("item_deleted", item_id=item_id, transactions_removed=removed)
        return True

    async def _set_flag(
        self,
        item_id: str,
        user_id: str,
        field: str,
        value: bool,
        item_type: Optional[ItemType] = None,
    ) -> Optional[Item]:
        item_id = require_id(item_id)
        user_id = require_id(user_id, "user_id")

        async with self._storage.transaction():
            item = await self._storage.get_item(item_id, user_id, item_type)
            if item is None:
                return None
            updated = item.model_copy(update={field: value, "edit_date": self._clock()})
            await self._save(updated)

        return updated

    async def archive_item(self, item_id: str, user_id: str) -> Optional[Item]:
        return await self._set_flag(item_id, user_id, "archived", True)

    async def unarchive_item(self, item_id: str, user_id: str) -> Optional[Item]:
        return await self._set_flag(item_id, user_id, "archived", False)

    async def finish_investment(self, investment_id: str, user_id: str) -> Optional[Item]:
        return await self._set_flag(
            investment_id, user_id, "is_finished", True, ItemType.INVESTMENT
        )

    async def unfinish_investment(self, investment_id: str, user_id: str) -> Optional[Item]:
        return await self._set_flag(
            investment_id, user_id, "is_finished", False, ItemType.INVESTMENT
        )

    # -------------------------------------------------------------------------
    # Balances and transactions
    # -------------------------------------------------------------------------

    async def update_account_balance(
        self,
        item_id: str,
        new_balance: Union[Decimal, int, float, str],
        note: Optional[str],
        user_id: str,
    ) -> AccountItem:
        """
        Set an account's balance, logging the difference as a correction.

        A zero difference writes no transaction; whether it still bumps
        edit_date is controlled by `touch_on_zero_balance_change`.
        """
        item_id = require_id(item_id, "item_id")
        user_id = require_id(user_id, "user_id")
        new_balance = require_amount(new_balance, "new_balance")

        async with self._storage.transaction():
            account = await self._require_item(item_id, user_id, ItemType.ACCOUNT)
            difference = new_balance - account.balance

            if difference == 0 and not self._settings.touch_on_zero_balance_change:
                return account

            now = self._clock()
            if difference != 0:
                await self._storage.insert_transaction(
                    Transaction(
                        item_id=account.id,
                        amount=difference,
                        note=note or self._settings.balance_adjustment_note,
                        date=now,
                        user_id=user_id,
                    )
                )

            updated = account.model_copy(update={"balance": new_balance, "edit_date": now})
            await self._save(updated)

        logger.debug(
            "account_balance_updated",
            item_id=item_id,
            difference=str(difference),
        )
        return updated

    async def create_transaction(
        self,
        item_id: str,
        amount: Union[Decimal, int, float, str],
        note: Optional[str],
        user_id: str,
    ) -> Transaction:
        """Record a deposit/withdrawal and move the account balance with it."""
        item_id = require_id(item_id, "item_id")
        user_id = require_id(user_id, "user_id")
        amount = require_amount(amount)

        async with self._storage.transaction():
            account = await self._require_item(item_id, user_id, ItemType.ACCOUNT)
            now = self._clock()

            transaction = Transaction(
                item_id=account.id,
                amount=amount,
                note=note or "",
                date=now,
                user_id=user_id,
            )
            await self._storage.insert_transaction(transaction)
            await self._save(
                account.model_copy(
                    update={"balance": account.balance + amount, "edit_date": now}
                )
            )

        return transaction

    async def delete_transaction(self, transaction_id: str, user_id: str) -> bool:
        """
        Delete a transaction and reverse its effect.

        Ownership is checked through the parent item. A transaction whose
        item belongs to someone else is reported exactly like a missing one.
        """
        transaction_id = require_id(transaction_id, "transaction_id")
        user_id = require_id(user_id, "user_id")

        async with self._storage.transaction():
            transaction = await self._storage.get_transaction(transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")

            parent = await self._storage.get_item(transaction.item_id, user_id)
            if parent is None:
                raise AccessDeniedError(f"Transaction {transaction_id} not found")

            await self._storage.delete_transaction(transaction.id)

            changes: dict[str, Any] = {"edit_date": self._clock()}
            if isinstance(parent, AccountItem):
                changes["balance"] = parent.balance - transaction.amount
            await self._save(parent.model_copy(update=changes))

        return True

    async def create_debt_payment(
        self,
        debt_id: str,
        amount: Union[Decimal, int, float, str],
        note: Optional[str],
        user_id: str,
    ) -> Transaction:
        """Record a payment against a debt. Overpayment is accepted."""
        debt_id = require_id(debt_id, "debt_id")
        user_id = require_id(user_id, "user_id")
        amount = require_amount(amount)

        async with self._storage.transaction():
            debt = await self._require_item(debt_id, user_id, ItemType.DEBT)
            now = self._clock()

            payment = Transaction(
                item_id=debt.id,
                amount=amount,
                note=note or self._settings.debt_payment_note,
                date=now,
                user_id=user_id,
            )
            await self._storage.insert_transaction(payment)
            await self._save(debt.model_copy(update={"edit_date": now}))

        return payment

    # -------------------------------------------------------------------------
    # Investment valuations
    # -------------------------------------------------------------------------

    async def add_investment_value_update(
        self,
        investment_id: str,
        value: Union[Decimal, int, float, str],
        note: Optional[str],
        user_id: str,
        date: Optional[Union[datetime, str]] = None,
    ) -> InvestmentValueUpdate:
        """
        Record a valuation snapshot and refresh `current_value`.

        A back-dated snapshot is stored but only moves `current_value` if it
        is the latest by date.
        """
        investment_id = require_id(investment_id, "investment_id")
        user_id = require_id(user_id, "user_id")
        value = require_amount(value, "value")

        try:
            update = InvestmentValueUpdate(
                investment_id=investment_id,
                value=value,
                note=note or "",
                date=date or self._clock(),
                user_id=user_id,
            )
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid value update: {e}") from e

        async with self._storage.transaction():
            investment = await self._require_item(investment_id, user_id, ItemType.INVESTMENT)
            await self._storage.insert_value_update(update)
            await self._save(
                investment.model_copy(
                    update={
                        "current_value": await self._latest_value(investment, user_id),
                        "edit_date": self._clock(),
                    }
                )
            )

        return update

    async def delete_investment_value_update(self, update_id: str, user_id: str) -> None:
        """Delete a valuation; `current_value` falls back to the latest remaining one."""
        update_id = require_id(update_id, "update_id")
        user_id = require_id(user_id, "user_id")

        async with self._storage.transaction():
            update = await self._storage.get_value_update(update_id, user_id)
            if update is None:
                raise NotFoundError(f"Value update {update_id} not found")

            await self._storage.delete_value_update(update.id, user_id)

            investment = await self._storage.get_item(
                update.investment_id, user_id, ItemType.INVESTMENT
            )
            if investment is not None:
                await self._save(
                    investment.model_copy(
                        update={
                            "current_value": await self._latest_value(investment, user_id),
                            "edit_date": self._clock(),
                        }
                    )
                )
