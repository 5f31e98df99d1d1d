"""
Core Data Models for Finance Tracker

These models define the strict schemas for everything the ledger stores
or derives. They are designed to:
1. Enforce type safety at runtime
2. Keep each item kind carrying only its own fields
3. Serialize to the camelCase records the dashboard consumes
4. Keep money exact (Decimal) so balances never drift from the log

DESIGN DECISION: Items are a discriminated union on `type`.
A common envelope (id, owner, timestamps, archived flag) wraps every variant.
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    TypeAdapter,
)
from pydantic.alias_generators import to_camel


TWO_PLACES = Decimal("0.01")


def new_object_id() -> str:
    """Opaque identifier for a stored record."""
    return uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimals, half away from zero."""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


# Decimal in Python, a plain number in JSON records
Money = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float, when_used="json"),
]
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ItemType(str, Enum):
    """The kinds of user-owned financial objects."""
    ACCOUNT = "account"
    DEBT = "debt"
    SERVICE = "service"
    CURRENCY = "currency"        # aggregation key only, holds no balance
    INVESTMENT = "investment"


class TransactionKind(str, Enum):
    """
    Discriminator for rows in the shared transactions log.

    Investment value updates live in the same physical log as
    balance-affecting transactions.
    """
    TRANSACTION = "transaction"
    INVESTMENT_VALUE_UPDATE = "investment_value_update"


class PaymentStatus(str, Enum):
    """Debt payment status, always derived from the transaction log."""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class EntityKind(str, Enum):
    """Free-text labels that are deduplicated into per-user entities."""
    CURRENCY = "currency"
    PERSON = "person"


# Item kinds whose delete must also remove their transactions
TRANSACTION_BEARING_TYPES = frozenset({ItemType.ACCOUNT, ItemType.DEBT})


class LedgerModel(BaseModel):
    """
    Base for all ledger models.

    Python attributes are snake_case; records handed to the UI use the
    camelCase keys of the stored documents (`withWho`, `createDate`, ...).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_record(self) -> dict:
        """Plain JSON-safe dict: string ids, ISO dates, numeric amounts."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# ITEMS
# =============================================================================

class ItemBase(LedgerModel):
    """Envelope shared by every item variant."""

    id: str = Field(
        default_factory=new_object_id,
        alias="_id",
        min_length=1,
        description="Opaque identifier owned by the store"
    )
    user_id: str = Field(
        default="",
        description="Owner; immutable after creation"
    )
    create_date: Optional[UtcDatetime] = None
    edit_date: Optional[UtcDatetime] = Field(
        default=None,
        description="Bumped on every mutation"
    )
    archived: bool = Field(
        default=False,
        description="Hidden from the active dashboard"
    )


class AccountItem(ItemBase):
    """
    A balance holder.

    CRITICAL: `balance` is a cache of the sum of the account's transactions.
    It is only ever changed together with a transaction write.
    """
    type: Literal["account"] = "account"
    name: str = Field(..., min_length=1, max_length=200)
    balance: Money = Decimal("0")
    currency: str = Field(..., min_length=1, max_length=50)
    currency_id: Optional[str] = None


class DebtItem(ItemBase):
    """Money owed to or by someone; payments are transactions against it."""
    type: Literal["debt"] = "debt"
    description: str = Field(..., min_length=1, max_length=200)
    with_who: str = Field(..., min_length=1, max_length=200)
    person_id: Optional[str] = None
    amount: Money = Field(..., ge=0, description="Principal owed")
    currency: str = Field(..., min_length=1, max_length=50)
    currency_id: Optional[str] = None
    they_pay_me: bool = Field(
        default=False,
        description="True when the other person owes the user"
    )
    details: Optional[str] = Field(default=None, max_length=1000)


class ServiceItem(ItemBase):
    """A recurring service (subscription, bill)."""
    type: Literal["service"] = "service"
    name: str = Field(..., min_length=1, max_length=200)
    cost: Money = Decimal("0")
    currency: str = Field(..., min_length=1, max_length=50)
    currency_id: Optional[str] = None
    is_manual: bool = False
    notes: Optional[str] = Field(default=None, max_length=1000)


class CurrencyItem(ItemBase):
    """A dashboard card that totals the accounts sharing its currency label."""
    type: Literal["currency"] = "currency"
    currency: str = Field(..., min_length=1, max_length=50)
    currency_id: Optional[str] = None


class InvestmentItem(ItemBase):
    """An investment valued by absolute snapshots rather than deltas."""
    type: Literal["investment"] = "investment"
    name: str = Field(..., min_length=1, max_length=200)
    tag: Optional[str] = Field(default=None, max_length=50)
    initial_value: Money = Field(default=Decimal("0"), ge=0)
    current_value: Optional[Money] = Field(
        default=None,
        description="Value of the latest value update, else initial_value"
    )
    currency: str = Field(..., min_length=1, max_length=50)
    currency_id: Optional[str] = None
    is_finished: bool = False


Item = Annotated[
    Union[AccountItem, DebtItem, ServiceItem, CurrencyItem, InvestmentItem],
    Field(discriminator="type"),
]

ITEM_ADAPTER: TypeAdapter = TypeAdapter(Item)


def parse_item(data) -> Item:
    """Build the right item variant from a dict (snake_case or camelCase) or model."""
    if isinstance(data, ItemBase):
        return data
    return ITEM_ADAPTER.validate_python(data)


# =============================================================================
# LOG RECORDS
# =============================================================================

class Transaction(LedgerModel):
    """
    One balance-affecting event: deposit, withdrawal, debt payment
    or balance-adjustment correction.

    Append-only. Removed only by an explicit reversal.
    """
    id: str = Field(default_factory=new_object_id, alias="_id")
    item_id: str = Field(
        ...,
        min_length=1,
        description="String reference to the owning item"
    )
    amount: Money = Field(..., description="Signed delta")
    note: str = Field(default="", max_length=500)
    date: UtcDatetime = Field(default_factory=utc_now)
    user_id: str = ""


class InvestmentValueUpdate(LedgerModel):
    """An absolute valuation snapshot for an investment."""
    id: str = Field(default_factory=new_object_id, alias="_id")
    investment_id: str = Field(..., min_length=1)
    value: Money
    note: str = Field(default="", max_length=500)
    date: UtcDatetime = Field(default_factory=utc_now)
    user_id: str = ""


# =============================================================================
# DEDUPLICATED ENTITIES
# =============================================================================

class NamedEntity(LedgerModel):
    """A canonical per-user record for a free-text label. Unique per (user_id, name)."""
    id: str = Field(default_factory=new_object_id, alias="_id")
    name: str = Field(..., min_length=1, max_length=200)
    user_id: str = Field(..., min_length=1)
    create_date: UtcDatetime = Field(default_factory=utc_now)
    edit_date: UtcDatetime = Field(default_factory=utc_now)


class CurrencyEntity(NamedEntity):
    pass


class PersonEntity(NamedEntity):
    pass


ENTITY_MODELS: dict[EntityKind, type[NamedEntity]] = {
    EntityKind.CURRENCY: CurrencyEntity,
    EntityKind.PERSON: PersonEntity,
}


# =============================================================================
# DERIVED VIEWS (recomputed on every read, never stored)
# =============================================================================

class DebtPaymentStatus(LedgerModel):
    """Where a debt stands, computed from its payments."""
    total_paid: Money
    remaining_amount: Money = Field(..., ge=0)
    payment_status: PaymentStatus
    transaction_count: int = Field(..., ge=0)


class AccountBreakdownEntry(LedgerModel):
    id: str
    name: str
    balance: Money


class CurrencyRollup(LedgerModel):
    """A currency item with the total and per-account split of matching accounts."""
    item: CurrencyItem
    value: Money
    account_breakdown: list[AccountBreakdownEntry] = Field(default_factory=list)


class InvestmentPerformance(LedgerModel):
    investment_id: str
    initial_value: Money
    current_value: Money
    total_gain_loss: Money
    gain_loss_percentage: Money
    value_history: list[InvestmentValueUpdate] = Field(default_factory=list)


class TopAccount(LedgerModel):
    name: str
    balance: Money


class EvolutionDataPoint(LedgerModel):
    """One day on a currency's evolution chart."""
    date: date
    value: Money
    top_accounts: list[TopAccount] = Field(default_factory=list)


class DashboardSnapshot(LedgerModel):
    """Everything the dashboard renders, in one read."""
    items: list[Item] = Field(default_factory=list)
    archived_items: list[Item] = Field(default_factory=list)
    currency_rollups: list[CurrencyRollup] = Field(default_factory=list)
    debt_statuses: dict[str, DebtPaymentStatus] = Field(default_factory=dict)
    investments: dict[str, InvestmentPerformance] = Field(default_factory=dict)
    currencies: list[str] = Field(default_factory=list)
    persons: list[str] = Field(default_factory=list)
