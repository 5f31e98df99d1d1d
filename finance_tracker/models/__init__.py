"""
Data Models Package

This package contains all Pydantic models used in Finance Tracker.
All data flowing between the ledger and its callers conforms to these schemas.
"""

from finance_tracker.models.items import (
    AccountBreakdownEntry,
    AccountItem,
    CurrencyEntity,
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
    Item,
    ItemType,
    NamedEntity,
    PaymentStatus,
    PersonEntity,
    ServiceItem,
    TopAccount,
    Transaction,
    TransactionKind,
    parse_item,
    round_money,
    utc_now,
)
from finance_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Item models
    "AccountItem",
    "CurrencyItem",
    "DebtItem",
    "InvestmentItem",
    "Item",
    "ItemType",
    "ServiceItem",
    "parse_item",
    # Log records
    "InvestmentValueUpdate",
    "Transaction",
    "TransactionKind",
    # Entities
    "CurrencyEntity",
    "EntityKind",
    "NamedEntity",
    "PersonEntity",
    # Derived views
    "AccountBreakdownEntry",
    "CurrencyRollup",
    "DashboardSnapshot",
    "DebtPaymentStatus",
    "EvolutionDataPoint",
    "InvestmentPerformance",
    "PaymentStatus",
    "TopAccount",
    # Helpers
    "round_money",
    "utc_now",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
