"""
Audit Models for Finance Tracker

Every mutation of the ledger is logged for audit purposes.
This provides:
1. Traceability of every balance change back to a user action
2. Debugging information when a compound operation aborts
3. A history the user can inspect next to the transaction log

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each public ledger operation has its own event type.
    """
    # Items
    ITEM_CREATED = "item_created"
    ITEM_UPDATED = "item_updated"
    ITEM_DELETED = "item_deleted"
    ITEM_ARCHIVED = "item_archived"
    ITEM_UNARCHIVED = "item_unarchived"

    # Balance log
    BALANCE_ADJUSTED = "balance_adjusted"
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_DELETED = "transaction_deleted"
    DEBT_PAYMENT_RECORDED = "debt_payment_recorded"

    # Investments
    VALUE_UPDATE_ADDED = "value_update_added"
    VALUE_UPDATE_DELETED = "value_update_deleted"
    INVESTMENT_FINISHED = "investment_finished"
    INVESTMENT_UNFINISHED = "investment_unfinished"

    # Entities
    ENTITY_LINKS_BACKFILLED = "entity_links_backfilled"

    # Failures
    OPERATION_FAILED = "operation_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger operation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the ledger the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'item', 'transaction', 'value_update')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - one id per public operation
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate the events of one operation"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=True,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.item_created(user_id, item_id, "account", correlation_id)
        event = AuditEventBuilder.operation_failed(user_id, "delete_item", "not_found", msg, correlation_id)
    """

    @staticmethod
    def item_created(
        user_id: str,
        item_id: str,
        item_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_CREATED,
            user_id=user_id,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Created {item_type} item",
            details={"item_type": item_type},
        )

    @staticmethod
    def item_updated(
        user_id: str,
        item_id: str,
        item_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_UPDATED,
            user_id=user_id,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Updated {item_type} item",
            details={"item_type": item_type},
        )

    @staticmethod
    def item_deleted(
        user_id: str,
        item_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ITEM_DELETED,
            user_id=user_id,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description="Deleted item and its transactions",
        )

    @staticmethod
    def item_archive_changed(
        user_id: str,
        item_id: str,
        archived: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.ITEM_ARCHIVED
                if archived
                else AuditEventType.ITEM_UNARCHIVED
            ),
            user_id=user_id,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description="Item archived" if archived else "Item restored",
        )

    @staticmethod
    def balance_adjusted(
        user_id: str,
        item_id: str,
        new_balance: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_ADJUSTED,
            user_id=user_id,
            entity_type="item",
            entity_id=item_id,
            correlation_id=correlation_id,
            description=f"Balance set to {new_balance}",
            details={"new_balance": str(new_balance)},
        )

    @staticmethod
    def transaction_created(
        user_id: str,
        transaction_id: str,
        item_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction of {amount} recorded",
            details={"item_id": item_id, "amount": str(amount)},
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction reversed",
        )

    @staticmethod
    def debt_payment_recorded(
        user_id: str,
        transaction_id: str,
        debt_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEBT_PAYMENT_RECORDED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Debt payment of {amount} recorded",
            details={"debt_id": debt_id, "amount": str(amount)},
        )

    @staticmethod
    def value_update_added(
        user_id: str,
        update_id: str,
        investment_id: str,
        value: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALUE_UPDATE_ADDED,
            user_id=user_id,
            entity_type="value_update",
            entity_id=update_id,
            correlation_id=correlation_id,
            description=f"Investment valued at {value}",
            details={"investment_id": investment_id, "value": str(value)},
        )

    @staticmethod
    def value_update_deleted(
        user_id: str,
        update_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALUE_UPDATE_DELETED,
            user_id=user_id,
            entity_type="value_update",
            entity_id=update_id,
            correlation_id=correlation_id,
            description="Investment value update removed",
        )

    @staticmethod
    def investment_finish_changed(
        user_id: str,
        investment_id: str,
        finished: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.INVESTMENT_FINISHED
                if finished
                else AuditEventType.INVESTMENT_UNFINISHED
            ),
            user_id=user_id,
            entity_type="item",
            entity_id=investment_id,
            correlation_id=correlation_id,
            description="Investment finished" if finished else "Investment reopened",
        )

    @staticmethod
    def entity_links_backfilled(
        user_id: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTITY_LINKS_BACKFILLED,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Linked {counts.get('items_updated', 0)} items to entities",
            details=counts,
        )

    @staticmethod
    def operation_failed(
        user_id: Optional[str],
        operation: str,
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Operation failed: {operation}",
            error_code=error_kind,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
            is_user_action=False,
        )
