"""
Audit Logger

DESIGN DECISION: Every ledger operation is logged.
This provides:
1. Traceability of every balance change
2. Debugging capability when a compound operation aborts
3. A history the user can inspect

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finance_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_log table (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_item_created(
        self,
        user_id: str,
        item_id: str,
        item_type: str,
        correlation_id: UUID,
    ) -> None:
        """Log item creation."""
        await self.log(
            AuditEventBuilder.item_created(user_id, item_id, item_type, correlation_id)
        )

    async def log_item_updated(
        self,
        user_id: str,
        item_id: str,
        item_type: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.item_updated(user_id, item_id, item_type, correlation_id)
        )

    async def log_item_deleted(
        self,
        user_id: str,
        item_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.item_deleted(user_id, item_id, correlation_id))

    async def log_archive_changed(
        self,
        user_id: str,
        item_id: str,
        archived: bool,
        correlation_id: UUID,
    ) -> None:
        """Log archive / unarchive."""
        await self.log(
            AuditEventBuilder.item_archive_changed(user_id, item_id, archived, correlation_id)
        )

    async def log_balance_adjusted(
        self,
        user_id: str,
        item_id: str,
        new_balance: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.balance_adjusted(user_id, item_id, new_balance, correlation_id)
        )

    async def log_transaction_created(
        self,
        user_id: str,
        transaction_id: str,
        item_id: str,
        amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.transaction_created(
                user_id, transaction_id, item_id, amount, correlation_id
            )
        )

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.transaction_deleted(user_id, transaction_id, correlation_id)
        )

    async def log_debt_payment(
        self,
        user_id: str,
        transaction_id: str,
        debt_id: str,
        amount: Decimal,
        correlation_id: UUID,
    ) -> None:
        """Log a payment against a debt."""
        await self.log(
            AuditEventBuilder.debt_payment_recorded(
                user_id, transaction_id, debt_id, amount, correlation_id
            )
        )

    async def log_value_update_added(
        self,
        user_id: str,
        update_id: str,
        investment_id: str,
        value: Decimal,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.value_update_added(
                user_id, update_id, investment_id, value, correlation_id
            )
        )

    async def log_value_update_deleted(
        self,
        user_id: str,
        update_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.value_update_deleted(user_id, update_id, correlation_id)
        )

    async def log_investment_finish_changed(
        self,
        user_id: str,
        investment_id: str,
        finished: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.investment_finish_changed(
                user_id, investment_id, finished, correlation_id
            )
        )

    async def log_entity_links_backfilled(
        self,
        user_id: str,
        counts: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(
            AuditEventBuilder.entity_links_backfilled(user_id, counts, correlation_id)
        )

    async def log_operation_failed(
        self,
        user_id: Optional[str],
        operation: str,
        error_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a public operation that raised."""
        await self.log(
            AuditEventBuilder.operation_failed(
                user_id, operation, error_kind, error_message, correlation_id
            )
        )

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., recording a payment).
    Pass it through all subsequent operations.
    """
    return uuid4()
