"""Argument validation package."""

from finance_tracker.validation.validator import (
    InvalidArgumentError,
    MissingArgumentError,
    require_amount,
    require_id,
    validate_item_draft,
)

__all__ = [
    "InvalidArgumentError",
    "MissingArgumentError",
    "require_amount",
    "require_id",
    "validate_item_draft",
]
