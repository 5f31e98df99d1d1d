"""
Argument Validation

DESIGN DECISION: Every public ledger operation checks its arguments
before touching storage. A missing id or a non-numeric amount is a
caller bug: it is reported immediately and never retried.

Two kinds of problems are distinguished:
- MISSING: a required id/amount was not supplied at all
- INVALID: something was supplied but cannot be used (bad number,
  malformed item draft, attempt to change an item's kind)

IMPORTANT: Validation NEVER silently fixes issues.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError

from finance_tracker.models.items import Item, parse_item


class InvalidArgumentError(ValueError):
    """An argument was supplied but cannot be used."""

    kind = "invalid_argument"


class MissingArgumentError(InvalidArgumentError):
    """A required argument was not supplied."""

    kind = "missing_argument"


def require_id(value: Optional[str], name: str = "id") -> str:
    """Return the stripped id, or raise MissingArgumentError if it is empty."""
    if value is None or not str(value).strip():
        raise MissingArgumentError(f"Missing {name}")
    return str(value).strip()


def require_amount(value: Any, name: str = "amount") -> Decimal:
    """
    Convert an amount to Decimal.

    Floats go through str() so 0.1 stays 0.1 rather than its binary expansion.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MissingArgumentError(f"Missing {name}")
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
    if not amount.is_finite():
        raise InvalidArgumentError(f"{name} must be finite, got {value!r}")
    return amount


def validate_item_draft(data: Any) -> Item:
    """
    Build an item from user input.

    Raises:
        MissingArgumentError: if no draft was given
        InvalidArgumentError: if the draft does not describe a valid item
    """
    if data is None:
        raise MissingArgumentError("Missing item")
    try:
        return parse_item(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'item'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidArgumentError(f"Invalid item: {problems}") from e
