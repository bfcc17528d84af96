"""
Field validation for auction creation and bid submission.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from auction.errors import ValidationError
from auction.models import ItemMeta, Party


# Amounts stay below this with at most two decimal places, so highest +
# increment is exact in the default 28-digit context.
MAX_AMOUNT = Decimal("1000000000000")
CENT = Decimal("0.01")

# One year; keeps end times representable and timers within TIMEOUT_MAX
MAX_DURATION_MINUTES = 366 * 24 * 60


def validate_money(field: str, value: Any) -> Decimal:
    """
    Parse a positive, finite decimal amount in whole cents.

    Accepts Decimal, int and numeric strings. Floats are converted through
    their string form so 10.1 stays 10.1. Booleans are rejected. The value
    is returned as given ("11" stays "11"); trailing zeros past the cents
    ("11.000") are accepted.
    """
    if value is None or value == "":
        raise ValidationError(field, "is required")
    if isinstance(value, bool):
        raise ValidationError(field, f"must be a number, got {value!r}")

    try:
        amount = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(field, f"must be a number, got {value!r}")

    if not amount.is_finite():
        raise ValidationError(field, f"must be finite, got {value!r}")
    if amount <= 0:
        raise ValidationError(field, f"must be positive, got {amount}")
    if amount >= MAX_AMOUNT:
        raise ValidationError(field, f"must be less than {MAX_AMOUNT}, got {amount}")
    if amount.quantize(CENT) != amount:
        raise ValidationError(field, f"must have at most 2 decimal places, got {amount}")
    return amount


def validate_duration(value: Any) -> int:
    """Duration in whole minutes, strictly positive and at most one year"""
    if value is None or value == "":
        raise ValidationError("duration", "is required")
    if isinstance(value, bool):
        raise ValidationError("duration", f"must be an integer, got {value!r}")
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError("duration", f"must be an integer, got {value!r}")
    if isinstance(value, (float, Decimal)) and minutes != value:
        raise ValidationError("duration", f"must be whole minutes, got {value!r}")
    if minutes <= 0:
        raise ValidationError("duration", f"must be positive, got {minutes}")
    if minutes > MAX_DURATION_MINUTES:
        raise ValidationError(
            "duration", f"must be at most {MAX_DURATION_MINUTES} minutes, got {minutes}"
        )
    return minutes


def validate_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "is required")
    return value.strip()


def validate_party(field: str, party: Optional[Party]) -> Party:
    """Both name and contact must be present"""
    if party is None:
        raise ValidationError(field, "is required")
    return Party(
        name=validate_text(f"{field}.name", party.name),
        contact=validate_text(f"{field}.contact", party.contact),
    )


def validate_item(item: Optional[ItemMeta]) -> ItemMeta:
    if item is None:
        raise ValidationError("item", "is required")
    description = item.description if isinstance(item.description, str) else ""
    return ItemMeta(name=validate_text("item.name", item.name), description=description)
