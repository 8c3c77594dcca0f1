"""Input validators shared by the order and receiving workflows."""

import re
from datetime import date, timedelta

from core.config import get_settings
from core.errors import ValidationError

_GTIN_PATTERN = re.compile(r"^(\d{8}|\d{12}|\d{13}|\d{14})$")


def validate_quantity(quantity, *, allow_zero: bool = False, field: str = "quantity") -> int:
    """Whole number, > 0 (or >= 0 with ``allow_zero``), at most the configured line maximum."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Quantity must be a whole number", {"field": field})
    if allow_zero:
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative", {"field": field})
    elif quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", {"field": field})

    maximum = get_settings().receipt_line_max_quantity
    if quantity > maximum:
        raise ValidationError(f"Quantity must not exceed {maximum}", {"field": field})
    return quantity


def validate_price(price: float | None) -> float | None:
    if price is None:
        return None
    if price < 0:
        raise ValidationError("Price cannot be negative", {"field": "unit_price"})
    return float(price)


def validate_length(value: str | None, field: str, max_length: int) -> str | None:
    if value is None:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} must not exceed {max_length} characters", {"field": field})
    return value


def validate_expiry_date(expiry: date | None, today: date | None = None) -> date | None:
    """Reject expiry dates more than a year past or beyond the configured horizon."""
    if expiry is None:
        return None
    settings = get_settings()
    today = today or date.today()
    earliest = today - timedelta(days=settings.expiry_min_past_days)
    try:
        latest = today.replace(year=today.year + settings.expiry_max_future_years)
    except ValueError:  # Feb 29 → Feb 28
        latest = today.replace(year=today.year + settings.expiry_max_future_years, day=28)

    if expiry < earliest:
        raise ValidationError("Expiry date is too far in the past", {"field": "expiry_date"})
    if expiry > latest:
        raise ValidationError("Expiry date is too far in the future", {"field": "expiry_date"})
    return expiry


def is_valid_gtin(gtin: str | None) -> bool:
    """GTIN-8/12/13/14 with a correct GS1 check digit."""
    if not gtin:
        return False
    cleaned = re.sub(r"[\s-]", "", gtin)
    if not _GTIN_PATTERN.match(cleaned):
        return False

    digits = [int(c) for c in cleaned]
    check_digit = digits.pop()
    total = 0
    for i, digit in enumerate(digits):
        # weights alternate 3,1,3... starting from the rightmost payload digit
        weight = 3 if (len(digits) - i) % 2 == 1 else 1
        total += digit * weight
    return (10 - total % 10) % 10 == check_digit


def normalize_gtin(gtin: str) -> str:
    if not is_valid_gtin(gtin):
        raise ValidationError(
            "GTIN format is invalid. Must be a valid GTIN-8, GTIN-12, GTIN-13, or GTIN-14 with correct check digit.",
            {"field": "gtin"},
        )
    return re.sub(r"[\s-]", "", gtin)
