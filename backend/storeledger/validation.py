from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any


# Largest single amount accepted from a client: 9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem. Raised before anything is persisted."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupError):
    """404-level missing entity."""


class ParseError(ValidationError):
    """Quantity text that cannot be read for the given unit type."""

    MALFORMED = "Malformed"

    def __init__(self, message: str, *, text: str | None = None, unit_type: str | None = None):
        super().__init__(message, details={"text": text, "unit_type": unit_type, "reason": self.MALFORMED})
        self.reason = self.MALFORMED
        self.text = text
        self.unit_type = unit_type


class InsufficientStockError(ValidationError):
    """Requested quantity exceeds what is on hand."""

    def __init__(self, message: str, evaluation: Any = None, details: dict | None = None):
        super().__init__(message, details=details)
        self.evaluation = evaluation


def require_cents(value: Any, field: str, *, allow_zero: bool = False, allow_negative: bool = False) -> int:
    """
    Coerce a client-supplied minor-unit amount to int.

    Floats, booleans, scientific notation and decimal points are refused so
    that binary floats never reach money arithmetic.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer amount in cents")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer amount in cents, not a float")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer amount in cents")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer amount in cents")
        try:
            value = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer amount in cents")
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in cents")

    if value < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if value == 0 and not allow_zero:
        raise ValidationError(f"{field} must be greater than zero")
    if abs(value) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS} cents")
    return value


def require_decimal(value: Any, field: str) -> Decimal:
    """Coerce an int or numeric string to Decimal; floats are refused."""
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be an integer or a decimal string")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, str):
        try:
            dec = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be an integer or a decimal string")
    if not dec.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return dec


def require_flag(value: Any, field: str, *, default: bool = False) -> bool:
    """Accept only JSON true/false; a string like "false" is refused, not read as truthy."""
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false")
    return value


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None or not str(value).strip():
        return None
    return require_text(value, field, max_length=max_length)


def require_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")
