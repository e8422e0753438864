"""Input validation and sanitisation helpers shared by the route modules."""

from __future__ import annotations

import math
import re
from typing import Any

EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
PHONE_REGEX = re.compile(r"^[\d\s\-\(\)\+\.]+$")
INVOICE_NUMBER_REGEX = re.compile(r"^[a-zA-Z0-9\-_]+$")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

MAX_HOURLY_RATE = 1000
MAX_GRACE_PERIOD_MINUTES = 720


class ValidationError(ValueError):
    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


def assert_valid(condition: bool, message: str, field: str | None = None) -> None:
    if not condition:
        raise ValidationError(message, field)


def is_valid_email(email: Any) -> bool:
    if not email or not isinstance(email, str):
        return False
    if len(email) > 254:
        return False
    return bool(EMAIL_REGEX.match(normalize_email(email)))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def sanitize_string(value: Any) -> str:
    """Strip null bytes and control characters, keeping tabs and newlines."""
    if not value or not isinstance(value, str):
        return ""
    return _CONTROL_CHARS.sub("", value.replace("\0", "")).strip()


def is_valid_number(value: Any, minimum: float | None = None, maximum: float | None = None) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return False
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


def is_valid_integer(value: Any, minimum: float | None = None, maximum: float | None = None) -> bool:
    return is_valid_number(value, minimum, maximum) and float(value).is_integer()


def is_valid_phone(phone: Any) -> bool:
    if not phone or not isinstance(phone, str):
        return False
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 10 or len(digits) > 15:
        return False
    return bool(PHONE_REGEX.match(phone))


def normalize_phone(phone: str) -> str:
    digits = re.sub(r"\D", "", phone)
    return f"+{digits}" if phone.startswith("+") else digits


def validate_hourly_rate(rate: Any) -> None:
    assert_valid(
        is_valid_number(rate, 0, MAX_HOURLY_RATE),
        f"Hourly rate must be between $0 and ${MAX_HOURLY_RATE}",
        "hourlyRate",
    )


def validate_grace_period(minutes: Any) -> None:
    assert_valid(
        is_valid_integer(minutes, 0, MAX_GRACE_PERIOD_MINUTES),
        f"Grace period must be between 0 and {MAX_GRACE_PERIOD_MINUTES} minutes",
        "gracePeriodMinutes",
    )


def validate_invoice_number(invoice_number: str) -> None:
    assert_valid(
        bool(invoice_number) and bool(INVOICE_NUMBER_REGEX.match(invoice_number)),
        "Invoice number can only contain letters, numbers, dashes, and underscores",
        "invoiceNumber",
    )
    assert_valid(
        1 <= len(invoice_number.strip()) <= 50,
        "Invoice number must be between 1 and 50 characters",
        "invoiceNumber",
    )
