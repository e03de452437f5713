"""Data type coercion for import values."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import phonenumbers
from dateutil import parser as date_parser

from importhub.core.config import settings


@dataclass
class CoercionResult:
    """Result of coercion operation."""

    success: bool
    coerced_value: Any = None
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None


BOOLEAN_TRUE = ["true", "yes", "1", "y", "on", "enabled", "active"]
BOOLEAN_FALSE = ["false", "no", "0", "n", "off", "disabled", "inactive"]

CURRENCY_SYMBOLS = "€$£¥₹"

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+'-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# Warning code per field type for values that are kept or dropped with a warning
WARNING_CODES = {
    "enum": "INVALID_ENUM",
    "phone": "PHONE_FORMAT",
}


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def to_utc(value: datetime) -> datetime:
    """Make a datetime UTC-aware; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_datetime(value: Any, hints: Optional[dict] = None) -> CoercionResult:
    """Coerce value to a UTC-aware datetime."""
    if isinstance(value, datetime):
        return CoercionResult(success=True, coerced_value=to_utc(value))

    str_value = str(value).strip()
    dayfirst = (hints or {}).get("dayfirst", settings.import_date_dayfirst)

    try:
        parsed = date_parser.parse(str_value, dayfirst=dayfirst)
    except (ValueError, OverflowError, TypeError):
        return CoercionResult(
            success=False,
            error=f"Could not parse date: {str_value}",
        )

    return CoercionResult(success=True, coerced_value=to_utc(parsed))


def coerce_number(value: Any, hints: Optional[dict] = None) -> CoercionResult:
    """Coerce value to int when whole, float otherwise."""
    if isinstance(value, bool):
        return CoercionResult(success=False, error=f"Could not parse number: {value}")
    if isinstance(value, (int, float)):
        return CoercionResult(success=True, coerced_value=value)

    str_value = str(value).strip()
    cleaned = str_value
    for symbol in CURRENCY_SYMBOLS:
        cleaned = cleaned.replace(symbol, "")
    cleaned = cleaned.replace(",", "").replace(" ", "")

    try:
        number = float(cleaned)
    except (ValueError, TypeError):
        return CoercionResult(
            success=False,
            error=f"Could not parse number: {str_value}",
        )

    if number != number or number in (float("inf"), float("-inf")):
        return CoercionResult(success=False, error=f"Could not parse number: {str_value}")
    if number.is_integer():
        return CoercionResult(success=True, coerced_value=int(number))
    return CoercionResult(success=True, coerced_value=number)


def coerce_boolean(value: Any, hints: Optional[dict] = None) -> CoercionResult:
    """Coerce value to boolean."""
    if isinstance(value, bool):
        return CoercionResult(success=True, coerced_value=value)

    str_value = str(value).strip().lower()

    if str_value in BOOLEAN_TRUE:
        return CoercionResult(success=True, coerced_value=True)
    elif str_value in BOOLEAN_FALSE:
        return CoercionResult(success=True, coerced_value=False)

    return CoercionResult(
        success=False,
        error=f"Could not parse boolean: {str_value}",
    )


def coerce_email(value: Any, hints: Optional[dict] = None) -> CoercionResult:
    """Coerce and validate email."""
    str_value = str(value).strip().lower()

    if not EMAIL_PATTERN.match(str_value):
        return CoercionResult(
            success=False,
            error=f"Invalid email format: {str_value}",
        )

    return CoercionResult(success=True, coerced_value=str_value)


def coerce_phone(value: Any, hints: Optional[dict] = None) -> CoercionResult:
    """Normalize a phone number to E.164.

    Numbers phonenumbers cannot validate are kept as given, with a warning.
    """
    str_value = str(value).strip()
    region = (hints or {}).get("region", settings.import_default_phone_region)

    try:
        parsed = phonenumbers.parse(str_value, region)
    except phonenumbers.NumberParseException:
        return CoercionResult(
            success=True,
            coerced_value=str_value,
            warnings=[f"Could not parse phone number: {str_value}"],
        )

    if not phonenumbers.is_valid_number(parsed):
        return CoercionResult(
            success=True,
            coerced_value=str_value,
            warnings=[f"Phone number may be invalid: {str_value}"],
        )

    formatted = phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)
    return CoercionResult(success=True, coerced_value=formatted)


def _enum_token(value: str) -> str:
    return re.sub(r"[\s-]+", "_", value.strip().lower())


def coerce_enum(value: Any, enum_values: Sequence[str], hints: Optional[dict] = None) -> CoercionResult:
    """Match value against the allowed values, ignoring case and space/hyphen vs underscore.

    Unknown values are dropped with a warning so the column default applies.
    """
    str_value = str(value).strip()
    token = _enum_token(str_value)

    for allowed in enum_values:
        if _enum_token(allowed) == token:
            return CoercionResult(success=True, coerced_value=allowed)

    return CoercionResult(
        success=True,
        coerced_value=None,
        warnings=[
            f"Invalid value '{str_value}'. Valid values: {', '.join(enum_values)}"
        ],
    )


def coerce_string(value: Any, hints: Optional[dict] = None) -> CoercionResult:
    """Coerce value to string."""
    str_value = str(value).strip()
    max_length = hints.get("max_length") if hints else None
    if max_length and len(str_value) > max_length:
        return CoercionResult(
            success=False,
            error=f"String too long: {len(str_value)} > {max_length}",
        )

    return CoercionResult(success=True, coerced_value=str_value)


# Type coercion registry
COERCION_FUNCTIONS = {
    "datetime": coerce_datetime,
    "number": coerce_number,
    "boolean": coerce_boolean,
    "email": coerce_email,
    "phone": coerce_phone,
    "string": coerce_string,
}


def coerce_value(
    value: Any, target_type: str, hints: Optional[dict] = None
) -> CoercionResult:
    """
    Coerce value to target type.

    Blank values coerce to None for every type; whether a field may be
    blank is decided by the required-field check, not here.

    Args:
        value: Value to coerce
        target_type: Catalog field type ("string", "number", "datetime",
            "enum", "boolean", "email", "phone")
        hints: Additional hints (e.g. {"enum_values": (...)}, {"dayfirst": True})

    Returns:
        CoercionResult with success status and coerced value
    """
    if is_blank(value):
        return CoercionResult(success=True, coerced_value=None)

    if target_type == "enum":
        enum_values = (hints or {}).get("enum_values")
        if not enum_values:
            return CoercionResult(
                success=False,
                error="enum_values must be provided in hints for enum coercion",
            )
        return coerce_enum(value, enum_values, hints)

    coercion_func = COERCION_FUNCTIONS.get(target_type, coerce_string)
    return coercion_func(value, hints)
