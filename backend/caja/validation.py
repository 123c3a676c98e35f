from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from .errors import ValidationError


# Largest amount accepted in one field: 999,999,999,999 units.
# Guards against overflow and obviously mistyped amounts.
MAX_AMOUNT = 999_999_999_999


def get_payload(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for money and quantities:
    - int (not bool) passes through
    - plain digit strings are parsed
    - floats, decimals, scientific notation and blanks are rejected
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def check_amount(value: int, field: str, *, minimum: int = 0) -> int:
    """Integer amount within [minimum, MAX_AMOUNT]."""
    amount = coerce_int(value, field)
    if amount < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    if amount > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}", field=field)
    return amount


def coerce_decimal(value: Any, field: str) -> Decimal:
    """Numeric input for rates and percentages (decimals allowed here)."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    normalized = str(value).strip().upper()
    if normalized not in allowed:
        raise ValidationError(f"Invalid {field}: {value}. Must be one of {allowed}", field=field)
    return normalized


def round_money(value: Decimal) -> int:
    """Round half-up to the smallest currency unit."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))
