from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError


# Maximum money value: 9,999,999,999,999.99 (Numeric(15, 2))
MAX_MONEY = Decimal("9999999999999.99")


def require_dict(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def require_str(payload: dict, key: str, *, max_length: int = 255) -> str:
    """Required, non-blank string field (whitespace trimmed)."""
    value = optional_str(payload, key, max_length=max_length)
    if value is None:
        raise ValidationError(f"{key} is required")
    return value


def optional_str(payload: dict, key: str, *, max_length: int | None = 255) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if isinstance(raw, (dict, list)):
        raise ValidationError(f"{key} must be a string")
    value = str(raw).strip()
    if not value:
        return None
    if max_length and len(value) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return value


def coerce_int(value: Any, key: str) -> int:
    """
    Strict integer coercion: rejects floats, bools, decimals and
    scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def require_int(payload: dict, key: str, *, minimum: int | None = None) -> int:
    if payload.get(key) is None:
        raise ValidationError(f"{key} is required")
    value = coerce_int(payload[key], key)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def optional_int(payload: dict, key: str) -> int | None:
    if payload.get(key) in (None, ""):
        return None
    return coerce_int(payload[key], key)


def require_money(payload: dict, key: str) -> Decimal:
    """Non-negative amount with at most two decimal places."""
    raw = payload.get(key)
    if raw is None or raw == "":
        raise ValidationError(f"{key} is required")
    if isinstance(raw, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number")
    if not value.is_finite():
        raise ValidationError(f"{key} must be a number")
    if value < 0:
        raise ValidationError(f"{key} must be >= 0")
    if value > MAX_MONEY:
        raise ValidationError(f"{key} cannot exceed {MAX_MONEY}")
    if value != value.quantize(Decimal("0.01")):
        raise ValidationError(f"{key} must have at most two decimal places")
    return value.quantize(Decimal("0.01"))


def optional_money(payload: dict, key: str, default: Decimal = Decimal("0.00")) -> Decimal:
    if payload.get(key) in (None, ""):
        return default
    return require_money(payload, key)


def require_int_list(payload: dict, key: str) -> list[int]:
    raw = payload.get(key)
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{key} must be a non-empty list")
    values = [coerce_int(v, f"{key}[]") for v in raw]
    if len(set(values)) != len(values):
        raise ValidationError(f"{key} contains duplicate ids")
    return values


def page_args(page: Any, per_page: Any, *, default_per_page: int, max_per_page: int) -> tuple[int, int]:
    page_num = coerce_int(page, "page") if page not in (None, "") else 1
    size = coerce_int(per_page, "per_page") if per_page not in (None, "") else default_per_page
    return max(page_num, 1), max(1, min(size, max_per_page))
