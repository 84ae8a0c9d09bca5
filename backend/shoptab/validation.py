from __future__ import annotations
import re
from datetime import datetime
from decimal import Decimal

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, String, Text, DateTime, func
from sqlalchemy.orm import DeclarativeMeta

from shoptab.errors import ValidationError
from shoptab.money import MAX_AMOUNT_CENTS, to_quantity
from shoptab.time_utils import parse_iso_datetime


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    # bool is an int subclass; reject it along with floats and "1e5"
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    """Validate a cents amount: integer, non-negative (or positive), bounded."""
    cents = coerce_int(value, field)
    if cents < 0 or (not allow_zero and cents == 0):
        raise ValidationError(f"{field} must be {'>= 0' if allow_zero else '> 0'}", {"field": field})
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}", {"field": field})
    return cents


def coerce_quantity(value: Any, field: str = "quantity") -> Decimal:
    """Quantities are positive decimals (weighed goods are allowed)."""
    if value is None:
        raise ValidationError(f"{field} is required", {"field": field})
    try:
        qty = to_quantity(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number", {"field": field})
    if qty <= 0:
        raise ValidationError(f"{field} must be greater than 0", {"field": field})
    return qty


def coerce_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    normalized = str(value or "").strip().upper()
    if normalized not in allowed:
        raise ValidationError(
            f"Invalid {field}: {value}. Must be one of {allowed}",
            {"field": field, "allowed": allowed},
        )
    return normalized


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"field": field})


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if col.key.endswith("_cents"):
            return coerce_cents(value, col.key)
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


# Separators people type into phone numbers; stripped on both sides of a match
PHONE_SEPARATORS = (" ", "-", "(", ")")


def strip_phone(value: Any) -> str:
    return re.sub(r"[\s\-()]", "", str(value or ""))


def phone_match_key(column):
    """SQL expression of a phone column with PHONE_SEPARATORS removed."""
    expr = column
    for sep in PHONE_SEPARATORS:
        expr = func.replace(expr, sep, "")
    return expr
