from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .money import to_cents
from .time_utils import parse_iso_date, parse_iso_datetime


# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate card number)."""


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


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

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
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

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


# =============================================================================
# REQUEST HELPERS
# =============================================================================

def json_body(data: Any) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def require_int(data: dict, key: str, *, minimum: int | None = None) -> int:
    if data.get(key) is None:
        raise ValidationError(f"{key} is required")
    value = coerce_int(key, data[key])
    if minimum is not None and value < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return value


def optional_int(data: dict, key: str, *, minimum: int | None = None) -> int | None:
    if data.get(key) is None:
        return None
    return require_int(data, key, minimum=minimum)


def amount_cents(data: dict, name: str, *, required: bool = True, allow_zero: bool = False) -> int | None:
    """
    Read a money amount as either "<name>_cents" (integer) or "<name>"
    (decimal, rounded half-up to the cent).
    """
    cents_key = f"{name}_cents"
    if data.get(cents_key) is not None:
        cents = coerce_int(cents_key, data[cents_key])
    elif data.get(name) is not None:
        raw = data[name]
        if isinstance(raw, bool):
            raise ValidationError(f"{name} must be a number")
        try:
            cents = to_cents(raw)
        except ValueError:
            raise ValidationError(f"{name} must be a number")
    elif required:
        raise ValidationError(f"{cents_key} is required")
    else:
        return None

    if cents < 0 or (cents == 0 and not allow_zero):
        label = "cannot be negative" if allow_zero else "must be greater than 0"
        raise ValidationError(f"{name} {label}")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{name} exceeds maximum allowed amount")
    return cents


def parse_pagination(args) -> tuple[int, int, int]:
    """Return (page, limit, offset); page >= 1, 1 <= limit <= 100."""
    try:
        page = int(args.get("page", 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", DEFAULT_PAGE_SIZE))
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    return page, limit, (page - 1) * limit


def pagination_meta(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def optional_date(data, key: str):
    """Read an optional "YYYY-MM-DD" value from a JSON body or query args."""
    raw = data.get(key)
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{key} must be a YYYY-MM-DD date")
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise ValidationError(f"{key} must be a YYYY-MM-DD date")


def optional_bool(args, key: str) -> bool:
    return str(args.get(key, "")).strip().lower() in {"1", "true", "yes", "on"}
