from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum price accepted on any money field: 9,999,999.99
MAX_MONEY = 9_999_999.99

# Product attribute keys with a fixed meaning
RESERVED_ATTRIBUTE_KEYS = {"mainImage", "Image", "Colour"}

_SCALARS = (str, int, float, bool)


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: frozenset[str] = frozenset()


def check_payload(payload: Any, policy: PayloadPolicy, *, partial: bool = False) -> dict:
    """
    Reject non-object bodies, unknown fields and (on create) missing fields.

    Returns the payload restricted to writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(k for k in payload if k not in policy.writable_fields)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}", details={"fields": unknown})

    if not partial:
        missing = sorted(f for f in policy.required_on_create if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", details={"fields": missing})

    return dict(payload)


def coerce_int(value: Any, field: str, *, minimum: int | None = None, required: bool = True) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal", details={"field": field})
        result = int(value)
    elif isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15") and decimals (e.g., "12.5")
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", details={"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field, "value": result})
    return result


def coerce_money(value: Any, field: str, *, required: bool = True, allow_negative: bool = False) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", details={"field": field})
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={"field": field})

    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})

    if amount != amount or amount in (float("inf"), float("-inf")):
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    if not allow_negative and amount < 0:
        raise ValidationError(f"{field} must be >= 0", details={"field": field, "value": amount})
    if abs(amount) > MAX_MONEY:
        raise ValidationError(f"{field} cannot exceed {MAX_MONEY:,.2f}", details={"field": field})
    return round(amount, 2)


def coerce_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def coerce_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, (str, datetime)):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            pass
    raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field})


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required", details={"field": field})
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", details={"field": field})
    return text


def validate_attributes(attributes: Any) -> dict:
    """
    Product attributes: str -> scalar | list[scalar].

    Reserved keys carry fixed shapes: mainImage and Colour are strings,
    Image is a string or a list of strings.
    """
    if attributes is None:
        return {}
    if not isinstance(attributes, dict):
        raise ValidationError("attributes must be an object", details={"field": "attributes"})

    cleaned: dict = {}
    for key, value in attributes.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("attribute names must be non-empty strings", details={"field": "attributes"})

        if key in ("mainImage", "Colour"):
            if not isinstance(value, str):
                raise ValidationError(f"attribute {key} must be a string", details={"field": key})
        elif key == "Image":
            if isinstance(value, list):
                if not all(isinstance(v, str) for v in value):
                    raise ValidationError("attribute Image must be a string or list of strings", details={"field": key})
            elif not isinstance(value, str):
                raise ValidationError("attribute Image must be a string or list of strings", details={"field": key})
        elif isinstance(value, list):
            if not all(isinstance(v, _SCALARS) for v in value):
                raise ValidationError(f"attribute {key} must hold scalars", details={"field": key})
        elif value is not None and not isinstance(value, _SCALARS):
            raise ValidationError(f"attribute {key} must be a scalar or list of scalars", details={"field": key})

        cleaned[key] = value
    return cleaned
