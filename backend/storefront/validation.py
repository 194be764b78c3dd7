# backend/storefront/validation.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# Maximum price: 9,999,999.99 in the catalog currency
# Anything larger is a typo in the admin form, not a real price
MAX_PRICE = 9_999_999.99


class StorageUnavailableError(RuntimeError):
    """The key-value medium itself failed (I/O). Caller should retry."""


class ValidationError(ValueError):
    """400-level input problem, safe to show to the user."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., email already registered)."""


class AuthenticationError(ValueError):
    """401-level: unknown email or wrong password."""


class CardValidationError(ValidationError):
    """Payment card rejected before any state change."""

    def __init__(self, message: str, field: str = "card"):
        super().__init__(message)
        self.field = field


class CheckoutError(ValidationError):
    """Checkout could not start (e.g., empty cart)."""


@dataclass(frozen=True)
class PayloadPolicy:
    """
    Central policy layer for JSON payloads coming from the UI:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required when creating a record
    - list_fields: fields that accept a list or a comma-separated string
    - number_fields: fields coerced to float
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)
    list_fields: frozenset[str] = field(default_factory=frozenset)
    number_fields: frozenset[str] = field(default_factory=frozenset)


def as_string_list(value: Any) -> list[str]:
    """List stays a list of non-empty strings; "a, b" becomes ["a", "b"]."""
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def _coerce_number(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip().replace(",", ".")
        if not stripped:
            raise ValidationError(f"{key} must be a number")
        try:
            return float(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be a number")
    raise ValidationError(f"{key} must be a number")


def validate_payload(*, payload: Any, policy: PayloadPolicy, partial: bool) -> dict:
    """
    Validates + normalizes an incoming JSON object against a policy.
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True:  patch semantics (only provided keys are validated)
    """
    if not isinstance(payload, dict):
        raise ValidationError("JSON object body required")

    cleaned: dict = {}
    for key, value in payload.items():
        if key not in policy.writable_fields:
            continue
        if key in policy.number_fields and value is not None:
            cleaned[key] = _coerce_number(key, value)
        elif key in policy.list_fields:
            cleaned[key] = as_string_list(value)
        elif isinstance(value, str):
            cleaned[key] = value.strip()
        else:
            cleaned[key] = value

    if not partial:
        missing = sorted(
            k for k in policy.required_on_create
            if cleaned.get(k) is None or cleaned.get(k) == ""
        )
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    return cleaned


def enforce_rules_catalog(patch: dict) -> None:
    """Business rules on top of shape validation for catalog records."""
    if "price" in patch and patch["price"] is not None:
        price = patch["price"]
        if price < 0:
            raise ValidationError("price must be >= 0")
        if price > MAX_PRICE:
            raise ValidationError(f"price must be <= {MAX_PRICE:,.2f}")
    if "title" in patch and not (patch["title"] or "").strip():
        raise ValidationError("title cannot be empty")
    if "kind" in patch and patch["kind"] not in (None, "item", "panel"):
        raise ValidationError("kind must be 'item' or 'panel'")
