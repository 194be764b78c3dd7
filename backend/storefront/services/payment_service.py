# Overview: Service-layer card validation for checkout and the wallet.

"""
Payment Card Validation

WHY: Checkout must reject a bad card before anything is written, so the
cart, wallet and order history never see a half-finished payment.

RULES:
- Card number: digits only after stripping separators; 15 digits for Amex,
  16 for every other brand; must pass the Luhn checksum.
- Expiry: "MM/YY", month 1..12, not before the current month.
- CVV: 4 digits for Amex, 3 for every other brand.
- Only brand, holder, last4 and expiry are ever stored; the full number
  and CVV are discarded after validation.
"""

from __future__ import annotations

import re
import secrets
import time
from datetime import datetime

from ..validation import CardValidationError
from storefront.time_utils import expiry_not_past, parse_expiry


# =============================================================================
# CARD BRANDS (CONSTANTS)
# =============================================================================

BRAND_VISA = "Visa"
BRAND_MASTERCARD = "Mastercard"
BRAND_AMEX = "Amex"
BRAND_TROY = "Troy"
BRAND_UNKNOWN = "Unknown"

VALID_BRANDS = [
    BRAND_VISA,
    BRAND_MASTERCARD,
    BRAND_AMEX,
    BRAND_TROY,
    BRAND_UNKNOWN,
]

_MASTERCARD_RE = re.compile(r"^(5[1-5]|2(2[2-9]|[3-6]\d|7[01]|720))")
_AMEX_RE = re.compile(r"^3[47]")
_TROY_RE = re.compile(r"^(?:9792|65|36|2205|979)")


def only_digits(value) -> str:
    return re.sub(r"\D+", "", str(value or ""))


def detect_brand(digits: str) -> str:
    digits = only_digits(digits)
    if digits.startswith("4"):
        return BRAND_VISA
    if _MASTERCARD_RE.match(digits):
        return BRAND_MASTERCARD
    if _AMEX_RE.match(digits):
        return BRAND_AMEX
    if _TROY_RE.match(digits):
        return BRAND_TROY
    return BRAND_UNKNOWN


def luhn_ok(digits: str) -> bool:
    digits = only_digits(digits)
    if not digits:
        return False
    total = 0
    for i, ch in enumerate(reversed(digits)):
        n = int(ch)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def number_length_for(brand: str) -> int:
    return 15 if brand == BRAND_AMEX else 16


def cvv_length_for(brand: str) -> int:
    return 4 if brand == BRAND_AMEX else 3


def new_card_id() -> str:
    return f"card_{int(time.time() * 1000)}_{secrets.token_hex(2)}"


# =============================================================================
# VALIDATION
# =============================================================================

def validate_new_card(
    *,
    number: str,
    expiry: str,
    cvv: str,
    holder: str | None,
    now: datetime | None = None,
) -> dict:
    """
    Validate a freshly typed card and return its storable summary.

    Returns:
        {"id", "brand", "holder", "last4", "expiry"}

    Raises:
        CardValidationError: field is one of number / expiry / cvv
    """
    digits = only_digits(number)
    brand = detect_brand(digits)

    expected = number_length_for(brand)
    if len(digits) != expected:
        raise CardValidationError(f"Card number must be {expected} digits", field="number")
    if not luhn_ok(digits):
        raise CardValidationError("Card number looks invalid", field="number")

    expiry = str(expiry or "").strip()
    if parse_expiry(expiry) is None:
        raise CardValidationError("Expiry must be MM/YY", field="expiry")
    if not expiry_not_past(expiry, now):
        raise CardValidationError("Card has expired", field="expiry")

    cvv_digits = only_digits(cvv)
    expected_cvv = cvv_length_for(brand)
    if len(cvv_digits) != expected_cvv or len(str(cvv or "").strip()) != expected_cvv:
        raise CardValidationError(f"CVV must be {expected_cvv} digits", field="cvv")

    return {
        "id": new_card_id(),
        "brand": brand,
        "holder": (holder or "").strip() or "Customer",
        "last4": digits[-4:],
        "expiry": expiry,
    }


def resolve_payment(
    selection: dict,
    saved_cards: list[dict],
    *,
    default_holder: str | None = None,
    now: datetime | None = None,
) -> tuple[dict, dict | None]:
    """
    Turn the checkout payment selection into an order payment summary.

    selection is either {"cardId": "<saved id>"} or a new card
    {"number", "expiry", "cvv", "holder"?}.

    Returns:
        (payment summary {"brand","last4","holder","expiry"}, new card or None)
    """
    if not isinstance(selection, dict):
        raise CardValidationError("Payment details required")

    card_id = selection.get("cardId")
    if card_id:
        card = next((c for c in saved_cards if c.get("id") == card_id), None)
        if card is None:
            raise CardValidationError("Saved card not found", field="card")
        if not expiry_not_past(card.get("expiry"), now):
            raise CardValidationError("Saved card has expired", field="expiry")
        summary = {
            "brand": card.get("brand") or BRAND_UNKNOWN,
            "last4": card.get("last4") or "",
            "holder": card.get("holder") or "",
            "expiry": card.get("expiry") or "",
        }
        return summary, None

    card = validate_new_card(
        number=selection.get("number", ""),
        expiry=selection.get("expiry", ""),
        cvv=selection.get("cvv", ""),
        holder=selection.get("holder") or default_holder,
        now=now,
    )
    summary = {k: card[k] for k in ("brand", "last4", "holder", "expiry")}
    return summary, card
