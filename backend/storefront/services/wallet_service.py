# Overview: Saved payment cards per user, with one default-card pointer.

"""
Wallet Store

Stored as a single value per user ("<ns>:<user>:cards"):

    {"list": [{"id", "brand", "holder", "last4", "expiry"}, ...],
     "defaultId": "<card id>" | null}

INVARIANT: defaultId is null or the id of a card in list. A stored value
that breaks this (stale app version, hand edits) reads back with a null
default rather than failing.
"""

from __future__ import annotations

import logging

from ..validation import CardValidationError, ValidationError
from .payment_service import VALID_BRANDS, BRAND_UNKNOWN, new_card_id, only_digits, validate_new_card
from .user_storage import NamespacedUserStore

logger = logging.getLogger(__name__)

CARDS_KEY = "cards"


def normalize_card(raw) -> dict | None:
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    brand = raw.get("brand")
    return {
        "id": str(raw["id"]),
        "brand": brand if brand in VALID_BRANDS else BRAND_UNKNOWN,
        "holder": str(raw.get("holder") or "").strip(),
        "last4": only_digits(raw.get("last4"))[-4:],
        "expiry": str(raw.get("expiry") or "").strip(),
    }


def normalize_wallet(value) -> dict:
    """Coerce any stored value into {"list": [...], "defaultId": ...}."""
    if isinstance(value, list):
        # Older builds stored a bare list of cards
        value = {"list": value, "defaultId": None}
    if not isinstance(value, dict) or not isinstance(value.get("list"), list):
        return {"list": [], "defaultId": None}

    cards = [c for c in (normalize_card(x) for x in value["list"]) if c]
    default_id = value.get("defaultId")
    if default_id not in {c["id"] for c in cards}:
        default_id = None
    return {"list": cards, "defaultId": default_id}


def _card_from_input(card: dict) -> dict:
    """Accept either a typed card (number/expiry/cvv) or a stored-card summary."""
    if not isinstance(card, dict):
        raise ValidationError("Card details required")
    if card.get("number"):
        return validate_new_card(
            number=card.get("number", ""),
            expiry=card.get("expiry", ""),
            cvv=card.get("cvv", ""),
            holder=card.get("holder"),
        )
    normalized = normalize_card({**card, "id": card.get("id") or new_card_id()})
    if len(normalized["last4"]) != 4:
        raise CardValidationError("last4 must be 4 digits", field="number")
    if not normalized["holder"]:
        raise CardValidationError("Card holder required", field="holder")
    return normalized


class WalletStore:
    def __init__(self, user_store: NamespacedUserStore):
        self.user_store = user_store

    async def get(self, user_id: str) -> dict:
        return normalize_wallet(await self.user_store.load(user_id, CARDS_KEY))

    async def list_cards(self, user_id: str) -> list[dict]:
        return (await self.get(user_id))["list"]

    async def add(self, user_id: str, card: dict, *, make_default: bool = False) -> dict:
        """
        Append a card. A saved card with the same last4 and holder is
        replaced rather than duplicated. The first card becomes default.

        Returns the new wallet; the stored card is wallet["list"][-1].
        """
        new_card = _card_from_input(card)

        def _apply(wallet: dict) -> dict:
            replaced = [
                c for c in wallet["list"]
                if c["last4"] == new_card["last4"] and c["holder"] == new_card["holder"]
            ]
            kept = [c for c in wallet["list"] if c not in replaced]
            default_id = wallet["defaultId"]
            if make_default or default_id is None or default_id in {c["id"] for c in replaced}:
                default_id = new_card["id"]
            if replaced:
                logger.info("Wallet card ending %s replaced for %s", new_card["last4"], user_id)
            return {"list": kept + [new_card], "defaultId": default_id}

        return await self.user_store.mutate(user_id, CARDS_KEY, _apply, coerce=normalize_wallet)

    async def remove(self, user_id: str, card_id: str) -> dict:
        """Remove a card; a removed default falls back to the first remaining card."""
        def _apply(wallet: dict) -> dict:
            remaining = [c for c in wallet["list"] if c["id"] != card_id]
            default_id = wallet["defaultId"]
            if default_id == card_id:
                default_id = remaining[0]["id"] if remaining else None
            return {"list": remaining, "defaultId": default_id}

        return await self.user_store.mutate(user_id, CARDS_KEY, _apply, coerce=normalize_wallet)

    async def set_default(self, user_id: str, card_id: str | None) -> dict:
        """
        Point the default at card_id (None clears it).

        Raises:
            ValidationError: card_id is not in the wallet
        """
        def _apply(wallet: dict) -> dict:
            if card_id is not None and card_id not in {c["id"] for c in wallet["list"]}:
                raise ValidationError("Card not found in wallet")
            return {"list": wallet["list"], "defaultId": card_id}

        return await self.user_store.mutate(user_id, CARDS_KEY, _apply, coerce=normalize_wallet)

    async def restore(self, user_id: str, wallet: dict) -> dict:
        """Put back a wallet read earlier, replacing whatever is stored now."""
        return await self.user_store.mutate(user_id, CARDS_KEY, lambda _: normalize_wallet(wallet), coerce=normalize_wallet)
