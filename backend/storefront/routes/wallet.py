# Overview: Flask API routes for saved payment cards.

# backend/storefront/routes/wallet.py
from flask import Blueprint, request

from ..extensions import current_storefront
from ..validation import CardValidationError, ValidationError

wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")


async def _mirror_if_current(user_id: str, wallet: dict) -> None:
    profile = current_storefront().profile
    if profile.email and profile.email == user_id.strip().lower():
        await profile.mirror_wallet(wallet)


@wallet_bp.get("/<user_id>")
async def get_wallet(user_id: str):
    return await current_storefront().wallet.get(user_id)


@wallet_bp.post("/<user_id>")
async def add_card(user_id: str):
    """
    Body: a typed card {"number", "expiry", "cvv", "holder"} or a summary
    {"brand", "holder", "last4", "expiry"}; "makeDefault" optional.
    """
    payload = request.get_json(silent=True) or {}
    try:
        wallet = await current_storefront().wallet.add(
            user_id, payload, make_default=bool(payload.get("makeDefault")),
        )
    except CardValidationError as e:
        return {"error": str(e), "field": e.field}, 400
    except ValidationError as e:
        return {"error": str(e)}, 400
    await _mirror_if_current(user_id, wallet)
    return wallet, 201


@wallet_bp.delete("/<user_id>/<card_id>")
async def remove_card(user_id: str, card_id: str):
    wallet = await current_storefront().wallet.remove(user_id, card_id)
    await _mirror_if_current(user_id, wallet)
    return wallet


@wallet_bp.put("/<user_id>/<card_id>/default")
async def set_default_card(user_id: str, card_id: str):
    try:
        wallet = await current_storefront().wallet.set_default(user_id, card_id)
    except ValidationError as e:
        return {"error": str(e)}, 404
    await _mirror_if_current(user_id, wallet)
    return wallet
