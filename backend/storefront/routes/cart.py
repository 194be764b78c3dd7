# Overview: Flask API routes for the active cart and checkout.

# backend/storefront/routes/cart.py
from flask import Blueprint, request

from ..extensions import current_storefront
from ..validation import CardValidationError, CheckoutError, ValidationError

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
async def get_cart():
    return await current_storefront().cart.get_cart()


@cart_bp.post("/items")
async def add_items():
    """
    Body is either one item {"id", "name", "price", "qty"?} or
    {"items": [...]} for several at once.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "JSON object body required"}, 400
    cart = current_storefront().cart
    try:
        if "items" in payload:
            return await cart.add_many(payload["items"])
        return await cart.add(payload, payload.get("qty", 1))
    except ValidationError as e:
        return {"error": str(e)}, 400


@cart_bp.post("/items/<item_id>/increment")
async def increment_item(item_id: str):
    return await current_storefront().cart.increment(item_id)


@cart_bp.post("/items/<item_id>/decrement")
async def decrement_item(item_id: str):
    return await current_storefront().cart.decrement(item_id)


@cart_bp.delete("/items/<item_id>")
async def remove_item(item_id: str):
    return await current_storefront().cart.remove(item_id)


@cart_bp.delete("")
async def clear_cart():
    return await current_storefront().cart.clear()


@cart_bp.post("/checkout")
async def checkout():
    """
    Body: {"payment": {"cardId"} | {"number", "expiry", "cvv", "holder"?},
           "userId"?: buyer when no one is signed in}
    """
    payload = request.get_json(silent=True) or {}
    try:
        order = await current_storefront().cart.checkout(
            payload.get("payment"),
            user_id=payload.get("userId"),
        )
    except CardValidationError as e:
        return {"error": str(e), "field": e.field}, 400
    except CheckoutError as e:
        return {"error": str(e)}, 400
    return order, 201
