# Overview: Flask API routes for per-user favorites.

# backend/storefront/routes/favorites.py
from flask import Blueprint, request

from ..extensions import current_storefront
from ..validation import ValidationError

favorites_bp = Blueprint("favorites", __name__, url_prefix="/api/favorites")


@favorites_bp.get("/<user_id>")
async def list_favorites(user_id: str):
    favorites = current_storefront().favorites
    return {
        "items": await favorites.list_favorites(user_id),
        "summary": await favorites.summary(user_id),
    }


@favorites_bp.post("/<user_id>")
async def toggle_favorite(user_id: str):
    """Body: the product {"id", "title", "priceMonthly"?, "imageUrl"?}."""
    payload = request.get_json(silent=True)
    try:
        on = await current_storefront().favorites.toggle(user_id, payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"id": payload.get("id"), "favorite": on}


@favorites_bp.delete("/<user_id>/<product_id>")
async def remove_favorite(user_id: str, product_id: str):
    items = await current_storefront().favorites.remove(user_id, product_id)
    return {"items": items}
