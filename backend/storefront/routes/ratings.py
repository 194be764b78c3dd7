# Overview: Flask API routes for product star ratings.

# backend/storefront/routes/ratings.py
from flask import Blueprint, request

from ..extensions import current_storefront

ratings_bp = Blueprint("ratings", __name__, url_prefix="/api/ratings")


@ratings_bp.post("")
async def rate():
    """Body: {"userId", "productId", "stars"}; stars null/0/out of range clears."""
    payload = request.get_json(silent=True) or {}
    user_id = str(payload.get("userId") or "").strip().lower()
    product_id = str(payload.get("productId") or "").strip()
    if not user_id or not product_id:
        return {"error": "userId and productId are required"}, 400

    ratings = current_storefront().ratings
    stored = await ratings.set_rating(user_id, product_id, payload.get("stars"))
    return {"productId": product_id, "stars": stored, **await ratings.get_average(product_id)}


@ratings_bp.get("/<product_id>")
async def get_average(product_id: str):
    return await current_storefront().ratings.get_average(product_id)


@ratings_bp.get("")
async def get_averages_bulk():
    """Query: ?ids=a,b,c"""
    ids = [i.strip() for i in request.args.get("ids", "").split(",") if i.strip()]
    return await current_storefront().ratings.get_averages_bulk(ids)
