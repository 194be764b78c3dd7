# Overview: Flask API routes for per-user shop and service order history.

# backend/storefront/routes/orders.py
from flask import Blueprint, request

from ..extensions import current_storefront
from ..validation import ValidationError

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("/<user_id>")
async def list_orders(user_id: str):
    orders = await current_storefront().orders.list_orders(user_id)
    return {"orders": orders, "count": len(orders)}


@orders_bp.get("/<user_id>/service")
async def list_service_orders(user_id: str):
    orders = await current_storefront().orders.list_service_orders(user_id)
    return {"orders": orders, "count": len(orders)}


@orders_bp.post("/<user_id>/service")
async def place_service_order(user_id: str):
    payload = request.get_json(silent=True) or {}
    try:
        order = await current_storefront().place_service_order(
            user_id,
            items=payload.get("items") or [],
            panel_url=payload.get("panelUrl"),
            admin_email=payload.get("adminEmail"),
            active_until=payload.get("activeUntil"),
            note=payload.get("note"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    return order, 201


@orders_bp.post("/<user_id>/service/<order_id>/cancel")
async def cancel_service_order(user_id: str, order_id: str):
    order = await current_storefront().cancel_service_order(user_id, order_id)
    if order is None:
        return {"error": "Service order not found"}, 404
    return order
