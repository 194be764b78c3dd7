# Overview: Per-user order history (shop orders and service/panel orders).

"""
Order Store

Two per-user collections, both newest-first lists:

- "orders": shop orders created by checkout. IMMUTABLE once written; this
  module offers append and read only.
- "service_orders": panel/service orders. The only mutation ever applied to
  an existing entry is the status flag (cancel).

Statistics (count, spend, active packages) are derived from these lists by
ProfileStore.recompute_statistics; nothing here keeps counters.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime

from ..validation import ValidationError
from storefront.time_utils import date_stamp, now_iso, parse_iso_datetime, utcnow
from .user_storage import NamespacedUserStore

logger = logging.getLogger(__name__)

SHOP_ORDERS_KEY = "orders"
SERVICE_ORDERS_KEY = "service_orders"

SERVICE_STATUS_PREPARING = "preparing"
SERVICE_STATUS_DELIVERED = "delivered"
SERVICE_STATUS_CANCELLED = "cancelled"
SERVICE_STATUSES = {SERVICE_STATUS_PREPARING, SERVICE_STATUS_DELIVERED, SERVICE_STATUS_CANCELLED}

# Older builds stored Turkish status codes
_LEGACY_STATUS = {"hazirlaniyor": SERVICE_STATUS_PREPARING, "teslim": SERVICE_STATUS_DELIVERED, "iptal": SERVICE_STATUS_CANCELLED}

SERVICE_TIERS = {"Starter", "Silver", "Gold"}


def as_order_list(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [o for o in value if isinstance(o, dict) and o.get("id")]


def order_total(order: dict) -> float:
    try:
        return float(order.get("total") or 0)
    except (TypeError, ValueError):
        return 0.0


def service_order_total(order: dict) -> float:
    total = 0.0
    for item in order.get("items") or []:
        if not isinstance(item, dict):
            continue
        try:
            total += float(item.get("price") or 0) * int(item.get("qty") or 1)
        except (TypeError, ValueError):
            continue
    return total


def normalize_service_order(raw: dict) -> dict:
    status = raw.get("status")
    status = _LEGACY_STATUS.get(status, status)
    if status not in SERVICE_STATUSES:
        status = SERVICE_STATUS_PREPARING
    return {**raw, "status": status}


def is_service_active(order: dict, now: datetime | None = None) -> bool:
    """Not cancelled, and activeUntil (if any) is not in the past."""
    if order.get("status") == SERVICE_STATUS_CANCELLED:
        return False
    until = parse_iso_datetime(order.get("activeUntil"))
    if until is None:
        return True
    return until >= (now or utcnow())


def new_order_id(now: datetime) -> str:
    return f"ORD-{date_stamp(now)}-{str(int(now.timestamp() * 1000))[-6:]}{secrets.token_hex(1)}"


def new_invoice_no(now: datetime) -> str:
    return f"INV-{date_stamp(now)}-{1000 + secrets.randbelow(9000)}"


class OrderStore:
    def __init__(self, user_store: NamespacedUserStore):
        self.user_store = user_store

    # -- shop orders ----------------------------------------------------------

    async def list_orders(self, user_id: str) -> list[dict]:
        return as_order_list(await self.user_store.load(user_id, SHOP_ORDERS_KEY))

    async def append_order(self, user_id: str, order: dict) -> dict:
        """Prepend a finished order. Existing entries are never rewritten."""
        def _apply(orders: list[dict]) -> list[dict]:
            if any(o["id"] == order["id"] for o in orders):
                raise ValidationError(f"Order {order['id']} already exists")
            return [order] + orders

        await self.user_store.mutate(user_id, SHOP_ORDERS_KEY, _apply, fallback=[], coerce=as_order_list)
        logger.info("Order %s stored for %s (total=%s)", order["id"], user_id, order.get("total"))
        return order

    async def discard_order(self, user_id: str, order_id: str) -> None:
        """Take back an order whose checkout did not complete."""
        def _apply(orders: list[dict]) -> list[dict]:
            return [o for o in orders if o["id"] != order_id]

        await self.user_store.mutate(user_id, SHOP_ORDERS_KEY, _apply, fallback=[], coerce=as_order_list)
        logger.warning("Order %s withdrawn for %s", order_id, user_id)

    # -- service orders -------------------------------------------------------

    async def list_service_orders(self, user_id: str) -> list[dict]:
        stored = as_order_list(await self.user_store.load(user_id, SERVICE_ORDERS_KEY))
        return [normalize_service_order(o) for o in stored]

    async def place_service_order(
        self,
        user_id: str,
        *,
        items: list[dict],
        panel_url: str | None = None,
        admin_email: str | None = None,
        active_until: str | None = None,
        note: str | None = None,
    ) -> dict:
        if not items:
            raise ValidationError("Service order needs at least one item")
        clean_items = []
        for item in items:
            if not isinstance(item, dict) or not str(item.get("plan") or "").strip():
                raise ValidationError("Each service item needs a plan")
            tier = item.get("tier") if item.get("tier") in SERVICE_TIERS else "Starter"
            try:
                qty = int(item.get("qty") or 1)
                price = float(item.get("price") or 0)
            except (TypeError, ValueError):
                raise ValidationError("qty and price must be numbers")
            if qty < 1 or price < 0:
                raise ValidationError("qty must be >= 1 and price >= 0")
            clean_items.append({
                "plan": str(item["plan"]).strip(),
                "tier": tier,
                "term": str(item.get("term") or "").strip(),
                "qty": qty,
                "price": price,
            })

        now = utcnow()
        order = {
            "id": new_order_id(now),
            "date": now_iso(),
            "status": SERVICE_STATUS_PREPARING,
            "items": clean_items,
            "panelUrl": panel_url,
            "adminEmail": admin_email,
            "activeUntil": active_until,
            "note": note,
        }
        await self.user_store.mutate(
            user_id, SERVICE_ORDERS_KEY, lambda orders: [order] + orders,
            fallback=[], coerce=as_order_list,
        )
        return order

    async def cancel_service_order(self, user_id: str, order_id: str) -> dict | None:
        """Flip status to cancelled. Returns the updated entry, or None if absent."""
        found: list[dict] = []

        def _apply(orders: list[dict]) -> list[dict]:
            out = []
            for o in orders:
                if o["id"] == order_id:
                    o = {**normalize_service_order(o), "status": SERVICE_STATUS_CANCELLED}
                    found.append(o)
                out.append(o)
            return out

        await self.user_store.mutate(user_id, SERVICE_ORDERS_KEY, _apply, fallback=[], coerce=as_order_list)
        return found[0] if found else None
