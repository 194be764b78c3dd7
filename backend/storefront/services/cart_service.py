# Overview: The single active cart and the cart -> order checkout transition.

"""
Cart Store

One persisted cart ("@cart"), shared by whoever uses this storage medium:
a list of {"id", "name", "price", "qty"} lines, qty always >= 1.

Every mutator is read-entire-cart -> change in memory -> write-entire-cart
under the cart's key lock.

Checkout, in order, all while holding the cart lock:
    1) reject an empty cart
    2) resolve/validate the payment (nothing written yet)
    3) save a newly typed card to the wallet as default, mirror to profile
    4) prepend the immutable order to the buyer's history
    5) empty the cart
    6) recompute profile statistics
A failure in 1-2 leaves every collection untouched; a failed write in 3-5
puts the wallet and order history back as they were.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..validation import CheckoutError, StorageUnavailableError, ValidationError
from storefront.time_utils import to_utc_z, utcnow
from .concurrency import KeyedLocks
from .kv_store import KeyValueStore
from .order_service import OrderStore, new_invoice_no, new_order_id
from .payment_service import resolve_payment
from .profile_service import ProfileStore, full_name_of
from .user_storage import normalize_user_id, read_json, write_json
from .wallet_service import WalletStore

logger = logging.getLogger(__name__)

CART_KEY = "@cart"
GUEST_USER = "guest"
ORDER_STATUS_PAID = "paid"


def _as_qty(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("qty must be a whole number")
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError("qty must be a whole number")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError("qty must be a whole number")
    return qty


def normalize_line(raw) -> dict | None:
    """Stored cart line -> clean line, or None when it cannot be kept."""
    if not isinstance(raw, dict) or not raw.get("id"):
        return None
    try:
        price = float(raw.get("price") or 0)
        qty = int(raw.get("qty") or 0)
    except (TypeError, ValueError):
        return None
    if qty < 1 or price < 0:
        return None
    return {
        "id": str(raw["id"]),
        "name": str(raw.get("name") or raw.get("title") or "").strip(),
        "price": price,
        "qty": qty,
    }


def normalize_cart(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [line for line in (normalize_line(x) for x in value) if line]


def cart_total(items: list[dict]) -> float:
    return round(sum(line["price"] * line["qty"] for line in items), 2)


def cart_view(items: list[dict]) -> dict:
    return {
        "items": items,
        "total": cart_total(items),
        "count": sum(line["qty"] for line in items),
    }


class CartStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        wallet: WalletStore,
        orders: OrderStore,
        profile: ProfileStore,
        locks: KeyedLocks | None = None,
        currency: str = "TRY",
    ):
        self.kv = kv
        self.wallet = wallet
        self.orders = orders
        self.profile = profile
        self.locks = locks or KeyedLocks()
        self.currency = currency

    async def _read(self) -> list[dict]:
        return normalize_cart(await read_json(self.kv, CART_KEY, default=[]))

    async def _mutate(self, fn) -> dict:
        async with self.locks.hold(CART_KEY):
            items = fn(await self._read())
            await write_json(self.kv, CART_KEY, items)
        return cart_view(items)

    async def get_cart(self) -> dict:
        return cart_view(await self._read())

    @staticmethod
    def _merge_line(items: list[dict], item: dict, qty: int) -> list[dict]:
        if qty < 1:
            raise ValidationError("qty must be >= 1")
        line = normalize_line({**item, "qty": qty})
        if line is None:
            raise ValidationError("Cart item needs an id and a non-negative price")
        for existing in items:
            if existing["id"] == line["id"]:
                existing["qty"] += qty
                return items
        return items + [line]

    async def add(self, item: dict, qty: int = 1) -> dict:
        qty = _as_qty(qty)
        return await self._mutate(lambda items: self._merge_line(items, item, qty))

    async def add_many(self, lines: list[dict]) -> dict:
        """Add several items in one write; each line may carry its own qty."""
        if not isinstance(lines, list):
            raise ValidationError("items must be a list")
        prepared = [(line, _as_qty(line.get("qty", 1)) if isinstance(line, dict) else 0) for line in lines]

        def _apply(items: list[dict]) -> list[dict]:
            for line, qty in prepared:
                if not isinstance(line, dict):
                    raise ValidationError("Each cart item must be an object")
                items = self._merge_line(items, line, qty)
            return items

        return await self._mutate(_apply)

    async def increment(self, item_id: str) -> dict:
        def _apply(items: list[dict]) -> list[dict]:
            for line in items:
                if line["id"] == item_id:
                    line["qty"] += 1
            return items

        return await self._mutate(_apply)

    async def decrement(self, item_id: str) -> dict:
        """qty - 1; a line at qty 1 is removed instead of reaching zero."""
        def _apply(items: list[dict]) -> list[dict]:
            out = []
            for line in items:
                if line["id"] == item_id:
                    if line["qty"] <= 1:
                        continue
                    line["qty"] -= 1
                out.append(line)
            return out

        return await self._mutate(_apply)

    async def remove(self, item_id: str) -> dict:
        return await self._mutate(lambda items: [line for line in items if line["id"] != item_id])

    async def clear(self) -> dict:
        return await self._mutate(lambda items: [])

    # -- checkout -------------------------------------------------------------

    def _buyer_id(self, user_id: str | None) -> str:
        return normalize_user_id(user_id or self.profile.email or GUEST_USER)

    def _build_order(self, items: list[dict], payment: dict, now: datetime) -> dict:
        total = cart_total(items)
        invoice_no = new_invoice_no(now)
        date = to_utc_z(now)
        return {
            "id": new_order_id(now),
            "date": date,
            "items": [dict(line) for line in items],
            "total": total,
            "status": ORDER_STATUS_PAID,
            "payment": payment,
            "invoiceNo": invoice_no,
            "invoice": {
                "no": invoice_no,
                "date": date,
                "buyer": {
                    "name": full_name_of(self.profile.current) or payment.get("holder") or "",
                    "email": self.profile.email,
                },
                "lines": [
                    {
                        "name": line["name"],
                        "qty": line["qty"],
                        "unitPrice": line["price"],
                        "lineTotal": round(line["price"] * line["qty"], 2),
                    }
                    for line in items
                ],
                "total": total,
                "currency": self.currency,
            },
        }

    async def _undo_checkout(self, buyer: str, wallet_before: dict | None, order_id: str | None) -> None:
        """Put the order and wallet back the way they were before a failed checkout."""
        try:
            if order_id is not None:
                await self.orders.discard_order(buyer, order_id)
            if wallet_before is not None:
                await self.wallet.restore(buyer, wallet_before)
                if buyer == self.profile.email:
                    await self.profile.mirror_wallet(wallet_before)
        except StorageUnavailableError:
            logger.exception("Checkout rollback for %s incomplete", buyer)

    async def checkout(self, payment: dict, *, user_id: str | None = None, now: datetime | None = None) -> dict:
        """
        Turn the cart into one paid order.

        payment is {"cardId": ...} for a saved card or
        {"number", "expiry", "cvv", "holder"?} for a new one.

        Raises:
            CheckoutError: empty cart
            CardValidationError: payment rejected (cart left as it was)
            StorageUnavailableError: a write failed; card and order are rolled back
        """
        buyer = self._buyer_id(user_id)
        now = now or utcnow()

        async with self.locks.hold(CART_KEY):
            items = await self._read()
            if not items:
                raise CheckoutError("Cart is empty")

            wallet_before = await self.wallet.get(buyer)
            summary, new_card = resolve_payment(
                payment,
                wallet_before["list"],
                default_holder=full_name_of(self.profile.current) or None,
                now=now,
            )

            order = self._build_order(items, summary, now)
            placed = False
            try:
                if new_card is not None:
                    wallet = await self.wallet.add(buyer, new_card, make_default=True)
                    if buyer == self.profile.email:
                        await self.profile.mirror_wallet(wallet)
                await self.orders.append_order(buyer, order)
                placed = True
                await write_json(self.kv, CART_KEY, [])
            except Exception:
                await self._undo_checkout(
                    buyer,
                    wallet_before if new_card is not None else None,
                    order["id"] if placed else None,
                )
                raise

        logger.info("Checkout %s for %s: %s %s", order["id"], buyer, order["total"], self.currency)
        if buyer == self.profile.email:
            await self.profile.recompute_statistics()
        return order
