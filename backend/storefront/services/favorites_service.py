# Overview: Per-user favorite products.

from __future__ import annotations

from ..validation import ValidationError
from storefront.time_utils import now_iso
from .user_storage import NamespacedUserStore

FAVORITES_KEY = "favorites"


def _as_favorites(value) -> list[dict]:
    if not isinstance(value, list):
        return []
    return [f for f in value if isinstance(f, dict) and f.get("id")]


def _favorite_from(product: dict) -> dict:
    if not isinstance(product, dict) or not product.get("id"):
        raise ValidationError("Favorite needs a product id")
    try:
        price = float(product.get("priceMonthly", product.get("price")) or 0)
    except (TypeError, ValueError):
        price = 0.0
    return {
        "id": str(product["id"]),
        "title": str(product.get("title") or "").strip(),
        "priceMonthly": price,
        "imageUrl": product.get("imageUrl") or product.get("thumbnail"),
        "addedDate": product.get("addedDate") or now_iso(),
    }


class FavoritesStore:
    def __init__(self, user_store: NamespacedUserStore):
        self.user_store = user_store

    async def list_favorites(self, user_id: str) -> list[dict]:
        return _as_favorites(await self.user_store.load(user_id, FAVORITES_KEY))

    async def is_favorite(self, user_id: str, product_id: str) -> bool:
        return any(f["id"] == product_id for f in await self.list_favorites(user_id))

    async def add(self, user_id: str, product: dict) -> list[dict]:
        favorite = _favorite_from(product)

        def _apply(current: list[dict]) -> list[dict]:
            if any(f["id"] == favorite["id"] for f in current):
                return current
            return [favorite] + current

        return await self.user_store.mutate(user_id, FAVORITES_KEY, _apply, fallback=[], coerce=_as_favorites)

    async def remove(self, user_id: str, product_id: str) -> list[dict]:
        return await self.user_store.mutate(
            user_id, FAVORITES_KEY,
            lambda current: [f for f in current if f["id"] != product_id],
            fallback=[], coerce=_as_favorites,
        )

    async def toggle(self, user_id: str, product: dict) -> bool:
        """Returns True when the product is a favorite after the call."""
        favorite = _favorite_from(product)
        state = {}

        def _apply(current: list[dict]) -> list[dict]:
            if any(f["id"] == favorite["id"] for f in current):
                state["on"] = False
                return [f for f in current if f["id"] != favorite["id"]]
            state["on"] = True
            return [favorite] + current

        await self.user_store.mutate(user_id, FAVORITES_KEY, _apply, fallback=[], coerce=_as_favorites)
        return state["on"]

    async def summary(self, user_id: str) -> dict:
        favorites = await self.list_favorites(user_id)
        return {
            "count": len(favorites),
            "totalMonthlyValue": sum(f["priceMonthly"] for f in favorites),
        }
