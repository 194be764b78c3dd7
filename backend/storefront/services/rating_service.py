# Overview: Per-product, per-user star ratings and their averages.

"""
Rating Store

One global value at "@ratings":

    {"<productId>": {"<userId>": 1..5, ...}, ...}

An absent entry means "not rated" (there are no zeros). Removing the last
rater of a product removes the product's map as well.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable

from .concurrency import KeyedLocks
from .kv_store import KeyValueStore
from .user_storage import read_json, write_json

logger = logging.getLogger(__name__)

RATINGS_KEY = "@ratings"
MIN_STARS = 1
MAX_STARS = 5


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def normalize_ratings(value) -> dict[str, dict[str, int]]:
    """Drop anything that is not product -> user -> number in range."""
    if not isinstance(value, dict):
        return {}
    out: dict[str, dict[str, int]] = {}
    for product_id, raters in value.items():
        if not isinstance(raters, dict):
            continue
        clean = {
            str(user_id): round_stars(stars)
            for user_id, stars in raters.items()
            if _is_number(stars) and MIN_STARS <= stars <= MAX_STARS
        }
        if clean:
            out[str(product_id)] = clean
    return out


def round_stars(stars: float) -> int:
    """Round half up (4.5 -> 5), unlike Python's banker's round()."""
    return int(math.floor(stars + 0.5))


def _summary(raters: dict[str, int] | None) -> dict:
    values = list((raters or {}).values())
    if not values:
        return {"avg": 0, "count": 0}
    return {"avg": sum(values) / len(values), "count": len(values)}


class RatingStore:
    def __init__(self, kv: KeyValueStore, *, locks: KeyedLocks | None = None):
        self.kv = kv
        self.locks = locks or KeyedLocks()

    async def _read(self) -> dict[str, dict[str, int]]:
        return normalize_ratings(await read_json(self.kv, RATINGS_KEY, default={}))

    async def set_rating(self, user_id: str, product_id: str, stars: float | None) -> int | None:
        """
        Store 1..5 stars (rounded); None, 0 or anything out of range removes
        the user's rating. Returns the stored value, or None when removed.
        """
        if not user_id or not product_id:
            return None

        valid = _is_number(stars) and MIN_STARS <= stars <= MAX_STARS
        async with self.locks.hold(RATINGS_KEY):
            store = await self._read()
            raters = store.setdefault(product_id, {})
            if valid:
                value = round_stars(stars)
                raters[user_id] = value
            else:
                value = None
                raters.pop(user_id, None)
                if not raters:
                    del store[product_id]
            await write_json(self.kv, RATINGS_KEY, store)
        return value

    async def get_user_rating(self, user_id: str, product_id: str) -> int | None:
        if not user_id or not product_id:
            return None
        return (await self._read()).get(product_id, {}).get(user_id)

    async def get_average(self, product_id: str) -> dict:
        return _summary((await self._read()).get(product_id))

    async def get_averages_bulk(self, product_ids: Iterable[str]) -> dict[str, dict]:
        """Averages for a whole list from a single storage read."""
        store = await self._read()
        return {pid: _summary(store.get(pid)) for pid in product_ids}
