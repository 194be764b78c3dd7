# Overview: Wires every store around one key-value medium and one lock table.

from __future__ import annotations

import logging

from .cart_service import CartStore
from .catalog_service import CatalogStore
from .concurrency import KeyedLocks
from .favorites_service import FavoritesStore
from .kv_store import KeyValueStore
from .order_service import OrderStore
from .profile_service import ProfileStore
from .rating_service import RatingStore
from .user_storage import NamespacedUserStore, normalize_user_id
from .wallet_service import WalletStore

logger = logging.getLogger(__name__)


class Storefront:
    """
    The data layer as one owned object.

    Built once per process (create_app puts it in app.extensions) and handed
    to consumers; stores share the medium and the lock table so that
    same-key mutations from any of them are serialized.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        namespace: str = "nlk",
        currency: str = "TRY",
        demo_seed: bool = False,
        locks: KeyedLocks | None = None,
    ):
        self.kv = kv
        self.locks = locks or KeyedLocks()
        self.users = NamespacedUserStore(kv, namespace=namespace, locks=self.locks)
        self.catalog = CatalogStore(kv, locks=self.locks, demo_seed=demo_seed)
        self.orders = OrderStore(self.users)
        self.wallet = WalletStore(self.users)
        self.favorites = FavoritesStore(self.users)
        self.ratings = RatingStore(kv, locks=self.locks)
        self.profile = ProfileStore(kv, self.orders, locks=self.locks)
        self.cart = CartStore(
            kv,
            wallet=self.wallet,
            orders=self.orders,
            profile=self.profile,
            locks=self.locks,
            currency=currency,
        )

    # Service orders change statistics, so they go through here

    async def place_service_order(self, user_id: str, **fields) -> dict:
        order = await self.orders.place_service_order(user_id, **fields)
        await self._refresh_stats_for(user_id)
        return order

    async def cancel_service_order(self, user_id: str, order_id: str) -> dict | None:
        order = await self.orders.cancel_service_order(user_id, order_id)
        if order is not None:
            await self._refresh_stats_for(user_id)
        return order

    async def _refresh_stats_for(self, user_id: str) -> None:
        if self.profile.email and self.profile.email == normalize_user_id(user_id):
            await self.profile.recompute_statistics()

    async def start(self) -> dict:
        """Seed/reconcile the catalog and restore the session."""
        await self.catalog.ensure_seeded()
        await self.catalog.reconcile()
        profile = await self.profile.hydrate()
        logger.info("Storefront ready (signed in: %s)", bool(profile.get("email")))
        return profile


def build_storefront(kv: KeyValueStore, config) -> Storefront:
    return Storefront(
        kv,
        namespace=config.get("STOREFRONT_NAMESPACE", "nlk"),
        currency=config.get("STOREFRONT_CURRENCY", "TRY"),
        demo_seed=bool(config.get("CATALOG_DEMO_SEED", False)),
    )
