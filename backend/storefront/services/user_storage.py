# Overview: Per-user namespaced JSON collections on top of the key-value medium.

"""
Namespaced User Store

Every per-user logical collection (orders, cards, favorites, ...) lives at

    "<namespace>:<normalized user id>:<collection name>"

where the user id is trimmed and case-folded, so "Ada@Mail.com " and
"ada@mail.com" share one namespace.

Reads are self-healing: a value that does not parse as JSON is deleted and
reported as absent. Storage I/O failures are not swallowed; they propagate
as StorageUnavailableError.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from ..validation import ValidationError
from .concurrency import KeyedLocks
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

CORRUPT = object()


def encode_json(data: Any) -> str:
    try:
        return json.dumps(data, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        # Keep the slot well-formed rather than writing half a document
        logger.warning("Could not serialize value (%s); storing null", exc)
        return "null"


def decode_json(raw: str | None) -> Any:
    """Parsed value, None for absence, or the CORRUPT sentinel."""
    if raw is None or raw == "":
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return CORRUPT


async def read_json(kv: KeyValueStore, key: str, default: Any = None) -> Any:
    """
    Global (non-namespaced) read. Corrupt text is treated as absence but left
    in place; the next full write replaces it.
    """
    value = decode_json(await kv.get(key))
    if value is CORRUPT:
        logger.warning("Ignoring unparseable value at %s", key)
        return default
    if value is None:
        return default
    return value


async def write_json(kv: KeyValueStore, key: str, data: Any) -> None:
    await kv.set(key, encode_json(data))


def normalize_user_id(user_id: str | None) -> str:
    normalized = str(user_id or "").strip().casefold()
    if not normalized:
        raise ValidationError("user id required")
    return normalized


class NamespacedUserStore:
    def __init__(self, kv: KeyValueStore, *, namespace: str = "nlk", locks: KeyedLocks | None = None):
        self.kv = kv
        self.namespace = namespace
        self.locks = locks or KeyedLocks()

    def prefix_for(self, user_id: str) -> str:
        return f"{self.namespace}:{normalize_user_id(user_id)}:"

    def key_for(self, user_id: str, name: str) -> str:
        return f"{self.prefix_for(user_id)}{name}"

    async def save(self, user_id: str, name: str, data: Any) -> None:
        """Overwrite the collection unconditionally (last writer wins)."""
        await self.kv.set(self.key_for(user_id, name), encode_json(data))

    async def load(self, user_id: str, name: str) -> Any:
        key = self.key_for(user_id, name)
        raw = await self.kv.get(key)
        value = decode_json(raw)
        if value is CORRUPT or (raw and value is None):
            logger.warning("Removing corrupt entry %s", key)
            await self.kv.remove(key)
            return None
        return value

    async def load_or(self, user_id: str, name: str, fallback: Any) -> Any:
        value = await self.load(user_id, name)
        return fallback if value is None else value

    async def remove(self, user_id: str, name: str) -> None:
        await self.kv.remove(self.key_for(user_id, name))

    async def list_keys(self, user_id: str) -> list[str]:
        return await self.kv.list_keys_with_prefix(self.prefix_for(user_id))

    async def clear_all(self, user_id: str) -> int:
        """Delete every collection of one user (account deletion, sign-out wipe)."""
        mine = await self.list_keys(user_id)
        if mine:
            await self.kv.remove(mine)
            logger.info("Cleared %d collections for %s", len(mine), normalize_user_id(user_id))
        return len(mine)

    async def mutate(
        self,
        user_id: str,
        name: str,
        fn: Callable[[Any], Any],
        *,
        fallback: Any = None,
        coerce: Callable[[Any], Any] | None = None,
    ) -> Any:
        """
        Serialized read-modify-write of one collection.

        coerce turns whatever was stored into the expected shape; fn receives
        that value and returns the value to persist, which is also returned.
        """
        key = self.key_for(user_id, name)
        async with self.locks.hold(key):
            current = await self.load_or(user_id, name, fallback)
            if coerce is not None:
                current = coerce(current)
            updated = fn(current)
            await self.save(user_id, name, updated)
            return updated
