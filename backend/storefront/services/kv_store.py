# Overview: Adapters for the device key-value medium (string keys, string values).

"""
Key-Value Storage Medium

The persistent data layer only ever talks to this contract:

    get(key) -> str | None
    set(key, value)
    remove(key | [keys])
    list_keys() -> [str]

All operations are coroutines; each call is a suspension point. There is a
single global namespace of keys and no schema: values are JSON text chosen
by the stores above.

Two implementations:
- MemoryKeyValueStore: a dict, for tests and throwaway sessions.
- SqlKeyValueStore: one kv_entries row per key through Flask-SQLAlchemy.
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import KvEntry
from .concurrency import run_with_retry


def _as_key_list(keys: str | Iterable[str]) -> list[str]:
    if isinstance(keys, str):
        return [keys]
    return [k for k in keys]


def _check_value(key: str, value) -> None:
    if not isinstance(value, str):
        raise TypeError(f"Value for {key!r} must be str, got {type(value).__name__}")


class KeyValueStore:
    """Async string -> string store. Subclasses implement the four primitives."""

    async def get(self, key: str) -> str | None:
        raise NotImplementedError

    async def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    async def remove(self, keys: str | Iterable[str]) -> None:
        raise NotImplementedError

    async def list_keys(self) -> list[str]:
        raise NotImplementedError

    async def multi_get(self, keys: Iterable[str]) -> dict[str, str | None]:
        out = {}
        for key in keys:
            out[key] = await self.get(key)
        return out

    async def list_keys_with_prefix(self, prefix: str) -> list[str]:
        return [k for k in await self.list_keys() if k.startswith(prefix)]


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        _check_value(key, value)
        self._data[key] = value

    async def remove(self, keys: str | Iterable[str]) -> None:
        for key in _as_key_list(keys):
            self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return list(self._data.keys())

    def snapshot(self) -> dict[str, str]:
        """Raw contents, for inspection in tests and debugging."""
        return dict(self._data)


class SqlKeyValueStore(KeyValueStore):
    """
    kv_entries-backed medium.

    Requires an active Flask application context at call time (db.session).
    Each write commits immediately; there is no multi-key transaction.
    """

    def __init__(self, *, attempts: int = 3, backoff_base: float = 0.1):
        self.attempts = attempts
        self.backoff_base = backoff_base

    async def _run(self, func):
        return await run_with_retry(
            func,
            attempts=self.attempts,
            backoff_base=self.backoff_base,
            on_error=db.session.rollback,
        )

    async def get(self, key: str) -> str | None:
        def _op():
            row = db.session.get(KvEntry, key)
            return row.value if row is not None else None
        return await self._run(_op)

    async def set(self, key: str, value: str) -> None:
        _check_value(key, value)

        def _op():
            row = db.session.get(KvEntry, key)
            if row is None:
                db.session.add(KvEntry(key=key, value=value))
            else:
                row.value = value
            db.session.commit()
        await self._run(_op)

    async def remove(self, keys: str | Iterable[str]) -> None:
        key_list = _as_key_list(keys)
        if not key_list:
            return

        def _op():
            db.session.query(KvEntry).filter(KvEntry.key.in_(key_list)).delete(synchronize_session=False)
            db.session.commit()
        await self._run(_op)

    async def list_keys(self) -> list[str]:
        def _op():
            return [k for (k,) in db.session.query(KvEntry.key).order_by(KvEntry.key.asc()).all()]
        return await self._run(_op)

    async def multi_get(self, keys: Iterable[str]) -> dict[str, str | None]:
        key_list = list(keys)

        def _op():
            rows = db.session.query(KvEntry).filter(KvEntry.key.in_(key_list)).all()
            found = {r.key: r.value for r in rows}
            return {k: found.get(k) for k in key_list}
        return await self._run(_op)
