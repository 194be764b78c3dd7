# Overview: Service-layer helpers for concurrency; per-key serialization and storage retries.

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import asynccontextmanager

from sqlalchemy.exc import OperationalError

from ..validation import StorageUnavailableError

logger = logging.getLogger(__name__)


class KeyedLocks:
    """
    One process-wide lock per storage key.

    Every store mutation is read-entire-value -> mutate -> write-entire-value.
    Holding the key's lock for the whole cycle means two mutations of the
    same key (double-tapped "place order") run one after the other instead
    of both reading the same old value.

    Flask runs each async view on its own event loop in its own thread, so
    the locks are threading.Locks shared by every loop. Waiters poll with
    asyncio.sleep so a blocked acquire never stalls its loop.
    """

    poll_interval = 0.005

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @asynccontextmanager
    async def hold(self, key: str):
        """Serialize a read-modify-write on one key. Not re-entrant."""
        lock = self.lock(key)
        while not lock.acquire(blocking=False):
            await asyncio.sleep(self.poll_interval)
        try:
            yield
        finally:
            lock.release()

    def is_held(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return bool(lock and lock.locked())


async def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, on_error=None):
    """
    Execute a blocking storage operation with retry on transient failures.

    Retries on OperationalError (database locked, disk busy). After the last
    attempt the failure is surfaced as StorageUnavailableError so callers see
    one "try again" condition regardless of the medium.
    """
    for attempt in range(attempts):
        try:
            return func()
        except OperationalError as exc:
            if on_error is not None:
                on_error()
            if attempt >= attempts - 1:
                logger.error("Storage operation failed after %d attempts: %s", attempts, exc)
                raise StorageUnavailableError("Storage unavailable") from exc
            logger.warning("Storage busy (attempt %d/%d), retrying", attempt + 1, attempts)
            await asyncio.sleep(backoff_base * (2 ** attempt))
