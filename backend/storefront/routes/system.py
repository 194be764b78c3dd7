# backend/storefront/routes/system.py
"""
Health endpoint: one write/read/remove round trip through the key-value
medium the stores are using.
"""

import secrets
import time

from flask import Blueprint, current_app

from ..extensions import current_storefront
from ..validation import StorageUnavailableError
from storefront.time_utils import now_iso

system_bp = Blueprint("system", __name__)

HEALTH_KEY_PREFIX = "@health:"


async def check_storage_health() -> dict:
    kv = current_storefront().kv
    check_key = f"{HEALTH_KEY_PREFIX}{secrets.token_hex(4)}"
    start_time = time.time()
    try:
        await kv.set(check_key, "ok")
        echoed = await kv.get(check_key)
        await kv.remove(check_key)
    except StorageUnavailableError:
        current_app.logger.exception("Storage health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Storage error",
        }

    elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy" if echoed == "ok" else "degraded",
        "latency_ms": round(elapsed_ms, 2),
        "backend": type(kv).__name__,
    }


@system_bp.get("/health")
async def health():
    """
    Returns:
    - 200: storage round trip works
    - 503: storage unavailable
    """
    storage = await check_storage_health()
    http_status = 503 if storage["status"] == "unhealthy" else 200
    return {"status": storage["status"], "timestamp": now_iso(), "checks": {"storage": storage}}, http_status
