# backend/storefront/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Key-value rows live in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Prefix for per-user keys: "<namespace>:<user>:<collection>"
    STOREFRONT_NAMESPACE = os.environ.get("STOREFRONT_NAMESPACE", "nlk")
    STOREFRONT_CURRENCY = os.environ.get("STOREFRONT_CURRENCY", "TRY")

    # First seed writes a small demo catalog instead of an empty one
    CATALOG_DEMO_SEED = _env_flag("CATALOG_DEMO_SEED")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # "sql" (kv_entries table) or "memory" (process-local, lost on exit)
    STOREFRONT_STORAGE = os.environ.get("STOREFRONT_STORAGE", "sql").strip().lower()
    STORAGE_RETRY_ATTEMPTS = int(os.environ.get("STORAGE_RETRY_ATTEMPTS", "3"))

    # Dev front-end origins allowed to call the API
    CORS_ORIGINS = {
        "http://localhost:8081",
        "http://127.0.0.1:8081",
        "http://localhost:19006",
    }
