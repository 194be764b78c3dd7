# backend/storefront/services/catalog_service.py
"""
Catalog Store

One shared catalog collection (not per-user) stored as a JSON list at
"@products", plus a meta document at "@products_meta".

INVARIANTS:
- id is unique within the collection.
- Built-in records survive reconciliation: a missing built-in is inserted,
  a present one is soft-merged (user values win, empty fields backfilled,
  builtIn forced true).
- Reconciliation never drops a non-built-in record and never overwrites a
  non-empty user field with a built-in default.
- An admin may delete a built-in; its id is remembered in the meta document
  so reconciliation does not resurrect it until the catalog is purged.
- Every record read from storage or imported from outside passes through
  normalize_record() first.
"""
from __future__ import annotations

import json
import logging
import math
import re
import secrets
import unicodedata
from typing import Any, Iterable

from ..validation import (
    ConflictError,
    PayloadPolicy,
    ValidationError,
    as_string_list,
    enforce_rules_catalog,
    validate_payload,
)
from storefront.time_utils import now_iso
from .concurrency import KeyedLocks
from .kv_store import KeyValueStore
from .user_storage import decode_json, read_json, write_json, CORRUPT

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "@products"
META_KEY = "@products_meta"
CATALOG_VERSION = 4

DEFAULT_CATEGORY = "Basic"
KIND_ITEM = "item"
KIND_PANEL = "panel"

# Stored field order; keeps serialized output stable across rewrites
RECORD_FIELDS = (
    "id",
    "title",
    "price",
    "features",
    "category",
    "categories",
    "kind",
    "panelUrl",
    "images",
    "thumbnail",
    "isFeatured",
    "builtIn",
    "createdAt",
    "updatedAt",
)

CATALOG_POLICY = PayloadPolicy(
    writable_fields=frozenset({
        "id", "title", "price", "features", "category", "categories",
        "kind", "panelUrl", "images", "thumbnail", "isFeatured",
    }),
    required_on_create=frozenset({"title", "price"}),
    list_fields=frozenset({"features", "categories", "images"}),
    number_fields=frozenset({"price"}),
)


BUILT_IN_CATALOG: list[dict] = [
    {
        "id": "basic",
        "title": "E-Commerce Basic",
        "price": 299,
        "features": ["10 Products", "Basic Theme", "SSL Certificate"],
        "category": "Basic",
        "kind": KIND_ITEM,
        "isFeatured": True,
    },
    {
        "id": "starter",
        "title": "Starter",
        "price": 399,
        "features": ["50 Products", "Theme Selection", "SSL Certificate"],
        "category": "Basic",
        "kind": KIND_ITEM,
    },
    {
        "id": "standard",
        "title": "E-Commerce Standard",
        "price": 599,
        "features": ["Unlimited Products", "Advanced Theme", "Multi-Carrier Shipping"],
        "category": "Standard",
        "kind": KIND_ITEM,
        "isFeatured": True,
    },
    {
        "id": "pro",
        "title": "Pro",
        "price": 899,
        "features": ["Unlimited Products", "Blog", "Live Support"],
        "category": "Premium",
        "kind": KIND_ITEM,
    },
    {
        "id": "premium",
        "title": "Premium",
        "price": 1299,
        "features": ["B2B Module", "Marketplace Integration", "Reporting"],
        "category": "Premium",
        "kind": KIND_ITEM,
        "isFeatured": True,
    },
    {
        "id": "enterprise",
        "title": "Enterprise",
        "price": 1999,
        "features": ["Enterprise SLA", "SAML SSO", "Custom Development"],
        "category": "Enterprise",
        "kind": KIND_ITEM,
    },
    {
        "id": "panel-silver",
        "title": "Admin Panel - Silver",
        "price": 1499,
        "features": ["100 Product Limit", "5 Premium Themes", "SSL + CDN"],
        "category": "Service",
        "categories": ["Service", "Panel"],
        "kind": KIND_PANEL,
    },
]

DEMO_CATALOG: list[dict] = [
    {
        "id": "demo-basic",
        "title": "DEMO - E-Commerce Basic",
        "price": 299,
        "features": ["10 Products", "Basic Theme", "SSL Certificate"],
        "category": "Basic",
        "kind": KIND_ITEM,
        "thumbnail": "https://picsum.photos/seed/nlk-basic/1200/675",
    },
]


# =============================================================================
# SHAPE MIGRATION
# =============================================================================

_LOCAL_HTTP_RE = re.compile(r"^http://(localhost|127\.0\.0\.1|10\.0\.2\.2|192\.168\.)", re.IGNORECASE)


def fix_image_url(url: Any) -> str | None:
    """
    Make a stored image reference safe to load.

    - quotes and whitespace stripped
    - "//host/x" -> "https://host/x"
    - remote "http://" upgraded to "https://" (local-network hosts kept)
    - "data:image..." URIs returned untouched
    """
    if url is None:
        return None
    s = str(url).strip().strip("'\"")
    if not s:
        return None
    if s.startswith("data:image"):
        return s
    if s.startswith("//"):
        s = "https:" + s
    if s.lower().startswith("http://") and not _LOCAL_HTTP_RE.match(s):
        s = "https://" + s[len("http://"):]
    s = re.sub(r"\s", "", s)
    return s or None


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _as_price(raw: dict) -> float:
    value = raw.get("price")
    if value is None:
        value = raw.get("priceMonthly")
    try:
        price = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(price) or math.isinf(price):
        return 0.0
    return price


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def slugify(text: str) -> str:
    ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")


def normalize_record(raw: Any, *, now: str | None = None) -> dict | None:
    """
    Coerce a stored/imported catalog record to the current shape.

    Legacy handling:
    - numeric "image" ids are dropped; "image" strings become "thumbnail"
    - comma-separated "features"/"categories" strings become lists
    - missing category -> "Basic"; categories derived from category
    - "urun" (and anything not "panel") -> kind "item"

    Returns None for values that are not objects.
    """
    if not isinstance(raw, dict):
        return None

    record_id = _optional_str(raw.get("id")) or _optional_str(raw.get("slug")) or ""
    title = str(raw.get("title") or "").strip()

    images = [u for u in (fix_image_url(x) for x in as_string_list(raw.get("images"))) if u]

    thumbnail = fix_image_url(raw.get("thumbnail")) if isinstance(raw.get("thumbnail"), str) else None
    legacy_image = raw.get("image")
    if isinstance(legacy_image, str) and not legacy_image.strip().isdigit() and not thumbnail:
        thumbnail = fix_image_url(legacy_image)
    if not thumbnail and images:
        thumbnail = images[0]

    category = _optional_str(raw.get("category")) or _optional_str(raw.get("cat")) or DEFAULT_CATEGORY
    categories = as_string_list(raw.get("categories"))
    if not categories:
        categories = as_string_list(raw.get("extraCategories"))
    if not categories:
        categories = [category]

    values = {
        "id": record_id,
        "title": title,
        "price": _as_price(raw),
        "features": as_string_list(raw.get("features")),
        "category": category,
        "categories": categories,
        "kind": KIND_PANEL if raw.get("kind") == KIND_PANEL else KIND_ITEM,
        "panelUrl": _optional_str(raw.get("panelUrl")),
        "images": images,
        "thumbnail": thumbnail,
        "isFeatured": bool(raw.get("isFeatured")),
        "builtIn": bool(raw.get("builtIn")),
        "createdAt": _optional_str(raw.get("createdAt")) or now or now_iso(),
        "updatedAt": _optional_str(raw.get("updatedAt")),
    }
    return {name: values[name] for name in RECORD_FIELDS}


def soft_merge(existing: dict, built_in: dict) -> dict:
    """
    Field-level merge of a stored record with its built-in definition.

    Non-empty existing values win; empty/missing ones are backfilled from the
    built-in. builtIn is always true on the result.
    """
    merged = {}
    for name in RECORD_FIELDS:
        current = existing.get(name)
        merged[name] = built_in.get(name) if _is_empty(current) else current
    merged["id"] = built_in["id"]
    merged["builtIn"] = True
    return merged


# =============================================================================
# STORE
# =============================================================================


class CatalogStore:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        locks: KeyedLocks | None = None,
        built_ins: Iterable[dict] | None = None,
        demo_records: Iterable[dict] | None = None,
        demo_seed: bool = False,
    ):
        self.kv = kv
        self.locks = locks or KeyedLocks()
        self.built_ins = list(BUILT_IN_CATALOG if built_ins is None else built_ins)
        self.demo_records = list(DEMO_CATALOG if demo_records is None else demo_records)
        self.demo_seed = demo_seed

    # -- raw access -----------------------------------------------------------

    async def _load_records(self) -> list[dict]:
        stored = await read_json(self.kv, PRODUCTS_KEY, default=[])
        if not isinstance(stored, list):
            logger.warning("Catalog value is not a list (%s); treating as empty", type(stored).__name__)
            return []
        records = []
        for raw in stored:
            record = normalize_record(raw)
            if record is None or not record["id"]:
                continue
            records.append(record)
        return records

    async def _save_records(self, records: list[dict]) -> None:
        await write_json(self.kv, PRODUCTS_KEY, records)

    async def _load_meta(self) -> dict:
        meta = await read_json(self.kv, META_KEY, default={})
        if not isinstance(meta, dict):
            meta = {}
        removed = meta.get("removedBuiltIns")
        return {
            "version": meta.get("version"),
            "removedBuiltIns": [str(x) for x in removed] if isinstance(removed, list) else [],
        }

    async def _save_meta(self, meta: dict) -> None:
        await write_json(self.kv, META_KEY, meta)

    # -- seeding --------------------------------------------------------------

    async def _migrate_meta(self) -> None:
        async with self.locks.hold(META_KEY):
            meta = await self._load_meta()
            if meta["version"] == CATALOG_VERSION:
                return
            meta["version"] = CATALOG_VERSION
            await self._save_meta(meta)
            logger.info("Catalog meta migrated to version %d", CATALOG_VERSION)

    async def _sanitize_existing(self, raw: str) -> None:
        """Non-destructive cleanup of legacy image fields; never deletes data."""
        stored = decode_json(raw)
        if stored is CORRUPT or not isinstance(stored, list):
            return
        changed = False
        cleaned = []
        for item in stored:
            if not isinstance(item, dict):
                cleaned.append(item)
                continue
            nx = dict(item)
            image = nx.get("image")
            if isinstance(image, (int, float)) or (isinstance(image, str) and image.strip().isdigit()):
                del nx["image"]
                changed = True
            elif isinstance(image, str):
                if not nx.get("thumbnail"):
                    nx["thumbnail"] = fix_image_url(image)
                del nx["image"]
                changed = True
            if isinstance(nx.get("thumbnail"), str):
                fixed = fix_image_url(nx["thumbnail"])
                if fixed != nx["thumbnail"]:
                    nx["thumbnail"] = fixed
                    changed = True
            if isinstance(nx.get("images"), list):
                mapped = [u for u in (fix_image_url(x) for x in nx["images"]) if u]
                if mapped != nx["images"]:
                    nx["images"] = mapped
                    changed = True
            cleaned.append(nx)
        if changed:
            await self._save_records(cleaned)
            logger.info("Sanitized legacy image fields in catalog")

    async def ensure_seeded(self, demo: bool | None = None) -> bool:
        """
        Initialize the catalog key if it has never been written.

        Absence of the key is the only trigger: an existing empty list is
        left alone. Returns True when the key was created by this call.
        """
        await self._migrate_meta()
        async with self.locks.hold(PRODUCTS_KEY):
            existing = await self.kv.get(PRODUCTS_KEY)
            if existing is not None:
                await self._sanitize_existing(existing)
                return False

            use_demo = self.demo_seed if demo is None else demo
            if use_demo:
                stamp = now_iso()
                records = [normalize_record(r, now=stamp) for r in self.demo_records]
            else:
                records = []
            await self._save_records(records)
            logger.info("Catalog initialized with %d records", len(records))
            return True

    async def reconcile(self, built_ins: Iterable[dict] | None = None) -> list[dict]:
        """
        Merge built-in definitions into the stored catalog and persist.

        Existing records keep their order; missing built-ins are appended in
        definition order. Records without id or title are dropped as corrupt.
        """
        definitions = self.built_ins if built_ins is None else list(built_ins)
        meta = await self._load_meta()
        removed = set(meta["removedBuiltIns"])

        async with self.locks.hold(PRODUCTS_KEY):
            by_id: dict[str, dict] = {}
            for record in await self._load_records():
                if not record["title"]:
                    logger.warning("Dropping catalog record without title: %s", record["id"])
                    continue
                by_id[record["id"]] = record

            stamp = now_iso()
            for definition in definitions:
                base = normalize_record({**definition, "builtIn": True}, now=stamp)
                if base is None or not base["id"]:
                    continue
                if base["id"] in removed and base["id"] not in by_id:
                    continue
                existing = by_id.get(base["id"])
                if existing is None:
                    by_id[base["id"]] = base
                else:
                    by_id[base["id"]] = soft_merge(existing, base)

            records = list(by_id.values())
            await self._save_records(records)
            return records

    # -- CRUD -----------------------------------------------------------------

    async def list_records(self, *, kind: str | None = None, category: str | None = None) -> list[dict]:
        records = await self._load_records()
        if kind:
            records = [r for r in records if r["kind"] == kind]
        if category:
            wanted = category.strip().casefold()
            records = [
                r for r in records
                if r["category"].casefold() == wanted
                or any(c.casefold() == wanted for c in r["categories"])
            ]
        return records

    async def get(self, record_id: str) -> dict | None:
        for record in await self._load_records():
            if record["id"] == record_id:
                return record
        return None

    @staticmethod
    def _derive_id(title: str, taken: set[str]) -> str:
        base = slugify(title) or secrets.token_hex(4)
        candidate = base
        n = 2
        while candidate in taken:
            candidate = f"{base}-{n}"
            n += 1
        return candidate

    async def add(self, payload: dict) -> dict:
        """
        Insert an admin-authored record (builtIn false), newest first.

        Raises:
            ValidationError: missing title/price or invalid values
            ConflictError: explicit id already exists
        """
        patch = validate_payload(payload=payload, policy=CATALOG_POLICY, partial=False)
        enforce_rules_catalog(patch)

        async with self.locks.hold(PRODUCTS_KEY):
            records = await self._load_records()
            taken = {r["id"] for r in records}
            record_id = (patch.get("id") or "").strip()
            if record_id and record_id in taken:
                raise ConflictError(f"Catalog id already exists: {record_id}")
            if not record_id:
                record_id = self._derive_id(patch["title"], taken)

            stamp = now_iso()
            record = normalize_record(
                {**patch, "id": record_id, "builtIn": False, "createdAt": stamp, "updatedAt": stamp},
                now=stamp,
            )
            await self._save_records([record] + records)
            logger.info("Catalog record added: %s", record_id)
            return record

    async def update(self, record_id: str, payload: dict) -> dict | None:
        """Patch one record; id, builtIn and createdAt are not writable."""
        patch = validate_payload(payload=payload, policy=CATALOG_POLICY, partial=True)
        patch.pop("id", None)
        enforce_rules_catalog(patch)

        async with self.locks.hold(PRODUCTS_KEY):
            records = await self._load_records()
            for index, existing in enumerate(records):
                if existing["id"] != record_id:
                    continue
                updated = normalize_record({
                    **existing,
                    **patch,
                    "id": existing["id"],
                    "builtIn": existing["builtIn"],
                    "createdAt": existing["createdAt"],
                    "updatedAt": now_iso(),
                })
                records[index] = updated
                await self._save_records(records)
                return updated
        return None

    async def upsert(self, payload: dict) -> tuple[dict, bool]:
        """Update when payload["id"] exists, insert otherwise. Returns (record, created)."""
        record_id = str((payload or {}).get("id") or "").strip() if isinstance(payload, dict) else ""
        if record_id and await self.get(record_id) is not None:
            return await self.update(record_id, payload), False
        return await self.add(payload), True

    async def remove(self, record_id: str) -> bool:
        """
        Delete one record. Built-ins may be deleted too; their ids are
        recorded so reconcile() does not bring them back.
        """
        async with self.locks.hold(PRODUCTS_KEY):
            records = await self._load_records()
            target = next((r for r in records if r["id"] == record_id), None)
            if target is None:
                return False
            await self._save_records([r for r in records if r["id"] != record_id])

        if target["builtIn"]:
            async with self.locks.hold(META_KEY):
                meta = await self._load_meta()
                if record_id not in meta["removedBuiltIns"]:
                    meta["removedBuiltIns"].append(record_id)
                if meta["version"] is None:
                    meta["version"] = CATALOG_VERSION
                await self._save_meta(meta)
        logger.info("Catalog record removed: %s", record_id)
        return True

    # -- bulk -----------------------------------------------------------------

    async def export_all(self) -> str:
        return json.dumps(await self._load_records(), ensure_ascii=False, indent=2)

    async def replace_all(self, items: Any) -> list[dict]:
        """Full replace from external input; every record is re-normalized."""
        if not isinstance(items, list):
            raise ValidationError("Catalog import must be a JSON list")
        stamp = now_iso()
        records: list[dict] = []
        seen: set[str] = set()
        for raw in items:
            record = normalize_record(raw, now=stamp)
            if record is None:
                continue
            if not record["id"]:
                record["id"] = self._derive_id(record["title"], seen)
            if record["id"] in seen:
                logger.warning("Duplicate id in catalog import skipped: %s", record["id"])
                continue
            seen.add(record["id"])
            records.append(record)

        async with self.locks.hold(PRODUCTS_KEY):
            await self._save_records(records)
        logger.info("Catalog replaced with %d records", len(records))
        return records

    async def import_json(self, text: str) -> list[dict]:
        try:
            items = json.loads(text)
        except (TypeError, ValueError):
            raise ValidationError("Catalog import is not valid JSON")
        return await self.replace_all(items)

    async def purge_all(self) -> None:
        """Remove catalog and meta; the next seed/reconcile starts from scratch."""
        async with self.locks.hold(PRODUCTS_KEY):
            await self.kv.remove([PRODUCTS_KEY, META_KEY])
        logger.info("Catalog purged")
