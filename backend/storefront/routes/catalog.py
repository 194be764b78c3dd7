# Overview: Flask API routes for the shared catalog; parses input and returns JSON responses.

# backend/storefront/routes/catalog.py
from flask import Blueprint, Response, request

from ..extensions import current_storefront
from ..validation import ConflictError, ValidationError

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.get("")
async def list_catalog():
    """
    Query params:
    - kind: "item" | "panel" (optional)
    - category: category name, matched case-insensitively (optional)
    """
    records = await current_storefront().catalog.list_records(
        kind=request.args.get("kind"),
        category=request.args.get("category"),
    )
    return {"items": records, "count": len(records)}


@catalog_bp.get("/<record_id>")
async def get_catalog_item(record_id: str):
    record = await current_storefront().catalog.get(record_id)
    if record is None:
        return {"error": "Catalog item not found"}, 404
    return record


@catalog_bp.post("")
async def upsert_catalog_item():
    payload = request.get_json(silent=True)
    try:
        record, created = await current_storefront().catalog.upsert(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    return record, 201 if created else 200


@catalog_bp.delete("/<record_id>")
async def delete_catalog_item(record_id: str):
    removed = await current_storefront().catalog.remove(record_id)
    if not removed:
        return {"error": "Catalog item not found"}, 404
    return {"removed": record_id}


@catalog_bp.get("/export")
async def export_catalog():
    text = await current_storefront().catalog.export_all()
    return Response(text, mimetype="application/json")


@catalog_bp.post("/import")
async def import_catalog():
    """Body is the raw JSON text produced by /export."""
    text = request.get_data(as_text=True)
    try:
        records = await current_storefront().catalog.import_json(text)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"imported": len(records)}


@catalog_bp.post("/purge")
async def purge_catalog():
    await current_storefront().catalog.purge_all()
    return {"purged": True}


@catalog_bp.post("/reconcile")
async def reconcile_catalog():
    catalog = current_storefront().catalog
    created = await catalog.ensure_seeded()
    records = await catalog.reconcile()
    return {"seeded": created, "count": len(records)}
