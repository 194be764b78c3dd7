# Overview: Flask API routes for the session profile and accounts.

# backend/storefront/routes/profile.py
"""
Profile and account routes.

The session is device-wide: one signed-in user per running data layer,
tracked by the stored auth pointer, not by request cookies.
"""
from flask import Blueprint, request

from ..extensions import current_storefront
from ..validation import AuthenticationError, ConflictError, ValidationError

profile_bp = Blueprint("profile", __name__, url_prefix="/api/profile")


@profile_bp.get("")
async def get_profile():
    return current_storefront().profile.get_current()


@profile_bp.post("/hydrate")
async def hydrate_profile():
    return await current_storefront().profile.hydrate()


@profile_bp.patch("")
async def update_profile():
    payload = request.get_json(silent=True)
    profile = current_storefront().profile
    try:
        task = profile.update(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    # Request-scoped loop: finish the write before responding
    await task
    return profile.get_current()


@profile_bp.post("/register")
async def register():
    payload = request.get_json(silent=True) or {}
    try:
        record = await current_storefront().profile.register(
            first_name=payload.get("firstName", ""),
            last_name=payload.get("lastName", ""),
            email=payload.get("email", ""),
            password=payload.get("password", ""),
            phone=payload.get("phone", ""),
            address=payload.get("address", ""),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    return record, 201


@profile_bp.post("/login")
async def login():
    payload = request.get_json(silent=True) or {}
    try:
        return await current_storefront().profile.login(payload.get("email", ""), payload.get("password", ""))
    except AuthenticationError as e:
        return {"error": str(e)}, 401


@profile_bp.post("/signout")
async def sign_out():
    await current_storefront().profile.sign_out()
    return {"signedOut": True}


@profile_bp.post("/grant-admin")
async def grant_admin():
    payload = request.get_json(silent=True) or {}
    record = await current_storefront().profile.grant_admin(payload.get("email"))
    if record is None:
        return {"error": "User not found"}, 404
    return record


@profile_bp.post("/reset-password")
async def reset_password():
    payload = request.get_json(silent=True) or {}
    try:
        await current_storefront().profile.reset_password(payload.get("email", ""), payload.get("password", ""))
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"reset": True}
