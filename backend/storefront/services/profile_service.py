# backend/storefront/services/profile_service.py
"""
Profile Store

Owns two views of the same people:

- the DIRECTORY ("@users"): every registered user record, authoritative;
- the SESSION CACHE ("@userProfile"): a copy of the signed-in user's record
  for fast start-up, plus the auth pointer ("@authEmail", mirrored to the
  legacy "@currentUserEmail").

Lifecycle of a user:
    Unregistered -> Registered (directory entry) -> Authenticated (pointer
    set, cache populated) -> SignedOut (pointer cleared, empty profile)

INVARIANTS:
- At most one directory entry per normalized (trimmed, lower-cased) email;
  every directory write goes through dedupe_directory().
- The session cache is always re-derivable from the directory; on mismatch
  the directory wins (hydrate()).
- stats.orders / stats.spend / stats.packages are written only by
  recompute_statistics(), which derives them from order history.
- Password hashes stay in the directory and never reach the session view.

The in-memory `current` profile belongs to this instance; there is no
module-level profile.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from typing import Iterable

from ..validation import (
    AuthenticationError,
    ConflictError,
    PayloadPolicy,
    StorageUnavailableError,
    ValidationError,
    validate_payload,
)
from storefront.time_utils import now_iso
from .auth_service import (
    hash_password,
    normalize_email,
    normalize_spaces,
    validate_registration,
    verify_password,
)
from .concurrency import KeyedLocks
from .kv_store import KeyValueStore
from .order_service import (
    SERVICE_STATUS_CANCELLED,
    OrderStore,
    is_service_active,
    order_total,
    service_order_total,
)
from .payment_service import only_digits
from .user_storage import read_json, write_json

logger = logging.getLogger(__name__)

USERS_KEY = "@users"
AUTH_EMAIL_KEY = "@authEmail"
CURRENT_EMAIL_KEY = "@currentUserEmail"
PROFILE_KEY = "@userProfile"

ROLE_USER = "user"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLE_RANK = {None: 0, ROLE_USER: 1, ROLE_MANAGER: 2, ROLE_ADMIN: 3}

ADMIN_PERMISSIONS = ("product:create", "panel:create")

PRIVATE_FIELDS = {"passwordHash", "password"}

PROFILE_POLICY = PayloadPolicy(
    writable_fields=frozenset({
        "firstName", "lastName", "name", "email", "phone", "address", "avatarUri",
        "paymentMethods", "defaultPaymentId",
        "twoFactorEnabled", "twoFactorType", "biometricEnabled",
    }),
)


def empty_stats() -> dict:
    return {"orders": 0, "packages": 0, "spend": 0}


def empty_profile() -> dict:
    return {
        "role": None,
        "permissions": [],
        "firstName": "",
        "lastName": "",
        "name": "",
        "email": "",
        "phone": "",
        "address": "",
        "avatarUri": None,
        "memberSince": "-",
        "createdAt": None,
        "stats": empty_stats(),
        "paymentMethods": [],
        "defaultPaymentId": None,
    }


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


def full_name_of(profile: dict) -> str:
    first = profile.get("firstName") or ""
    last = profile.get("lastName") or ""
    if first or last:
        return f"{first} {last}".strip()
    return str(profile.get("name") or "").strip()


def normalize_stats(value) -> dict:
    stats = empty_stats()
    if isinstance(value, dict):
        for key in stats:
            raw = value.get(key)
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                stats[key] = raw
    return stats


def public_view(record: dict) -> dict:
    return {k: v for k, v in record.items() if k not in PRIVATE_FIELDS}


def profile_from_record(record: dict) -> dict:
    """Build the session profile from a directory (or cached) record."""
    name = str(record.get("name") or "").strip()
    parts = name.split(" ") if name else []
    first = record.get("firstName")
    last = record.get("lastName")
    if first is None:
        first = " ".join(parts[:-1]) if len(parts) > 1 else (parts[0] if parts else "")
    if last is None:
        last = parts[-1] if len(parts) > 1 else ""

    profile = empty_profile()
    profile.update({
        "role": record.get("role"),
        "permissions": list(record.get("permissions") or []),
        "firstName": first,
        "lastName": last,
        "name": name or f"{first} {last}".strip(),
        "email": normalize_email(record.get("email")),
        "phone": record.get("phone") or "",
        "address": record.get("address") or "",
        "avatarUri": record.get("avatarUri"),
        "memberSince": record.get("memberSince") or record.get("createdAt") or "-",
        "createdAt": record.get("createdAt"),
        "stats": normalize_stats(record.get("stats")),
        "paymentMethods": list(record.get("paymentMethods") or []),
        "defaultPaymentId": record.get("defaultPaymentId"),
    })
    for optional in ("twoFactorEnabled", "twoFactorType", "biometricEnabled"):
        if optional in record:
            profile[optional] = record[optional]
    return profile


def dedupe_directory(records: Iterable) -> list[dict]:
    """
    One entry per normalized email, in first-occurrence order.

    Later duplicates only fill fields the kept entry lacks; entries without
    an email cannot be keyed and are dropped.
    """
    out: list[dict] = []
    index: dict[str, int] = {}
    for raw in records:
        if not isinstance(raw, dict):
            continue
        email = normalize_email(raw.get("email"))
        if not email:
            continue
        if email in index:
            kept = out[index[email]]
            for field, value in raw.items():
                if _is_empty(kept.get(field)) and not _is_empty(value):
                    kept[field] = value
            continue
        record = dict(raw)
        record["email"] = email
        index[email] = len(out)
        out.append(record)
    return out


def _find(users: list[dict], email: str) -> int:
    if not email:
        return -1
    for i, user in enumerate(users):
        if normalize_email(user.get("email")) == email:
            return i
    return -1


def merge_profile_into_record(existing: dict, profile: dict) -> dict:
    """Directory entry updated from the session profile; stats are left alone."""
    updated = dict(existing)
    next_email = normalize_email(profile.get("email"))
    updated.update({
        "name": full_name_of(profile) or existing.get("name"),
        "firstName": profile.get("firstName") if profile.get("firstName") is not None else existing.get("firstName"),
        "lastName": profile.get("lastName") if profile.get("lastName") is not None else existing.get("lastName"),
        "email": next_email or existing.get("email"),
        "phone": only_digits(profile["phone"]) if profile.get("phone") else existing.get("phone"),
        "address": profile["address"] if isinstance(profile.get("address"), str) else existing.get("address"),
        "avatarUri": profile.get("avatarUri") if profile.get("avatarUri") is not None else existing.get("avatarUri"),
        "memberSince": existing.get("memberSince") or existing.get("createdAt") or profile.get("memberSince") or "-",
        "createdAt": existing.get("createdAt") or profile.get("createdAt"),
        "paymentMethods": profile["paymentMethods"] if profile.get("paymentMethods") is not None else existing.get("paymentMethods", []),
        "defaultPaymentId": profile.get("defaultPaymentId") if profile.get("defaultPaymentId") is not None else existing.get("defaultPaymentId"),
    })
    for optional in ("twoFactorEnabled", "twoFactorType", "biometricEnabled"):
        if profile.get(optional) is not None:
            updated[optional] = profile[optional]
    return updated


def record_from_profile(profile: dict, fallback_email: str) -> dict:
    return {
        "role": profile.get("role"),
        "permissions": list(profile.get("permissions") or []),
        "name": full_name_of(profile) or None,
        "firstName": profile.get("firstName"),
        "lastName": profile.get("lastName"),
        "email": normalize_email(profile.get("email")) or fallback_email,
        "phone": only_digits(profile["phone"]) if profile.get("phone") else None,
        "address": profile.get("address"),
        "createdAt": profile.get("createdAt") or now_iso(),
        "stats": normalize_stats(profile.get("stats")),
        "paymentMethods": list(profile.get("paymentMethods") or []),
        "defaultPaymentId": profile.get("defaultPaymentId"),
    }


class ProfileStore:
    def __init__(self, kv: KeyValueStore, orders: OrderStore, *, locks: KeyedLocks | None = None):
        self.kv = kv
        self.orders = orders
        self.locks = locks or KeyedLocks()
        self.current: dict = empty_profile()
        self._pending: set[asyncio.Task] = set()

    # -- views ------------------------------------------------------------

    def get_current(self) -> dict:
        return copy.deepcopy(public_view(self.current))

    @property
    def email(self) -> str:
        return normalize_email(self.current.get("email"))

    @property
    def is_authenticated(self) -> bool:
        return bool(self.email)

    # -- storage helpers --------------------------------------------------

    async def _read_directory(self) -> list[dict]:
        stored = await read_json(self.kv, USERS_KEY, default=[])
        if not isinstance(stored, list):
            logger.warning("User directory is not a list; treating as empty")
            return []
        return [u for u in stored if isinstance(u, dict)]

    async def _write_directory(self, users: list[dict]) -> list[dict]:
        deduped = dedupe_directory(users)
        if len(deduped) != len(users):
            logger.info("Directory dedupe collapsed %d entries", len(users) - len(deduped))
        await write_json(self.kv, USERS_KEY, deduped)
        return deduped

    async def _write_session_cache(self) -> None:
        await write_json(self.kv, PROFILE_KEY, public_view(self.current))

    async def _auth_email(self) -> str:
        return normalize_email(await self.kv.get(AUTH_EMAIL_KEY))

    async def _set_auth_email(self, email: str) -> None:
        await self.kv.set(AUTH_EMAIL_KEY, email)
        await self.kv.set(CURRENT_EMAIL_KEY, email)

    # -- session lifecycle ------------------------------------------------

    async def hydrate(self) -> dict:
        """
        Rebuild the session from the auth pointer.

        Lookup order: directory entry for the pointer's email, then the
        cached profile if its email matches. Nothing found -> empty profile.
        An unreadable medium also yields the empty profile.
        """
        try:
            auth_email = await self._auth_email()
            users = await self._read_directory()
            cached = await read_json(self.kv, PROFILE_KEY)
        except StorageUnavailableError:
            logger.exception("Storage unavailable during hydrate; continuing signed out")
            self.current = empty_profile()
            return self.get_current()

        record = None
        if auth_email:
            idx = _find(users, auth_email)
            if idx >= 0:
                record = users[idx]
            elif isinstance(cached, dict) and normalize_email(cached.get("email")) == auth_email:
                record = cached

        if record is None:
            self.current = empty_profile()
            return self.get_current()

        self.current = profile_from_record(record)
        await self._write_session_cache()
        await self.recompute_statistics()
        return self.get_current()

    async def sign_out(self) -> None:
        try:
            await self.kv.remove([AUTH_EMAIL_KEY, CURRENT_EMAIL_KEY, PROFILE_KEY])
        finally:
            self.current = empty_profile()

    # -- profile edits ----------------------------------------------------

    def update(self, patch: dict) -> asyncio.Task:
        """
        Apply patch to the in-memory profile immediately and persist it in
        the background.

        Returns the persistence task; callers that need durability await it,
        others may drop it (failures are logged).
        """
        cleaned = validate_payload(payload=patch, policy=PROFILE_POLICY, partial=True)
        previous = self.current
        self.current = {**previous, **cleaned}
        task = asyncio.get_running_loop().create_task(self._persist_update(previous, self.current))
        self._pending.add(task)
        task.add_done_callback(self._on_persist_done)
        return task

    def _on_persist_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Profile persist failed: %s", exc)

    async def flush(self) -> None:
        """Wait for every background profile write started so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _persist_update(self, previous: dict, updated: dict) -> dict | None:
        await self._write_session_cache()

        prev_email = normalize_email(previous.get("email"))
        next_email = normalize_email(updated.get("email"))

        async with self.locks.hold(USERS_KEY):
            users = await self._read_directory()
            stored_auth = await self._auth_email()

            # Pointer first: it stays right even if another patch already
            # changed the in-memory email
            idx = _find(users, stored_auth)
            if idx < 0:
                idx = _find(users, prev_email)

            if idx >= 0:
                old_email = normalize_email(users[idx].get("email"))
                users[idx] = merge_profile_into_record(users[idx], updated)
                record = users[idx]
            else:
                old_email = ""
                if not (next_email or prev_email):
                    return None
                record = record_from_profile(updated, prev_email)
                users.append(record)

            await self._write_directory(users)

        if stored_auth and next_email and stored_auth != next_email and stored_auth in (old_email, prev_email):
            await self._set_auth_email(next_email)
            logger.info("Auth pointer moved from %s to %s", stored_auth, next_email)
        return public_view(record)

    async def mirror_wallet(self, wallet: dict) -> None:
        """Keep paymentMethods/defaultPaymentId in step with the wallet."""
        if not self.is_authenticated:
            return
        await self.update({"paymentMethods": wallet["list"], "defaultPaymentId": wallet["defaultId"]})

    # -- statistics -------------------------------------------------------

    async def recompute_statistics(self) -> dict:
        """
        Derive stats from order history and write them to the session cache
        and the directory entry.

        orders   = shop orders + service orders
        spend    = shop totals + non-cancelled service order totals
        packages = service orders currently active
        """
        email = self.email
        if not email:
            return dict(self.current.get("stats") or empty_stats())

        shop = await self.orders.list_orders(email)
        service = await self.orders.list_service_orders(email)
        stats = {
            "orders": len(shop) + len(service),
            "packages": sum(1 for o in service if is_service_active(o)),
            "spend": sum(order_total(o) for o in shop)
            + sum(service_order_total(o) for o in service if o.get("status") != SERVICE_STATUS_CANCELLED),
        }

        if self.email == email:
            self.current = {**self.current, "stats": stats}
            await self._write_session_cache()

        async with self.locks.hold(USERS_KEY):
            users = await self._read_directory()
            idx = _find(users, email)
            if idx >= 0:
                users[idx] = {**users[idx], "stats": stats}
                await self._write_directory(users)
        return stats

    # -- directory administration -----------------------------------------

    async def list_directory(self) -> list[dict]:
        return [public_view(u) for u in dedupe_directory(await self._read_directory())]

    async def dedupe(self) -> int:
        """Rewrite the directory collapsed by email. Returns entries removed."""
        async with self.locks.hold(USERS_KEY):
            users = await self._read_directory()
            deduped = await self._write_directory(users)
        return len(users) - len(deduped)

    async def grant_role(self, email: str, role: str, extra_permissions: Iterable[str] = ()) -> dict | None:
        """
        Additive grant on one directory entry: permissions are unioned and the
        role only ever moves up. Returns the updated entry, or None if absent.
        """
        email = normalize_email(email)
        async with self.locks.hold(USERS_KEY):
            users = await self._read_directory()
            idx = _find(users, email)
            if idx < 0:
                return None
            record = dict(users[idx])
            permissions = list(dict.fromkeys([*(record.get("permissions") or []), *extra_permissions]))
            if ROLE_RANK.get(role, 0) > ROLE_RANK.get(record.get("role"), 0):
                record["role"] = role
            record["permissions"] = permissions
            users[idx] = record
            await self._write_directory(users)

        if self.email == email:
            self.current = {**self.current, "role": record.get("role"), "permissions": permissions}
            await self._write_session_cache()
        logger.info("Granted %s to %s", role, email)
        return public_view(record)

    async def grant_admin(self, email: str | None = None) -> dict | None:
        return await self.grant_role(email or self.email, ROLE_ADMIN, ADMIN_PERMISSIONS)

    # -- accounts ---------------------------------------------------------

    async def register(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone: str,
        address: str = "",
    ) -> dict:
        """
        Create a directory entry.

        Raises:
            ValidationError: form rules (see auth_service)
            ConflictError: email already registered
        """
        fields = validate_registration(
            first_name=first_name, last_name=last_name, email=email, password=password, phone=phone,
        )
        password_hash = hash_password(password)

        async with self.locks.hold(USERS_KEY):
            users = await self._read_directory()
            if _find(users, fields["email"]) >= 0:
                raise ConflictError("This email is already registered")
            record = {
                "name": f"{fields['firstName']} {fields['lastName']}",
                **fields,
                "passwordHash": password_hash,
                "address": normalize_spaces(address),
                "role": ROLE_USER,
                "permissions": [],
                "stats": empty_stats(),
                "paymentMethods": [],
                "defaultPaymentId": None,
                "createdAt": now_iso(),
            }
            users.append(record)
            await self._write_directory(users)
        logger.info("Registered %s", fields["email"])
        return public_view(record)

    async def login(self, email: str, password: str) -> dict:
        email = normalize_email(email)
        users = await self._read_directory()
        idx = _find(users, email)
        if idx < 0 or not verify_password(password, users[idx].get("passwordHash")):
            raise AuthenticationError("Email or password is incorrect")

        await self._set_auth_email(email)
        await write_json(self.kv, PROFILE_KEY, profile_from_record(users[idx]))
        return await self.hydrate()

    async def reset_password(self, email: str, new_password: str) -> int:
        """Rehash the password on the email's entry and end the session."""
        email = normalize_email(email)
        password_hash = hash_password(new_password)
        async with self.locks.hold(USERS_KEY):
            users = await self._read_directory()
            hits = [i for i, u in enumerate(users) if normalize_email(u.get("email")) == email]
            if not hits:
                raise ValidationError("No account found for this email")
            for i in hits:
                users[i] = {**users[i], "passwordHash": password_hash}
            users[hits[0]].pop("password", None)
            await self._write_directory(users)
        await self.sign_out()
        return len(hits)
