"""
HTTP surface tests: blueprints over the SQL-backed key-value table.
"""

import pytest

from conftest import VALID_VISA, next_year_expiry
from storefront.validation import StorageUnavailableError


REGISTRATION = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "password": "Secret123!",
    "phone": "05551234567",
}


@pytest.fixture
def signed_in(client):
    assert client.post("/api/profile/register", json=REGISTRATION).status_code == 201
    resp = client.post("/api/profile/login", json={"email": "ada@example.com", "password": "Secret123!"})
    assert resp.status_code == 200
    return resp.get_json()


class TestSystem:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["checks"]["storage"]["status"] == "healthy"
        assert body["checks"]["storage"]["backend"] == "SqlKeyValueStore"

    def test_storage_failure_maps_to_503(self, app, client, monkeypatch):
        async def unavailable(**kwargs):
            raise StorageUnavailableError("down")

        monkeypatch.setattr(app.extensions["storefront"].catalog, "list_records", unavailable)
        resp = client.get("/api/catalog")
        assert resp.status_code == 503
        assert resp.get_json()["error"] == "Storage unavailable, try again"


class TestCatalogRoutes:
    def test_reconcile_then_list(self, client):
        assert client.post("/api/catalog/reconcile").get_json()["seeded"] is True
        body = client.get("/api/catalog").get_json()
        assert body["count"] == 7
        assert client.get("/api/catalog?kind=panel").get_json()["count"] == 1
        assert client.get("/api/catalog/basic").get_json()["price"] == 299

    def test_upsert_create_update_delete(self, client):
        created = client.post("/api/catalog", json={"title": "Gold Panel", "price": "49.90", "features": "a,b"})
        assert created.status_code == 201
        record = created.get_json()
        assert record["id"] == "gold-panel"
        assert record["features"] == ["a", "b"]

        updated = client.post("/api/catalog", json={"id": "gold-panel", "price": 59})
        assert updated.status_code == 200
        assert updated.get_json()["price"] == 59

        assert client.delete("/api/catalog/gold-panel").status_code == 200
        assert client.delete("/api/catalog/gold-panel").status_code == 404
        assert client.get("/api/catalog/gold-panel").status_code == 404

    def test_invalid_payload(self, client):
        assert client.post("/api/catalog", json={"title": "No price"}).status_code == 400

    def test_export_import_purge(self, client):
        client.post("/api/catalog/reconcile")
        exported = client.get("/api/catalog/export")
        assert exported.mimetype == "application/json"

        client.post("/api/catalog/purge")
        assert client.get("/api/catalog").get_json()["count"] == 0

        imported = client.post("/api/catalog/import", data=exported.get_data(as_text=True))
        assert imported.get_json()["imported"] == 7
        assert client.post("/api/catalog/import", data="{nope").status_code == 400


class TestProfileRoutes:
    def test_register_conflict_and_bad_login(self, client, signed_in):
        assert client.post("/api/profile/register", json=REGISTRATION).status_code == 409
        bad = client.post("/api/profile/login", json={"email": "ada@example.com", "password": "nope"})
        assert bad.status_code == 401

    def test_register_validation(self, client):
        resp = client.post("/api/profile/register", json={**REGISTRATION, "phone": "12"})
        assert resp.status_code == 400

    def test_current_profile_and_patch(self, client, signed_in):
        assert signed_in["email"] == "ada@example.com"
        assert "passwordHash" not in signed_in

        resp = client.patch("/api/profile", json={"address": "Istanbul"})
        assert resp.status_code == 200
        assert resp.get_json()["address"] == "Istanbul"
        assert client.post("/api/profile/hydrate").get_json()["address"] == "Istanbul"

    def test_grant_admin_and_sign_out(self, client, signed_in):
        granted = client.post("/api/profile/grant-admin", json={"email": "ada@example.com"})
        assert granted.get_json()["role"] == "admin"
        assert client.post("/api/profile/grant-admin", json={"email": "ghost@example.com"}).status_code == 404

        client.post("/api/profile/signout")
        assert client.get("/api/profile").get_json()["email"] == ""

    def test_reset_password(self, client, signed_in):
        assert client.post("/api/profile/reset-password", json={"email": "ada@example.com", "password": "x"}).status_code == 400
        resp = client.post("/api/profile/reset-password", json={"email": "ada@example.com", "password": "Another456?"})
        assert resp.status_code == 200
        login = client.post("/api/profile/login", json={"email": "ada@example.com", "password": "Another456?"})
        assert login.status_code == 200


class TestCartRoutes:
    def test_cart_flow_and_checkout(self, client, signed_in):
        client.post("/api/cart/items", json={"id": "x", "name": "Widget", "price": 100})
        client.post("/api/cart/items/x/increment")
        assert client.get("/api/cart").get_json()["total"] == 200

        bad = client.post("/api/cart/checkout", json={"payment": {"number": "4111111111111112", "expiry": next_year_expiry(), "cvv": "123"}})
        assert bad.status_code == 400
        assert bad.get_json()["field"] == "number"

        ok = client.post("/api/cart/checkout", json={"payment": {"number": VALID_VISA, "expiry": next_year_expiry(), "cvv": "123"}})
        assert ok.status_code == 201
        assert ok.get_json()["total"] == 200

        assert client.get("/api/cart").get_json()["items"] == []
        assert client.get("/api/orders/ada@example.com").get_json()["count"] == 1
        assert client.get("/api/profile").get_json()["stats"]["orders"] == 1

    def test_empty_cart_checkout(self, client):
        resp = client.post("/api/cart/checkout", json={"payment": {"cardId": "x"}})
        assert resp.status_code == 400

    def test_bulk_add_decrement_and_clear(self, client):
        client.post("/api/cart/items", json={"items": [{"id": "a", "name": "A", "price": 1, "qty": 2}]})
        assert client.post("/api/cart/items/a/decrement").get_json()["count"] == 1
        assert client.delete("/api/cart/items/a").get_json()["items"] == []
        client.post("/api/cart/items", json={"id": "b", "name": "B", "price": 1})
        assert client.delete("/api/cart").get_json()["count"] == 0
        assert client.post("/api/cart/items", json={"id": "b", "price": 1, "qty": 0}).status_code == 400


class TestWalletRoutes:
    def test_add_default_remove(self, client):
        card = {"brand": "Visa", "holder": "Ada", "last4": "1111", "expiry": next_year_expiry()}
        first = client.post("/api/wallet/u1", json=card).get_json()
        second = client.post("/api/wallet/u1", json={**card, "last4": "2222"}).get_json()
        new_id = second["list"][1]["id"]

        assert client.put(f"/api/wallet/u1/{new_id}/default").get_json()["defaultId"] == new_id
        assert client.put("/api/wallet/u1/unknown/default").status_code == 404

        after = client.delete(f"/api/wallet/u1/{new_id}").get_json()
        assert after["defaultId"] == first["defaultId"]

    def test_rejected_card(self, client):
        resp = client.post("/api/wallet/u1", json={"number": "1234", "expiry": "01/20", "cvv": "1"})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "number"


class TestOrderRoutes:
    def test_service_order_lifecycle(self, client):
        placed = client.post("/api/orders/u1/service", json={"items": [{"plan": "Panel", "price": 10}]})
        assert placed.status_code == 201
        order_id = placed.get_json()["id"]

        cancelled = client.post(f"/api/orders/u1/service/{order_id}/cancel")
        assert cancelled.get_json()["status"] == "cancelled"
        assert client.post("/api/orders/u1/service/nope/cancel").status_code == 404
        assert client.get("/api/orders/u1/service").get_json()["count"] == 1

    def test_invalid_service_order(self, client):
        assert client.post("/api/orders/u1/service", json={"items": []}).status_code == 400


class TestRatingAndFavoriteRoutes:
    def test_ratings(self, client):
        client.post("/api/ratings", json={"userId": "u1", "productId": "basic", "stars": 5})
        resp = client.post("/api/ratings", json={"userId": "u2", "productId": "basic", "stars": 3})
        assert resp.get_json()["avg"] == 4
        assert client.get("/api/ratings/basic").get_json() == {"avg": 4, "count": 2}
        bulk = client.get("/api/ratings?ids=basic,pro").get_json()
        assert bulk["pro"] == {"avg": 0, "count": 0}
        assert client.post("/api/ratings", json={"stars": 5}).status_code == 400

    def test_favorites(self, client):
        on = client.post("/api/favorites/u1", json={"id": "basic", "title": "Basic", "priceMonthly": 299})
        assert on.get_json()["favorite"] is True
        listing = client.get("/api/favorites/u1").get_json()
        assert listing["summary"] == {"count": 1, "totalMonthlyValue": 299}
        assert client.delete("/api/favorites/u1/basic").get_json()["items"] == []
        assert client.post("/api/favorites/u1", json={"title": "no id"}).status_code == 400
