import json

import pytest

from conftest import run
from storefront.services.catalog_service import (
    BUILT_IN_CATALOG,
    META_KEY,
    PRODUCTS_KEY,
    CatalogStore,
    fix_image_url,
    normalize_record,
    soft_merge,
)
from storefront.services.kv_store import MemoryKeyValueStore
from storefront.validation import ConflictError, ValidationError


BASIC = {"id": "basic", "title": "E-Commerce Basic", "price": 299, "features": ["10 Products"], "category": "Basic"}


def stored_records(kv):
    return json.loads(kv.snapshot()[PRODUCTS_KEY])


class TestSeeding:
    def test_empty_seed_then_reconcile_one_built_in(self, kv):
        catalog = CatalogStore(kv, built_ins=[BASIC])

        assert run(catalog.ensure_seeded()) is True
        assert stored_records(kv) == []

        run(catalog.reconcile())
        records = stored_records(kv)
        assert len(records) == 1
        assert records[0]["id"] == "basic"
        assert records[0]["builtIn"] is True
        assert records[0]["price"] == 299

    def test_seed_never_runs_when_key_exists(self):
        kv = MemoryKeyValueStore({PRODUCTS_KEY: "[]"})
        catalog = CatalogStore(kv, demo_seed=True)
        assert run(catalog.ensure_seeded()) is False
        assert kv.snapshot()[PRODUCTS_KEY] == "[]"

    def test_demo_seed(self, kv):
        catalog = CatalogStore(kv)
        run(catalog.ensure_seeded(demo=True))
        assert [r["id"] for r in stored_records(kv)] == ["demo-basic"]

    def test_seed_and_reconcile_are_idempotent(self, kv):
        catalog = CatalogStore(kv)
        run(catalog.ensure_seeded())
        run(catalog.reconcile())
        first = kv.snapshot()

        run(catalog.ensure_seeded())
        run(catalog.reconcile())
        assert kv.snapshot() == first

    def test_meta_version_written(self, kv):
        run(CatalogStore(kv).ensure_seeded())
        assert json.loads(kv.snapshot()[META_KEY])["version"] == 4


class TestReconcileMerge:
    def test_user_fields_win_and_empty_fields_backfill(self):
        kv = MemoryKeyValueStore({
            PRODUCTS_KEY: json.dumps([{"id": "basic", "title": "My Basic", "price": 250, "features": ""}]),
        })
        catalog = CatalogStore(kv, built_ins=[BASIC])
        run(catalog.reconcile())

        [record] = stored_records(kv)
        assert record["title"] == "My Basic"
        assert record["price"] == 250
        assert record["features"] == ["10 Products"]
        assert record["builtIn"] is True

    def test_non_built_in_records_survive(self):
        kv = MemoryKeyValueStore({PRODUCTS_KEY: json.dumps([{"id": "mine", "title": "Custom", "price": 5}])})
        run(CatalogStore(kv).reconcile())
        ids = [r["id"] for r in stored_records(kv)]
        assert ids[0] == "mine"
        assert set(ids) == {"mine"} | {b["id"] for b in BUILT_IN_CATALOG}

    def test_every_built_in_present_with_its_non_empty_fields(self, kv):
        catalog = CatalogStore(kv)
        run(catalog.reconcile())
        by_id = {r["id"]: r for r in stored_records(kv)}
        for built_in in BUILT_IN_CATALOG:
            merged = by_id[built_in["id"]]
            assert merged["builtIn"] is True
            for field, value in built_in.items():
                if value not in (None, "", []):
                    assert merged[field] not in (None, "", [])

    def test_removed_built_in_not_resurrected_until_purge(self, kv):
        catalog = CatalogStore(kv, built_ins=[BASIC])
        run(catalog.reconcile())
        assert run(catalog.remove("basic")) is True

        run(catalog.reconcile())
        assert stored_records(kv) == []

        run(catalog.purge_all())
        run(catalog.ensure_seeded())
        run(catalog.reconcile())
        assert [r["id"] for r in stored_records(kv)] == ["basic"]


class TestShapeMigration:
    def test_legacy_record(self):
        record = normalize_record({
            "id": "x",
            "title": "Old",
            "price": "12",
            "features": "a, b",
            "image": "http://cdn.example.com/x.png",
        })
        assert record["thumbnail"] == "https://cdn.example.com/x.png"
        assert record["features"] == ["a", "b"]
        assert record["category"] == "Basic"
        assert record["categories"] == ["Basic"]
        assert record["price"] == 12.0
        assert record["kind"] == "item"

    def test_numeric_image_id_dropped(self):
        record = normalize_record({"id": "x", "title": "Old", "image": 42})
        assert record["thumbnail"] is None

    def test_extra_categories_accepted(self):
        record = normalize_record({"id": "x", "title": "T", "category": "Service", "extraCategories": ["Panel"]})
        assert record["categories"] == ["Panel"]

    def test_non_object_rejected(self):
        assert normalize_record("nope") is None

    @pytest.mark.parametrize("raw,expected", [
        ("//img.example.com/a.png", "https://img.example.com/a.png"),
        ("'http://img.example.com/a.png'", "https://img.example.com/a.png"),
        ("http://192.168.1.10/a.png", "http://192.168.1.10/a.png"),
        ("data:image/png;base64,AAAA", "data:image/png;base64,AAAA"),
        ("   ", None),
    ])
    def test_fix_image_url(self, raw, expected):
        assert fix_image_url(raw) == expected

    def test_soft_merge_forces_built_in(self):
        existing = normalize_record({"id": "basic", "title": "Mine", "price": 1})
        base = normalize_record({**BASIC, "builtIn": True})
        merged = soft_merge(existing, base)
        assert merged["builtIn"] is True
        assert merged["title"] == "Mine"


class TestCrud:
    def test_add_derives_unique_slug(self, kv):
        catalog = CatalogStore(kv)
        first = run(catalog.add({"title": "Gold Panel", "price": 10}))
        second = run(catalog.add({"title": "Gold Panel", "price": 11}))
        assert first["id"] == "gold-panel"
        assert second["id"] == "gold-panel-2"
        assert [r["id"] for r in run(catalog.list_records())] == ["gold-panel-2", "gold-panel"]

    def test_add_duplicate_explicit_id(self, kv):
        catalog = CatalogStore(kv)
        run(catalog.add({"id": "a", "title": "A", "price": 1}))
        with pytest.raises(ConflictError):
            run(catalog.add({"id": "a", "title": "Again", "price": 1}))

    def test_add_validation(self, kv):
        catalog = CatalogStore(kv)
        with pytest.raises(ValidationError):
            run(catalog.add({"title": "No price"}))
        with pytest.raises(ValidationError):
            run(catalog.add({"title": "Negative", "price": -1}))

    def test_upsert_updates_but_keeps_protected_fields(self, kv):
        catalog = CatalogStore(kv, built_ins=[BASIC])
        run(catalog.reconcile())
        record, created = run(catalog.upsert({"id": "basic", "price": 349, "builtIn": False}))
        assert created is False
        assert record["price"] == 349
        assert record["builtIn"] is True
        assert record["updatedAt"]

    def test_update_missing_returns_none(self, kv):
        assert run(CatalogStore(kv).update("ghost", {"price": 1})) is None

    def test_filters(self, kv):
        catalog = CatalogStore(kv)
        run(catalog.reconcile())
        panels = run(catalog.list_records(kind="panel"))
        assert [r["id"] for r in panels] == ["panel-silver"]
        premium = run(catalog.list_records(category="premium"))
        assert {r["id"] for r in premium} == {"pro", "premium"}

    def test_export_import_round_trip_normalizes(self, kv):
        catalog = CatalogStore(kv)
        records = run(catalog.import_json(json.dumps([
            {"id": "a", "title": "A", "price": "3", "features": "x,y"},
            {"id": "a", "title": "dup", "price": 1},
            "garbage",
        ])))
        assert [r["id"] for r in records] == ["a"]
        assert records[0]["features"] == ["x", "y"]
        assert json.loads(run(catalog.export_all())) == records

    def test_import_rejects_non_json(self, kv):
        with pytest.raises(ValidationError):
            run(CatalogStore(kv).import_json("{oops"))
