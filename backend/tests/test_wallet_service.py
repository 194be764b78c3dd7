import json

import pytest

from conftest import VALID_VISA, next_year_expiry, run
from storefront.services.kv_store import MemoryKeyValueStore
from storefront.services.user_storage import NamespacedUserStore
from storefront.services.wallet_service import WalletStore, normalize_wallet
from storefront.validation import CardValidationError, ValidationError


def summary(last4, holder="Ada", card_id=None):
    card = {"brand": "Visa", "holder": holder, "last4": last4, "expiry": next_year_expiry()}
    if card_id:
        card["id"] = card_id
    return card


@pytest.fixture
def wallet(kv):
    return WalletStore(NamespacedUserStore(kv))


class TestAdd:
    def test_first_card_becomes_default(self, wallet):
        result = run(wallet.add("u1", summary("1111")))
        assert result["defaultId"] == result["list"][0]["id"]

    def test_later_cards_append_without_moving_default(self, wallet):
        first = run(wallet.add("u1", summary("1111")))
        result = run(wallet.add("u1", summary("2222")))
        assert [c["last4"] for c in result["list"]] == ["1111", "2222"]
        assert result["defaultId"] == first["defaultId"]

    def test_same_last4_and_holder_replaces(self, wallet):
        run(wallet.add("u1", summary("1111")))
        result = run(wallet.add("u1", summary("1111")))
        assert len(result["list"]) == 1
        # Replaced default moves to the replacement
        assert result["defaultId"] == result["list"][0]["id"]

    def test_same_last4_other_holder_is_kept(self, wallet):
        run(wallet.add("u1", summary("1111", holder="Ada")))
        result = run(wallet.add("u1", summary("1111", holder="Bob")))
        assert len(result["list"]) == 2

    def test_typed_card_is_validated_and_reduced(self, kv, wallet):
        result = run(wallet.add("u1", {"number": VALID_VISA, "expiry": next_year_expiry(), "cvv": "123", "holder": "Ada"}))
        card = result["list"][0]
        assert set(card) == {"id", "brand", "holder", "last4", "expiry"}
        assert VALID_VISA not in json.dumps(kv.snapshot())

    def test_typed_card_rejected(self, wallet):
        with pytest.raises(CardValidationError):
            run(wallet.add("u1", {"number": "1234", "expiry": "01/99", "cvv": "1"}))

    def test_summary_needs_four_digits(self, wallet):
        with pytest.raises(CardValidationError):
            run(wallet.add("u1", summary("12")))


class TestRemoveAndDefault:
    def test_removing_default_falls_back_to_first_remaining(self, wallet):
        run(wallet.add("u1", summary("1111", card_id="a")))
        run(wallet.add("u1", summary("2222", card_id="b")))
        run(wallet.add("u1", summary("3333", card_id="c")))
        run(wallet.set_default("u1", "b"))

        result = run(wallet.remove("u1", "b"))
        assert result["defaultId"] == "a"

    def test_removing_last_card_clears_default(self, wallet):
        run(wallet.add("u1", summary("1111", card_id="a")))
        assert run(wallet.remove("u1", "a")) == {"list": [], "defaultId": None}

    def test_set_default_requires_known_id(self, wallet):
        run(wallet.add("u1", summary("1111", card_id="a")))
        with pytest.raises(ValidationError):
            run(wallet.set_default("u1", "zzz"))

    def test_set_default_none_clears(self, wallet):
        run(wallet.add("u1", summary("1111", card_id="a")))
        assert run(wallet.set_default("u1", None))["defaultId"] is None


class TestNormalize:
    def test_dangling_default_reads_back_null(self):
        kv = MemoryKeyValueStore({"nlk:u1:cards": json.dumps({
            "list": [{"id": "a", "brand": "Visa", "holder": "A", "last4": "1111", "expiry": "12/30"}],
            "defaultId": "gone",
        })})
        assert run(WalletStore(NamespacedUserStore(kv)).get("u1"))["defaultId"] is None

    def test_legacy_bare_list(self):
        wallet = normalize_wallet([{"id": "a", "brand": "Diners", "last4": "xx9999"}])
        assert wallet["list"][0]["brand"] == "Unknown"
        assert wallet["list"][0]["last4"] == "9999"
        assert wallet["defaultId"] is None

    @pytest.mark.parametrize("value", [None, "text", 5, {"list": "nope"}])
    def test_foreign_shapes_become_empty(self, value):
        assert normalize_wallet(value) == {"list": [], "defaultId": None}
