from datetime import datetime

import pytest

from storefront.services.payment_service import (
    detect_brand,
    luhn_ok,
    resolve_payment,
    validate_new_card,
)
from storefront.validation import CardValidationError


NOW = datetime(2026, 10, 19)


@pytest.mark.parametrize("digits,brand", [
    ("4111111111111111", "Visa"),
    ("5555555555554444", "Mastercard"),
    ("2221000000000009", "Mastercard"),
    ("378282246310005", "Amex"),
    ("9792000000000001", "Troy"),
    ("6011111111111117", "Unknown"),
])
def test_detect_brand(digits, brand):
    assert detect_brand(digits) == brand


def test_luhn():
    assert luhn_ok("4111 1111 1111 1111")
    assert not luhn_ok("4111111111111112")
    assert not luhn_ok("")


class TestValidateNewCard:
    def test_visa(self):
        card = validate_new_card(number="4111-1111-1111-1111", expiry="10/26", cvv="123", holder=" Ada ", now=NOW)
        assert card["brand"] == "Visa"
        assert card["last4"] == "1111"
        assert card["holder"] == "Ada"
        assert card["id"].startswith("card_")

    def test_amex_lengths(self):
        card = validate_new_card(number="378282246310005", expiry="12/27", cvv="1234", holder="A", now=NOW)
        assert card["brand"] == "Amex"
        with pytest.raises(CardValidationError) as exc:
            validate_new_card(number="378282246310005", expiry="12/27", cvv="123", holder="A", now=NOW)
        assert exc.value.field == "cvv"

    def test_current_month_still_valid_previous_month_not(self):
        validate_new_card(number="4111111111111111", expiry="10/26", cvv="123", holder="A", now=NOW)
        with pytest.raises(CardValidationError) as exc:
            validate_new_card(number="4111111111111111", expiry="09/26", cvv="123", holder="A", now=NOW)
        assert exc.value.field == "expiry"

    def test_missing_holder_defaults(self):
        card = validate_new_card(number="4111111111111111", expiry="10/26", cvv="123", holder=None, now=NOW)
        assert card["holder"] == "Customer"


class TestResolvePayment:
    SAVED = [{"id": "c1", "brand": "Visa", "holder": "Ada", "last4": "1111", "expiry": "12/30"}]

    def test_saved_card(self):
        summary, new_card = resolve_payment({"cardId": "c1"}, self.SAVED, now=NOW)
        assert summary == {"brand": "Visa", "last4": "1111", "holder": "Ada", "expiry": "12/30"}
        assert new_card is None

    def test_expired_saved_card(self):
        saved = [{**self.SAVED[0], "expiry": "01/25"}]
        with pytest.raises(CardValidationError):
            resolve_payment({"cardId": "c1"}, saved, now=NOW)

    def test_new_card_uses_default_holder(self):
        summary, new_card = resolve_payment(
            {"number": "4111111111111111", "expiry": "12/30", "cvv": "123"},
            [],
            default_holder="Ada Lovelace",
            now=NOW,
        )
        assert summary["holder"] == "Ada Lovelace"
        assert new_card["last4"] == "1111"

    def test_missing_selection(self):
        with pytest.raises(CardValidationError):
            resolve_payment(None, [], now=NOW)
