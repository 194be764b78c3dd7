import pytest

from conftest import run
from storefront.services.favorites_service import FavoritesStore
from storefront.services.user_storage import NamespacedUserStore
from storefront.validation import ValidationError


@pytest.fixture
def favorites(kv):
    return FavoritesStore(NamespacedUserStore(kv))


def test_add_is_newest_first_without_duplicates(favorites):
    run(favorites.add("u1", {"id": "basic", "title": "Basic", "price": 299}))
    run(favorites.add("u1", {"id": "pro", "title": "Pro", "priceMonthly": 899}))
    items = run(favorites.add("u1", {"id": "basic", "title": "Basic"}))
    assert [f["id"] for f in items] == ["pro", "basic"]


def test_toggle(favorites):
    assert run(favorites.toggle("u1", {"id": "basic"})) is True
    assert run(favorites.is_favorite("U1", "basic")) is True
    assert run(favorites.toggle("u1", {"id": "basic"})) is False
    assert run(favorites.list_favorites("u1")) == []


def test_summary(favorites):
    run(favorites.add("u1", {"id": "a", "priceMonthly": 10}))
    run(favorites.add("u1", {"id": "b", "priceMonthly": "5.5"}))
    assert run(favorites.summary("u1")) == {"count": 2, "totalMonthlyValue": 15.5}


def test_remove(favorites):
    run(favorites.add("u1", {"id": "a"}))
    assert run(favorites.remove("u1", "a")) == []


def test_product_without_id(favorites):
    with pytest.raises(ValidationError):
        run(favorites.add("u1", {"title": "nameless"}))
