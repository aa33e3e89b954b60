from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from conftest import new_id, seed_restaurant, set_price
from foodmarket.config import settings
from foodmarket.db import SessionLocal
from foodmarket.main import app
from foodmarket.services.cart_service import CartService, NewCartItem
from foodmarket.services.errors import InvalidState, NotFound, ValidationError
from foodmarket.utils.locks import lock_path

client = TestClient(app)


def _cart(db, restaurant_id=None):
    svc = CartService(db)
    cart_id = svc.create_cart(new_id("c"), restaurant_id)
    return svc, cart_id


def test_unknown_customer_gets_empty_cart(db):
    view = CartService(db).get_cart(new_id("c"))
    assert view.cart_id is None
    assert view.is_empty
    assert view.pricing.total_cents == 0


def test_create_cart_is_one_per_customer(db):
    svc = CartService(db)
    customer = new_id("c")
    assert svc.create_cart(customer) == svc.create_cart(customer)


def test_same_item_and_options_merge(db):
    _, (burger,) = seed_restaurant()
    svc, cart_id = _cart(db)
    first = svc.add_item(cart_id, NewCartItem(quantity=1, menu_item_id=burger, options={"size": "L"}))
    second = svc.add_item(cart_id, NewCartItem(quantity=2, menu_item_id=burger, options={"size": "L"}))
    assert first == second
    view = svc.get_cart_by_id(cart_id)
    assert len(view.items) == 1
    assert view.items[0].quantity == 3


def test_different_options_get_own_line(db):
    _, (burger,) = seed_restaurant()
    svc, cart_id = _cart(db)
    svc.add_item(cart_id, NewCartItem(menu_item_id=burger, options={"size": "L"}))
    svc.add_item(cart_id, NewCartItem(menu_item_id=burger, options={"size": "S"}))
    assert len(svc.get_cart_by_id(cart_id).items) == 2


def test_custom_requests_never_merge(db):
    restaurant_id, _ = seed_restaurant()
    svc, cart_id = _cart(db, restaurant_id)
    req = NewCartItem(is_custom=True, custom_name="Extra spicy wings", custom_price_cents=850)
    a = svc.add_item(cart_id, req)
    b = svc.add_item(cart_id, req)
    assert a != b
    view = svc.get_cart_by_id(cart_id)
    assert [it.is_custom for it in view.items] == [True, True]
    assert view.pricing.subtotal_cents == 1700


def test_custom_request_needs_name_and_price(db):
    restaurant_id, _ = seed_restaurant()
    svc, cart_id = _cart(db, restaurant_id)
    with pytest.raises(ValidationError):
        svc.add_item(cart_id, NewCartItem(is_custom=True, custom_price_cents=100))
    with pytest.raises(ValidationError):
        svc.add_item(cart_id, NewCartItem(is_custom=True, custom_name="x", custom_price_cents=-1))


def test_quantity_zero_removes_line_and_negative_is_rejected(db):
    _, (burger,) = seed_restaurant()
    svc, cart_id = _cart(db)
    line = svc.add_item(cart_id, NewCartItem(quantity=2, menu_item_id=burger))
    with pytest.raises(ValidationError):
        svc.update_quantity(cart_id, line, -1)
    svc.update_quantity(cart_id, line, 5)
    assert svc.get_cart_by_id(cart_id).items[0].quantity == 5
    svc.update_quantity(cart_id, line, 0)
    assert svc.get_cart_by_id(cart_id).is_empty


def test_add_rejects_non_positive_quantity(db):
    _, (burger,) = seed_restaurant()
    svc, cart_id = _cart(db)
    with pytest.raises(ValidationError):
        svc.add_item(cart_id, NewCartItem(quantity=0, menu_item_id=burger))


def test_remove_and_clear_are_idempotent(db):
    _, (burger,) = seed_restaurant()
    svc, cart_id = _cart(db)
    line = svc.add_item(cart_id, NewCartItem(menu_item_id=burger))
    svc.remove_item(cart_id, line)
    svc.remove_item(cart_id, line)
    svc.remove_item(cart_id, "no-such-line")
    svc.add_item(cart_id, NewCartItem(menu_item_id=burger))
    svc.clear_cart(cart_id)
    svc.clear_cart(cart_id)
    assert svc.get_cart_by_id(cart_id).is_empty


def test_other_restaurant_requires_replace(db):
    _, (burger,) = seed_restaurant()
    other_restaurant, (pho,) = seed_restaurant(items=((1250, "Pho"),))
    svc, cart_id = _cart(db)
    svc.add_item(cart_id, NewCartItem(menu_item_id=burger))
    with pytest.raises(InvalidState):
        svc.add_item(cart_id, NewCartItem(menu_item_id=pho))
    # cart untouched by the rejected add
    assert [it.menu_item_id for it in svc.get_cart_by_id(cart_id).items] == [burger]

    svc.add_item(cart_id, NewCartItem(menu_item_id=pho), replace=True)
    view = svc.get_cart_by_id(cart_id)
    assert view.restaurant_id == other_restaurant
    assert [it.menu_item_id for it in view.items] == [pho]


def test_line_keeps_price_at_time_of_add(db):
    _, (burger,) = seed_restaurant(items=((1000, "Burger"),))
    svc, cart_id = _cart(db)
    svc.add_item(cart_id, NewCartItem(menu_item_id=burger))
    set_price(burger, 1500)
    db.expire_all()
    assert svc.get_cart_by_id(cart_id).items[0].unit_price_cents == 1000


def test_unknown_menu_item_and_cart(db):
    svc, cart_id = _cart(db)
    with pytest.raises(NotFound):
        svc.add_item(cart_id, NewCartItem(menu_item_id="missing"))
    with pytest.raises(NotFound):
        svc.get_cart_by_id("missing")


def test_cart_api_flow():
    _, (burger,) = seed_restaurant(items=((1000, "Burger"),))
    customer = new_id("c")
    res = client.post("/api/carts", json={"customer_id": customer})
    assert res.status_code == 200
    cart_id = res.json()["cart_id"]

    res = client.post(f"/api/carts/{cart_id}/items", json={"menu_item_id": burger, "quantity": 2})
    assert res.status_code == 200
    body = res.json()
    item_id = body["item_id"]
    assert body["cart"]["subtotal_cents"] == 2000

    res = client.get("/api/carts", params={"customer_id": customer})
    assert res.status_code == 200
    assert res.json()["cart_id"] == cart_id

    res = client.put(f"/api/carts/{cart_id}/items/{item_id}", json={"quantity": 0})
    assert res.status_code == 200
    assert res.json()["items"] == []

    assert client.delete(f"/api/carts/{cart_id}").status_code == 200
    assert client.get("/api/carts/missing").status_code == 404


def test_cart_api_conflict_on_other_restaurant():
    _, (burger,) = seed_restaurant()
    _, (pho,) = seed_restaurant(items=((1250, "Pho"),))
    cart_id = client.post("/api/carts", json={"customer_id": new_id("c")}).json()["cart_id"]
    client.post(f"/api/carts/{cart_id}/items", json={"menu_item_id": burger})
    res = client.post(f"/api/carts/{cart_id}/items", json={"menu_item_id": pho})
    assert res.status_code == 409


def test_concurrent_adds_to_one_cart_are_not_lost(db):
    _, (burger,) = seed_restaurant()
    svc, cart_id = _cart(db)

    def add(_):
        s = SessionLocal()
        try:
            return CartService(s).add_item(cart_id, NewCartItem(menu_item_id=burger))
        finally:
            s.close()

    with ThreadPoolExecutor(max_workers=8) as ex:
        line_ids = list(ex.map(add, range(8)))

    assert len(set(line_ids)) == 1
    db.expire_all()
    view = svc.get_cart_by_id(cart_id)
    assert [ln.quantity for ln in view.items] == [8]


def test_lock_files_are_bounded_and_stable():
    cart_id = new_id("cart")
    assert lock_path(cart_id) == lock_path(cart_id)
    paths = {lock_path(new_id("cart")) for _ in range(500)}
    assert len(paths) <= settings.CART_LOCK_STRIPES
