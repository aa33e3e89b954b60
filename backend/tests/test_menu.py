from fastapi.testclient import TestClient

from conftest import seed_restaurant
from foodmarket.main import app

client = TestClient(app)


def test_list_menu_items_for_restaurant():
    restaurant_id, _ = seed_restaurant(items=((1000, "Burger"), (350, "Fries")))
    res = client.get("/api/menu-items", params={"restaurant_id": restaurant_id})
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 2
    assert [m["name"] for m in body["items"]] == ["Burger", "Fries"]


def test_get_menu_item():
    _, (fries,) = seed_restaurant(items=((350, "Fries"),))
    res = client.get(f"/api/menu-items/{fries}")
    assert res.status_code == 200
    assert res.json()["price_cents"] == 350
    assert client.get("/api/menu-items/missing").status_code == 404
