import os
from uuid import uuid4

# keep test runs away from the developer database
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_foodmarket.db")

import pytest

from foodmarket.db import SessionLocal, init_db
from foodmarket.models.vendor_payment import OnboardingStatus
from foodmarket.repositories.menu_item_repo import MenuItemRepository
from foodmarket.repositories.vendor_payment_repo import VendorPaymentRepository
from foodmarket.utils.transactions import smart_transaction


@pytest.fixture(autouse=True, scope="session")
def setup_db():
    init_db(reset=True)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:8]}"


def seed_restaurant(status=OnboardingStatus.COMPLETE, items=((1000, "Burger"),)):
    """Creates a restaurant with the given onboarding status; returns (restaurant_id, [menu_item_id])."""
    restaurant_id = new_id("r")
    s = SessionLocal()
    try:
        with smart_transaction(s):
            menu = MenuItemRepository(s)
            ids = [
                menu.create_or_update(restaurant_id=restaurant_id, name=name, price_cents=price).id
                for price, name in items
            ]
            if status is not None:
                VendorPaymentRepository(s).set_status(restaurant_id, status)
    finally:
        s.close()
    return restaurant_id, ids


def set_price(menu_item_id: str, price_cents: int):
    s = SessionLocal()
    try:
        m = MenuItemRepository(s).get_active(menu_item_id)
        m.price_cents = price_cents
        s.commit()
    finally:
        s.close()


def set_vendor_status(restaurant_id: str, status: str):
    s = SessionLocal()
    try:
        VendorPaymentRepository(s).set_status(restaurant_id, status)
        s.commit()
    finally:
        s.close()
