#!/usr/bin/env python3
"""
Seed restaurants' menu items and payment onboarding statuses.

Reads a JSON file when given (a list of items, or {"items": [...]}) and
always ensures the small fixed set below exists, so local runs and the
concurrency tool have known ids to work with.

Usage:
    python scripts/seed_menu.py
    python scripts/seed_menu.py --file menu.json
"""
import argparse
import json
import os
import sys

# allow running from repo/scripts
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from foodmarket.db import SessionLocal, init_db
from foodmarket.models.vendor_payment import OnboardingStatus
from foodmarket.repositories.menu_item_repo import MenuItemRepository
from foodmarket.repositories.vendor_payment_repo import VendorPaymentRepository
from foodmarket.utils.transactions import smart_transaction

SEED_ITEMS = [
    {"id": "m-burger", "restaurant_id": "r-ready", "name": "Classic Burger", "price_cents": 1000, "category": "mains"},
    {"id": "m-fries", "restaurant_id": "r-ready", "name": "Fries", "price_cents": 350, "category": "sides"},
    {"id": "m-shake", "restaurant_id": "r-ready", "name": "Milkshake", "price_cents": 450, "category": "drinks"},
    {"id": "m-pho", "restaurant_id": "r-pending", "name": "Beef Pho", "price_cents": 1250, "category": "mains"},
    {"id": "m-rolls", "restaurant_id": "r-restricted", "name": "Spring Rolls", "price_cents": 600, "category": "starters"},
]

SEED_VENDORS = {
    "r-ready": OnboardingStatus.COMPLETE,
    "r-pending": OnboardingStatus.PENDING,
    "r-restricted": OnboardingStatus.RESTRICTED,
}


def _normalize_entry(entry):
    price = entry.get("price_cents")
    if price is None:
        # "12.50" style prices
        price = round(float(entry.get("price", 0)) * 100)
    return {
        "id": entry.get("id"),
        "restaurant_id": entry.get("restaurant_id") or entry.get("restaurantId"),
        "name": entry.get("name") or "",
        "price_cents": int(price),
        "description": entry.get("description"),
        "category": entry.get("category"),
    }


def load_entries(path):
    if not path:
        return []
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("items", [])
    return [_normalize_entry(e) for e in data]


def seed(entries):
    init_db(reset=False)
    db = SessionLocal()
    menu = MenuItemRepository(db)
    vendors = VendorPaymentRepository(db)
    count = 0
    try:
        with smart_transaction(db):
            for e in entries + SEED_ITEMS:
                if not e.get("restaurant_id") or not e.get("name"):
                    continue
                menu.create_or_update(
                    restaurant_id=e["restaurant_id"],
                    name=e["name"],
                    price_cents=e["price_cents"],
                    menu_item_id=e.get("id"),
                    description=e.get("description"),
                    category=e.get("category"),
                )
                count += 1
            for restaurant_id, status in SEED_VENDORS.items():
                vendors.set_status(restaurant_id, status)
    finally:
        db.close()
    print("Seeded menu items:", count, "vendors:", len(SEED_VENDORS))


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", default=None, help="JSON list of menu items")
    args = parser.parse_args()
    if args.file and not os.path.exists(args.file):
        print("File not found:", args.file)
        sys.exit(1)
    seed(load_entries(args.file))
