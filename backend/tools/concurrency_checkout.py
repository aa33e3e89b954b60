import argparse
import concurrent.futures
import json
import os
from collections import Counter
from uuid import uuid4

import requests

BASE = os.environ.get("FOODMARKET_BASE", "http://127.0.0.1:8000")


def _post(path, payload, headers=None, method="post"):
    try:
        r = getattr(requests, method)(f"{BASE}{path}", json=payload, headers=headers or {}, timeout=20)
        return r.status_code, r.text
    except requests.RequestException as e:
        return "ERR", str(e)


def prepare_cart(customer_id, menu_item_id, qty):
    status, body = _post("/api/carts", {"customer_id": customer_id})
    cart_id = json.loads(body)["cart_id"]
    _post(f"/api/carts/{cart_id}/items", {"menu_item_id": menu_item_id, "quantity": qty})
    return cart_id


def run_orders(workers, key, cart_id, address):
    print(f"Placing order concurrently: workers={workers} key={key} cart={cart_id}")
    payload = {"cart_id": cart_id, "delivery_address": address}
    headers = {"Idempotency-Key": key}
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(_post, "/api/orders", payload, headers) for _ in range(workers)]
        results = [f.result() for f in futures]
    for r in results:
        print(r)
    ids = {json.loads(body).get("order_id") for code, body in results if code == 200}
    print("Distinct order ids:", ids)
    return ids


def run_status(workers, order_id, restaurant_id, target):
    print(f"Updating status concurrently: workers={workers} order={order_id} -> {target}")
    headers = {"X-Actor-Role": "restaurant", "X-Restaurant-Id": restaurant_id}
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [
            ex.submit(_post, f"/api/orders/{order_id}/status", {"status": target}, headers, "put")
            for _ in range(workers)
        ]
        results = [f.result() for f in futures]
    print("Status codes:", Counter(code for code, _ in results))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency tool for checkout and status updates.")
    sub = parser.add_subparsers(dest="mode", required=True)

    o = sub.add_parser("orders")
    o.add_argument("--workers", type=int, default=8)
    o.add_argument("--idempotency", default=None)
    o.add_argument("--customer", default=None)
    o.add_argument("--menu-item", default="m-burger")
    o.add_argument("--qty", type=int, default=1)
    o.add_argument("--address", default="1 Test Street")

    s = sub.add_parser("status")
    s.add_argument("--workers", type=int, default=8)
    s.add_argument("--order", required=True)
    s.add_argument("--restaurant", default="r-ready")
    s.add_argument("--target", default="Preparing")

    args = parser.parse_args()

    if args.mode == "orders":
        cart = prepare_cart(args.customer or f"cust-{uuid4().hex[:8]}", args.menu_item, args.qty)
        run_orders(args.workers, args.idempotency or f"idem-{uuid4().hex[:8]}", cart, args.address)
    elif args.mode == "status":
        run_status(args.workers, args.order, args.restaurant, args.target)
