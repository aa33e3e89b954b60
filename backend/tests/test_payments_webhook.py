import logging

from fastapi.testclient import TestClient

from conftest import new_id, seed_restaurant
from foodmarket.adapters.event_publisher import InMemoryEventPublisher
from foodmarket.adapters.hosted_checkout import MockHostedCheckoutAdapter
from foodmarket.db import SessionLocal
from foodmarket.main import app
from foodmarket.models.checkout_session import SessionStatus
from foodmarket.models.vendor_payment import OnboardingStatus
from foodmarket.repositories.checkout_session_repo import CheckoutSessionRepository
from foodmarket.services.cart_service import CartService, NewCartItem
from foodmarket.services.checkout_service import CheckoutService
from foodmarket.services.order_status import Actor, OrderStatusService
from foodmarket.services.payment_callback_service import PaymentCallbackService
from foodmarket.services.payment_gate import PaymentReadinessGate

client = TestClient(app)


def _hosted_order():
    restaurant_id, (burger,) = seed_restaurant()
    customer = new_id("c")
    adapter = MockHostedCheckoutAdapter()
    s = SessionLocal()
    try:
        carts = CartService(s)
        cart_id = carts.create_cart(customer)
        carts.add_item(cart_id, NewCartItem(menu_item_id=burger))
        result = CheckoutService(
            s, hosted_checkout=adapter, publisher=InMemoryEventPublisher()
        ).place_order(
            cart_id,
            "1 High Street",
            success_redirect="https://shop.test/ok",
            cancel_redirect="https://shop.test/cancel",
        )
    finally:
        s.close()
    return result.order_id, customer, restaurant_id, adapter.sessions[0]["session_id"]


def test_success_marks_paid_and_checks_out_cart(db):
    order_id, customer, _, session_id = _hosted_order()
    assert not CartService(db).get_cart(customer).is_empty

    out = PaymentCallbackService(db).handle_checkout_event(order_id, "succeeded", session_id)
    assert out["applied"] is True
    assert out["order_status"] == "Pending"
    assert CheckoutSessionRepository(db).latest_for_order(order_id).status == SessionStatus.PAID
    assert CartService(db).get_cart(customer).is_empty

    again = PaymentCallbackService(db).handle_checkout_event(order_id, "succeeded", session_id)
    assert again["applied"] is False


def test_failure_cancels_order_as_system(db):
    order_id, customer, _, session_id = _hosted_order()
    publisher = InMemoryEventPublisher()
    out = PaymentCallbackService(db, publisher=publisher).handle_checkout_event(
        order_id, "failed", session_id, reason="card declined"
    )
    assert out["order_status"] == "Cancelled"
    order = OrderStatusService(db).get_order(order_id)
    last = order.status_history[-1]
    assert (last.status, last.actor) == ("Cancelled", "system")
    assert "card declined" in last.notes
    assert [e.new_status for e in publisher.of_type("OrderStatusChanged")] == ["Cancelled"]
    # the cart stays with the customer so they can try again
    assert not CartService(db).get_cart(customer).is_empty


def test_late_failure_after_payment_is_ignored(db):
    order_id, _, _, session_id = _hosted_order()
    svc = PaymentCallbackService(db)
    svc.handle_checkout_event(order_id, "succeeded", session_id)
    out = svc.handle_checkout_event(order_id, "expired", session_id)
    assert out["applied"] is False
    assert OrderStatusService(db).get_order(order_id).status == "Pending"


def test_terminal_order_is_left_alone(db):
    order_id, _, restaurant_id, session_id = _hosted_order()
    OrderStatusService(db).update_status(order_id, "Cancelled", actor=Actor.operator(restaurant_id))
    out = PaymentCallbackService(db).handle_checkout_event(order_id, "expired", session_id)
    assert out["applied"] is True
    order = OrderStatusService(db).get_order(order_id)
    assert order.status == "Cancelled"
    assert len(order.status_history) == 2


def test_webhook_api():
    order_id, _, _, session_id = _hosted_order()
    r = client.post(
        "/api/payments/webhooks/checkout",
        json={"order_id": order_id, "event": "refunded", "session_id": session_id},
    )
    assert r.status_code == 422
    r = client.post("/api/payments/webhooks/checkout", json={"order_id": "missing", "event": "failed"})
    assert r.status_code == 404
    r = client.post(
        "/api/payments/webhooks/checkout",
        json={"order_id": order_id, "event": "expired", "session_id": session_id},
    )
    assert r.status_code == 200
    assert r.json()["order_status"] == "Cancelled"


def test_readiness_api():
    ready, _ = seed_restaurant(status=OnboardingStatus.COMPLETE)
    pending, _ = seed_restaurant(status=OnboardingStatus.PENDING)
    body = client.get(f"/api/payments/restaurants/{ready}/readiness").json()
    assert body == {"restaurant_id": ready, "result": "ready", "accepts_orders": True}
    body = client.get(f"/api/payments/restaurants/{pending}/readiness").json()
    assert body["accepts_orders"] is False


class _UnreachableReadiness:
    def is_ready(self, restaurant_id):
        raise ConnectionError("payments service unreachable")


def test_readiness_api_outage_reports_without_fail_open_event(caplog, monkeypatch):
    monkeypatch.setattr(
        PaymentReadinessGate, "for_session", classmethod(lambda cls, db: cls(_UnreachableReadiness()))
    )
    restaurant_id = new_id("r")
    with caplog.at_level(logging.INFO, logger="foodmarket"):
        body = client.get(f"/api/payments/restaurants/{restaurant_id}/readiness").json()
    assert body == {"restaurant_id": restaurant_id, "result": "check_failed", "accepts_orders": True}
    messages = [r.getMessage() for r in caplog.records]
    assert any("payment_readiness_check_failed" in m for m in messages)
    assert not any("payment_readiness_fail_open" in m for m in messages)
