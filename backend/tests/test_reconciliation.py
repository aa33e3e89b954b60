from datetime import datetime, timedelta, timezone

from conftest import new_id, seed_restaurant
from foodmarket.adapters.event_publisher import InMemoryEventPublisher
from foodmarket.adapters.hosted_checkout import MockHostedCheckoutAdapter
from foodmarket.config import settings
from foodmarket.db import SessionLocal
from foodmarket.models.checkout_session import SessionStatus
from foodmarket.models.idempotency import IdempotencyStatus
from foodmarket.repositories.checkout_session_repo import CheckoutSessionRepository
from foodmarket.repositories.idempotency_repo import IdempotencyRepository
from foodmarket.services.cart_service import CartService, NewCartItem
from foodmarket.services.checkout_service import CheckoutService
from foodmarket.services.order_status import OrderStatusService
from foodmarket.services.payment_gate import PaymentReadinessGate
from foodmarket.services.reconciliation_service import ReconciliationService


class _BrokenReadiness:
    def is_ready(self, restaurant_id):
        raise ConnectionError("down")


def _place(hosted=None, gate=None):
    _, (burger,) = seed_restaurant()
    s = SessionLocal()
    try:
        carts = CartService(s)
        cart_id = carts.create_cart(new_id("c"))
        carts.add_item(cart_id, NewCartItem(menu_item_id=burger))
        kwargs = {}
        if hosted:
            kwargs = {"success_redirect": "https://shop.test/ok", "cancel_redirect": "https://shop.test/no"}
        return CheckoutService(
            s, gate=gate, hosted_checkout=hosted, publisher=InMemoryEventPublisher()
        ).place_order(cart_id, "1 High Street", **kwargs)
    finally:
        s.close()


def _later(seconds):
    return datetime.now(timezone.utc) + timedelta(seconds=seconds + 60)


def test_stale_in_progress_keys_are_released(db):
    repo = IdempotencyRepository()
    key = new_id("stuck")
    repo.begin(key, "place_order", "cart-x")

    assert key not in ReconciliationService(db).release_stale_idempotency()
    released = ReconciliationService(db).release_stale_idempotency(
        now=_later(settings.IDEMPOTENCY_STALE_SECONDS)
    )
    assert key in released
    assert repo.get(key).status == IdempotencyStatus.FAILED
    assert repo.reclaim(key) is True


def test_open_sessions_past_ttl_expire_and_cancel(db):
    result = _place(hosted=MockHostedCheckoutAdapter())
    svc = ReconciliationService(db)
    assert svc.expire_stale_sessions() == []

    sess = CheckoutSessionRepository(db).latest_for_order(result.order_id)
    expired = svc.expire_stale_sessions(now=_later(settings.CHECKOUT_SESSION_TTL_SECONDS))
    assert sess.id in expired
    db.expire_all()
    assert CheckoutSessionRepository(db).get(sess.id).status == SessionStatus.EXPIRED
    order = OrderStatusService(db).get_order(result.order_id)
    assert order.status == "Cancelled"
    assert order.status_history[-1].actor.startswith("system")


def test_orders_needing_attention_are_reported(db):
    unverified = _place(gate=PaymentReadinessGate(_BrokenReadiness()))
    not_initiated = _place(hosted=MockHostedCheckoutAdapter(fail_with="down"))
    flagged = ReconciliationService(db).report_unverified()
    assert unverified.order_id in flagged
    assert not_initiated.order_id in flagged

    summary = ReconciliationService(db).run()
    assert set(summary) == {"released_keys", "expired_sessions", "needs_attention"}
