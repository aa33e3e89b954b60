from typing import Dict, Optional

from sqlalchemy.orm import Session

from foodmarket.models.checkout_session import SessionStatus
from foodmarket.repositories.checkout_session_repo import CheckoutSessionRepository
from foodmarket.repositories.order_repo import OrderRepository
from foodmarket.services.cart_service import CartService
from foodmarket.services.errors import Conflict, InvalidTransition, NotFound, ValidationError
from foodmarket.services.order_status import (
    TERMINAL_STATUSES,
    Actor,
    OrderStatus,
    OrderStatusService,
    parse_status,
)
from foodmarket.utils.log import get_logger

log = get_logger("payments")

SUCCEEDED = "succeeded"
FAILED = "failed"
EXPIRED = "expired"

_SESSION_STATUS = {
    SUCCEEDED: SessionStatus.PAID,
    FAILED: SessionStatus.FAILED,
    EXPIRED: SessionStatus.EXPIRED,
}


class PaymentCallbackService:
    """
    Applies hosted checkout outcomes. Success checks out the cart the order
    came from; failure or expiry cancels the order as the system actor.
    Replayed callbacks leave everything as it is.
    """

    def __init__(self, db: Session, publisher=None):
        self.db = db
        self.orders = OrderRepository(db)
        self.sessions = CheckoutSessionRepository(db)
        self.status_svc = OrderStatusService(db, publisher=publisher)
        self.carts = CartService(db)

    def handle_checkout_event(
        self,
        order_id: str,
        event: str,
        provider_session_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Dict:
        event = (event or "").strip().lower()
        if event not in _SESSION_STATUS:
            raise ValidationError(f"Unknown checkout event: {event!r}")
        order = self.orders.get(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        sess = self.sessions.find(order_id, provider_session_id)
        if not sess:
            raise NotFound(f"No checkout session for order {order_id}")

        new_status = _SESSION_STATUS[event]
        if sess.status == new_status:
            log.info(
                "event=checkout_callback_duplicate order_id=%s session_id=%s status=%s",
                order_id,
                sess.id,
                new_status,
            )
            return {"order_id": order_id, "session_status": sess.status, "applied": False}
        if sess.status == SessionStatus.PAID:
            # a late failure never overrides a captured payment
            log.warning(
                "event=checkout_callback_after_paid order_id=%s session_id=%s event=%s",
                order_id,
                sess.id,
                event,
            )
            return {"order_id": order_id, "session_status": sess.status, "applied": False}

        sess.status = new_status
        if reason:
            sess.failure_reason = reason[:1024]
        self.db.commit()
        log.info(
            "event=checkout_callback order_id=%s session_id=%s status=%s",
            order_id,
            sess.id,
            new_status,
        )

        if event == SUCCEEDED:
            if order.cart_id:
                self.carts.mark_checked_out(order.cart_id)
        else:
            self._cancel(order_id, f"Payment {event}" + (f": {reason}" if reason else ""))

        self.db.expire_all()
        order = self.orders.get(order_id)
        return {
            "order_id": order_id,
            "order_status": order.status,
            "session_status": new_status,
            "applied": True,
        }

    def _cancel(self, order_id: str, notes: str):
        order = self.orders.get(order_id)
        if parse_status(order.status) in TERMINAL_STATUSES:
            log.info(
                "event=cancel_skipped_terminal order_id=%s status=%s", order_id, order.status
            )
            return
        try:
            self.status_svc.update_status(
                order_id, OrderStatus.CANCELLED, notes=notes, actor=Actor.system()
            )
        except (Conflict, InvalidTransition) as e:
            # another writer moved the order first; their outcome stands
            log.info("event=cancel_lost_race order_id=%s error=%s", order_id, e)
