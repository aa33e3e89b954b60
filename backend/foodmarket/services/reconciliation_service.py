"""
Periodic cleanup run by the scheduler in ``foodmarket.main``.

Each step is safe to repeat and safe to run next to live traffic: the
idempotency release and the status changes are compare-and-swap updates.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List

from sqlalchemy.orm import Session

from foodmarket.config import settings
from foodmarket.models.checkout_session import SessionStatus
from foodmarket.models.order import Order
from foodmarket.repositories.checkout_session_repo import CheckoutSessionRepository
from foodmarket.repositories.idempotency_repo import IdempotencyRepository
from foodmarket.services.errors import Conflict, InvalidTransition
from foodmarket.services.order_status import (
    TERMINAL_STATUSES,
    Actor,
    OrderStatus,
    OrderStatusService,
    parse_status,
)
from foodmarket.utils.log import get_logger

log = get_logger("reconcile")


class ReconciliationService:
    def __init__(self, db: Session, idem_repo: IdempotencyRepository = None, publisher=None):
        self.db = db
        self.idem_repo = idem_repo or IdempotencyRepository()
        self.sessions = CheckoutSessionRepository(db)
        self.status_svc = OrderStatusService(db, publisher=publisher)

    def run(self, now: datetime = None) -> Dict:
        now = now or datetime.now(timezone.utc)
        summary = {
            "released_keys": self.release_stale_idempotency(now),
            "expired_sessions": self.expire_stale_sessions(now),
            "needs_attention": self.report_unverified(),
        }
        if any(summary.values()):
            log.info(
                "event=reconcile_run released=%d expired=%d attention=%d",
                len(summary["released_keys"]),
                len(summary["expired_sessions"]),
                len(summary["needs_attention"]),
            )
        return summary

    def release_stale_idempotency(self, now: datetime = None) -> List[str]:
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.IDEMPOTENCY_STALE_SECONDS)
        keys = self.idem_repo.release_stale(cutoff)
        for key in keys:
            log.warning("event=idempotency_released key=%s", key)
        return keys

    def expire_stale_sessions(self, now: datetime = None) -> List[str]:
        """Open hosted sessions past their TTL are expired and their orders cancelled."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=settings.CHECKOUT_SESSION_TTL_SECONDS)
        expired = []
        for sess in self.sessions.list_open_before(cutoff):
            sess.status = SessionStatus.EXPIRED
            sess.failure_reason = "expired unpaid"
            order_id = sess.order_id
            expired.append(sess.id)
            self.db.commit()
            latest = self.sessions.latest_for_order(order_id)
            if latest is None or latest.id == sess.id:
                self._cancel(order_id)
        return expired

    def report_unverified(self) -> List[str]:
        """Pending orders that need a human: unverified readiness or no usable payment session."""
        flagged = (
            self.db.query(Order)
            .filter(
                Order.status == OrderStatus.PENDING.value,
                Order.readiness_unverified.is_(True),
            )
            .all()
        )
        ids = []
        for order in flagged:
            log.warning("event=order_readiness_unverified order_id=%s", order.id)
            ids.append(order.id)
        for sess in self.sessions.list_failed_creations():
            order = self.status_svc.orders.get(sess.order_id)
            latest = self.sessions.latest_for_order(sess.order_id)
            if not order or order.status != OrderStatus.PENDING.value or latest.id != sess.id:
                continue
            log.warning(
                "event=order_payment_not_initiated order_id=%s session_id=%s reason=%s",
                order.id,
                sess.id,
                sess.failure_reason,
            )
            if order.id not in ids:
                ids.append(order.id)
        return ids

    def _cancel(self, order_id: str):
        order = self.status_svc.orders.get(order_id)
        if not order or parse_status(order.status) in TERMINAL_STATUSES:
            return
        try:
            self.status_svc.update_status(
                order_id,
                OrderStatus.CANCELLED,
                notes="Payment session expired",
                actor=Actor.system(),
            )
        except (Conflict, InvalidTransition) as e:
            log.info("event=expire_cancel_skipped order_id=%s error=%s", order_id, e)
