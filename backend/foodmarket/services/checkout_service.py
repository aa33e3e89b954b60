import time
from dataclasses import asdict, dataclass, replace
from typing import Dict, Optional, Tuple
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from foodmarket.adapters.event_publisher import (
    LoggingEventPublisher,
    OrderCreated,
    publish_safely,
)
from foodmarket.adapters.hosted_checkout import default_hosted_checkout
from foodmarket.config import settings
from foodmarket.models.cart import Cart
from foodmarket.models.checkout_session import SessionStatus
from foodmarket.models.idempotency import IdempotencyStatus
from foodmarket.models.order import Order, OrderLine
from foodmarket.repositories.cart_repo import CartRepository
from foodmarket.repositories.checkout_session_repo import CheckoutSessionRepository
from foodmarket.repositories.idempotency_repo import IdempotencyRepository
from foodmarket.repositories.order_repo import (
    OrderRepository,
    gen_order_number,
    new_order_id,
)
from foodmarket.services.cart_service import CartService, LineSnapshot, snapshot
from foodmarket.services.errors import (
    Conflict,
    EmptyCart,
    Forbidden,
    InvalidState,
    MarketplaceError,
    NotFound,
    PaymentNotReady,
    ValidationError,
)
from foodmarket.services.order_status import OrderStatus
from foodmarket.services.payment_gate import PaymentReadinessGate, Readiness
from foodmarket.services.pricing import PriceBreakdown, PricingPolicy, compute
from foodmarket.utils.locks import cart_lock
from foodmarket.utils.log import get_logger

log = get_logger("checkout")


@dataclass(frozen=True)
class OrderPlacementResult:
    """
    order_id is set whenever an order exists. `error` is non-fatal: the order
    was created but the hosted payment could not be set up, so callers can tell
    "partially happened" apart from an exception ("nothing happened").
    """

    order_id: str
    order_number: str
    status: str
    total_cents: int
    checkout_url: Optional[str] = None
    error: Optional[str] = None
    replayed: bool = False

    def to_dict(self) -> Dict:
        d = asdict(self)
        d.pop("replayed")
        return d

    @classmethod
    def from_dict(cls, data: Dict, replayed: bool = False) -> "OrderPlacementResult":
        return cls(
            order_id=data["order_id"],
            order_number=data["order_number"],
            status=data["status"],
            total_cents=data["total_cents"],
            checkout_url=data.get("checkout_url"),
            error=data.get("error"),
            replayed=replayed,
        )


class CheckoutService:
    OPERATION = "place_order"

    def __init__(
        self,
        db: Session,
        gate: Optional[PaymentReadinessGate] = None,
        hosted_checkout=None,
        publisher=None,
        policy: Optional[PricingPolicy] = None,
        idem_repo: Optional[IdempotencyRepository] = None,
    ):
        self.db = db
        self.policy = policy or PricingPolicy.from_settings()
        self.carts = CartService(db, policy=self.policy)
        self.cart_repo = CartRepository(db)
        self.orders = OrderRepository(db)
        self.sessions = CheckoutSessionRepository(db)
        self.idem_repo = idem_repo or IdempotencyRepository()
        self.gate = gate or PaymentReadinessGate.for_session(db)
        self.hosted = hosted_checkout or default_hosted_checkout()
        self.publisher = publisher or LoggingEventPublisher()

    def place_order(
        self,
        cart_id: str,
        delivery_address: str,
        special_instructions: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        success_redirect: Optional[str] = None,
        cancel_redirect: Optional[str] = None,
    ) -> OrderPlacementResult:
        address = (delivery_address or "").strip()
        if not address:
            raise ValidationError("Delivery address is required")
        hosted = self._hosted_requested(success_redirect, cancel_redirect)

        # checked-out carts are still found here, so a retry after success replays
        cart_row = self.cart_repo.get(cart_id)
        if not cart_row:
            raise EmptyCart(f"Cart {cart_id} not found")

        scoped_key = None
        if idempotency_key:
            # keys are scoped to the customer so two customers never share a result
            scoped_key = f"{self.OPERATION}:{cart_row.customer_id}:{idempotency_key}"
            prior = self._claim_key(scoped_key, fingerprint=cart_id)
            if prior:
                return prior

        try:
            return self._place(
                cart_id,
                address,
                (special_instructions or "").strip() or None,
                scoped_key,
                hosted,
                success_redirect,
                cancel_redirect,
            )
        except Exception as e:
            if scoped_key:
                # only reached before the order commits; later failures come back as result.error
                self.idem_repo.mark_failed(scoped_key, f"{type(e).__name__}: {e}")
            raise

    def resume_payment(
        self,
        order_id: str,
        customer_id: str,
        success_redirect: str,
        cancel_redirect: str,
    ) -> OrderPlacementResult:
        """New hosted session for a Pending order whose previous session failed or expired."""
        if not self._hosted_requested(success_redirect, cancel_redirect):
            raise ValidationError("success_redirect and cancel_redirect are required")
        order = self.orders.get(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        if order.customer_id != customer_id:
            raise Forbidden("Not your order")
        if order.status != OrderStatus.PENDING.value:
            raise InvalidState(f"Order is {order.status}; payment can no longer be started")
        latest = self.sessions.latest_for_order(order_id)
        if latest and latest.status == SessionStatus.PAID:
            raise InvalidState("Order is already paid")
        if latest and latest.status == SessionStatus.OPEN and latest.checkout_url:
            return self._result(order, checkout_url=latest.checkout_url)
        return self._open_session(order, success_redirect, cancel_redirect)

    # ---- steps ----

    def _place(
        self,
        cart_id: str,
        address: str,
        instructions: Optional[str],
        scoped_key: Optional[str],
        hosted: bool,
        success_redirect: Optional[str],
        cancel_redirect: Optional[str],
    ) -> OrderPlacementResult:
        with cart_lock(cart_id):
            if scoped_key:
                existing = self.orders.get_by_idempotency_key(scoped_key)
                if existing:
                    # committed by an earlier owner whose key was released before completing
                    log.warning(
                        "event=idempotent_order_exists key=%s order_id=%s", scoped_key, existing.id
                    )
                    return self._finish_existing(
                        existing, scoped_key, hosted, success_redirect, cancel_redirect
                    )

            cart = self.carts.load_locked(cart_id)
            if not cart or not cart.items:
                raise EmptyCart("Cart is empty")
            if not cart.restaurant_id:
                raise ValidationError("Cart is not associated with a restaurant")

            lines = snapshot(cart)
            pricing = compute(lines, self.policy)

            readiness = self.gate.check(cart.restaurant_id)
            if not self.gate.decide(cart.restaurant_id, readiness):
                log.info(
                    "event=payment_not_ready restaurant_id=%s cart_id=%s",
                    cart.restaurant_id,
                    cart_id,
                )
                raise PaymentNotReady(
                    "This restaurant is not set up to accept payments yet"
                )

            try:
                order = self._create_order(
                    cart,
                    lines,
                    pricing,
                    address,
                    instructions,
                    scoped_key,
                    unverified=readiness is Readiness.CHECK_FAILED,
                )
                if not hosted:
                    self.carts.check_out_locked(cart)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                existing = self.orders.get_by_idempotency_key(scoped_key) if scoped_key else None
                if not existing:
                    raise
                log.warning("event=idempotent_order_exists key=%s order_id=%s", scoped_key, existing.id)
                return self._finish_existing(
                    existing, scoped_key, hosted, success_redirect, cancel_redirect
                )
            except Exception:
                self.db.rollback()
                raise

        # the order is committed: from here on nothing may raise, and a retry must replay
        result = self._result(order)
        try:
            log.info(
                "event=order_placed order_id=%s restaurant_id=%s total_cents=%s hosted=%s",
                order.id,
                order.restaurant_id,
                order.total_cents,
                hosted,
            )
            publish_safely(
                self.publisher,
                OrderCreated(
                    order_id=order.id,
                    order_number=order.order_number,
                    customer_id=order.customer_id,
                    restaurant_id=order.restaurant_id,
                    total_cents=order.total_cents,
                ),
            )
            if hosted:
                if scoped_key:
                    self.idem_repo.record_progress(scoped_key, result.to_dict())
                result = self._open_session(order, success_redirect, cancel_redirect)
        except Exception as e:
            self.db.rollback()
            log.exception("event=post_commit_failed order_id=%s", result.order_id)
            result = replace(
                result, error=f"Order placed but payment could not be initiated: {e}"
            )
        self._complete_key(scoped_key, result)
        return result

    def _finish_existing(
        self,
        order: Order,
        scoped_key: Optional[str],
        hosted: bool,
        success_redirect: Optional[str],
        cancel_redirect: Optional[str],
    ) -> OrderPlacementResult:
        """Result for an order that is already committed, opening its payment session if it never got one."""
        latest = self.sessions.latest_for_order(order.id)
        if latest is None and hosted and order.status == OrderStatus.PENDING.value:
            try:
                result = self._open_session(order, success_redirect, cancel_redirect)
            except Exception as e:
                self.db.rollback()
                log.exception("event=post_commit_failed order_id=%s", order.id)
                result = self._result(
                    order, error=f"Order placed but payment could not be initiated: {e}"
                )
        elif latest is None or latest.status in (SessionStatus.PAID, SessionStatus.FAILED, SessionStatus.EXPIRED):
            result = self._result(order)
        elif latest.status == SessionStatus.OPEN and latest.checkout_url:
            result = self._result(order, checkout_url=latest.checkout_url)
        else:
            # create failed, or the earlier owner died before the provider answered
            reason = latest.failure_reason or "payment session was never confirmed"
            result = self._result(
                order, error=f"Order placed but payment could not be initiated: {reason}"
            )
        self._complete_key(scoped_key, result)
        return result

    def _complete_key(self, scoped_key: Optional[str], result: OrderPlacementResult):
        if not scoped_key:
            return
        try:
            self.idem_repo.mark_completed(scoped_key, result.to_dict())
        except Exception:
            # stays IN_PROGRESS until reconciliation releases it; a retry then finds the order
            log.exception("event=idempotency_complete_failed key=%s order_id=%s", scoped_key, result.order_id)

    def _create_order(
        self,
        cart: Cart,
        lines: Tuple[LineSnapshot, ...],
        pricing: PriceBreakdown,
        address: str,
        instructions: Optional[str],
        scoped_key: Optional[str],
        unverified: bool,
    ) -> Order:
        order = Order(
            id=new_order_id(),
            order_number=gen_order_number(),
            customer_id=cart.customer_id,
            restaurant_id=cart.restaurant_id,
            cart_id=cart.id,
            status=OrderStatus.PENDING.value,
            subtotal_cents=pricing.subtotal_cents,
            tax_cents=pricing.tax_cents,
            delivery_fee_cents=pricing.delivery_fee_cents,
            service_fee_cents=pricing.service_fee_cents,
            total_cents=pricing.total_cents,
            delivery_address=address,
            special_instructions=instructions,
            idempotency_key=scoped_key,
            readiness_unverified=unverified,
        )
        order_lines = [
            OrderLine(
                id=uuid4().hex,
                position=i,
                menu_item_id=ln.menu_item_id,
                is_custom=ln.is_custom,
                name=ln.name,
                options=ln.options,
                quantity=ln.quantity,
                unit_price_cents=ln.unit_price_cents,
                line_total_cents=ln.line_total_cents,
            )
            for i, ln in enumerate(lines)
        ]
        notes = "Payment readiness unverified (check failed open)" if unverified else None
        return self.orders.add(order, order_lines, initial_notes=notes)

    def _open_session(
        self, order: Order, success_redirect: str, cancel_redirect: str
    ) -> OrderPlacementResult:
        sess = self.sessions.create(order.id, order.total_cents)
        self.db.commit()
        try:
            resp = self.hosted.create_session(
                order.id, order.total_cents, success_redirect, cancel_redirect
            )
        except Exception as e:
            # the order stays Pending and the failed session row is the reconciliation marker
            if isinstance(e, MarketplaceError):
                log.warning(
                    "event=checkout_session_failed order_id=%s error=%s", order.id, e
                )
            else:
                log.exception("event=checkout_session_failed order_id=%s", order.id)
            sess.status = SessionStatus.CREATE_FAILED
            sess.failure_reason = str(e)[:1024]
            self.db.commit()
            return self._result(
                order,
                error=f"Order placed but payment could not be initiated: {e}",
            )
        sess.provider_session_id = resp.get("session_id")
        sess.checkout_url = resp["checkout_url"]
        self.db.commit()
        log.info(
            "event=checkout_session_opened order_id=%s session_id=%s",
            order.id,
            sess.id,
        )
        return self._result(order, checkout_url=sess.checkout_url)

    def _claim_key(self, key: str, fingerprint: str) -> Optional[OrderPlacementResult]:
        """
        None when this call owns the key and should place the order; otherwise
        the stored result of the earlier placement.
        """
        rec, created = self.idem_repo.begin(key, self.OPERATION, fingerprint)
        if created:
            return None
        if rec.request_fingerprint and rec.request_fingerprint != fingerprint:
            raise Conflict("Idempotency key was already used for a different cart")

        deadline = time.monotonic() + settings.IDEMPOTENCY_WAIT_SECONDS
        while True:
            if rec.status == IdempotencyStatus.COMPLETED and rec.response_body:
                log.info("event=idempotent_replay key=%s", key)
                return OrderPlacementResult.from_dict(rec.response_body, replayed=True)
            if rec.status == IdempotencyStatus.FAILED and self.idem_repo.reclaim(key):
                return None
            if time.monotonic() >= deadline:
                raise Conflict("A checkout with this idempotency key is still in progress")
            time.sleep(0.05)
            rec = self.idem_repo.get(key)

    @staticmethod
    def _hosted_requested(success_redirect: Optional[str], cancel_redirect: Optional[str]) -> bool:
        if bool(success_redirect) != bool(cancel_redirect):
            raise ValidationError("Both success and cancel redirects are needed for hosted payment")
        return bool(success_redirect)

    @staticmethod
    def _result(order: Order, checkout_url: str = None, error: str = None) -> OrderPlacementResult:
        return OrderPlacementResult(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            total_cents=order.total_cents,
            checkout_url=checkout_url,
            error=error,
        )
