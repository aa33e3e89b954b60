"""
Order status lifecycle.

The transition table below is the single source of truth: the service
enforces it, and ``transition_table()`` is served to clients so any UI that
pre-validates actions mirrors it exactly.

Transitions use compare-and-swap on the current status; of several
concurrent writers only one moves the order, the others get Conflict (or
InvalidTransition if they read the already-moved status).
"""
import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from foodmarket.adapters.event_publisher import (
    LoggingEventPublisher,
    OrderStatusChanged,
    publish_safely,
)
from foodmarket.models.order import Order
from foodmarket.repositories.order_repo import OrderRepository
from foodmarket.services.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from foodmarket.utils.log import get_logger

log = get_logger("orders")


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ALLOWED_TRANSITIONS.items() if not nxt)

_ORDER = list(OrderStatus)


def parse_status(value) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    for s in OrderStatus:
        if str(value).strip().lower() == s.value.lower():
            return s
    raise ValidationError(f"Unknown order status: {value!r}")


def allowed_next(status) -> List[OrderStatus]:
    return sorted(ALLOWED_TRANSITIONS[parse_status(status)], key=_ORDER.index)


def can_transition(current, target) -> bool:
    return parse_status(target) in ALLOWED_TRANSITIONS[parse_status(current)]


def transition_table() -> Dict[str, List[str]]:
    return {s.value: [n.value for n in allowed_next(s)] for s in OrderStatus}


@dataclass(frozen=True)
class Actor:
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    SYSTEM = "system"

    role: str
    actor_id: Optional[str] = None
    restaurant_id: Optional[str] = None

    @classmethod
    def system(cls, actor_id: str = None) -> "Actor":
        return cls(role=cls.SYSTEM, actor_id=actor_id)

    @classmethod
    def customer(cls, customer_id: str) -> "Actor":
        return cls(role=cls.CUSTOMER, actor_id=customer_id)

    @classmethod
    def operator(cls, restaurant_id: str, operator_id: str = None) -> "Actor":
        return cls(role=cls.RESTAURANT, actor_id=operator_id, restaurant_id=restaurant_id)

    @property
    def label(self) -> str:
        return f"{self.role}:{self.actor_id}" if self.actor_id else self.role

    def operates(self, restaurant_id: str) -> bool:
        return self.role == self.RESTAURANT and self.restaurant_id == restaurant_id


def order_to_dict(order: Order) -> Dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "customer_id": order.customer_id,
        "restaurant_id": order.restaurant_id,
        "status": order.status,
        "allowed_next_statuses": [s.value for s in allowed_next(order.status)],
        "subtotal_cents": order.subtotal_cents,
        "tax_cents": order.tax_cents,
        "delivery_fee_cents": order.delivery_fee_cents,
        "service_fee_cents": order.service_fee_cents,
        "total_cents": order.total_cents,
        "delivery_address": order.delivery_address,
        "special_instructions": order.special_instructions,
        "readiness_unverified": order.readiness_unverified,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
        "lines": [
            {
                "menu_item_id": ln.menu_item_id,
                "is_custom": ln.is_custom,
                "name": ln.name,
                "options": ln.options,
                "quantity": ln.quantity,
                "unit_price_cents": ln.unit_price_cents,
                "line_total_cents": ln.line_total_cents,
            }
            for ln in order.lines
        ],
        "status_history": [
            {
                "status": h.status,
                "notes": h.notes,
                "actor": h.actor,
                "changed_at": h.changed_at.isoformat() if h.changed_at else None,
            }
            for h in order.status_history
        ],
    }


class OrderStatusService:
    def __init__(self, db: Session, publisher=None):
        self.db = db
        self.orders = OrderRepository(db)
        self.publisher = publisher or LoggingEventPublisher()

    def update_status(
        self,
        order_id: str,
        target,
        notes: Optional[str] = None,
        actor: Optional[Actor] = None,
    ) -> Order:
        target = parse_status(target)
        if actor is None:
            raise Forbidden("An actor is required to change order status")
        order = self.orders.get(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        if not (actor.role == Actor.SYSTEM or actor.operates(order.restaurant_id)):
            raise Forbidden("Only the restaurant or the system may change order status")

        current = parse_status(order.status)
        if not can_transition(current, target):
            log.info(
                "event=invalid_transition order_id=%s from=%s to=%s actor=%s",
                order_id,
                current.value,
                target.value,
                actor.label,
            )
            raise InvalidTransition(
                f"Cannot move order from {current.value} to {target.value}"
            )

        completed_at = datetime.now(timezone.utc) if target is OrderStatus.COMPLETED else None
        try:
            swapped = self.orders.compare_and_set_status(
                order_id, current.value, target.value, completed_at=completed_at
            )
            if not swapped:
                self.db.rollback()
                log.info(
                    "event=status_conflict order_id=%s expected=%s to=%s actor=%s",
                    order_id,
                    current.value,
                    target.value,
                    actor.label,
                )
                raise Conflict(
                    f"Order {order_id} changed status concurrently; reload and retry"
                )
            self.orders.append_history(order_id, target.value, notes, actor.label)
            self.db.commit()
        except (IntegrityError, OperationalError) as e:
            # a concurrent writer holds the row or already appended the history entry
            self.db.rollback()
            log.info("event=status_conflict order_id=%s error=%s", order_id, e)
            raise Conflict(f"Order {order_id} changed status concurrently; reload and retry")

        log.info(
            "event=order_status_changed order_id=%s from=%s to=%s actor=%s",
            order_id,
            current.value,
            target.value,
            actor.label,
        )
        publish_safely(
            self.publisher,
            OrderStatusChanged(
                order_id=order_id,
                old_status=current.value,
                new_status=target.value,
                actor=actor.label,
                notes=notes,
            ),
        )
        self.db.expire_all()
        return self.orders.get(order_id)

    # ---- reads ----

    def get_order(self, order_id: str, actor: Optional[Actor] = None) -> Order:
        order = self.orders.get(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        if actor is not None and not self._can_read(order, actor):
            raise Forbidden("Not allowed to view this order")
        return order

    def list_for_customer(self, customer_id: str, actor: Optional[Actor] = None) -> List[Order]:
        if actor is not None and actor.role == Actor.CUSTOMER and actor.actor_id != customer_id:
            raise Forbidden("Customers can only list their own orders")
        if actor is not None and actor.role == Actor.RESTAURANT:
            raise Forbidden("Restaurants list orders by restaurant")
        return self.orders.list_for_customer(customer_id)

    def list_for_restaurant(
        self, restaurant_id: str, actor: Optional[Actor] = None, status=None
    ) -> List[Order]:
        if actor is not None and not (actor.role == Actor.SYSTEM or actor.operates(restaurant_id)):
            raise Forbidden("Not an operator of this restaurant")
        status_value = parse_status(status).value if status else None
        return self.orders.list_for_restaurant(restaurant_id, status=status_value)

    @staticmethod
    def _can_read(order: Order, actor: Actor) -> bool:
        if actor.role == Actor.SYSTEM:
            return True
        if actor.role == Actor.CUSTOMER:
            return actor.actor_id == order.customer_id
        return actor.operates(order.restaurant_id)
