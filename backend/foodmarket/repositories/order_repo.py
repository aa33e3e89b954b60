from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.orm import Session

from foodmarket.models.order import Order, OrderLine, OrderStatusHistory


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.idempotency_key == key).first()

    def add(self, order: Order, lines: List[OrderLine], initial_notes: Optional[str] = None):
        self.db.add(order)
        for ln in lines:
            order.lines.append(ln)
        order.status_history.append(
            OrderStatusHistory(
                sequence=0, status=order.status, notes=initial_notes, actor="system"
            )
        )
        self.db.flush()
        return order

    def compare_and_set_status(
        self, order_id: str, expected: str, new: str, completed_at: Optional[datetime] = None
    ) -> bool:
        """UPDATE ... WHERE status = expected. False when another writer got there first."""
        values = {Order.status: new}
        if completed_at is not None:
            values[Order.completed_at] = completed_at
        n = (
            self.db.query(Order)
            .filter(Order.id == order_id, Order.status == expected)
            .update(values, synchronize_session=False)
        )
        return n == 1

    def append_history(
        self, order_id: str, status: str, notes: Optional[str], actor: str
    ) -> OrderStatusHistory:
        seq = (
            self.db.query(func.coalesce(func.max(OrderStatusHistory.sequence), -1))
            .filter(OrderStatusHistory.order_id == order_id)
            .scalar()
        )
        h = OrderStatusHistory(
            order_id=order_id,
            sequence=int(seq) + 1,
            status=status,
            notes=notes,
            actor=actor,
            changed_at=datetime.now(timezone.utc),
        )
        self.db.add(h)
        self.db.flush()
        return h

    def history(self, order_id: str) -> List[OrderStatusHistory]:
        return (
            self.db.query(OrderStatusHistory)
            .filter(OrderStatusHistory.order_id == order_id)
            .order_by(OrderStatusHistory.sequence)
            .all()
        )

    def list_for_customer(self, customer_id: str, limit: int = 50) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(Order.customer_id == customer_id)
            .order_by(Order.created_at.desc())
            .limit(limit)
            .all()
        )

    def list_for_restaurant(
        self, restaurant_id: str, status: Optional[str] = None, limit: int = 100
    ) -> List[Order]:
        qry = self.db.query(Order).filter(Order.restaurant_id == restaurant_id)
        if status:
            qry = qry.filter(Order.status == status)
        return qry.order_by(Order.created_at.desc()).limit(limit).all()

    def count(self, **filters) -> int:
        qry = self.db.query(func.count(Order.id))
        for k, v in filters.items():
            qry = qry.filter(getattr(Order, k) == v)
        return qry.scalar() or 0


def new_order_id() -> str:
    return uuid4().hex


def gen_order_number() -> str:
    return f"ORD-{uuid4().hex[:10].upper()}"
