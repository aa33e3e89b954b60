from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from foodmarket.db import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Order(Base):
    """
    Immutable snapshot of a cart at checkout. Only ``status`` (through the
    status machine) and ``completed_at`` change after creation; the audit
    trail lives in ``status_history``.
    """

    __tablename__ = "orders"
    id = Column(String(32), primary_key=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    customer_id = Column(String(64), nullable=False, index=True)
    restaurant_id = Column(String(64), nullable=False, index=True)
    cart_id = Column(String(32), nullable=True)
    status = Column(
        String(32), nullable=False, default="Pending"
    )  # Pending, Preparing, Ready, Completed, Cancelled
    subtotal_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    delivery_fee_cents = Column(Integer, nullable=False, default=0)
    service_fee_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    delivery_address = Column(Text, nullable=False)
    special_instructions = Column(Text, nullable=True)
    idempotency_key = Column(String(160), unique=True, nullable=True)
    # set when the readiness gate failed open, for later reconciliation
    readiness_unverified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    lines = relationship(
        "OrderLine",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderLine.position",
    )
    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.sequence",
    )


class OrderLine(Base):
    __tablename__ = "order_lines"
    id = Column(String(32), primary_key=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    menu_item_id = Column(String(32), nullable=True)
    is_custom = Column(Boolean, default=False, nullable=False)
    name = Column(String(256), nullable=False)
    options = Column(JSON, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    line_total_cents = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="lines")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"
    __table_args__ = (UniqueConstraint("order_id", "sequence"),)
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False, default=0)
    status = Column(String(32), nullable=False)
    notes = Column(Text, nullable=True)
    actor = Column(String(128), nullable=True)
    changed_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    order = relationship("Order", back_populates="status_history")
