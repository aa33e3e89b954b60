from datetime import datetime, timezone

from foodmarket.db import Base
from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship


def _utcnow():
    return datetime.now(timezone.utc)


class Cart(Base):
    __tablename__ = "carts"
    id = Column(String(32), primary_key=True)
    customer_id = Column(String(64), nullable=False, index=True)
    restaurant_id = Column(String(64), nullable=True, index=True)
    # equals customer_id while the cart is active, NULL once checked out or abandoned;
    # the unique index keeps one active cart per customer
    active_key = Column(String(64), unique=True, nullable=True)
    checked_out = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.position",
    )

    @property
    def is_active(self) -> bool:
        return self.active_key is not None
