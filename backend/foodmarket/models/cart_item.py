from sqlalchemy import JSON, Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from foodmarket.db import Base


class CartItem(Base):
    __tablename__ = "cart_items"
    id = Column(String(32), primary_key=True)
    cart_id = Column(
        String(32), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = Column(Integer, nullable=False, default=0)
    menu_item_id = Column(String(32), nullable=True, index=True)  # NULL for custom requests
    is_custom = Column(Boolean, default=False, nullable=False)
    name = Column(String(256), nullable=False)
    options = Column(JSON, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(
        Integer, nullable=False, default=0
    )  # price at time of add

    cart = relationship("Cart", back_populates="items")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity
