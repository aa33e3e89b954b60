from sqlalchemy import Boolean, Column, Integer, String, Text
from foodmarket.db import Base

class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(String(32), primary_key=True)
    restaurant_id = Column(String(64), index=True, nullable=False)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(Integer, nullable=False, default=0)
    category = Column(String(128), nullable=True)
    active = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<MenuItem id={self.id} name={self.name} restaurant={self.restaurant_id}>"
