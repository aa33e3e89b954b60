from typing import List, Optional, Tuple
from uuid import uuid4

from foodmarket.models.menu_item import MenuItem
from sqlalchemy import func
from sqlalchemy.orm import Session


class MenuItemRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_active(self, menu_item_id: str) -> Optional[MenuItem]:
        return (
            self.db.query(MenuItem)
            .filter(MenuItem.id == menu_item_id, MenuItem.active == True)
            .first()
        )

    def list(
        self,
        restaurant_id: Optional[str] = None,
        q: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[MenuItem], int]:
        query = self.db.query(MenuItem).filter(MenuItem.active == True)
        if restaurant_id:
            query = query.filter(MenuItem.restaurant_id == restaurant_id)
        if q:
            like = f"%{q}%"
            query = query.filter(
                (MenuItem.name.ilike(like)) | (MenuItem.description.ilike(like))
            )
        total = query.with_entities(func.count()).scalar() or 0
        items = query.order_by(MenuItem.name).offset((page - 1) * size).limit(size).all()
        return items, total

    def create_or_update(
        self,
        restaurant_id: str,
        name: str,
        price_cents: int,
        menu_item_id: Optional[str] = None,
        description: str = None,
        category: str = None,
        active: bool = True,
    ) -> MenuItem:
        m = None
        if menu_item_id:
            m = self.db.query(MenuItem).filter(MenuItem.id == menu_item_id).first()
        if m:
            m.restaurant_id = restaurant_id
            m.name = name
            m.price_cents = price_cents
            m.description = description
            m.category = category
            m.active = active
        else:
            m = MenuItem(
                id=menu_item_id or uuid4().hex,
                restaurant_id=restaurant_id,
                name=name,
                price_cents=price_cents,
                description=description,
                category=category,
                active=active,
            )
            self.db.add(m)
        self.db.flush()
        return m
