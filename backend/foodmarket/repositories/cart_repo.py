from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from foodmarket.models.cart import Cart
from foodmarket.models.cart_item import CartItem


class CartRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, cart_id: str) -> Optional[Cart]:
        """Any cart by id, including checked-out and abandoned ones."""
        return self.db.query(Cart).filter(Cart.id == cart_id).first()

    def get_active(self, cart_id: str) -> Optional[Cart]:
        return (
            self.db.query(Cart)
            .filter(Cart.id == cart_id, Cart.active_key.isnot(None))
            .first()
        )

    def get_active_for_customer(self, customer_id: str) -> Optional[Cart]:
        return self.db.query(Cart).filter(Cart.active_key == customer_id).first()

    def create(self, customer_id: str, restaurant_id: Optional[str]) -> Cart:
        c = Cart(
            id=uuid4().hex,
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            active_key=customer_id,
        )
        self.db.add(c)
        self.db.flush()
        return c

    def touch(self, cart: Cart):
        cart.updated_at = datetime.now(timezone.utc)

    def find_mergeable(
        self, cart: Cart, menu_item_id: str, options: Optional[Dict]
    ) -> Optional[CartItem]:
        """Catalog line with the same item and options; custom lines never match."""
        wanted = options or {}
        return next(
            (
                it
                for it in cart.items
                if not it.is_custom
                and it.menu_item_id == menu_item_id
                and (it.options or {}) == wanted
            ),
            None,
        )

    def add_item(
        self,
        cart: Cart,
        name: str,
        quantity: int,
        unit_price_cents: int,
        menu_item_id: Optional[str] = None,
        options: Optional[Dict] = None,
        is_custom: bool = False,
    ) -> CartItem:
        position = max((it.position for it in cart.items), default=-1) + 1
        item = CartItem(
            id=uuid4().hex,
            cart_id=cart.id,
            position=position,
            menu_item_id=menu_item_id,
            is_custom=is_custom,
            name=name,
            options=options or None,
            quantity=quantity,
            unit_price_cents=unit_price_cents,
        )
        self.db.add(item)
        cart.items.append(item)
        self.db.flush()
        return item

    def get_item(self, cart: Cart, item_id: str) -> Optional[CartItem]:
        return next((it for it in cart.items if it.id == item_id), None)

    def remove_item(self, cart: Cart, item: CartItem):
        cart.items.remove(item)
        self.db.flush()

    def clear(self, cart: Cart) -> int:
        removed = len(cart.items)
        cart.items.clear()
        self.db.flush()
        return removed

    def deactivate(self, cart: Cart, checked_out: bool):
        """Release the customer's active slot; checked_out marks conversion into an order."""
        cart.active_key = None
        cart.checked_out = checked_out
        self.db.flush()
