from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from foodmarket.models.cart import Cart
from foodmarket.repositories.cart_repo import CartRepository
from foodmarket.repositories.menu_item_repo import MenuItemRepository
from foodmarket.services.errors import (
    Conflict,
    InvalidState,
    NotFound,
    ValidationError,
)
from foodmarket.services.pricing import PriceBreakdown, PricingPolicy, compute
from foodmarket.utils.locks import cart_lock
from foodmarket.utils.log import get_logger

log = get_logger("cart")


@dataclass(frozen=True)
class NewCartItem:
    """
    Either a catalog item (menu_item_id) or a custom request negotiated with
    the restaurant (is_custom, custom_name, custom_price_cents).
    """

    quantity: int = 1
    menu_item_id: Optional[str] = None
    options: Optional[Dict[str, str]] = None
    is_custom: bool = False
    custom_name: Optional[str] = None
    custom_price_cents: Optional[int] = None
    restaurant_id: Optional[str] = None


@dataclass(frozen=True)
class LineSnapshot:
    item_id: str
    menu_item_id: Optional[str]
    is_custom: bool
    name: str
    options: Optional[Dict[str, str]]
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> Dict:
        return {
            "id": self.item_id,
            "menu_item_id": self.menu_item_id,
            "is_custom": self.is_custom,
            "name": self.name,
            "options": self.options,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


@dataclass(frozen=True)
class CartView:
    cart_id: Optional[str]
    customer_id: str
    restaurant_id: Optional[str]
    items: Tuple[LineSnapshot, ...] = ()
    pricing: PriceBreakdown = field(default_factory=lambda: PriceBreakdown(0, 0, 0, 0, 0))
    updated_at: Optional[datetime] = None

    @classmethod
    def empty(cls, customer_id: str) -> "CartView":
        return cls(cart_id=None, customer_id=customer_id, restaurant_id=None)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> Dict:
        return {
            "cart_id": self.cart_id,
            "customer_id": self.customer_id,
            "restaurant_id": self.restaurant_id,
            "items": [it.to_dict() for it in self.items],
            **self.pricing.to_dict(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


def snapshot(cart: Cart) -> Tuple[LineSnapshot, ...]:
    """Frozen copy of the cart lines; later cart or catalog changes do not reach it."""
    return tuple(
        LineSnapshot(
            item_id=it.id,
            menu_item_id=it.menu_item_id,
            is_custom=bool(it.is_custom),
            name=it.name,
            options=dict(it.options) if it.options else None,
            quantity=int(it.quantity),
            unit_price_cents=int(it.unit_price_cents),
        )
        for it in cart.items
    )


class CartService:
    """
    One active cart per customer. Every mutation of a cart runs inside its
    file lock and commits before the lock is released.

    Restaurant policy: a non-empty cart for another restaurant is never
    replaced silently. Callers get InvalidState and must retry with
    replace=True, which clears the cart and retargets it.

    Merge policy: catalog items with the same menu item and options add to the
    existing line's quantity; custom requests always get their own line.
    """

    def __init__(self, db: Session, policy: Optional[PricingPolicy] = None):
        self.db = db
        self.cart_repo = CartRepository(db)
        self.menu_repo = MenuItemRepository(db)
        self.policy = policy or PricingPolicy.from_settings()

    # ---- reads ----

    def view(self, cart: Cart) -> CartView:
        lines = snapshot(cart)
        return CartView(
            cart_id=cart.id,
            customer_id=cart.customer_id,
            restaurant_id=cart.restaurant_id,
            items=lines,
            pricing=compute(lines, self.policy),
            updated_at=cart.updated_at,
        )

    def get_cart(self, customer_id: str) -> CartView:
        cart = self.cart_repo.get_active_for_customer(customer_id)
        if not cart:
            return CartView.empty(customer_id)
        return self.view(cart)

    def get_cart_by_id(self, cart_id: str) -> CartView:
        cart = self.cart_repo.get_active(cart_id)
        if not cart:
            raise NotFound(f"Cart {cart_id} not found")
        return self.view(cart)

    # ---- mutations ----

    def create_cart(
        self, customer_id: str, restaurant_id: Optional[str] = None, replace: bool = False
    ) -> str:
        if not customer_id:
            raise ValidationError("customer_id is required")
        existing = self.cart_repo.get_active_for_customer(customer_id)
        if existing:
            with self._locked(existing.id):
                cart = self._load_locked(existing.id)
                if cart:
                    self._retarget_locked(cart, restaurant_id, replace)
                    self._commit()
                    return cart.id
            # checked out while we waited for the lock; fall through and create a new one
        try:
            cart = self.cart_repo.create(customer_id, restaurant_id)
            self.db.commit()
        except IntegrityError:
            # a concurrent request created the customer's active cart first
            self.db.rollback()
            if not self.cart_repo.get_active_for_customer(customer_id):
                raise Conflict("Cart creation raced with another request; try again")
            return self.create_cart(customer_id, restaurant_id, replace)
        log.info("event=cart_created cart_id=%s customer_id=%s", cart.id, customer_id)
        return cart.id

    def add_item(self, cart_id: str, item: NewCartItem, replace: bool = False) -> str:
        """Returns the id of the line that now holds the item."""
        qty = self._validate_quantity(item.quantity, minimum=1)
        with self._locked(cart_id):
            cart = self._load_locked(cart_id)
            if not cart:
                raise NotFound(f"Cart {cart_id} not found")

            if item.is_custom:
                name = (item.custom_name or "").strip()
                if not name:
                    raise ValidationError("Custom request needs a name")
                if item.custom_price_cents is None or int(item.custom_price_cents) < 0:
                    raise ValidationError("Custom request needs a non-negative price")
                restaurant_id = item.restaurant_id or cart.restaurant_id
                if not restaurant_id:
                    raise ValidationError("Custom request needs a restaurant")
                self._retarget_locked(cart, restaurant_id, replace)
                line = self.cart_repo.add_item(
                    cart,
                    name=name,
                    quantity=qty,
                    unit_price_cents=int(item.custom_price_cents),
                    is_custom=True,
                )
            else:
                if not item.menu_item_id:
                    raise ValidationError("menu_item_id is required for catalog items")
                menu_item = self.menu_repo.get_active(item.menu_item_id)
                if not menu_item:
                    raise NotFound(f"Menu item {item.menu_item_id} not found")
                self._retarget_locked(cart, menu_item.restaurant_id, replace)
                line = self.cart_repo.find_mergeable(cart, menu_item.id, item.options)
                if line:
                    line.quantity += qty
                else:
                    # price snapshot: later catalog changes do not touch this line
                    line = self.cart_repo.add_item(
                        cart,
                        name=menu_item.name,
                        quantity=qty,
                        unit_price_cents=menu_item.price_cents,
                        menu_item_id=menu_item.id,
                        options=item.options,
                    )
            self.cart_repo.touch(cart)
            line_id = line.id
            self._commit()
        return line_id

    def update_quantity(self, cart_id: str, item_id: str, quantity: int):
        """quantity 0 removes the line; negative quantities are rejected."""
        qty = self._validate_quantity(quantity, minimum=0)
        with self._locked(cart_id):
            cart = self._load_locked(cart_id)
            if not cart:
                raise NotFound(f"Cart {cart_id} not found")
            line = self.cart_repo.get_item(cart, item_id)
            if not line:
                raise NotFound(f"Cart item {item_id} not found")
            if qty == 0:
                self.cart_repo.remove_item(cart, line)
            else:
                line.quantity = qty
            self.cart_repo.touch(cart)
            self._commit()

    def remove_item(self, cart_id: str, item_id: str):
        with self._locked(cart_id):
            cart = self._load_locked(cart_id)
            line = self.cart_repo.get_item(cart, item_id) if cart else None
            if not line:
                log.debug("event=remove_noop cart_id=%s item_id=%s", cart_id, item_id)
                return
            self.cart_repo.remove_item(cart, line)
            self.cart_repo.touch(cart)
            self._commit()

    def clear_cart(self, cart_id: str):
        with self._locked(cart_id):
            cart = self._load_locked(cart_id)
            if not cart or not cart.items:
                log.debug("event=clear_noop cart_id=%s", cart_id)
                return
            self.cart_repo.clear(cart)
            self.cart_repo.touch(cart)
            self._commit()

    def mark_checked_out(self, cart_id: str) -> bool:
        """Used by the payment callback once a hosted payment succeeded."""
        with self._locked(cart_id):
            cart = self._load_locked(cart_id)
            if not cart:
                return False
            self.check_out_locked(cart)
            self._commit()
        return True

    # ---- helpers for callers already inside cart_lock ----

    def load_locked(self, cart_id: str) -> Optional[Cart]:
        return self._load_locked(cart_id)

    def check_out_locked(self, cart: Cart):
        self.cart_repo.deactivate(cart, checked_out=True)
        log.info("event=cart_checked_out cart_id=%s", cart.id)

    # ---- internals ----

    @contextmanager
    def _locked(self, cart_id: str):
        with cart_lock(cart_id):
            try:
                yield
            except Exception:
                self.db.rollback()
                raise

    def _load_locked(self, cart_id: str) -> Optional[Cart]:
        # another session may have committed while we waited on the lock
        self.db.expire_all()
        return self.cart_repo.get_active(cart_id)

    def _retarget_locked(self, cart: Cart, restaurant_id: Optional[str], replace: bool):
        if not restaurant_id or cart.restaurant_id == restaurant_id:
            return
        if cart.restaurant_id and cart.items:
            if not replace:
                raise InvalidState(
                    f"Cart holds items from restaurant {cart.restaurant_id}; "
                    "clear it or confirm replacement"
                )
            self.cart_repo.clear(cart)
            log.info(
                "event=cart_replaced cart_id=%s old_restaurant=%s new_restaurant=%s",
                cart.id,
                cart.restaurant_id,
                restaurant_id,
            )
        cart.restaurant_id = restaurant_id
        self.cart_repo.touch(cart)

    @staticmethod
    def _validate_quantity(quantity, minimum: int) -> int:
        try:
            qty = int(quantity)
        except (TypeError, ValueError):
            raise ValidationError("Quantity must be an integer")
        if qty != quantity or qty < minimum:
            raise ValidationError(f"Quantity must be >= {minimum}")
        return qty

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
