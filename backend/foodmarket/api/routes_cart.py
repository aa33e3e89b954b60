from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from foodmarket.api.deps import http_error
from foodmarket.db import get_db
from foodmarket.services.cart_service import CartService, NewCartItem

router = APIRouter(prefix="/api/carts", tags=["cart"])


class CreateCartIn(BaseModel):
    customer_id: str
    restaurant_id: Optional[str] = None
    replace: bool = False


class AddItemIn(BaseModel):
    menu_item_id: Optional[str] = None
    quantity: int = 1
    options: Optional[Dict[str, str]] = None
    is_custom: bool = False
    custom_name: Optional[str] = None
    custom_price_cents: Optional[int] = None
    restaurant_id: Optional[str] = None
    replace: bool = False


class UpdateQuantityIn(BaseModel):
    quantity: int = Field(..., ge=0)


@router.post("", summary="Create (or retarget) the customer's active cart")
def create_cart(payload: CreateCartIn, db: Session = Depends(get_db)):
    svc = CartService(db)
    try:
        cart_id = svc.create_cart(payload.customer_id, payload.restaurant_id, replace=payload.replace)
        return svc.get_cart_by_id(cart_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("", summary="Get the customer's active cart")
def get_cart(customer_id: str = Query(...), db: Session = Depends(get_db)):
    try:
        return CartService(db).get_cart(customer_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("/{cart_id}", summary="Get cart")
def get_cart_by_id(cart_id: str, db: Session = Depends(get_db)):
    try:
        return CartService(db).get_cart_by_id(cart_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{cart_id}/items", summary="Add item to cart")
def add_item(cart_id: str, payload: AddItemIn, db: Session = Depends(get_db)):
    svc = CartService(db)
    item = NewCartItem(
        quantity=payload.quantity,
        menu_item_id=payload.menu_item_id,
        options=payload.options,
        is_custom=payload.is_custom,
        custom_name=payload.custom_name,
        custom_price_cents=payload.custom_price_cents,
        restaurant_id=payload.restaurant_id,
    )
    try:
        item_id = svc.add_item(cart_id, item, replace=payload.replace)
        return {"item_id": item_id, "cart": svc.get_cart_by_id(cart_id).to_dict()}
    except Exception as e:
        raise http_error(e)


@router.put("/{cart_id}/items/{item_id}", summary="Set item quantity (0 removes)")
def update_quantity(
    cart_id: str, item_id: str, payload: UpdateQuantityIn, db: Session = Depends(get_db)
):
    svc = CartService(db)
    try:
        svc.update_quantity(cart_id, item_id, payload.quantity)
        return svc.get_cart_by_id(cart_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.delete("/{cart_id}/items/{item_id}", summary="Remove item")
def remove_item(cart_id: str, item_id: str, db: Session = Depends(get_db)):
    try:
        CartService(db).remove_item(cart_id, item_id)
    except Exception as e:
        raise http_error(e)
    return {"ok": True}


@router.delete("/{cart_id}", summary="Clear cart")
def clear_cart(cart_id: str, db: Session = Depends(get_db)):
    try:
        CartService(db).clear_cart(cart_id)
    except Exception as e:
        raise http_error(e)
    return {"ok": True}
