from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from foodmarket.api.deps import get_actor, http_error
from foodmarket.db import get_db
from foodmarket.services.checkout_service import CheckoutService
from foodmarket.services.errors import Forbidden
from foodmarket.services.order_status import (
    Actor,
    OrderStatusService,
    order_to_dict,
    transition_table,
)

router = APIRouter(tags=["orders"])


class PlaceOrderIn(BaseModel):
    cart_id: str
    delivery_address: str
    special_instructions: Optional[str] = None
    success_redirect: Optional[str] = None
    cancel_redirect: Optional[str] = None


class UpdateStatusIn(BaseModel):
    status: str
    notes: Optional[str] = None


class PaymentSessionIn(BaseModel):
    success_redirect: str
    cancel_redirect: str


@router.post("", summary="Place order (checkout)")
def place_order(
    payload: PlaceOrderIn,
    db: Session = Depends(get_db),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    svc = CheckoutService(db)
    try:
        result = svc.place_order(
            payload.cart_id,
            payload.delivery_address,
            special_instructions=payload.special_instructions,
            idempotency_key=idempotency_key,
            success_redirect=payload.success_redirect,
            cancel_redirect=payload.cancel_redirect,
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("/status-transitions", summary="Allowed order status transitions")
def status_transitions():
    return transition_table()


@router.get("", summary="List orders for a customer or a restaurant")
def list_orders(
    customer_id: Optional[str] = Query(None),
    restaurant_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(get_actor),
):
    if bool(customer_id) == bool(restaurant_id):
        raise HTTPException(status_code=422, detail="Pass exactly one of customer_id or restaurant_id")
    svc = OrderStatusService(db)
    try:
        if customer_id:
            orders = svc.list_for_customer(customer_id, actor=actor)
        else:
            orders = svc.list_for_restaurant(restaurant_id, actor=actor, status=status)
        return {"items": [order_to_dict(o) for o in orders], "total": len(orders)}
    except Exception as e:
        raise http_error(e)


@router.get("/{order_id}", summary="Get order")
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(get_actor),
):
    try:
        return order_to_dict(OrderStatusService(db).get_order(order_id, actor=actor))
    except Exception as e:
        raise http_error(e)


@router.put("/{order_id}/status", summary="Move order to a new status")
def update_status(
    order_id: str,
    payload: UpdateStatusIn,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(get_actor),
):
    try:
        order = OrderStatusService(db).update_status(
            order_id, payload.status, notes=payload.notes, actor=actor
        )
        return order_to_dict(order)
    except Exception as e:
        raise http_error(e)


@router.post("/{order_id}/payment-session", summary="Start a new hosted payment for a pending order")
def resume_payment(
    order_id: str,
    payload: PaymentSessionIn,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(get_actor),
):
    try:
        if actor is None or actor.role != Actor.CUSTOMER or not actor.actor_id:
            raise Forbidden("Only the ordering customer can restart payment")
        result = CheckoutService(db).resume_payment(
            order_id, actor.actor_id, payload.success_redirect, payload.cancel_redirect
        )
        return result.to_dict()
    except Exception as e:
        raise http_error(e)
