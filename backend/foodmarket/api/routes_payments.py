from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from foodmarket.api.deps import http_error
from foodmarket.db import get_db
from foodmarket.services.payment_callback_service import PaymentCallbackService
from foodmarket.services.payment_gate import PaymentReadinessGate, Readiness

router = APIRouter(prefix="/api/payments", tags=["payments"])


class CheckoutEventIn(BaseModel):
    order_id: str
    event: str  # succeeded | failed | expired
    session_id: Optional[str] = None
    reason: Optional[str] = None


@router.get("/restaurants/{restaurant_id}/readiness", summary="Payment readiness of a restaurant")
def readiness(restaurant_id: str, db: Session = Depends(get_db)):
    gate = PaymentReadinessGate.for_session(db)
    result = gate.check(restaurant_id)
    return {
        "restaurant_id": restaurant_id,
        "result": result.value,
        # read-only: decide() would log a fail-open that never admitted an order
        "accepts_orders": result is not Readiness.NOT_READY,
    }


@router.post("/webhooks/checkout", summary="Hosted checkout outcome callback")
def checkout_webhook(payload: CheckoutEventIn, db: Session = Depends(get_db)):
    svc = PaymentCallbackService(db)
    try:
        return svc.handle_checkout_event(
            payload.order_id,
            payload.event,
            provider_session_id=payload.session_id,
            reason=payload.reason,
        )
    except Exception as e:
        raise http_error(e)
