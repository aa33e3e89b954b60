from fastapi import APIRouter
from sqlalchemy import text

from foodmarket.adapters.hosted_checkout import default_hosted_checkout
from foodmarket.adapters.payment_readiness import HttpReadinessBackend
from foodmarket.config import settings
from foodmarket.db import engine
from foodmarket.utils.log import get_logger

log = get_logger("health")

router = APIRouter()


@router.get("/health", tags=["health"])
def health():
    db_ok = False
    checkout_ok = False
    readiness_ok = True
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            db_ok = True
    except Exception as e:
        log.warning("event=health_db_failed error=%s", e)
    try:
        checkout_ok = default_hosted_checkout().health_check()
    except Exception as e:
        log.warning("event=health_checkout_failed error=%s", e)
    if settings.PAYMENT_READINESS_URL:
        readiness_ok = HttpReadinessBackend(settings.PAYMENT_READINESS_URL).health_check()

    return {
        "status": "ok" if db_ok and checkout_ok and readiness_ok else "degraded",
        "db": db_ok,
        "hosted_checkout": checkout_ok,
        "payment_readiness": readiness_ok,
    }
