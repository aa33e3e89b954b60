from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from foodmarket.api.health import router as health_router
from foodmarket.api.routes_cart import router as cart_router
from foodmarket.api.routes_menu import router as menu_router
from foodmarket.api.routes_order import router as order_router
from foodmarket.api.routes_payments import router as payments_router
from foodmarket.config import settings
from foodmarket.db import SessionLocal, init_db
from foodmarket.services.reconciliation_service import ReconciliationService
from foodmarket.utils.log import get_logger

log = get_logger("app")


def reconcile_job():
    db = SessionLocal()
    try:
        ReconciliationService(db).run()
    except Exception:
        log.exception("event=reconcile_failed")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    init_db()

    scheduler = BackgroundScheduler()
    scheduler.add_job(
        reconcile_job,
        "interval",
        seconds=settings.RECONCILE_INTERVAL_SECONDS,
        id="reconcile",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()

    try:
        yield
    finally:
        scheduler.shutdown(wait=False)


app = FastAPI(title="Food Marketplace - Checkout Backend", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(menu_router, prefix="/api/menu-items", tags=["menu"])

app.include_router(cart_router, tags=["cart"])

app.include_router(order_router, prefix="/api/orders", tags=["orders"])

app.include_router(payments_router, tags=["payments"])
