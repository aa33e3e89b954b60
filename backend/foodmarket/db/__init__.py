import os
import sys
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from foodmarket.config import settings
from foodmarket.utils.log import get_logger

log = get_logger("db")

DATABASE_URL = settings.DATABASE_URL
# worker threads (FastAPI threadpool, scheduler, concurrency tests) share the sqlite pool
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, future=True, echo=False, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# every module defining tables must be listed so metadata is populated
MODEL_MODULES = [
    "foodmarket.models.menu_item",
    "foodmarket.models.cart",
    "foodmarket.models.cart_item",
    "foodmarket.models.order",
    "foodmarket.models.idempotency",
    "foodmarket.models.vendor_payment",
    "foodmarket.models.checkout_session",
]


def _running_under_pytest() -> bool:
    if any("pytest" in os.path.basename(a).lower() for a in sys.argv):
        return True
    return any(
        k.upper().startswith("PYTEST") or k.upper() == "PYTEST_CURRENT_TEST"
        for k in os.environ.keys()
    )


def init_db(reset: Optional[bool] = None):
    """
    Initialize DB schema.

    Behavior:
      - reset=True, RESET_DB=1/true/yes, or a detected pytest run drop & recreate tables
        so tests start from a clean DB.
      - Otherwise existing tables are left in place.
    """
    import importlib

    if reset is None:
        env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")
        reset = env_reset or _running_under_pytest()

    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    if reset:
        log.info("event=db_reset url=%s", DATABASE_URL)
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    log.debug("event=db_ready tables=%s", sorted(Base.metadata.tables))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
