import os
import tempfile
import zlib
from contextlib import contextmanager
from typing import Iterator, Optional

from filelock import FileLock, Timeout

from foodmarket.config import settings
from foodmarket.services.errors import Conflict

LOCKS_DIR = os.path.join(tempfile.gettempdir(), "foodmarket_locks")


def lock_path(cart_id: str) -> str:
    """Carts hash onto a fixed set of lock files, so the directory never grows."""
    stripe = zlib.crc32(cart_id.encode("utf-8")) % settings.CART_LOCK_STRIPES
    return os.path.join(LOCKS_DIR, f"cart_stripe_{stripe}.lock")


@contextmanager
def cart_lock(cart_id: str, timeout: Optional[float] = None) -> Iterator[None]:
    """
    Per-cart exclusive section. Mutations of the same cart serialize here;
    two carts only wait on each other when they share a stripe.
    Not reentrant: callers already holding the lock must use the *_locked
    helpers of CartService, and no caller ever holds two cart locks.
    """
    os.makedirs(LOCKS_DIR, exist_ok=True)
    lock = FileLock(lock_path(cart_id))
    wait = settings.CART_LOCK_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        with lock.acquire(timeout=wait):
            yield
    except Timeout:
        raise Conflict(f"Cart {cart_id} is busy; try again")
