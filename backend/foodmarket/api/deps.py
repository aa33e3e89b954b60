from typing import Optional

from fastapi import Header, HTTPException

from foodmarket.services.errors import MarketplaceError
from foodmarket.services.order_status import Actor
from foodmarket.utils.log import get_logger

log = get_logger("api")

_ROLES = (Actor.CUSTOMER, Actor.RESTAURANT, Actor.SYSTEM)


def get_actor(
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_restaurant_id: Optional[str] = Header(None, alias="X-Restaurant-Id"),
) -> Optional[Actor]:
    """Identity forwarded by the gateway; None when the caller sent no role."""
    if not x_actor_role:
        return None
    role = x_actor_role.strip().lower()
    if role not in _ROLES:
        raise HTTPException(status_code=400, detail=f"Unknown actor role: {x_actor_role}")
    return Actor(role=role, actor_id=x_actor_id, restaurant_id=x_restaurant_id)


def http_error(e: Exception) -> HTTPException:
    if isinstance(e, MarketplaceError):
        return HTTPException(status_code=e.status_code, detail=str(e))
    log.exception("event=unhandled_error type=%s", type(e).__name__)
    return HTTPException(status_code=500, detail=f"Internal server error: {type(e).__name__}")
