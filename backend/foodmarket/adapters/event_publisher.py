from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import List

from foodmarket.utils.log import get_logger

log = get_logger("events")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class OrderCreated:
    order_id: str
    order_number: str
    customer_id: str
    restaurant_id: str
    total_cents: int
    occurred_at: str = field(default_factory=_now_iso)
    name: str = "OrderCreated"


@dataclass(frozen=True)
class OrderStatusChanged:
    order_id: str
    old_status: str
    new_status: str
    actor: str
    notes: str = None
    occurred_at: str = field(default_factory=_now_iso)
    name: str = "OrderStatusChanged"


class LoggingEventPublisher:
    """Default collaborator: events are handed to the notification/chat side via the log stream."""

    def publish(self, event):
        log.info("event=%s payload=%s", event.name, asdict(event))


class InMemoryEventPublisher:
    def __init__(self):
        self.events: List = []

    def publish(self, event):
        self.events.append(event)

    def of_type(self, name: str) -> List:
        return [e for e in self.events if e.name == name]


def publish_safely(publisher, event):
    """Notification delivery is a downstream concern; a failing publisher never fails the caller."""
    try:
        publisher.publish(event)
    except Exception:
        log.exception("event=publish_failed name=%s order_id=%s", event.name, event.order_id)
