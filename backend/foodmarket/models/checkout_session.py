from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from foodmarket.db import Base


class SessionStatus:
    OPEN = "open"
    CREATE_FAILED = "create_failed"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


class HostedCheckoutSession(Base):
    __tablename__ = "checkout_sessions"
    id = Column(String(32), primary_key=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)
    provider_session_id = Column(String(128), nullable=True, index=True)
    checkout_url = Column(String(1024), nullable=True)
    amount_cents = Column(Integer, nullable=False)
    status = Column(
        String(32), nullable=False, default=SessionStatus.OPEN
    )  # open, create_failed, paid, failed, expired
    failure_reason = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
