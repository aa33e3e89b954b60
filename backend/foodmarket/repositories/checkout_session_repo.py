from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from foodmarket.models.checkout_session import HostedCheckoutSession, SessionStatus


class CheckoutSessionRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, order_id: str, amount_cents: int) -> HostedCheckoutSession:
        s = HostedCheckoutSession(
            id=uuid4().hex,
            order_id=order_id,
            amount_cents=amount_cents,
            status=SessionStatus.OPEN,
        )
        self.db.add(s)
        self.db.flush()
        return s

    def get(self, session_id: str) -> Optional[HostedCheckoutSession]:
        return (
            self.db.query(HostedCheckoutSession)
            .filter(HostedCheckoutSession.id == session_id)
            .first()
        )

    def latest_for_order(self, order_id: str) -> Optional[HostedCheckoutSession]:
        return (
            self.db.query(HostedCheckoutSession)
            .filter(HostedCheckoutSession.order_id == order_id)
            .order_by(HostedCheckoutSession.created_at.desc())
            .first()
        )

    def find(self, order_id: str, provider_session_id: Optional[str]) -> Optional[HostedCheckoutSession]:
        qry = self.db.query(HostedCheckoutSession).filter(
            HostedCheckoutSession.order_id == order_id
        )
        if provider_session_id:
            qry = qry.filter(HostedCheckoutSession.provider_session_id == provider_session_id)
        return qry.order_by(HostedCheckoutSession.created_at.desc()).first()

    def list_open_before(self, cutoff: datetime) -> List[HostedCheckoutSession]:
        return (
            self.db.query(HostedCheckoutSession)
            .filter(
                HostedCheckoutSession.status == SessionStatus.OPEN,
                HostedCheckoutSession.created_at < cutoff,
            )
            .all()
        )

    def list_failed_creations(self, limit: int = 100) -> List[HostedCheckoutSession]:
        return (
            self.db.query(HostedCheckoutSession)
            .filter(HostedCheckoutSession.status == SessionStatus.CREATE_FAILED)
            .order_by(HostedCheckoutSession.created_at)
            .limit(limit)
            .all()
        )
