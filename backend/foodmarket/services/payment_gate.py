"""
Payment readiness gate.

``check`` reports what is actually known (READY / NOT_READY / CHECK_FAILED)
and never raises. ``is_ready`` applies the fail-open policy: when the check
itself fails the order is let through, so a readiness outage does not block
every checkout. Each fail-open is logged as its own event and the order is
flagged for reconciliation by the caller.
"""
import enum

from sqlalchemy.orm import Session

from foodmarket.adapters.payment_readiness import HttpReadinessBackend
from foodmarket.config import settings
from foodmarket.models.vendor_payment import OnboardingStatus
from foodmarket.repositories.vendor_payment_repo import VendorPaymentRepository
from foodmarket.utils.log import get_logger

log = get_logger("readiness")


class Readiness(enum.Enum):
    READY = "ready"
    NOT_READY = "not_ready"
    CHECK_FAILED = "check_failed"


class DatabaseReadinessBackend:
    """Reads the onboarding status written by the payment-processor callback."""

    def __init__(self, db: Session):
        self.repo = VendorPaymentRepository(db)

    def is_ready(self, restaurant_id: str) -> bool:
        acct = self.repo.get(restaurant_id)
        return bool(acct) and acct.onboarding_status == OnboardingStatus.COMPLETE


class PaymentReadinessGate:
    def __init__(self, backend):
        self.backend = backend

    @classmethod
    def for_session(cls, db: Session) -> "PaymentReadinessGate":
        if settings.PAYMENT_READINESS_URL:
            return cls(HttpReadinessBackend(settings.PAYMENT_READINESS_URL))
        return cls(DatabaseReadinessBackend(db))

    def check(self, restaurant_id: str) -> Readiness:
        try:
            ready = self.backend.is_ready(restaurant_id)
        except Exception as e:
            log.warning(
                "event=payment_readiness_check_failed restaurant_id=%s error=%s",
                restaurant_id,
                e,
            )
            return Readiness.CHECK_FAILED
        return Readiness.READY if ready else Readiness.NOT_READY

    def is_ready(self, restaurant_id: str) -> bool:
        return self.decide(restaurant_id, self.check(restaurant_id))

    @staticmethod
    def decide(restaurant_id: str, result: Readiness) -> bool:
        if result is Readiness.CHECK_FAILED:
            log.warning("event=payment_readiness_fail_open restaurant_id=%s", restaurant_id)
            return True
        return result is Readiness.READY
