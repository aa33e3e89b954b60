from datetime import datetime, timezone

from foodmarket.db import Base
from sqlalchemy import Column, DateTime, String


class OnboardingStatus:
    PENDING = "Pending"
    COMPLETE = "Complete"
    RESTRICTED = "Restricted"


class VendorPaymentAccount(Base):
    """Payment-processor onboarding state of a restaurant's vendor account."""

    __tablename__ = "vendor_payment_accounts"
    restaurant_id = Column(String(64), primary_key=True)
    processor_account_id = Column(String(128), nullable=True)
    onboarding_status = Column(
        String(32), nullable=False, default=OnboardingStatus.PENDING
    )  # Pending, Complete, Restricted
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
