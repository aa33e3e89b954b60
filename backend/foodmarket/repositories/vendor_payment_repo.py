from typing import Optional

from sqlalchemy.orm import Session

from foodmarket.models.vendor_payment import VendorPaymentAccount


class VendorPaymentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, restaurant_id: str) -> Optional[VendorPaymentAccount]:
        return (
            self.db.query(VendorPaymentAccount)
            .filter(VendorPaymentAccount.restaurant_id == restaurant_id)
            .first()
        )

    def set_status(
        self,
        restaurant_id: str,
        status: str,
        processor_account_id: Optional[str] = None,
    ) -> VendorPaymentAccount:
        """Write path for the onboarding callback collaborator."""
        acct = self.get(restaurant_id)
        if not acct:
            acct = VendorPaymentAccount(restaurant_id=restaurant_id)
            self.db.add(acct)
        acct.onboarding_status = status
        if processor_account_id:
            acct.processor_account_id = processor_account_id
        self.db.flush()
        return acct
