# backend/app/repositories/payment_repository.py
"""
Payment Repository

Stripe Connect accounts and Checkout session mirrors.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import PaymentSessionStatus
from ..models.payment import PaymentSession, StripeAccount
from .base_repository import BaseRepository


class StripeAccountRepository(BaseRepository[StripeAccount]):
    def __init__(self, db: Session):
        super().__init__(db, StripeAccount)

    def get_by_user(self, user_id: str) -> Optional[StripeAccount]:
        return self.find_one_by(user_id=user_id)

    def get_by_stripe_id(self, stripe_account_id: str) -> Optional[StripeAccount]:
        return self.find_one_by(stripe_account_id=stripe_account_id)


class PaymentSessionRepository(BaseRepository[PaymentSession]):
    def __init__(self, db: Session):
        super().__init__(db, PaymentSession)

    def get_by_stripe_id(self, stripe_session_id: str) -> Optional[PaymentSession]:
        return self.find_one_by(stripe_session_id=stripe_session_id)

    def get_pending_for_booking(self, booking_id: str) -> List[PaymentSession]:
        return self.find_by(booking_id=booking_id, status=PaymentSessionStatus.PENDING.value)

    def get_completed_for_booking(self, booking_id: str) -> Optional[PaymentSession]:
        query = (
            self._build_query()
            .filter(
                PaymentSession.booking_id == booking_id,
                PaymentSession.status == PaymentSessionStatus.COMPLETED.value,
            )
            .order_by(PaymentSession.completed_at.desc())
        )
        return self._execute_first(query)

    def count_for_invoice(self, invoice_id: str) -> int:
        return self.count(invoice_id=invoice_id)

    def count_for_booking(self, booking_id: str) -> int:
        return self.count(booking_id=booking_id)
