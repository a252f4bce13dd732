# backend/app/services/bill_service.py
"""
Bill Service

A bill is the single line-item charge for one booking. The amount is fixed
from the resolved billing settings when the bill is created; later settings
edits never change existing bills.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.enums import BillCadence, BillingFrequency, BillStatus
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import utc_now
from ..models.bill import Bill
from ..models.billing import BillingSettings
from ..models.booking import Booking
from ..models.profile import Client
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def cadence_for_settings(settings_row: BillingSettings) -> str:
    """Billing cadence label stored on the bill."""
    if settings_row.is_consultation_based:
        if settings_row.bills_before_consultation:
            return BillCadence.IN_ADVANCE.value
        return BillCadence.RIGHT_AFTER.value
    if settings_row.billing_frequency == BillingFrequency.WEEKLY.value:
        return BillCadence.WEEKLY.value
    return BillCadence.MONTHLY.value


class BillService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_bill_repository(db)

    def create_bill_for_booking(
        self,
        booking: Booking,
        settings_row: BillingSettings,
        amount: float,
        client: Optional[Client],
        email_scheduled_at: Optional[datetime] = None,
        status: str = BillStatus.PENDING.value,
    ) -> Bill:
        """Create the booking's bill inside the caller's transaction."""
        tax_amount = 0.0
        if settings_row.vat_rate:
            # amount is VAT-inclusive
            rate = float(settings_row.vat_rate) / 100.0
            tax_amount = round(amount - amount / (1 + rate), 2)

        bill = self.repository.create(
            booking_id=booking.id,
            user_id=booking.user_id,
            client_id=booking.client_id,
            amount=round(float(amount), 2),
            tax_amount=tax_amount,
            currency=settings_row.currency,
            status=status,
            billing_type=cadence_for_settings(settings_row),
            client_name=client.full_name if client else None,
            client_email=client.email if client else None,
            email_scheduled_at=email_scheduled_at,
        )
        self.logger.info(
            "Bill created",
            extra={"bill_id": bill.id, "booking_id": booking.id, "amount": bill.amount},
        )
        return bill

    def get_latest_for_booking(self, booking_id: str) -> Optional[Bill]:
        return self.repository.get_latest_for_booking(booking_id)

    def get_for_booking(self, booking_id: str) -> List[Bill]:
        return self.repository.get_by_booking(booking_id)

    def update_status(self, bill: Bill, status: str) -> Bill:
        """Set the status and stamp ``sent_at``/``paid_at`` where it applies."""
        updates = {"status": status}
        now = utc_now()
        if status == BillStatus.SENT.value and not bill.sent_at:
            updates["sent_at"] = now
        if status == BillStatus.PAID.value:
            updates["paid_at"] = bill.paid_at or now
        return self.repository.apply_updates(bill, **updates)

    @BaseService.measure_operation("mark_bill_paid_for_booking")
    def mark_paid_for_booking(self, booking_id: str) -> Bill:
        """
        Record an out-of-band payment for the booking's latest bill.

        Raises:
            NotFoundException: No bill for the booking
            ValidationException: Bill already paid
        """
        bill = self.repository.get_latest_for_booking(booking_id)
        if not bill:
            raise NotFoundException("No bill found for this booking", code="BILL_NOT_FOUND")
        if bill.is_paid:
            raise ValidationException("Bill is already marked as paid", code="BILL_ALREADY_PAID")
        return self.update_status(bill, BillStatus.PAID.value)

    def mark_refunded(self, bill: Bill, refund_id: str, reason: Optional[str]) -> Bill:
        return self.repository.apply_updates(
            bill,
            status=BillStatus.REFUNDED.value,
            stripe_refund_id=refund_id,
            refund_reason=reason,
            refunded_at=utc_now(),
        )

    def claim_due_for_email(self, now: datetime, limit: int) -> List[Bill]:
        return self.repository.claim_due_for_email(now, limit)

    def release_email_lock(self, bill: Bill) -> None:
        bill.email_locked_at = None
        self.db.flush()
