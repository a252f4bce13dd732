# backend/app/services/consultation_billing_service.py
"""
Consultation Billing Service

Dispatches per-consultation bills:
- the daily billing schedule run creates a Checkout session for each due
  booking and emails the payment link
- the scheduled-bill run emails bills whose ``email_scheduled_at`` has passed,
  using ``email_locked_at`` as a claim so overlapping runs skip each other
"""

from datetime import date, datetime
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.constants import SCHEDULED_BILLS_BATCH_SIZE
from ..core.enums import BillStatus, BookingBillingStatus
from ..core.exceptions import DomainException, NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, utc_now
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .bill_service import BillService
from .billing_schedule_service import BillingScheduleService
from .email import EmailService
from .payment_orchestration_service import PaymentOrchestrationService, booking_payment_link

logger = logging.getLogger(__name__)


class ConsultationBillingService(BaseService):
    def __init__(
        self,
        db: Session,
        payment_service: Optional[PaymentOrchestrationService] = None,
        email_service: Optional[EmailService] = None,
    ):
        super().__init__(db)
        self.email_service = email_service or EmailService(db)
        self.payment_service = payment_service or PaymentOrchestrationService(db, email_service=self.email_service)
        self.schedule_service = BillingScheduleService(db)
        self.bill_service = BillService(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)

    @BaseService.measure_operation("process_due_consultation_bills")
    def process_due_consultation_bills(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Send every consultation bill due on or before ``today``.

        Checkout sessions are created first; emails then go out one by one
        with a fixed pause. Each schedule row ends ``processed`` or goes
        through ``mark_failed``.
        """
        today = today or utc_now().date()
        items = self.schedule_service.scan_consultation(today)
        if not items:
            return {"success": True, "message": "No consultation bills to process"}

        errors: List[Dict[str, Any]] = []
        skipped = 0
        email_items: List[Dict[str, Any]] = []
        prepared: Dict[str, Dict[str, str]] = {}
        for item in items:
            try:
                with self.transaction():
                    prepared_item = self._prepare_item(item)
                if prepared_item is None:
                    skipped += 1
                    continue
                email_item, refs = prepared_item
                email_items.append(email_item)
                prepared[item["schedule_id"]] = refs
            except DomainException as e:
                self.logger.error(f"Failed to prepare consultation bill for booking {item['booking_id']}: {e.message}")
                errors.append({"booking_id": item["booking_id"], "error": e.message})
                with self.transaction():
                    self.schedule_service.mark_failed(item["schedule_id"], e.message)

        results = self.email_service.send_bulk_consultation_bills(email_items)
        emails_sent = 0
        emails_failed = 0
        for result in results:
            schedule_id = result["id"]
            refs = prepared[schedule_id]
            with self.transaction():
                if result["success"]:
                    emails_sent += 1
                    self.schedule_service.mark_processed(schedule_id)
                    self._mark_billed(refs["booking_id"], refs["bill_id"])
                else:
                    emails_failed += 1
                    self.schedule_service.mark_failed(schedule_id, result["error"] or "email_failed")
                    errors.append({"booking_id": refs["booking_id"], "error": result["error"]})

        public_results = [
            {"schedule_id": r["id"], "booking_id": prepared[r["id"]]["booking_id"], "success": r["success"]}
            for r in results
        ]
        self.log_operation(
            "consultation_bills_processed",
            total=len(items),
            emails_sent=emails_sent,
            emails_failed=emails_failed,
        )
        return {
            "success": True,
            "total": len(items),
            "emails_sent": emails_sent,
            "emails_failed": emails_failed,
            "skipped": skipped,
            "results": public_results,
            "errors": errors,
        }

    def _prepare_item(self, item: Dict[str, Any]) -> Optional[Tuple[Dict[str, Any], Dict[str, str]]]:
        """
        Create the checkout and return the email arguments plus booking/bill ids.

        Bills already emailed or paid by another path close the row and
        return None.
        """
        booking = self.booking_repository.get_by_id(item["booking_id"])
        if not booking:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        bill = self.bill_repository.get_payable_for_booking(booking.id)
        if not bill:
            if self.bill_repository.get_paid_for_booking(booking.id):
                self.schedule_service.mark_processed(item["schedule_id"])
                return None
            raise ValidationException("No payable bill for booking", code="NO_PAYABLE_BILL")
        if bill.status == BillStatus.SENT.value:
            self.schedule_service.mark_processed(item["schedule_id"])
            return None
        payment_session = self.payment_service.create_consultation_checkout(booking, float(bill.amount))
        client = item["client"]
        email_item = {
            "id": item["schedule_id"],
            "to_email": client.get("email"),
            "client_name": client.get("name") or "",
            "practitioner_name": item["practitioner"].get("name") or "",
            "amount": float(bill.amount),
            "currency": bill.currency,
            "consultation_date": ensure_utc(booking.start_time),
            "payment_url": payment_session.checkout_url,
        }
        return email_item, {"booking_id": booking.id, "bill_id": bill.id}

    def _mark_billed(self, booking_id: str, bill_id: str) -> None:
        bill = self.bill_repository.get_by_id(bill_id, load_relationships=False)
        if bill and bill.status in (BillStatus.PENDING.value, BillStatus.SCHEDULED.value):
            self.bill_service.update_status(bill, BillStatus.SENT.value)
        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        if booking:
            booking.billing_status = BookingBillingStatus.BILLED.value
            self.db.flush()

    @BaseService.measure_operation("send_scheduled_bills")
    def send_scheduled_bills(self, now: Optional[datetime] = None, limit: int = SCHEDULED_BILLS_BATCH_SIZE) -> Dict[str, int]:
        """
        Email bills whose scheduled send time has passed.

        Returns:
            ``{"picked", "sent", "failed"}``
        """
        now = now or utc_now()
        with self.transaction():
            bills = self.bill_service.claim_due_for_email(now, limit)
        claimed = [(bill.id, bill.booking_id) for bill in bills]

        sent = 0
        failed = 0
        for bill_id, booking_id in claimed:
            bill = self.bill_repository.get_by_id(bill_id)
            booking = self.booking_repository.get_by_id(booking_id)
            success = False
            if bill and booking:
                practitioner = booking.practitioner
                client = booking.client
                success = self.email_service.send_consultation_bill(
                    to_email=bill.client_email or (client.email if client else None),
                    client_name=bill.client_name or (client.full_name if client else ""),
                    practitioner_name=practitioner.full_name if practitioner else "",
                    amount=float(bill.amount),
                    currency=bill.currency,
                    consultation_date=ensure_utc(booking.start_time),
                    payment_url=booking_payment_link(booking.id),
                )
            with self.transaction():
                if bill and success:
                    self.bill_service.update_status(bill, BillStatus.SENT.value)
                    booking.billing_status = BookingBillingStatus.BILLED.value
                    self.schedule_service.mark_bill_sent_for_booking(booking.id)
                    sent += 1
                else:
                    failed += 1
                if bill:
                    self.bill_service.release_email_lock(bill)

        self.log_operation("scheduled_bills_sent", picked=len(claimed), sent=sent, failed=failed)
        return {"picked": len(claimed), "sent": sent, "failed": failed}
