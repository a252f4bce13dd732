# backend/app/services/booking_service.py
"""
Booking Service

Handles the booking lifecycle and the billing work each step implies:
- Creating bookings with their bill, schedule rows and calendar event
- Confirming reservations once paid or agreed
- Cancelling (releasing payment, refunding, cleaning the calendar)
- Rescheduling, manual payments, refunds and archiving

Database writes happen in short transactions; Stripe, Google and email calls
happen between them. Calendar and email failures never fail the request.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.constants import CALENDAR_RESCHEDULE_WARNING
from ..core.enums import BillStatus, BookingBillingStatus, BookingMode, BookingStatus
from ..core.exceptions import (
    DomainException,
    ExternalServiceException,
    ForbiddenException,
    NotFoundException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.bill import Bill
from ..models.billing import BillingSettings
from ..models.booking import Booking
from ..models.profile import Client, Profile
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate
from .base import BaseService
from .bill_service import BillService
from .billing_schedule_service import BillingScheduleService
from .billing_settings_service import BillingSettingsService
from .calendar_sync_service import CalendarSyncService
from .email import EmailService
from .payment_orchestration_service import PaymentOrchestrationService, booking_payment_link

logger = logging.getLogger(__name__)

DEFAULT_REFUND_REASON = "Booking canceled"


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Coordinates billing settings, bills, the billing schedule, payments,
    calendar sync and notifications for a practitioner's bookings.
    """

    def __init__(
        self,
        db: Session,
        payment_service: Optional[PaymentOrchestrationService] = None,
        calendar_service: Optional[CalendarSyncService] = None,
        email_service: Optional[EmailService] = None,
    ):
        super().__init__(db)
        self.email_service = email_service or EmailService(db)
        self.payment_service = payment_service or PaymentOrchestrationService(db, email_service=self.email_service)
        self.calendar_service = calendar_service or CalendarSyncService(db)
        self.settings_service = BillingSettingsService(db)
        self.schedule_service = BillingScheduleService(db)
        self.bill_service = BillService(db)
        self.repository = RepositoryFactory.create_booking_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)
        self.session_repository = RepositoryFactory.create_payment_session_repository(db)

    # ------------------------------------------------------------------ Access

    def _get_owned(self, user: Profile, booking_id: str) -> Booking:
        booking = self.repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        if booking.user_id != user.id:
            raise ForbiddenException("You don't have permission to access this booking")
        return booking

    def get_booking(self, user: Profile, booking_id: str) -> Dict[str, Any]:
        booking = self._get_owned(user, booking_id)
        return {"booking": booking, "bills": self.bill_repository.get_by_booking(booking.id)}

    # ---------------------------------------------------------------- Creation

    @BaseService.measure_operation("create_booking")
    def create_booking(
        self,
        user: Profile,
        data: BookingCreate,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Create a booking and everything its billing settings imply.

        Reservations billed before the consultation stay ``pending`` until
        paid and get a placeholder calendar event; everything else is
        ``scheduled`` (or ``completed`` when already in the past) with a
        confirmed event.

        Returns:
            ``{booking, bill, requires_payment, payment_url, warning}``

        Raises:
            NotFoundException: Unknown client
            BillingSettingsNotFoundException: No settings at any scope
        """
        now = ensure_utc(now) if now else utc_now()
        client = self.client_repository.get_for_user(data.client_id, user.id)
        if not client:
            raise NotFoundException("Client not found", code="CLIENT_NOT_FOUND")

        with self.transaction():
            booking, bill, settings_row, plan = self._create_records(user, client, data, now)

        with self.transaction():
            if plan["calendar"] == "pending":
                self.calendar_service.create_pending_event(booking)
            else:
                self.calendar_service.create_confirmed_event(booking)

        payment_url = None
        warning = None
        if plan["send_now"]:
            payment_url, warning = self._send_bill_now(booking, bill, client, user, with_checkout=plan["checkout"])

        self.log_operation(
            "booking_created",
            booking_id=booking.id,
            status=booking.status,
            amount=bill.amount,
            billing_type=settings_row.billing_type,
        )
        return {
            "booking": booking,
            "bill": bill,
            "requires_payment": plan["requires_payment"],
            "payment_url": payment_url,
            "warning": warning,
        }

    def _create_records(
        self, user: Profile, client: Client, data: BookingCreate, now: datetime
    ) -> tuple:
        booking = self.repository.create(
            user_id=user.id,
            client_id=client.id,
            start_time=data.start_time,
            end_time=data.end_time,
            status=BookingStatus.PENDING.value,
            mode=data.mode,
            location_text=data.location_text if data.mode == BookingMode.IN_PERSON.value else None,
            consultation_type=data.consultation_type,
            notes=data.notes,
            billing_status=BookingBillingStatus.PENDING.value,
        )
        if data.billing_settings:
            self.settings_service.create_booking_settings(
                user.id, booking.id, client.id, data.billing_settings.model_dump()
            )
        settings_row = self.settings_service.resolve_for_booking(user.id, client.id, booking.id)
        amount = BillingSettingsService.resolve_amount(settings_row, data.consultation_type, data.amount)
        booking.billing_settings_id = settings_row.id

        plan = self._plan_for(settings_row, booking, amount, now)
        booking.status = plan["status"]
        bill = self.bill_service.create_bill_for_booking(
            booking, settings_row, amount, client, email_scheduled_at=plan["email_scheduled_at"]
        )
        if plan["bill_paid"]:
            self.bill_service.update_status(bill, BillStatus.PAID.value)

        self.schedule_service.schedule_for_booking(booking, settings_row, now=now)
        if plan["bill_paid"] or settings_row.suppress_email:
            self.schedule_service.mark_bill_sent_for_booking(booking.id)
        return booking, bill, settings_row, plan

    @staticmethod
    def _plan_for(
        settings_row: BillingSettings, booking: Booking, amount: float, now: datetime
    ) -> Dict[str, Any]:
        """Initial booking status, calendar event kind and email timing."""
        start = ensure_utc(booking.start_time)
        in_past = start < now
        send_email = not settings_row.suppress_email
        plan: Dict[str, Any] = {
            "status": BookingStatus.COMPLETED.value if in_past else BookingStatus.SCHEDULED.value,
            "calendar": "confirmed",
            "requires_payment": False,
            "bill_paid": False,
            "email_scheduled_at": None,
            "send_now": False,
            "checkout": False,
        }
        if not (settings_row.is_consultation_based and settings_row.bills_before_consultation):
            return plan

        if amount == 0:
            plan.update(status=BookingStatus.SCHEDULED.value, bill_paid=True)
        elif in_past:
            plan.update(email_scheduled_at=now if send_email else None, send_now=send_email)
        else:
            due = start - timedelta(days=settings_row.billing_advance_days or 0)
            plan.update(
                status=BookingStatus.PENDING.value,
                calendar="pending",
                requires_payment=True,
                email_scheduled_at=due if send_email else None,
                send_now=send_email and due <= now,
                checkout=True,
            )
        return plan

    def _send_bill_now(
        self, booking: Booking, bill: Bill, client: Client, user: Profile, with_checkout: bool
    ) -> tuple:
        """
        Email the bill right away.

        When the checkout cannot be created the bill stays due and the
        scheduled-bill run retries it.
        """
        payment_url = None
        if with_checkout:
            try:
                with self.transaction():
                    payment_session = self.payment_service.create_consultation_checkout(booking, float(bill.amount))
                payment_url = payment_session.checkout_url
            except DomainException as e:
                self.logger.warning(f"Checkout not created for booking {booking.id}: {e.message}")
                return None, f"Payment link could not be created: {e.message}"

        sent = self.email_service.send_consultation_bill(
            to_email=bill.client_email or client.email,
            client_name=bill.client_name or client.full_name,
            practitioner_name=user.full_name,
            amount=float(bill.amount),
            currency=bill.currency,
            consultation_date=ensure_utc(booking.start_time),
            payment_url=booking_payment_link(booking.id),
        )
        if not sent:
            return payment_url, "Booking created but the payment email could not be sent"

        with self.transaction():
            self.bill_service.update_status(bill, BillStatus.SENT.value)
            booking.billing_status = BookingBillingStatus.BILLED.value
            self.schedule_service.mark_bill_sent_for_booking(booking.id)
        return payment_url, None

    # --------------------------------------------------------------- Lifecycle

    @BaseService.measure_operation("confirm_booking")
    def confirm_booking(self, user: Profile, booking_id: str) -> Booking:
        """
        Confirm a pending reservation.

        Raises:
            NotFoundException / ForbiddenException: Missing or foreign booking
            ValidationException: Booking not pending
        """
        with self.transaction():
            booking = self._get_owned(user, booking_id)
            if booking.status == BookingStatus.SCHEDULED.value:
                raise ValidationException("Booking is already confirmed", code="BOOKING_ALREADY_CONFIRMED")
            if booking.status != BookingStatus.PENDING.value:
                raise ValidationException("Only pending bookings can be confirmed", code="BOOKING_NOT_PENDING")
            booking.status = BookingStatus.SCHEDULED.value

        with self.transaction():
            self.calendar_service.confirm_pending_event(booking)
        self.log_operation("booking_confirmed", booking_id=booking.id)
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, user: Profile, booking_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Cancel a booking.

        Open bills are canceled and unlinked from their invoices; a paid bill
        is refunded. The calendar event is removed before the status changes
        so a pending placeholder is deleted rather than announced.

        Raises:
            ExternalServiceException: Stripe refused the refund
        """
        booking = self._get_owned(user, booking_id)
        if booking.status == BookingStatus.CANCELED.value:
            return {
                "success": True,
                "message": "Booking already canceled",
                "booking": {"id": booking.id, "status": booking.status, "wasReservation": False},
                "willRefund": False,
                "refundId": None,
            }

        was_reservation = booking.status == BookingStatus.PENDING.value
        will_refund = any(bill.is_paid for bill in self.bill_repository.get_by_booking(booking.id))

        with self.transaction():
            self.calendar_service.cancel_or_delete_for_booking(booking)

        refund_id = None
        with self.transaction():
            self.payment_service.cancel_payment_for_booking(booking.id)
            if will_refund:
                try:
                    refund = self.payment_service.refund_booking_payment(
                        booking.id, reason or DEFAULT_REFUND_REASON
                    )
                except ServiceException as e:
                    raise ExternalServiceException(
                        f"Failed to refund payment: {e.message}", code="REFUND_FAILED"
                    )
                refund_id = refund["refund_id"]
            self.schedule_service.cancel_for_booking(booking.id)
            booking.status = BookingStatus.CANCELED.value

        client = booking.client
        self.email_service.send_cancellation_notification(
            to_email=client.email if client else None,
            client_name=client.full_name if client else "",
            practitioner_name=user.full_name,
            consultation_date=ensure_utc(booking.start_time),
            will_refund=will_refund,
        )

        self.log_operation(
            "booking_canceled",
            booking_id=booking.id,
            was_reservation=was_reservation,
            refund_id=refund_id,
        )
        return {
            "success": True,
            "message": "Booking canceled successfully",
            "booking": {"id": booking.id, "status": booking.status, "wasReservation": was_reservation},
            "willRefund": will_refund,
            "refundId": refund_id,
        }

    @BaseService.measure_operation("reschedule_booking")
    def reschedule_booking(
        self, user: Profile, booking_id: str, new_start: datetime, new_end: datetime
    ) -> Dict[str, Any]:
        """
        Move a booking. A calendar failure is reported as a warning.

        Raises:
            ValidationException: Bad range or booking already closed
        """
        new_start, new_end = ensure_utc(new_start), ensure_utc(new_end)
        if new_start >= new_end:
            raise ValidationException("Start time must be before end time", code="INVALID_TIME_RANGE")

        booking = self._get_owned(user, booking_id)
        if booking.is_terminal:
            raise ValidationException(
                f"Cannot reschedule a {booking.status} booking", code="BOOKING_NOT_RESCHEDULABLE"
            )

        with self.transaction():
            calendar_ok = self.calendar_service.reschedule_event(booking, new_start, new_end)
            booking.start_time = new_start
            booking.end_time = new_end

        result: Dict[str, Any] = {"success": True, "booking": booking}
        if not calendar_ok:
            result["warning"] = CALENDAR_RESCHEDULE_WARNING
            result["calendarError"] = "calendar_update_failed"
        self.log_operation("booking_rescheduled", booking_id=booking.id, calendar_ok=calendar_ok)
        return result

    @BaseService.measure_operation("mark_booking_paid")
    def mark_paid(self, user: Profile, booking_id: str) -> Dict[str, Any]:
        """Record a payment received outside Stripe. Booking status is untouched."""
        with self.transaction():
            booking = self._get_owned(user, booking_id)
            self.bill_service.mark_paid_for_booking(booking.id)
            self.schedule_service.mark_bill_sent_for_booking(booking.id)
        return {
            "success": True,
            "message": "Payment marked as received successfully",
            "booking": {"id": booking.id},
        }

    @BaseService.measure_operation("resend_bill_email")
    def resend_bill_email(self, user: Profile, booking_id: str) -> Dict[str, Any]:
        """
        Email the unpaid bill again with a fresh payment link.

        Open Checkout sessions are expired first so an old link cannot be
        paid alongside the new one.

        Raises:
            ValidationException: Canceled booking, nothing payable or no recipient
            PaymentAccountNotReadyException: Stripe account not ready
            ServiceException: Checkout or email failed
        """
        booking = self._get_owned(user, booking_id)
        if booking.status == BookingStatus.CANCELED.value:
            raise ValidationException("Cannot resend email for canceled bookings", code="BOOKING_CANCELED")
        bill = self.bill_repository.get_payable_for_booking(booking.id)
        if not bill:
            raise ValidationException("No unpaid bill for this booking", code="NO_PAYABLE_BILL")
        if not bill.amount or float(bill.amount) <= 0:
            raise ValidationException("Booking does not require payment", code="NOTHING_TO_PAY")
        client = booking.client
        to_email = bill.client_email or (client.email if client else None)
        if not to_email:
            raise ValidationException("Client has no email address", code="CLIENT_EMAIL_MISSING")

        with self.transaction():
            self.payment_service.expire_open_sessions(booking.id)
            attempt = self.session_repository.count_for_booking(booking.id)
            self.payment_service.create_consultation_checkout(booking, float(bill.amount), attempt=attempt)

        sent = self.email_service.send_consultation_bill(
            to_email=to_email,
            client_name=bill.client_name or (client.full_name if client else ""),
            practitioner_name=user.full_name,
            amount=float(bill.amount),
            currency=bill.currency,
            consultation_date=ensure_utc(booking.start_time),
            payment_url=booking_payment_link(booking.id),
        )
        if not sent:
            raise ServiceException("Failed to send email")

        with self.transaction():
            if bill.status != BillStatus.SENT.value:
                self.bill_service.update_status(bill, BillStatus.SENT.value)
            booking.billing_status = BookingBillingStatus.BILLED.value
            self.schedule_service.mark_bill_sent_for_booking(booking.id)

        self.log_operation("bill_email_resent", booking_id=booking.id, attempt=attempt)
        return {
            "success": True,
            "message": "Payment email resent successfully",
            "booking": {"id": booking.id},
        }

    @BaseService.measure_operation("refund_booking")
    def refund_booking(self, user: Profile, booking_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Raises:
            NoPaidBillException: Nothing to refund
            ServiceException: Stripe refused the refund
        """
        with self.transaction():
            booking = self._get_owned(user, booking_id)
            return self.payment_service.refund_booking_payment(booking.id, reason)

    def archive_booking(self, user: Profile, booking_id: str) -> Booking:
        with self.transaction():
            booking = self._get_owned(user, booking_id)
            if not booking.archived_at:
                booking.archived_at = utc_now()
        return booking

    def unarchive_booking(self, user: Profile, booking_id: str) -> Booking:
        with self.transaction():
            booking = self._get_owned(user, booking_id)
            booking.archived_at = None
        return booking
