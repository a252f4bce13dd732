# backend/app/services/payment_orchestration_service.py
"""
Payment Orchestration Service

Coordinates Stripe Connect onboarding, Checkout sessions for bookings and
invoices, session expiry on cancellation and refunds. Stripe calls go through
StripeService; local mirrors (StripeAccount, PaymentSession, bills, invoices)
are written here.

Unless a method says otherwise it runs inside the caller's transaction and
only flushes.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BillStatus, BookingStatus, InvoiceStatus, PaymentSessionStatus
from ..core.exceptions import (
    DomainException,
    ForbiddenException,
    NoPaidBillException,
    NotFoundException,
    PaymentAccountNotReadyException,
    ServiceException,
    ValidationException,
)
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking
from ..models.invoice import Invoice
from ..models.payment import PaymentSession, StripeAccount
from ..models.profile import Profile
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .bill_service import BillService
from .email import EmailService
from .invoice_service import InvoiceService
from .stripe_service import StripeService, to_cents

logger = logging.getLogger(__name__)


def onboarding_incomplete_reason(status: Dict[str, Any]) -> str:
    if not status.get("details_submitted"):
        return "form_incomplete"
    if status.get("currently_due"):
        return "verification_needed"
    if not status.get("charges_enabled"):
        return "charges_disabled"
    return "incomplete"


def payment_error_url(reason: str) -> str:
    return f"{settings.frontend_url}/payment/error?{urlencode({'reason': reason})}"


def booking_payment_link(booking_id: str) -> str:
    return f"{settings.base_url}/api/payments/{booking_id}"


def invoice_payment_link(invoice_id: str) -> str:
    return f"{settings.base_url}/api/payments/invoices/{invoice_id}"


class PaymentOrchestrationService(BaseService):
    """Stripe Connect onboarding, checkout, cancellation and refund flows."""

    def __init__(
        self,
        db: Session,
        stripe_service: Optional[StripeService] = None,
        email_service: Optional[EmailService] = None,
    ):
        super().__init__(db)
        self.stripe_service = stripe_service or StripeService(db)
        self.email_service = email_service or EmailService(db)
        self.bill_service = BillService(db)
        self.invoice_service = InvoiceService(db)
        self.account_repository = RepositoryFactory.create_stripe_account_repository(db)
        self.session_repository = RepositoryFactory.create_payment_session_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)
        self.invoice_repository = RepositoryFactory.create_invoice_repository(db)
        self.profile_repository = RepositoryFactory.create_profile_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    # ------------------------------------------------------------- Onboarding

    @BaseService.measure_operation("create_connect_account")
    def create_account_for_user(self, profile: Profile) -> Dict[str, Any]:
        """Create the practitioner's Express account once. Commits."""
        existing = self.account_repository.get_by_user(profile.id)
        if existing:
            return {"accountExists": True, "accountId": existing.stripe_account_id}

        account = self.stripe_service.create_connect_account(profile.email, settings.stripe_connect_country)
        with self.transaction():
            self.account_repository.create(
                user_id=profile.id,
                stripe_account_id=account.id,
                onboarding_completed=False,
                payments_enabled=False,
            )
        self.log_operation("connect_account_created", user_id=profile.id, stripe_account_id=account.id)
        return {"accountExists": False, "accountId": account.id}

    @BaseService.measure_operation("create_onboarding_link")
    def create_onboarding_link_for_user(self, profile: Profile, origin: Optional[str] = None) -> Dict[str, str]:
        """
        Raises:
            NotFoundException: No Connect account yet
            ValidationException: Onboarding already finished
        """
        account = self.account_repository.get_by_user(profile.id)
        if not account:
            raise NotFoundException("Stripe account not found. Create an account first.", code="STRIPE_ACCOUNT_NOT_FOUND")
        if account.onboarding_completed:
            raise ValidationException("Stripe onboarding already completed", code="ONBOARDING_COMPLETED")

        callback = f"{(origin or settings.base_url).rstrip('/')}/api/payments/onboarding-callback?user_id={profile.id}"
        url = self.stripe_service.create_onboarding_link(
            account.stripe_account_id, return_url=callback, refresh_url=callback
        )
        return {"url": url}

    @BaseService.measure_operation("handle_onboarding_callback")
    def handle_onboarding_callback(self, user_id: Optional[str]) -> str:
        """
        Refresh the account flags after Stripe sends the practitioner back.

        Returns:
            Frontend path (with query) to redirect the browser to
        """
        if not user_id:
            return "/onboarding?step=4&stripe_error=missing_user"
        account = self.account_repository.get_by_user(user_id)
        if not account:
            self.logger.error("No Stripe account for onboarding callback", extra={"user_id": user_id})
            return "/onboarding?step=4&stripe_error=no_account"

        try:
            status = self.stripe_service.get_account_status(account.stripe_account_id)
        except ServiceException:
            return "/onboarding?step=4&stripe_error=status_check_failed"

        with self.transaction():
            self.account_repository.apply_updates(
                account,
                onboarding_completed=True,
                payments_enabled=status["payments_enabled"],
            )

        if status["payments_enabled"]:
            return "/onboarding?step=5&stripe_ready=true"
        reason = onboarding_incomplete_reason(status)
        self.logger.info(
            "Stripe account not ready after onboarding",
            extra={"user_id": user_id, "reason": reason},
        )
        return f"/onboarding?step=4&stripe_incomplete=true&reason={reason}"

    def get_onboarding_status(self, user_id: str) -> Dict[str, Any]:
        account = self.account_repository.get_by_user(user_id)
        if not account:
            return {"hasAccount": False, "onboardingCompleted": False, "paymentsEnabled": False}
        return {
            "hasAccount": True,
            "accountId": account.stripe_account_id,
            "onboardingCompleted": account.onboarding_completed,
            "paymentsEnabled": account.payments_enabled,
        }

    def _ready_account(self, user_id: str) -> StripeAccount:
        account = self.account_repository.get_by_user(user_id)
        if not account:
            raise PaymentAccountNotReadyException(
                "Stripe account not found for practitioner", code="STRIPE_ACCOUNT_NOT_FOUND"
            )
        if not account.ready_for_payments:
            raise PaymentAccountNotReadyException(
                "Stripe account not ready for payments", code="STRIPE_ACCOUNT_NOT_READY"
            )
        return account

    # --------------------------------------------------------------- Checkout

    @BaseService.measure_operation("create_consultation_checkout")
    def create_consultation_checkout(
        self, booking: Booking, amount: float, attempt: Optional[int] = None
    ) -> PaymentSession:
        """
        Checkout session paying one booking on the practitioner's account.

        The idempotency key pins amount and time range, so retries for the
        same booking reuse the Stripe session. Passing ``attempt`` asks for a
        fresh session once earlier ones have been expired.
        """
        account = self._ready_account(booking.user_id)
        client = booking.client or self.client_repository.get_by_id(booking.client_id)
        practitioner = booking.practitioner or self.profile_repository.get_by_id(booking.user_id)
        start = ensure_utc(booking.start_time)
        end = ensure_utc(booking.end_time)
        cents = to_cents(amount)
        currency = settings.stripe_currency
        idempotency_key = f"booking:{booking.id}:{cents}:{start.isoformat()}:{end.isoformat()}"
        if attempt is not None:
            idempotency_key = f"{idempotency_key}:{attempt}"

        session = self.stripe_service.create_checkout_session(
            stripe_account_id=account.stripe_account_id,
            amount=amount,
            currency=currency,
            product_name=f"Consultation with {practitioner.full_name if practitioner else 'your practitioner'}",
            description=f"Consultation on {start.strftime('%d/%m/%Y %H:%M')} UTC",
            success_url=f"{settings.frontend_url}/payment/success?booking_id={booking.id}",
            cancel_url=f"{settings.frontend_url}/payment/cancelled",
            metadata={
                "booking_id": booking.id,
                "user_id": booking.user_id,
                "client_email": (client.email if client else "") or "",
            },
            idempotency_key=idempotency_key,
            customer_email=client.email if client else None,
        )
        payment_session = self._record_session(session, account, amount, currency, booking_id=booking.id)
        prometheus_metrics.record_checkout_session("booking")
        return payment_session

    @BaseService.measure_operation("create_invoice_checkout")
    def create_invoice_checkout(self, invoice_id: str) -> PaymentSession:
        """
        Checkout session paying a whole invoice. Drafts are issued first.

        Raises:
            NotFoundException: Unknown invoice
            ValidationException: Invoice not payable
        """
        invoice = self.invoice_repository.get_by_id(invoice_id, load_relationships=False)
        if not invoice:
            raise NotFoundException("Invoice not found", code="INVOICE_NOT_FOUND")
        if invoice.status not in (InvoiceStatus.DRAFT.value, InvoiceStatus.ISSUED.value):
            raise ValidationException(f"Invoice is {invoice.status} and cannot be paid", code="INVOICE_NOT_PAYABLE")
        if not invoice.total or float(invoice.total) <= 0:
            raise ValidationException("Invoice has nothing to pay", code="INVOICE_EMPTY")

        account = self._ready_account(invoice.user_id)
        self.invoice_service.issue(invoice)

        total = float(invoice.total)
        attempt = self.session_repository.count_for_invoice(invoice.id)
        currency = settings.stripe_currency
        session = self.stripe_service.create_checkout_session(
            stripe_account_id=account.stripe_account_id,
            amount=total,
            currency=currency,
            product_name=f"Invoice {invoice.display_number or invoice.id}",
            description=_period_label(invoice),
            success_url=f"{settings.frontend_url}/payment/success?invoice_id={invoice.id}",
            cancel_url=f"{settings.frontend_url}/payment/cancelled",
            metadata={"invoice_id": invoice.id, "user_id": invoice.user_id},
            idempotency_key=f"invoice:{invoice.id}:{to_cents(total)}:{attempt}",
            customer_email=invoice.client_email_snapshot,
        )
        payment_session = self._record_session(session, account, total, currency, invoice_id=invoice.id)
        prometheus_metrics.record_checkout_session("invoice")
        return payment_session

    def _record_session(
        self,
        session: Any,
        account: StripeAccount,
        amount: float,
        currency: str,
        booking_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> PaymentSession:
        existing = self.session_repository.get_by_stripe_id(session.id)
        if existing:
            # Idempotent replay of an earlier request
            return existing
        return self.session_repository.create(
            booking_id=booking_id,
            invoice_id=invoice_id,
            stripe_session_id=session.id,
            stripe_account_id=account.stripe_account_id,
            amount=round(float(amount), 2),
            currency=currency.upper(),
            status=PaymentSessionStatus.PENDING.value,
            checkout_url=session.url,
        )

    @BaseService.measure_operation("create_checkout_for_user")
    def create_checkout_for_user(
        self, profile: Profile, booking_id: str, amount: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Practitioner-initiated checkout for one of their bookings. Commits.

        Raises:
            NotFoundException: Unknown booking
            ForbiddenException: Booking owned by someone else
            ValidationException: Nothing payable and no amount given
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND")
        if booking.user_id != profile.id:
            raise ForbiddenException("You do not have access to this booking")
        if booking.status == BookingStatus.CANCELED.value:
            raise ValidationException("Booking is canceled", code="BOOKING_CANCELED")

        if amount is None:
            bill = self.bill_repository.get_payable_for_booking(booking.id)
            if not bill:
                raise ValidationException("No payable bill for this booking", code="NO_PAYABLE_BILL")
            amount = float(bill.amount)

        with self.transaction():
            payment_session = self.create_consultation_checkout(booking, amount)
        return {
            "sessionId": payment_session.stripe_session_id,
            "url": payment_session.checkout_url,
            "amount": float(payment_session.amount),
            "currency": payment_session.currency,
        }

    def checkout_for_booking_link(self, booking_id: str) -> str:
        """
        Resolve the public pay link of a booking to a redirect target. Commits.

        Already paid bookings land on the success page; problems land on the
        payment error page with a reason.
        """
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            return payment_error_url("booking_not_found")
        if booking.status == BookingStatus.CANCELED.value:
            return payment_error_url("booking_canceled")

        bill = self.bill_repository.get_payable_for_booking(booking.id)
        if not bill:
            return f"{settings.frontend_url}/payment/success?booking_id={booking.id}"

        client = booking.client
        if not client or not client.email or not client.name or not booking.practitioner or not booking.start_time:
            self.logger.warning("Pay link missing data", extra={"booking_id": booking_id})
            return payment_error_url("missing_data")

        try:
            with self.transaction():
                payment_session = self.create_consultation_checkout(booking, float(bill.amount))
        except DomainException as e:
            self.logger.error(f"Checkout creation failed for booking {booking_id}: {e.message}")
            return payment_error_url("checkout_creation_failed")
        return payment_session.checkout_url

    def checkout_for_invoice_link(self, invoice_id: str) -> str:
        """Resolve an invoice pay link to a redirect target. Commits."""
        invoice = self.invoice_repository.get_by_id(invoice_id, load_relationships=False)
        if not invoice:
            return payment_error_url("missing_invoice")
        if invoice.status == InvoiceStatus.PAID.value:
            return f"{settings.frontend_url}/payment/success?invoice_id={invoice.id}"
        try:
            with self.transaction():
                payment_session = self.create_invoice_checkout(invoice_id)
        except DomainException as e:
            self.logger.error(f"Checkout creation failed for invoice {invoice_id}: {e.message}")
            return payment_error_url("checkout_creation_failed")
        return payment_session.checkout_url

    # ----------------------------------------------------- Cancel and refund

    def expire_open_sessions(self, booking_id: str) -> int:
        """Expire the booking's pending Checkout sessions; Stripe failures are logged."""
        expired = 0
        for payment_session in self.session_repository.get_pending_for_booking(booking_id):
            try:
                self.stripe_service.expire_checkout_session(
                    payment_session.stripe_session_id, payment_session.stripe_account_id
                )
                expired += 1
            except ServiceException as e:
                self.logger.warning(
                    f"Could not expire checkout session {payment_session.stripe_session_id}: {e.message}"
                )
            payment_session.status = PaymentSessionStatus.CANCELLED.value
        self.db.flush()
        return expired

    @BaseService.measure_operation("cancel_payment_for_booking")
    def cancel_payment_for_booking(self, booking_id: str) -> Dict[str, Any]:
        """
        Stop collecting payment for a booking.

        Expires open Checkout sessions (Stripe failures are logged), cancels
        unpaid bills and detaches them from their invoices, then recomputes
        those invoices and drops drafts left empty.
        """
        expired = self.expire_open_sessions(booking_id)

        touched_invoices: List[str] = []
        canceled_bills = 0
        for bill in self.bill_repository.get_open_for_booking(booking_id):
            if bill.invoice_id and bill.invoice_id not in touched_invoices:
                touched_invoices.append(bill.invoice_id)
            bill.status = BillStatus.CANCELED.value
            bill.invoice_id = None
            canceled_bills += 1
        self.db.flush()

        for invoice_id in touched_invoices:
            invoice = self.invoice_repository.get_by_id(invoice_id, load_relationships=False)
            if invoice:
                self.invoice_service.recalculate_totals(invoice)
        drafts_deleted = self.invoice_service.delete_empty_drafts(invoice_ids=touched_invoices) if touched_invoices else 0

        self.log_operation(
            "booking_payment_cancelled",
            booking_id=booking_id,
            sessions_expired=expired,
            bills_canceled=canceled_bills,
            drafts_deleted=drafts_deleted,
        )
        return {
            "sessions_expired": expired,
            "bills_canceled": canceled_bills,
            "invoices_updated": touched_invoices,
            "drafts_deleted": drafts_deleted,
        }

    @BaseService.measure_operation("refund_booking_payment")
    def refund_booking_payment(self, booking_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Refund the paid bill of a booking.

        Card payments are refunded through Stripe; payments recorded by hand
        get a synthetic ``manual_refund_*`` id.

        Raises:
            NoPaidBillException: The booking has no paid bill
            ServiceException: Stripe rejected the refund
        """
        bill = self.bill_repository.get_paid_for_booking(booking_id)
        if not bill:
            raise NoPaidBillException(booking_id)

        payment_session = self.session_repository.get_completed_for_booking(booking_id)
        if payment_session and payment_session.stripe_payment_intent_id:
            refund = self.stripe_service.create_refund(
                payment_session.stripe_payment_intent_id,
                stripe_account_id=payment_session.stripe_account_id,
                reason=reason,
                metadata={"booking_id": booking_id},
            )
            refund_id = refund.id
        else:
            refund_id = f"manual_refund_{int(time.time())}_{booking_id[:8]}"

        self.bill_service.mark_refunded(bill, refund_id, reason)
        invoice, credit_note = self._rectify_invoice(bill, refund_id, reason)

        booking = self.booking_repository.get_by_id(booking_id)
        if booking:
            client = booking.client
            practitioner = booking.practitioner
            self.email_service.send_refund_notification(
                to_email=bill.client_email or (client.email if client else None),
                client_name=bill.client_name or (client.full_name if client else ""),
                practitioner_name=practitioner.full_name if practitioner else "",
                amount=float(bill.amount),
                currency=bill.currency,
                consultation_date=ensure_utc(booking.start_time),
                reason=reason,
            )

        self.log_operation(
            "booking_refunded",
            booking_id=booking_id,
            refund_id=refund_id,
            invoice_id=invoice.id if invoice else None,
            credit_note_id=credit_note.id if credit_note else None,
        )
        return {"refund_id": refund_id, "status": BillStatus.REFUNDED.value, "reason": reason}

    def _rectify_invoice(
        self, bill: Any, refund_id: str, reason: Optional[str]
    ) -> Tuple[Optional[Invoice], Optional[Invoice]]:
        """
        Per-booking invoices become ``refunded``; a monthly invoice keeps its
        status and is rectified for this bill's amount only.
        """
        if not bill.invoice_id:
            return None, None
        invoice = self.invoice_repository.get_by_id(bill.invoice_id, load_relationships=False)
        if not invoice or invoice.status != InvoiceStatus.PAID.value:
            return invoice, None
        per_booking = invoice.legacy_bill_id == bill.id
        if per_booking:
            self.invoice_service.mark_refunded(invoice, refund_id)
        credit_note = self.invoice_service.create_credit_note(
            invoice,
            reason=reason,
            refund_id=refund_id,
            amount=None if per_booking else float(bill.amount),
        )
        return invoice, credit_note


def _period_label(invoice: Invoice) -> Optional[str]:
    if invoice.year and invoice.month:
        return f"Sessions for {invoice.year:04d}-{invoice.month:02d}"
    return None
