# backend/app/services/stripe_webhook_service.py
"""
Stripe Webhook Service

Applies verified Stripe events to local state:
- checkout.session.completed: booking or invoice paid
- checkout.session.expired: session abandoned
- account.updated / account.application.deauthorized: Connect account flags

A session already completed locally makes a repeated delivery a no-op.
Database failures propagate so the route answers 500 and Stripe retries;
calendar and email side effects are best effort.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.enums import BillStatus, BookingStatus, PaymentSessionStatus
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.payment import PaymentSession
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .bill_service import BillService
from .billing_schedule_service import BillingScheduleService
from .calendar_sync_service import CalendarSyncService
from .email import EmailService
from .invoice_service import InvoiceService

logger = logging.getLogger(__name__)


class StripeWebhookService(BaseService):
    def __init__(
        self,
        db: Session,
        email_service: Optional[EmailService] = None,
        calendar_service: Optional[CalendarSyncService] = None,
    ):
        super().__init__(db)
        self.email_service = email_service or EmailService(db)
        self.calendar_service = calendar_service or CalendarSyncService(db)
        self.bill_service = BillService(db)
        self.invoice_service = InvoiceService(db)
        self.schedule_service = BillingScheduleService(db)
        self.session_repository = RepositoryFactory.create_payment_session_repository(db)
        self.account_repository = RepositoryFactory.create_stripe_account_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)

    @BaseService.measure_operation("process_stripe_event")
    def process_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Dispatch a verified event on its type."""
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        self.logger.info("Stripe webhook received", extra={"event_id": event.get("id"), "event_type": event_type})

        if event_type == "checkout.session.completed":
            result = self._handle_checkout_completed(obj)
        elif event_type == "checkout.session.expired":
            result = self._handle_checkout_expired(obj)
        elif event_type == "account.updated":
            result = self._handle_account_updated(obj)
        elif event_type == "account.application.deauthorized":
            result = self._handle_account_deauthorized(event.get("account") or obj.get("id"))
        else:
            result = {"received": True, "handled": False}

        outcome = "duplicate" if result.get("duplicate") else ("handled" if result.get("handled") else "ignored")
        prometheus_metrics.record_webhook_event(event_type or "unknown", outcome)
        return result

    # ---------------------------------------------------------------- Checkout

    def _handle_checkout_completed(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        metadata = obj.get("metadata") or {}
        booking_id = metadata.get("booking_id")
        invoice_id = metadata.get("invoice_id")
        if not booking_id and not invoice_id:
            self.logger.info("Checkout session without booking or invoice metadata", extra={"session_id": obj.get("id")})
            return {"received": True}

        local = self.session_repository.get_by_stripe_id(obj.get("id", ""))
        if local and local.status == PaymentSessionStatus.COMPLETED.value:
            self.logger.info("Duplicate checkout completion ignored", extra={"session_id": local.stripe_session_id})
            return {"received": True, "duplicate": True}

        if booking_id:
            return self._complete_booking_payment(booking_id, obj, local)
        return self._complete_invoice_payment(invoice_id, obj, local)

    def _complete_session(
        self,
        obj: Dict[str, Any],
        local: Optional[PaymentSession],
        booking_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> PaymentSession:
        payment_intent = obj.get("payment_intent")
        if local is None:
            # Session created outside this service (e.g. before local mirroring)
            local = self.session_repository.create(
                booking_id=booking_id,
                invoice_id=invoice_id,
                stripe_session_id=obj.get("id"),
                amount=round((obj.get("amount_total") or 0) / 100.0, 2),
                currency=(obj.get("currency") or "eur").upper(),
                status=PaymentSessionStatus.PENDING.value,
            )
        return self.session_repository.apply_updates(
            local,
            status=PaymentSessionStatus.COMPLETED.value,
            stripe_payment_intent_id=payment_intent,
            completed_at=utc_now(),
        )

    def _complete_booking_payment(
        self, booking_id: str, obj: Dict[str, Any], local: Optional[PaymentSession]
    ) -> Dict[str, Any]:
        with self.transaction():
            payment_session = self._complete_session(obj, local, booking_id=booking_id)
            booking = self.booking_repository.get_by_id(booking_id)
            if not booking:
                self.logger.warning("Paid booking not found", extra={"booking_id": booking_id})
                return {"received": True, "handled": True, "booking_id": booking_id}

            was_pending = booking.status == BookingStatus.PENDING.value
            if was_pending:
                booking.status = BookingStatus.SCHEDULED.value

            bill = self.bill_repository.get_payable_for_booking(booking.id)
            if bill:
                self.bill_service.update_status(bill, BillStatus.PAID.value)
            else:
                bill = self.bill_repository.get_paid_for_booking(booking.id)
            if bill:
                self.invoice_service.ensure_invoice_for_bill_on_payment(
                    bill,
                    payment_intent_id=payment_session.stripe_payment_intent_id,
                    payment_session=payment_session,
                )
                self.schedule_service.mark_bill_sent_for_booking(booking.id)

        if not booking.series_id:
            with self.transaction():
                self.calendar_service.confirm_pending_event(booking)

        if bill:
            client = booking.client
            practitioner = booking.practitioner
            self.email_service.send_payment_receipt(
                to_email=bill.client_email or (client.email if client else None),
                client_name=bill.client_name or (client.full_name if client else ""),
                practitioner_name=practitioner.full_name if practitioner else "",
                amount=float(bill.amount),
                currency=bill.currency,
                consultation_date=ensure_utc(booking.start_time),
            )

        self.log_operation("booking_payment_completed", booking_id=booking_id, confirmed=was_pending)
        return {"received": True, "handled": True, "booking_id": booking_id}

    def _complete_invoice_payment(
        self, invoice_id: str, obj: Dict[str, Any], local: Optional[PaymentSession]
    ) -> Dict[str, Any]:
        with self.transaction():
            payment_session = self._complete_session(obj, local, invoice_id=invoice_id)
            invoice = self.invoice_service.finalize_invoice_on_payment(
                invoice_id, payment_intent_id=payment_session.stripe_payment_intent_id
            )

        if invoice:
            practitioner = RepositoryFactory.create_profile_repository(self.db).get_by_id(invoice.user_id)
            self.email_service.send_invoice_receipt(
                to_email=invoice.client_email_snapshot,
                client_name=invoice.client_name_snapshot or "",
                practitioner_name=practitioner.full_name if practitioner else "",
                amount=float(invoice.total or 0),
                currency=invoice.currency,
                invoice_number=invoice.display_number,
            )

        self.log_operation("invoice_payment_completed", invoice_id=invoice_id)
        return {"received": True, "handled": True, "invoice_id": invoice_id}

    def _handle_checkout_expired(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        with self.transaction():
            local = self.session_repository.get_by_stripe_id(obj.get("id", ""))
            if local and local.status == PaymentSessionStatus.PENDING.value:
                self.session_repository.apply_updates(local, status=PaymentSessionStatus.EXPIRED.value)
        return {"received": True, "handled": True}

    # ----------------------------------------------------------------- Connect

    def _handle_account_updated(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        account_id = obj.get("id")
        with self.transaction():
            account = self.account_repository.get_by_stripe_id(account_id) if account_id else None
            if not account:
                self.logger.warning("account.updated for unknown account", extra={"stripe_account_id": account_id})
                return {"received": True, "handled": False}
            ready = bool(obj.get("charges_enabled") and obj.get("payouts_enabled") and obj.get("details_submitted"))
            if ready:
                self.account_repository.apply_updates(account, onboarding_completed=True, payments_enabled=True)
            else:
                self.account_repository.apply_updates(account, payments_enabled=False)
        self.log_operation("connect_account_updated", stripe_account_id=account_id, ready=ready)
        return {"received": True, "handled": True}

    def _handle_account_deauthorized(self, account_id: Optional[str]) -> Dict[str, Any]:
        with self.transaction():
            account = self.account_repository.get_by_stripe_id(account_id) if account_id else None
            if not account:
                return {"received": True, "handled": False}
            self.account_repository.apply_updates(account, onboarding_completed=False, payments_enabled=False)
        self.log_operation("connect_account_deauthorized", stripe_account_id=account_id)
        return {"received": True, "handled": True}
