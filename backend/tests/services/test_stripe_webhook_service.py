"""
Tests for Stripe webhook processing and signature verification.
"""

import json

from pydantic import SecretStr
import pytest
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.enums import BillStatus, BookingStatus, InvoiceStatus, PaymentSessionStatus
from app.core.exceptions import ValidationException
from app.models import Invoice, PaymentSession, StripeAccount
from app.services.stripe_service import StripeService
from app.services.stripe_webhook_service import StripeWebhookService
from tests.helpers.http import sign_stripe_payload


def _completed_event(session_id: str, **metadata) -> dict:
    return {
        "id": "evt_completed",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_intent": "pi_123",
                "amount_total": 6000,
                "currency": "eur",
                "metadata": metadata,
            }
        },
    }


@pytest.fixture
def service(db: Session) -> StripeWebhookService:
    return StripeWebhookService(db)


@pytest.fixture
def pending_reservation(db: Session, create_booking):
    booking, bill = create_booking(status=BookingStatus.PENDING.value, bill_status=BillStatus.SENT.value)
    payment_session = PaymentSession(
        booking_id=booking.id,
        stripe_session_id="cs_test_paid",
        stripe_account_id="acct_test_123",
        amount=60.0,
        status=PaymentSessionStatus.PENDING.value,
    )
    db.add(payment_session)
    db.commit()
    return booking, bill, payment_session


class TestCheckoutCompleted:
    def test_booking_payment_confirms_and_invoices(self, service, db, pending_reservation, mock_resend):
        booking, bill, payment_session = pending_reservation

        result = service.process_event(_completed_event("cs_test_paid", booking_id=booking.id))

        assert result == {"received": True, "handled": True, "booking_id": booking.id}
        assert booking.status == BookingStatus.SCHEDULED.value
        assert bill.status == BillStatus.PAID.value
        assert payment_session.status == PaymentSessionStatus.COMPLETED.value
        assert payment_session.stripe_payment_intent_id == "pi_123"
        invoice = db.query(Invoice).one()
        assert invoice.status == InvoiceStatus.PAID.value
        assert bill.invoice_id == invoice.id
        assert payment_session.invoice_id == invoice.id
        mock_resend.assert_called_once()

    def test_redelivered_event_is_a_noop(self, service, db, pending_reservation, mock_resend):
        booking, _, _ = pending_reservation
        event = _completed_event("cs_test_paid", booking_id=booking.id)
        service.process_event(event)

        result = service.process_event(event)

        assert result == {"received": True, "duplicate": True}
        assert db.query(Invoice).count() == 1
        mock_resend.assert_called_once()

    def test_unknown_session_is_mirrored(self, service, db, create_booking):
        booking, bill = create_booking(status=BookingStatus.PENDING.value, bill_status=BillStatus.SENT.value)

        service.process_event(_completed_event("cs_from_elsewhere", booking_id=booking.id))

        mirrored = db.query(PaymentSession).filter_by(stripe_session_id="cs_from_elsewhere").one()
        assert mirrored.status == PaymentSessionStatus.COMPLETED.value
        assert mirrored.amount == 60.0
        assert bill.status == BillStatus.PAID.value

    def test_invoice_payment_finalizes_invoice(self, service, db, practitioner, client_row, create_booking, mock_resend):
        invoice = Invoice(
            user_id=practitioner.id,
            client_id=client_row.id,
            status=InvoiceStatus.DRAFT.value,
            total=60.0,
            client_email_snapshot=client_row.email,
        )
        db.add(invoice)
        db.flush()
        _, bill = create_booking(cadence="monthly")
        bill.invoice_id = invoice.id
        db.commit()

        result = service.process_event(_completed_event("cs_invoice", invoice_id=invoice.id))

        assert result["invoice_id"] == invoice.id
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.number == 1
        assert bill.status == BillStatus.PAID.value
        mock_resend.assert_called_once()

    def test_session_without_metadata_is_acknowledged(self, service):
        assert service.process_event(_completed_event("cs_anonymous")) == {"received": True}


class TestOtherEvents:
    def test_expired_session(self, service, pending_reservation):
        _, _, payment_session = pending_reservation

        service.process_event(
            {"type": "checkout.session.expired", "data": {"object": {"id": "cs_test_paid"}}}
        )

        assert payment_session.status == PaymentSessionStatus.EXPIRED.value

    def test_account_updated_enables_payments(self, service, db, practitioner):
        account = StripeAccount(user_id=practitioner.id, stripe_account_id="acct_new")
        db.add(account)
        db.commit()

        result = service.process_event(
            {
                "type": "account.updated",
                "data": {
                    "object": {
                        "id": "acct_new",
                        "charges_enabled": True,
                        "payouts_enabled": True,
                        "details_submitted": True,
                    }
                },
            }
        )

        assert result["handled"] is True
        assert account.onboarding_completed is True
        assert account.payments_enabled is True

    def test_deauthorized_account_is_disabled(self, service, stripe_account):
        service.process_event(
            {"type": "account.application.deauthorized", "account": "acct_test_123", "data": {"object": {}}}
        )

        assert stripe_account.payments_enabled is False
        assert stripe_account.onboarding_completed is False

    def test_unhandled_event_type(self, service):
        result = service.process_event({"type": "invoice.created", "data": {"object": {}}})

        assert result == {"received": True, "handled": False}


class TestSignature:
    def test_valid_signature(self, db):
        payload = json.dumps({"id": "evt_1", "object": "event", "type": "account.updated"}).encode("utf-8")

        event = StripeService(db).construct_event(payload, sign_stripe_payload(payload))

        assert event["id"] == "evt_1"

    def test_secondary_secret_is_tried(self, db, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret_connect", SecretStr("whsec_connect"))
        payload = json.dumps({"id": "evt_2", "object": "event"}).encode("utf-8")

        event = StripeService(db).construct_event(payload, sign_stripe_payload(payload, secret="whsec_connect"))

        assert event["id"] == "evt_2"

    def test_invalid_signature(self, db):
        payload = b'{"id": "evt_3", "object": "event"}'

        with pytest.raises(ValidationException) as exc_info:
            StripeService(db).construct_event(payload, sign_stripe_payload(payload, secret="whsec_wrong"))
        assert exc_info.value.code == "WEBHOOK_INVALID_SIGNATURE"

    def test_no_secret_configured(self, db, monkeypatch):
        monkeypatch.setattr(settings, "stripe_webhook_secret", SecretStr(""))
        payload = b'{"id": "evt_4", "object": "event"}'

        with pytest.raises(ValidationException) as exc_info:
            StripeService(db).construct_event(payload, sign_stripe_payload(payload))
        assert exc_info.value.code == "WEBHOOK_NOT_CONFIGURED"
