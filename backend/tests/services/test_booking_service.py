"""
Tests for BookingService: creation, confirmation, cancellation,
rescheduling, manual payments and refunds.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from app.core.enums import BillStatus, BookingStatus, InvoiceStatus, ScheduleStatus
from app.core.exceptions import (
    BillingSettingsNotFoundException,
    ForbiddenException,
    NoPaidBillException,
    NotFoundException,
    ValidationException,
)
from app.models import BillingSchedule, Invoice, PaymentSession, Profile
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingService


def _future(days: float = 5) -> datetime:
    start = datetime.now(timezone.utc) + timedelta(days=days)
    return start.replace(second=0, microsecond=0)


def _payload(client_id: str, start: datetime, **extra) -> BookingCreate:
    return BookingCreate(client_id=client_id, start_time=start, end_time=start + timedelta(minutes=50), **extra)


@pytest.fixture
def service(db: Session) -> BookingService:
    return BookingService(db)


class TestCreateBooking:
    def test_bill_amount_matches_resolved_settings(self, service, db, practitioner, client_row, create_settings):
        create_settings(practitioner.id, billing_amount=50)
        create_settings(practitioner.id, client_id=client_row.id, billing_amount=75)

        result = service.create_booking(practitioner, _payload(client_row.id, _future()))

        bill = result["bill"]
        assert bill.amount == 75.0
        assert bill.currency == "EUR"
        assert bill.client_email == client_row.email
        assert result["booking"].billing_settings_id is not None

    def test_first_consultation_amount_applies(self, service, practitioner, client_row, create_settings):
        create_settings(practitioner.id, billing_amount=60, first_consultation_amount=90)

        result = service.create_booking(
            practitioner, _payload(client_row.id, _future(), consultation_type="first")
        )

        assert result["bill"].amount == 90.0

    def test_booking_specific_settings_are_created(self, service, db, practitioner, client_row, create_settings):
        create_settings(practitioner.id, billing_amount=60)

        result = service.create_booking(
            practitioner,
            _payload(
                client_row.id,
                _future(),
                billing_settings={
                    "billing_type": "recurring",
                    "billing_frequency": "monthly",
                    "billing_amount": 45,
                },
            ),
        )

        assert result["bill"].amount == 45.0
        assert result["bill"].billing_type == "monthly"
        assert result["booking"].status == BookingStatus.SCHEDULED.value

    def test_after_consultation_booking_is_scheduled(self, service, db, practitioner, client_row, create_settings, mock_resend):
        create_settings(practitioner.id)

        result = service.create_booking(practitioner, _payload(client_row.id, _future()))

        assert result["booking"].status == BookingStatus.SCHEDULED.value
        assert result["requires_payment"] is False
        assert result["bill"].status == BillStatus.PENDING.value
        rows = db.query(BillingSchedule).filter_by(booking_id=result["booking"].id).all()
        assert sorted(r.action_type for r in rows) == ["overdue_notice", "payment_reminder", "send_bill"]
        mock_resend.assert_not_called()

    def test_past_booking_is_completed(self, service, practitioner, client_row, create_settings):
        create_settings(practitioner.id)

        result = service.create_booking(practitioner, _payload(client_row.id, _future(-2)))

        assert result["booking"].status == BookingStatus.COMPLETED.value

    def test_prepaid_booking_waits_for_payment(self, service, practitioner, client_row, create_settings, mock_resend):
        create_settings(practitioner.id, billing_trigger="before_consultation", billing_advance_days=1)
        start = _future(5)

        result = service.create_booking(practitioner, _payload(client_row.id, start))

        booking, bill = result["booking"], result["bill"]
        assert booking.status == BookingStatus.PENDING.value
        assert result["requires_payment"] is True
        assert result["payment_url"] is None
        assert abs((bill.email_scheduled_at.replace(tzinfo=timezone.utc) - (start - timedelta(days=1))).total_seconds()) < 1
        mock_resend.assert_not_called()

    def test_prepaid_booking_due_now_sends_bill(
        self, service, practitioner, client_row, create_settings, stripe_account, mock_checkout, mock_resend
    ):
        create_settings(practitioner.id, billing_trigger="before_consultation", billing_advance_days=1)

        result = service.create_booking(practitioner, _payload(client_row.id, _future(0.5)))

        assert result["payment_url"].startswith("https://checkout.stripe.com/")
        assert result["warning"] is None
        assert result["bill"].status == BillStatus.SENT.value
        assert mock_checkout.call_args.kwargs["stripe_account"] == "acct_test_123"
        assert mock_checkout.call_args.kwargs["line_items"][0]["price_data"]["unit_amount"] == 6000
        mock_resend.assert_called_once()
        assert mock_resend.call_args.args[0]["to"] == client_row.email

    def test_checkout_failure_is_reported_as_warning(
        self, service, practitioner, client_row, create_settings, mock_resend
    ):
        create_settings(practitioner.id, billing_trigger="before_consultation", billing_advance_days=1)

        result = service.create_booking(practitioner, _payload(client_row.id, _future(0.5)))

        assert result["booking"].status == BookingStatus.PENDING.value
        assert result["warning"].startswith("Payment link could not be created")
        assert result["bill"].status == BillStatus.PENDING.value
        mock_resend.assert_not_called()

    def test_free_prepaid_booking_is_paid_immediately(self, service, practitioner, client_row, create_settings):
        create_settings(practitioner.id, billing_trigger="before_consultation", billing_advance_days=1)

        result = service.create_booking(practitioner, _payload(client_row.id, _future(), amount=0))

        assert result["bill"].status == BillStatus.PAID.value
        assert result["booking"].status == BookingStatus.SCHEDULED.value
        assert result["requires_payment"] is False

    def test_unknown_client(self, service, practitioner, create_settings):
        create_settings(practitioner.id)

        with pytest.raises(NotFoundException):
            service.create_booking(practitioner, _payload("missing-client", _future()))

    def test_missing_settings(self, service, practitioner, client_row):
        with pytest.raises(BillingSettingsNotFoundException):
            service.create_booking(practitioner, _payload(client_row.id, _future()))


class TestLifecycle:
    def test_confirm_pending_booking(self, service, practitioner, create_booking):
        booking, _ = create_booking(status=BookingStatus.PENDING.value)

        confirmed = service.confirm_booking(practitioner, booking.id)

        assert confirmed.status == BookingStatus.SCHEDULED.value
        with pytest.raises(ValidationException) as exc_info:
            service.confirm_booking(practitioner, booking.id)
        assert exc_info.value.code == "BOOKING_ALREADY_CONFIRMED"

    def test_foreign_booking_is_forbidden(self, service, db, create_booking):
        booking, _ = create_booking()
        stranger = Profile(email="stranger@example.com", name="Other")
        db.add(stranger)
        db.commit()

        with pytest.raises(ForbiddenException):
            service.get_booking(stranger, booking.id)

    def test_reschedule_moves_booking(self, service, practitioner, create_booking):
        booking, _ = create_booking()
        new_start = _future(10)

        result = service.reschedule_booking(practitioner, booking.id, new_start, new_start + timedelta(hours=1))

        assert result["booking"].start_time == new_start
        assert "warning" not in result

    def test_reschedule_rejects_inverted_range(self, service, practitioner, create_booking):
        booking, _ = create_booking()
        start = _future(10)

        with pytest.raises(ValidationException) as exc_info:
            service.reschedule_booking(practitioner, booking.id, start, start - timedelta(minutes=5))
        assert exc_info.value.code == "INVALID_TIME_RANGE"

    def test_reschedule_rejects_canceled_booking(self, service, practitioner, create_booking):
        booking, _ = create_booking(status=BookingStatus.CANCELED.value)
        start = _future(10)

        with pytest.raises(ValidationException):
            service.reschedule_booking(practitioner, booking.id, start, start + timedelta(hours=1))

    def test_mark_paid_leaves_booking_status(self, service, db, practitioner, create_booking):
        booking, bill = create_booking(status=BookingStatus.PENDING.value)

        service.mark_paid(practitioner, booking.id)

        db.refresh(bill)
        db.refresh(booking)
        assert bill.status == BillStatus.PAID.value
        assert booking.status == BookingStatus.PENDING.value

    def test_archive_round_trip(self, service, practitioner, create_booking):
        booking, _ = create_booking()

        assert service.archive_booking(practitioner, booking.id).archived_at is not None
        assert service.unarchive_booking(practitioner, booking.id).archived_at is None


class TestCancelBooking:
    def test_cancel_releases_pending_bill_and_invoice_link(self, service, db, practitioner, client_row, create_booking, mock_resend):
        booking, bill = create_booking(cadence="monthly")
        draft = Invoice(user_id=practitioner.id, client_id=client_row.id, status=InvoiceStatus.DRAFT.value, total=60.0)
        db.add(draft)
        db.flush()
        bill.invoice_id = draft.id
        db.commit()
        draft_id = draft.id

        result = service.cancel_booking(practitioner, booking.id)

        db.refresh(bill)
        assert result["success"] is True
        assert result["willRefund"] is False
        assert result["booking"]["status"] == BookingStatus.CANCELED.value
        assert bill.status == BillStatus.CANCELED.value
        assert bill.invoice_id is None
        assert db.get(Invoice, draft_id) is None
        mock_resend.assert_called_once()

    def test_cancel_expires_open_checkout_sessions(self, service, db, create_booking):
        booking, _ = create_booking(status=BookingStatus.PENDING.value)
        payment_session = PaymentSession(
            booking_id=booking.id, stripe_session_id="cs_open", amount=60.0, status="pending"
        )
        db.add(payment_session)
        db.commit()

        with patch("stripe.checkout.Session.expire") as mock_expire:
            service.cancel_booking(booking.practitioner, booking.id)

        db.refresh(payment_session)
        assert payment_session.status == "cancelled"
        mock_expire.assert_called_once_with("cs_open")

    def test_cancel_closes_schedule_rows(self, service, db, practitioner, client_row, create_settings):
        create_settings(practitioner.id)
        booking = service.create_booking(practitioner, _payload(client_row.id, _future()))["booking"]

        service.cancel_booking(practitioner, booking.id)

        statuses = {r.status for r in db.query(BillingSchedule).filter_by(booking_id=booking.id)}
        assert statuses == {ScheduleStatus.CANCELLED.value}

    def test_cancel_paid_booking_refunds(self, service, db, practitioner, create_booking):
        booking, bill = create_booking(bill_status=BillStatus.PAID.value)

        result = service.cancel_booking(practitioner, booking.id, reason="Client is ill")

        db.refresh(bill)
        assert result["willRefund"] is True
        assert result["refundId"].startswith("manual_refund_")
        assert bill.status == BillStatus.REFUNDED.value
        assert bill.refund_reason == "Client is ill"

    def test_cancel_twice_is_harmless(self, service, practitioner, create_booking):
        booking, _ = create_booking()
        service.cancel_booking(practitioner, booking.id)

        result = service.cancel_booking(practitioner, booking.id)

        assert result["message"] == "Booking already canceled"


class TestRefund:
    def test_refund_without_paid_bill(self, service, practitioner, create_booking):
        booking, _ = create_booking()

        with pytest.raises(NoPaidBillException) as exc_info:
            service.refund_booking(practitioner, booking.id)
        assert "No paid bill" in exc_info.value.message
        assert exc_info.value.status_code == 400

    def test_manual_payment_refund(self, service, db, practitioner, create_booking, mock_resend):
        booking, bill = create_booking(bill_status=BillStatus.PAID.value)

        result = service.refund_booking(practitioner, booking.id, reason="Duplicate payment")

        db.refresh(bill)
        assert result["status"] == "refunded"
        assert result["refund_id"].startswith("manual_refund_")
        assert bill.stripe_refund_id == result["refund_id"]
        mock_resend.assert_called_once()

    def test_card_payment_refund_goes_through_stripe(self, service, db, practitioner, create_booking):
        booking, bill = create_booking(bill_status=BillStatus.PAID.value)
        db.add(
            PaymentSession(
                booking_id=booking.id,
                stripe_session_id="cs_paid",
                stripe_payment_intent_id="pi_123",
                stripe_account_id="acct_test_123",
                amount=60.0,
                status="completed",
            )
        )
        db.commit()

        with patch("stripe.Refund.create", return_value=SimpleNamespace(id="re_123")) as mock_refund:
            result = service.refund_booking(practitioner, booking.id)

        assert result["refund_id"] == "re_123"
        assert mock_refund.call_args.kwargs["payment_intent"] == "pi_123"
        assert mock_refund.call_args.kwargs["stripe_account"] == "acct_test_123"

    def test_refund_rectifies_per_booking_invoice(self, service, db, practitioner, client_row, create_booking):
        booking, bill = create_booking(bill_status=BillStatus.PAID.value)
        invoice = Invoice(
            user_id=practitioner.id,
            client_id=client_row.id,
            status=InvoiceStatus.PAID.value,
            series="2026-05",
            number=1,
            subtotal=60.0,
            total=60.0,
            legacy_bill_id=bill.id,
        )
        db.add(invoice)
        db.flush()
        bill.invoice_id = invoice.id
        db.commit()

        service.refund_booking(practitioner, booking.id, reason="Canceled by practitioner")

        db.refresh(invoice)
        assert invoice.status == InvoiceStatus.REFUNDED.value
        credit_note = db.query(Invoice).filter_by(rectifies_invoice_id=invoice.id).one()
        assert credit_note.document_kind == "credit_note"
        assert credit_note.total == -60.0
        assert credit_note.series.startswith("R-")
        assert credit_note.number == 1
