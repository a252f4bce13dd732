"""
Tests for the consultation billing cron paths: the daily schedule run and
the scheduled-bill sender.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from app.core.enums import BillStatus, BookingBillingStatus, ScheduleActionType, ScheduleStatus
from app.models import BillingSchedule, PaymentSession
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingService
from app.services.consultation_billing_service import ConsultationBillingService
from app.services.stripe_webhook_service import StripeWebhookService


def _book(db: Session, practitioner, client_id: str, start: datetime):
    payload = BookingCreate(client_id=client_id, start_time=start, end_time=start + timedelta(minutes=50))
    return BookingService(db).create_booking(practitioner, payload)


def _tomorrow():
    return (datetime.now(timezone.utc) + timedelta(days=1)).date()


@pytest.fixture
def service(db: Session) -> ConsultationBillingService:
    return ConsultationBillingService(db)


@pytest.fixture
def finished_consultation(db, practitioner, client_row, create_settings):
    """An after-consultation booking that ended an hour ago."""
    create_settings(practitioner.id)
    start = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(hours=2)
    return _book(db, practitioner, client_row.id, start)


def _send_bill_row(db: Session, booking_id: str) -> BillingSchedule:
    return (
        db.query(BillingSchedule)
        .filter_by(booking_id=booking_id, action_type=ScheduleActionType.SEND_BILL.value)
        .one()
    )


class TestProcessDueConsultationBills:
    def test_nothing_due(self, service):
        result = service.process_due_consultation_bills()

        assert result == {"success": True, "message": "No consultation bills to process"}

    def test_due_bill_gets_checkout_and_email(
        self, service, db, finished_consultation, stripe_account, mock_checkout, mock_resend
    ):
        booking = finished_consultation["booking"]
        bill = finished_consultation["bill"]
        mock_resend.reset_mock()

        result = service.process_due_consultation_bills(today=_tomorrow())

        assert result["total"] == 1
        assert result["emails_sent"] == 1
        assert result["emails_failed"] == 0
        assert result["results"] == [
            {"schedule_id": _send_bill_row(db, booking.id).id, "booking_id": booking.id, "success": True}
        ]
        assert bill.status == BillStatus.SENT.value
        assert booking.billing_status == BookingBillingStatus.BILLED.value
        assert _send_bill_row(db, booking.id).status == ScheduleStatus.PROCESSED.value
        assert db.query(PaymentSession).filter_by(booking_id=booking.id).count() == 1
        mock_checkout.assert_called_once()
        mock_resend.assert_called_once()

    def test_second_run_finds_nothing(self, service, finished_consultation, stripe_account, mock_checkout):
        service.process_due_consultation_bills(today=_tomorrow())

        result = service.process_due_consultation_bills(today=_tomorrow())

        assert result["message"] == "No consultation bills to process"

    def test_missing_account_marks_row_failed(self, service, db, finished_consultation, mock_resend):
        booking = finished_consultation["booking"]
        mock_resend.reset_mock()

        result = service.process_due_consultation_bills(today=_tomorrow())

        assert result["total"] == 1
        assert result["emails_sent"] == 0
        assert result["errors"][0]["booking_id"] == booking.id
        row = _send_bill_row(db, booking.id)
        assert row.retry_count == 1
        assert row.last_error
        assert finished_consultation["bill"].status == BillStatus.PENDING.value
        mock_resend.assert_not_called()

    def test_already_sent_bill_is_skipped(self, service, db, finished_consultation, mock_checkout):
        bill = finished_consultation["bill"]
        bill.status = BillStatus.SENT.value
        db.commit()

        result = service.process_due_consultation_bills(today=_tomorrow())

        assert result["skipped"] == 1
        assert result["emails_sent"] == 0
        assert _send_bill_row(db, finished_consultation["booking"].id).status == ScheduleStatus.PROCESSED.value
        mock_checkout.assert_not_called()

    def test_paid_bill_closes_row_without_error(self, service, db, finished_consultation, mock_checkout):
        finished_consultation["bill"].status = BillStatus.PAID.value
        db.commit()

        result = service.process_due_consultation_bills(today=_tomorrow())

        assert result["skipped"] == 1
        assert result["errors"] == []
        row = _send_bill_row(db, finished_consultation["booking"].id)
        assert row.status == ScheduleStatus.PROCESSED.value
        assert row.retry_count == 0
        mock_checkout.assert_not_called()

    def test_checkout_paid_before_run_leaves_nothing_due(self, service, db, finished_consultation, mock_checkout):
        booking = finished_consultation["booking"]
        event = {
            "id": "evt_paid_early",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_paid_early",
                    "payment_intent": "pi_early",
                    "amount_total": 6000,
                    "currency": "eur",
                    "metadata": {"booking_id": booking.id},
                }
            },
        }
        StripeWebhookService(db).process_event(event)

        result = service.process_due_consultation_bills(today=_tomorrow())

        assert result == {"success": True, "message": "No consultation bills to process"}
        assert _send_bill_row(db, booking.id).status == ScheduleStatus.PROCESSED.value
        assert finished_consultation["bill"].status == BillStatus.PAID.value
        mock_checkout.assert_not_called()


class TestSendScheduledBills:
    @pytest.fixture
    def reservation(self, db, practitioner, client_row, create_settings):
        create_settings(practitioner.id, billing_trigger="before_consultation", billing_advance_days=2)
        start = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=5)
        return _book(db, practitioner, client_row.id, start)

    def test_bill_waits_until_scheduled_time(self, service, reservation):
        result = service.send_scheduled_bills(now=datetime.now(timezone.utc))

        assert result == {"picked": 0, "sent": 0, "failed": 0}
        assert reservation["bill"].status == BillStatus.PENDING.value

    def test_due_bill_is_sent_and_unlocked(self, service, db, reservation, mock_resend):
        bill = reservation["bill"]
        mock_resend.reset_mock()

        result = service.send_scheduled_bills(now=reservation["booking"].start_time)

        assert result == {"picked": 1, "sent": 1, "failed": 0}
        db.refresh(bill)
        assert bill.status == BillStatus.SENT.value
        assert bill.email_locked_at is None
        assert _send_bill_row(db, reservation["booking"].id).status == ScheduleStatus.PROCESSED.value
        mock_resend.assert_called_once()

    def test_failed_email_releases_the_claim(self, service, db, reservation, mock_resend):
        bill = reservation["bill"]
        mock_resend.side_effect = Exception("provider down")

        result = service.send_scheduled_bills(now=reservation["booking"].start_time)

        assert result == {"picked": 1, "sent": 0, "failed": 1}
        db.refresh(bill)
        assert bill.status == BillStatus.PENDING.value
        assert bill.email_locked_at is None
