"""
Tests for the daily appointment reminder run.
"""

from datetime import datetime, timezone

import pytest

from app.core.enums import BillStatus, BookingStatus
from app.services.appointment_reminder_service import AppointmentReminderService

# 08:00 in Madrid; the local day ends at 22:59:59 UTC
NOW = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(db) -> AppointmentReminderService:
    return AppointmentReminderService(db)


def _sent_html(mock_resend):
    return [call.args[0]["html"] for call in mock_resend.call_args_list]


class TestSendAppointmentReminders:
    def test_reminds_only_the_rest_of_the_local_day(self, service, create_booking, mock_resend):
        today, _ = create_booking(start=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))
        create_booking(start=datetime(2026, 3, 2, 23, 30, tzinfo=timezone.utc))
        create_booking(start=datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc))
        create_booking(
            start=datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc),
            status=BookingStatus.CANCELED.value,
        )

        result = service.send_appointment_reminders(now=NOW, delay_seconds=0)

        assert result["counts"] == {"picked": 1, "sent": 1, "skipped": 0, "failed": 0}
        assert today.reminder_sent_at is not None
        assert mock_resend.call_count == 1
        assert mock_resend.call_args.args[0]["to"] == "ana.ruiz@example.com"

    def test_unpaid_booking_gets_pay_link(self, service, create_booking, mock_resend):
        booking, _ = create_booking(start=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))

        service.send_appointment_reminders(now=NOW, delay_seconds=0)

        assert f"/api/payments/{booking.id}" in _sent_html(mock_resend)[0]

    def test_paid_in_person_booking_gets_location_only(self, service, create_booking, mock_resend):
        create_booking(
            start=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
            bill_status=BillStatus.PAID.value,
            mode="in_person",
            location_text="Calle Mayor 1, Madrid",
        )

        service.send_appointment_reminders(now=NOW, delay_seconds=0)

        html = _sent_html(mock_resend)[0]
        assert "Calle Mayor 1, Madrid" in html
        assert "Pay now" not in html

    def test_second_run_sends_nothing(self, service, create_booking, mock_resend):
        create_booking(start=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))
        service.send_appointment_reminders(now=NOW, delay_seconds=0)

        result = service.send_appointment_reminders(now=NOW, delay_seconds=0)

        assert result["counts"]["picked"] == 0
        assert mock_resend.call_count == 1

    def test_client_without_email_is_skipped(self, db, service, create_booking, client_row, mock_resend):
        client_row.email = None
        db.commit()
        booking, _ = create_booking(start=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))

        result = service.send_appointment_reminders(now=NOW, delay_seconds=0)

        assert result["counts"]["skipped"] == 1
        assert booking.reminder_sent_at is None
        mock_resend.assert_not_called()

    def test_failed_send_is_retried_next_run(self, service, create_booking, mock_resend):
        booking, _ = create_booking(start=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc))
        mock_resend.side_effect = Exception("rate limited")

        result = service.send_appointment_reminders(now=NOW, delay_seconds=0)

        assert result["counts"]["failed"] == 1
        assert booking.reminder_sent_at is None
