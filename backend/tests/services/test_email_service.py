"""
Tests for EmailService: the Resend wrapper and the best-effort domain senders.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from app.core.config import settings
from app.core.exceptions import ServiceException
from app.services.email import EmailService

CONSULTATION = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def email_service(db) -> EmailService:
    return EmailService(db)


class TestSendEmail:
    def test_sends_html_and_plain_text(self, email_service, mock_resend):
        email_service.send_email("ana.ruiz@example.com", "Hello", "<p>Hi <b>Ana</b></p>")

        payload = mock_resend.call_args.args[0]
        assert payload["to"] == "ana.ruiz@example.com"
        assert payload["text"] == "Hi Ana"

    def test_provider_failure_raises(self, email_service, mock_resend):
        mock_resend.side_effect = Exception("rate limited")

        with pytest.raises(ServiceException):
            email_service.send_email("ana.ruiz@example.com", "Hello", "<p>Hi</p>")

    def test_disabled_email_is_a_no_op(self, email_service, mock_resend, monkeypatch):
        monkeypatch.setattr(settings, "email_enabled", False)

        assert email_service.send_email("ana.ruiz@example.com", "Hello", "<p>Hi</p>") == {}
        mock_resend.assert_not_called()


class TestDomainSenders:
    def test_reminder_with_meeting_link(self, email_service, mock_resend):
        sent = email_service.send_appointment_reminder(
            "ana.ruiz@example.com",
            "Ana Ruiz",
            "Laura Martin",
            CONSULTATION,
            meeting_link="https://meet.google.com/abc",
        )

        assert sent is True
        assert "https://meet.google.com/abc" in mock_resend.call_args.args[0]["html"]

    def test_reminder_with_payment_link(self, email_service, mock_resend):
        email_service.send_appointment_reminder(
            "ana.ruiz@example.com",
            "Ana Ruiz",
            "Laura Martin",
            CONSULTATION,
            location="Calle Mayor 1, Madrid",
            payment_url="https://api.example.com/api/payments/b1",
        )

        html = mock_resend.call_args.args[0]["html"]
        assert "Pay now" in html
        assert "https://api.example.com/api/payments/b1" in html

    def test_missing_recipient_returns_false(self, email_service, mock_resend):
        assert email_service.send_cancellation_notification(None, "Ana Ruiz", "Laura Martin", CONSULTATION) is False
        mock_resend.assert_not_called()

    def test_sender_swallows_provider_failure(self, email_service, mock_resend):
        mock_resend.side_effect = Exception("down")

        assert (
            email_service.send_payment_receipt("ana.ruiz@example.com", "Ana Ruiz", "Laura Martin", 60.0, "EUR")
            is False
        )

    def test_bulk_send_reports_each_item(self, email_service, mock_resend):
        mock_resend.side_effect = [{"id": "1"}, Exception("bounced")]
        item = {
            "client_name": "Ana Ruiz",
            "practitioner_name": "Laura Martin",
            "amount": 60.0,
            "currency": "EUR",
            "consultation_date": CONSULTATION,
            "payment_url": "https://api.example.com/api/payments/b1",
        }

        with patch("app.services.email.time.sleep") as mocked_sleep:
            results = email_service.send_bulk_consultation_bills(
                [
                    {"id": "s1", "to_email": "ana.ruiz@example.com", **item},
                    {"id": "s2", "to_email": "bea@example.com", **item},
                ],
                delay_seconds=0.5,
            )

        assert [r["success"] for r in results] == [True, False]
        assert results[1] == {"id": "s2", "to": "bea@example.com", "success": False, "error": "email_failed"}
        mocked_sleep.assert_called_once_with(0.5)
