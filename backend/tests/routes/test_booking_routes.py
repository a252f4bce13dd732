"""
Route tests for /api/bookings and /api/booking-series.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.core.enums import BillStatus, BookingStatus


def _start(days: int = 4) -> datetime:
    return (datetime.now(timezone.utc) + timedelta(days=days)).replace(second=0, microsecond=0)


def _booking_body(client_id: str, start: datetime, **extra) -> dict:
    body = {
        "client_id": client_id,
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(minutes=50)).isoformat(),
    }
    body.update(extra)
    return body


class TestBookingRoutes:
    def test_requires_authentication(self, client, client_row):
        response = client.post("/api/bookings", json=_booking_body(client_row.id, _start()))

        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = client.get("/api/bookings/anything", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_create_and_fetch(self, client, auth_headers, practitioner, client_row, create_settings):
        create_settings(practitioner.id, billing_amount=65)

        created = client.post("/api/bookings", json=_booking_body(client_row.id, _start()), headers=auth_headers)

        assert created.status_code == 201
        data = created.json()
        assert data["booking"]["status"] == BookingStatus.SCHEDULED.value
        assert data["bill"]["amount"] == 65.0
        assert data["requires_payment"] is False

        fetched = client.get(f"/api/bookings/{data['booking']['id']}", headers=auth_headers)
        assert fetched.status_code == 200
        assert [b["id"] for b in fetched.json()["bills"]] == [data["bill"]["id"]]

    def test_missing_settings_is_reported(self, authed_client, client_row):
        response = authed_client.post("/api/bookings", json=_booking_body(client_row.id, _start()))

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "BILLING_SETTINGS_NOT_FOUND"

    def test_inverted_range_is_rejected(self, authed_client, client_row):
        start = _start()
        body = _booking_body(client_row.id, start, end_time=(start - timedelta(hours=1)).isoformat())

        assert authed_client.post("/api/bookings", json=body).status_code == 422

    def test_unknown_field_is_rejected(self, authed_client, client_row):
        body = _booking_body(client_row.id, _start(), surprise=True)

        assert authed_client.post("/api/bookings", json=body).status_code == 422

    def test_cancel(self, authed_client, create_booking):
        booking, bill = create_booking()

        response = authed_client.post(f"/api/bookings/{booking.id}/cancel", json={"reason": "Client ill"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["booking"]["status"] == BookingStatus.CANCELED.value
        assert data["willRefund"] is False
        assert bill.status == BillStatus.CANCELED.value

    def test_refund_without_paid_bill(self, authed_client, create_booking):
        booking, _ = create_booking()

        response = authed_client.post(f"/api/bookings/{booking.id}/refund")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "NO_PAID_BILL"

    def test_unknown_booking(self, authed_client):
        assert authed_client.get("/api/bookings/missing").status_code == 404

    def test_mark_paid(self, authed_client, create_booking):
        booking, bill = create_booking()

        response = authed_client.post(f"/api/bookings/{booking.id}/mark-paid")

        assert response.status_code == 200
        assert bill.status == BillStatus.PAID.value


class TestBookingSeriesRoutes:
    def test_create_and_cancel(self, authed_client, client_row):
        start = _start(days=6).replace(tzinfo=None, hour=10, minute=0)
        body = {
            "client_id": client_row.id,
            "timezone": "Europe/Madrid",
            "dtstart_local": start.strftime("%Y-%m-%dT%H:%M:%S"),
            "duration_min": 50,
            "interval_weeks": 2,
            "by_weekday": (start.weekday() + 1) % 7,
            "amount": 70,
            "billing_policy": "right_after",
        }

        created = authed_client.post("/api/booking-series", json=body)

        assert created.status_code == 201
        series_id = created.json()["series"]["id"]
        assert len(created.json()["booking_ids"]) == 2

        canceled = authed_client.post(f"/api/booking-series/{series_id}/cancel", json={})
        assert canceled.status_code == 200
        assert len(canceled.json()["canceled_booking_ids"]) == 2

    def test_bad_offset_in_local_time(self, authed_client, client_row):
        body = {
            "client_id": client_row.id,
            "timezone": "Europe/Madrid",
            "dtstart_local": "2026-03-02T10:00:00+01:00",
            "duration_min": 50,
            "interval_weeks": 1,
            "by_weekday": 1,
            "amount": 70,
        }

        assert authed_client.post("/api/booking-series", json=body).status_code == 422


class TestResendBillEmail:
    def test_resend_sends_fresh_link(self, authed_client, create_booking, stripe_account, mock_checkout, mock_resend):
        booking, bill = create_booking()

        response = authed_client.post(f"/api/bookings/{booking.id}/resend-email")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert bill.status == BillStatus.SENT.value
        assert mock_checkout.call_args.kwargs["idempotency_key"].endswith(":0")
        payload = mock_resend.call_args.args[0]
        assert payload["to"] == "ana.ruiz@example.com"
        assert f"/api/payments/{booking.id}" in payload["html"]

    def test_second_resend_expires_previous_session(
        self, authed_client, create_booking, stripe_account, mock_checkout
    ):
        booking, _ = create_booking()
        authed_client.post(f"/api/bookings/{booking.id}/resend-email")

        with patch("stripe.checkout.Session.expire") as mocked_expire:
            response = authed_client.post(f"/api/bookings/{booking.id}/resend-email")

        assert response.status_code == 200
        mocked_expire.assert_called_once_with("cs_test_1", stripe_account="acct_test_123")
        assert mock_checkout.call_args.kwargs["idempotency_key"].endswith(":1")

    def test_paid_bill_cannot_be_resent(self, authed_client, create_booking, mock_resend):
        booking, _ = create_booking(bill_status=BillStatus.PAID.value)

        response = authed_client.post(f"/api/bookings/{booking.id}/resend-email")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "NO_PAYABLE_BILL"
        mock_resend.assert_not_called()

    def test_canceled_booking_cannot_be_resent(self, authed_client, create_booking):
        booking, _ = create_booking(status=BookingStatus.CANCELED.value)

        response = authed_client.post(f"/api/bookings/{booking.id}/resend-email")

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "BOOKING_CANCELED"

    def test_unknown_booking(self, authed_client):
        assert authed_client.post("/api/bookings/missing/resend-email").status_code == 404
