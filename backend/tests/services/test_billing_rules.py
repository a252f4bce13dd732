"""
Tests for billing settings resolution, amounts, cadence, due dates and the
schedule queue.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.enums import ScheduleActionType, ScheduleStatus
from app.core.exceptions import BillingSettingsNotFoundException, ValidationException
from app.models.billing import BillingSchedule, BillingSettings
from app.services.bill_service import cadence_for_settings
from app.services.billing_schedule_service import BillingScheduleService
from app.services.billing_settings_service import BillingSettingsService


def _settings(**values) -> BillingSettings:
    base = {
        "billing_type": "consultation_based",
        "billing_trigger": "before_consultation",
        "billing_frequency": None,
        "billing_advance_days": 0,
        "billing_amount": 60.0,
        "currency": "EUR",
    }
    base.update(values)
    return BillingSettings(**base)


class TestValidate:
    def test_recurring_requires_frequency(self):
        with pytest.raises(ValidationException):
            BillingSettingsService.validate({"billing_type": "recurring", "billing_amount": 50})

    def test_consultation_requires_trigger(self):
        with pytest.raises(ValidationException):
            BillingSettingsService.validate({"billing_type": "consultation_based", "billing_amount": 50})

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationException):
            BillingSettingsService.validate(
                {"billing_type": "recurring", "billing_frequency": "monthly", "billing_amount": -1}
            )

    def test_unsupported_currency_rejected(self):
        with pytest.raises(ValidationException):
            BillingSettingsService.validate(
                {
                    "billing_type": "recurring",
                    "billing_frequency": "monthly",
                    "billing_amount": 10,
                    "currency": "usd",
                }
            )

    def test_normalizes_and_clears_unused_fields(self):
        cleaned = BillingSettingsService.validate(
            {
                "billing_type": "recurring",
                "billing_frequency": "weekly",
                "billing_trigger": "before_consultation",
                "billing_amount": 49.999,
                "currency": "eur",
                "unknown": "dropped",
            }
        )

        assert cleaned["billing_trigger"] is None
        assert cleaned["billing_amount"] == 50.0
        assert cleaned["currency"] == "EUR"
        assert "unknown" not in cleaned


class TestResolveForBooking:
    def test_booking_beats_client_beats_default(self, db, practitioner, client_row, create_settings):
        service = BillingSettingsService(db)
        default = create_settings(practitioner.id, billing_amount=50)
        client_override = create_settings(practitioner.id, client_id=client_row.id, billing_amount=70)
        booking_specific = create_settings(
            practitioner.id, client_id=client_row.id, booking_id="booking-1", billing_amount=90
        )

        assert service.resolve_for_booking(practitioner.id, client_row.id, "booking-1").id == booking_specific.id
        assert service.resolve_for_booking(practitioner.id, client_row.id, "booking-2").id == client_override.id
        assert service.resolve_for_booking(practitioner.id, "other-client").id == default.id

    def test_missing_settings_is_a_business_error(self, db, practitioner, client_row):
        service = BillingSettingsService(db)

        with pytest.raises(BillingSettingsNotFoundException) as exc_info:
            service.resolve_for_booking(practitioner.id, client_row.id)
        assert exc_info.value.code == "BILLING_SETTINGS_NOT_FOUND"

    def test_upsert_default_updates_in_place(self, db, practitioner):
        service = BillingSettingsService(db)
        payload = {"billing_type": "recurring", "billing_frequency": "monthly", "billing_amount": 40}

        first = service.upsert_user_default(practitioner.id, payload)
        second = service.upsert_user_default(practitioner.id, {**payload, "billing_amount": 45})

        assert first.id == second.id
        assert second.billing_amount == 45.0
        assert second.is_default is True


class TestResolveAmount:
    def test_override_wins(self):
        assert BillingSettingsService.resolve_amount(_settings(), "first", 25) == 25.0

    def test_zero_override_is_respected(self):
        assert BillingSettingsService.resolve_amount(_settings(), None, 0) == 0.0

    def test_first_consultation_amount(self):
        row = _settings(first_consultation_amount=80.0)

        assert BillingSettingsService.resolve_amount(row, "first") == 80.0
        assert BillingSettingsService.resolve_amount(row, "followup") == 60.0


class TestCadence:
    @pytest.mark.parametrize(
        "values, expected",
        [
            ({"billing_trigger": "before_consultation"}, "in_advance"),
            ({"billing_trigger": "after_consultation"}, "right_after"),
            ({"billing_type": "recurring", "billing_trigger": None, "billing_frequency": "weekly"}, "weekly"),
            ({"billing_type": "recurring", "billing_trigger": None, "billing_frequency": "monthly"}, "monthly"),
        ],
    )
    def test_cadence_for_settings(self, values, expected):
        assert cadence_for_settings(_settings(**values)) == expected


class TestDueDate:
    start = datetime(2026, 5, 14, 10, 0, tzinfo=timezone.utc)  # Thursday
    end = datetime(2026, 5, 14, 10, 50, tzinfo=timezone.utc)
    now = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)

    def test_before_consultation_subtracts_advance_days(self):
        due = BillingScheduleService.calculate_due_date(
            _settings(billing_advance_days=2), self.start, self.end, now=self.now
        )

        assert due == self.start - timedelta(days=2)

    def test_after_consultation_adds_advance_days(self):
        due = BillingScheduleService.calculate_due_date(
            _settings(billing_trigger="after_consultation", billing_advance_days=1),
            self.start,
            self.end,
            now=self.now,
        )

        assert due == self.end + timedelta(days=1)

    def test_past_due_moves_two_hours_ahead(self):
        late_now = datetime(2026, 5, 14, 9, 0, tzinfo=timezone.utc)

        due = BillingScheduleService.calculate_due_date(
            _settings(billing_advance_days=3), self.start, self.end, now=late_now
        )

        assert due == late_now + timedelta(hours=2)

    def test_weekly_closes_on_sunday(self):
        due = BillingScheduleService.calculate_due_date(
            _settings(billing_type="recurring", billing_trigger=None, billing_frequency="weekly"),
            self.start,
            self.end,
            now=self.now,
        )

        assert due.date().isoformat() == "2026-05-17"

    def test_monthly_closes_on_last_day(self):
        due = BillingScheduleService.calculate_due_date(
            _settings(billing_type="recurring", billing_trigger=None, billing_frequency="monthly"),
            self.start,
            self.end,
            now=self.now,
        )

        assert due.date().isoformat() == "2026-05-31"


class TestScheduleQueue:
    @pytest.fixture
    def monthly_settings(self, practitioner, create_settings):
        return create_settings(
            practitioner.id,
            billing_type="recurring",
            billing_trigger=None,
            billing_frequency="monthly",
            billing_amount=50.0,
        )

    @pytest.fixture
    def add_row(self, db, practitioner, client_row, create_booking):
        def _add(settings_row, scheduled_date, **values) -> BillingSchedule:
            booking, _ = create_booking()
            row = BillingSchedule(
                booking_id=booking.id,
                user_id=practitioner.id,
                client_id=client_row.id,
                billing_settings_id=settings_row.id,
                action_type=ScheduleActionType.SEND_BILL.value,
                scheduled_date=scheduled_date,
                **values,
            )
            db.add(row)
            db.commit()
            return row

        return _add

    def test_scan_monthly_groups_by_client_and_month(
        self, db, practitioner, client_row, create_settings, monthly_settings, add_row
    ):
        weekly = create_settings(
            practitioner.id,
            client_id=client_row.id,
            billing_type="recurring",
            billing_trigger=None,
            billing_frequency="weekly",
        )
        first = add_row(monthly_settings, date(2026, 4, 30))
        second = add_row(monthly_settings, date(2026, 4, 30))
        add_row(monthly_settings, date(2026, 5, 31))
        add_row(weekly, date(2026, 5, 3))
        add_row(monthly_settings, date(2026, 6, 30))

        groups = BillingScheduleService(db).scan_monthly(date(2026, 6, 1))

        assert [(g["client_id"], g["period"]) for g in groups] == [
            (client_row.id, "2026-04"),
            (client_row.id, "2026-05"),
        ]
        april = groups[0]
        assert april["total_amount"] == 100.0
        assert {b["schedule_id"] for b in april["bookings"]} == {first.id, second.id}
        assert april["bookings"][0]["client"]["email"] == "ana.ruiz@example.com"
        assert groups[1]["total_amount"] == 50.0

    def test_group_by_frequency_buckets_by_client(self):
        weekly = _settings(billing_type="recurring", billing_trigger=None, billing_frequency="weekly")
        monthly = _settings(billing_type="recurring", billing_trigger=None, billing_frequency="monthly")
        rows = [
            BillingSchedule(client_id="c1", billing_settings=weekly),
            BillingSchedule(client_id="c1", billing_settings=monthly),
            BillingSchedule(client_id="c2", billing_settings=monthly),
            BillingSchedule(client_id="c3", billing_settings=_settings()),
        ]

        grouped = BillingScheduleService.group_by_frequency(rows)

        assert grouped["weekly"] == {"c1": [rows[0]]}
        assert grouped["monthly"] == {"c1": [rows[1]], "c2": [rows[2]]}

    def test_mark_failed_retries_then_gives_up(self, db, monthly_settings, add_row):
        service = BillingScheduleService(db)
        row = add_row(monthly_settings, date(2026, 4, 30), max_retries=2)

        service.mark_failed(row.id, "smtp timeout")
        db.commit()
        assert (row.status, row.retry_count) == (ScheduleStatus.PENDING.value, 1)

        service.mark_failed(row.id, "smtp timeout again")
        db.commit()
        assert (row.status, row.retry_count) == (ScheduleStatus.FAILED.value, 2)
        assert row.last_error == "smtp timeout again"
        assert service.get_due_actions(date(2026, 5, 1)) == []
