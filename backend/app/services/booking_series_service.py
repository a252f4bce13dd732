# backend/app/services/booking_series_service.py
"""
Booking Series Service

Recurring appointments are stored as a rule (BookingSeries) and materialized
a few occurrences at a time. Each occurrence is a regular booking carrying
``series_id`` and ``occurrence_index``; the unique pair makes repeated
materialization runs skip what already exists.

Occurrence bookings get bills and schedule rows but no per-booking calendar
events or emails; one recurring master event covers the calendar side.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.constants import SERIES_DEFAULT_MAX_OCCURRENCES, SERIES_EXTEND_HORIZON_WEEKS, SUPPORTED_CURRENCIES
from ..core.enums import (
    BillingFrequency,
    BillingTrigger,
    BillingType,
    BookingBillingStatus,
    BookingMode,
    BookingStatus,
    SeriesBillingPolicy,
    SeriesStatus,
)
from ..core.exceptions import DomainException, NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, format_local_iso, get_timezone, utc_now, utc_to_local
from ..models.booking import Booking, BookingSeries
from ..models.profile import Profile
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingSeriesCreate
from .base import BaseService
from .bill_service import BillService
from .billing_schedule_service import BillingScheduleService
from .billing_settings_service import BillingSettingsService
from .booking_service import BookingService
from .calendar_sync_service import CalendarSyncService
from .recurrence import OccurrenceDraft, parse_local, plan_materialization

logger = logging.getLogger(__name__)

# Days ahead of the session that "24h_before" payment emails go out
BEFORE_POLICY_ADVANCE_DAYS = 1


def settings_for_policy(policy: str, amount: float, currency: str) -> Dict[str, Any]:
    """Booking-scoped billing settings implied by a series billing policy."""
    if policy == SeriesBillingPolicy.MONTHLY.value:
        return {
            "billing_type": BillingType.RECURRING.value,
            "billing_frequency": BillingFrequency.MONTHLY.value,
            "billing_amount": amount,
            "currency": currency,
        }
    if policy == SeriesBillingPolicy.RIGHT_AFTER.value:
        return {
            "billing_type": BillingType.CONSULTATION_BASED.value,
            "billing_trigger": BillingTrigger.AFTER_CONSULTATION.value,
            "billing_advance_days": 0,
            "billing_amount": amount,
            "currency": currency,
        }
    return {
        "billing_type": BillingType.CONSULTATION_BASED.value,
        "billing_trigger": BillingTrigger.BEFORE_CONSULTATION.value,
        "billing_advance_days": BEFORE_POLICY_ADVANCE_DAYS,
        "billing_amount": amount,
        "currency": currency,
    }


class BookingSeriesService(BaseService):
    def __init__(
        self,
        db: Session,
        booking_service: Optional[BookingService] = None,
        calendar_service: Optional[CalendarSyncService] = None,
    ):
        super().__init__(db)
        self.calendar_service = calendar_service or CalendarSyncService(db)
        self.booking_service = booking_service or BookingService(db, calendar_service=self.calendar_service)
        self.settings_service = BillingSettingsService(db)
        self.schedule_service = BillingScheduleService(db)
        self.bill_service = BillService(db)
        self.repository = RepositoryFactory.create_booking_series_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    @staticmethod
    def _validate(data: BookingSeriesCreate) -> float:
        if data.interval_weeks not in (1, 2):
            raise ValidationException("interval_weeks must be 1 or 2", code="INVALID_INTERVAL")
        if not 0 <= data.by_weekday <= 6:
            raise ValidationException("by_weekday must be between 0 (Sunday) and 6 (Saturday)", code="INVALID_WEEKDAY")
        if data.amount is None or float(data.amount) < 0:
            raise ValidationException("amount must be a non-negative number", code="INVALID_AMOUNT")
        if data.currency not in SUPPORTED_CURRENCIES:
            raise ValidationException(f"Unsupported currency: {data.currency}", code="UNSUPPORTED_CURRENCY")
        if get_timezone(data.timezone).zone != data.timezone:
            raise ValidationException(f"Unknown timezone: {data.timezone}", code="INVALID_TIMEZONE")
        try:
            parse_local(data.dtstart_local)
        except ValueError:
            raise ValidationException("dtstart_local is not a valid date time", code="INVALID_DTSTART")
        return round(float(data.amount), 2)

    @BaseService.measure_operation("create_booking_series")
    def create_series(self, user: Profile, data: BookingSeriesCreate) -> Dict[str, Any]:
        """
        Create a series and materialize its first month.

        Returns:
            ``{series, booking_ids, master_event_created}``
        """
        amount = self._validate(data)
        client = self.client_repository.get_for_user(data.client_id, user.id)
        if not client:
            raise NotFoundException("Client not found", code="CLIENT_NOT_FOUND")

        max_occurrences = data.max_occurrences or SERIES_DEFAULT_MAX_OCCURRENCES
        start_local = parse_local(data.dtstart_local)
        window_end = _add_one_month(start_local)

        with self.transaction():
            series = self.repository.create(
                user_id=user.id,
                client_id=client.id,
                timezone=data.timezone,
                dtstart_local=data.dtstart_local,
                duration_min=data.duration_min,
                interval_weeks=data.interval_weeks,
                by_weekday=data.by_weekday,
                mode=data.mode,
                location_text=data.location_text if data.mode == BookingMode.IN_PERSON.value else None,
                consultation_type=data.consultation_type,
                billing_type=data.billing_policy,
                amount=amount,
                currency=data.currency,
                status=SeriesStatus.ACTIVE.value,
            )
            drafts = plan_materialization(
                series,
                data.dtstart_local,
                format_local_iso(window_end),
                existing_indexes=(),
                max_occurrences=max_occurrences,
            )
            bookings = [self._materialize(series, draft) for draft in drafts]

        with self.transaction():
            master_event_id = self.calendar_service.create_recurring_master_event(series, client)
            if master_event_id:
                series.master_event_id = master_event_id

        self.log_operation(
            "booking_series_created",
            series_id=series.id,
            occurrences=len(bookings),
            master_event=bool(master_event_id),
        )
        return {
            "series": series,
            "booking_ids": [booking.id for booking in bookings],
            "master_event_created": bool(master_event_id),
        }

    def _materialize(self, series: BookingSeries, draft: OccurrenceDraft, now: Optional[datetime] = None) -> Booking:
        """Create one occurrence with its settings, bill and schedule rows. Flushes only."""
        now = now or utc_now()
        in_past = ensure_utc(draft.start_utc) < now
        booking = self.booking_repository.create(
            user_id=draft.user_id,
            client_id=draft.client_id,
            start_time=draft.start_utc,
            end_time=draft.end_utc,
            status=BookingStatus.COMPLETED.value if in_past else BookingStatus.SCHEDULED.value,
            mode=draft.mode or BookingMode.ONLINE.value,
            location_text=draft.location_text,
            consultation_type=draft.consultation_type,
            billing_status=BookingBillingStatus.PENDING.value,
            series_id=draft.series_id,
            occurrence_index=draft.occurrence_index,
        )
        settings_row = self.settings_service.create_booking_settings(
            draft.user_id,
            booking.id,
            draft.client_id,
            settings_for_policy(series.billing_type, float(series.amount), series.currency),
        )
        booking.billing_settings_id = settings_row.id

        email_scheduled_at = None
        if settings_row.is_consultation_based and settings_row.bills_before_consultation:
            email_scheduled_at = ensure_utc(draft.start_utc) - timedelta(days=settings_row.billing_advance_days)
        client = self.client_repository.get_by_id(draft.client_id)
        self.bill_service.create_bill_for_booking(
            booking, settings_row, float(series.amount), client, email_scheduled_at=email_scheduled_at
        )
        self.schedule_service.schedule_for_booking(booking, settings_row, auto_reminders=False, now=now)
        return booking

    @BaseService.measure_operation("cancel_booking_series")
    def cancel_series(
        self, user: Profile, series_id: str, from_date: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Cancel every occurrence starting at or after ``from_date`` (default
        now) and close the series.

        Each booking goes through the regular cancellation, so paid
        occurrences are refunded and open bills released. A failing
        occurrence is reported and the rest continue.
        """
        series = self.repository.get_for_user(series_id, user.id)
        if not series:
            raise NotFoundException("Series not found", code="SERIES_NOT_FOUND")
        from_time = ensure_utc(from_date) if from_date else utc_now()

        canceled: List[str] = []
        failed: List[Dict[str, Any]] = []
        for booking in self.booking_repository.get_future_series_bookings(series.id, from_time):
            try:
                self.booking_service.cancel_booking(user, booking.id)
                canceled.append(booking.id)
            except DomainException as e:
                self.logger.error(f"Failed to cancel series booking {booking.id}: {e.message}")
                failed.append({"booking_id": booking.id, "error": e.message})

        with self.transaction():
            series.status = SeriesStatus.CANCELED.value
            self.calendar_service.delete_recurring_master_event(series)

        self.log_operation("booking_series_canceled", series_id=series.id, canceled=len(canceled), failed=len(failed))
        return {"success": True, "series_id": series.id, "canceled_booking_ids": canceled, "failed": failed}

    @BaseService.measure_operation("extend_active_series")
    def extend_active_series(
        self, horizon_weeks: int = SERIES_EXTEND_HORIZON_WEEKS, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Materialize occurrences up to ``horizon_weeks`` ahead for every active
        series. Safe to re-run: existing occurrence indexes are skipped.
        """
        now = ensure_utc(now) if now else utc_now()
        created = 0
        errors: List[Dict[str, Any]] = []
        series_list = self.repository.get_active()
        for series in series_list:
            window_start_local = utc_to_local(now, series.timezone).replace(tzinfo=None)
            window_end_local = window_start_local + timedelta(weeks=horizon_weeks)
            try:
                with self.transaction():
                    existing = self.booking_repository.get_series_occurrence_indexes(series.id)
                    drafts = plan_materialization(
                        series,
                        format_local_iso(window_start_local),
                        format_local_iso(window_end_local),
                        existing_indexes=existing,
                    )
                    for draft in drafts:
                        self._materialize(series, draft, now=now)
                    created += len(drafts)
            except DomainException as e:
                self.logger.error(f"Failed to extend series {series.id}: {e.message}")
                errors.append({"series_id": series.id, "error": e.message})

        self.log_operation("booking_series_extended", series=len(series_list), bookings_created=created)
        return {"series": len(series_list), "created": created, "errors": errors}


def _add_one_month(value: datetime) -> datetime:
    """Same day next month, clamped to the month's last day."""
    year = value.year + (1 if value.month == 12 else 0)
    month = 1 if value.month == 12 else value.month + 1
    day = value.day
    while True:
        try:
            return value.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
