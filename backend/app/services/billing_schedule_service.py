# backend/app/services/billing_schedule_service.py
"""
Billing Schedule Service

The billing schedule is a date-keyed queue: each row says "perform this
action for this booking on this date". Cron jobs poll it with
``scheduled_date <= today AND status = pending``.

Rows are not claimed or locked while being processed, so two overlapping
scans can pick up the same row before either marks it processed.
"""

from collections import defaultdict
from datetime import date, datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.constants import (
    OVERDUE_NOTICE_OFFSET_DAYS,
    PAST_DUE_GRACE_HOURS,
    PAYMENT_REMINDER_OFFSET_DAYS,
)
from ..core.enums import BillingFrequency, ScheduleActionType, ScheduleStatus
from ..core.exceptions import NotFoundException
from ..core.timezone_utils import end_of_month, end_of_week, ensure_utc, period_key, utc_now
from ..models.billing import BillingSchedule, BillingSettings
from ..models.booking import Booking
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class BillingScheduleService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_billing_schedule_repository(db)

    @staticmethod
    def calculate_due_date(
        settings_row: BillingSettings,
        start_time: datetime,
        end_time: datetime,
        now: Optional[datetime] = None,
    ) -> datetime:
        """
        When the bill for a booking should go out.

        Consultation billing is relative to the appointment and never lands in
        the past: an already-passed due time becomes ``now + 2h``. Recurring
        billing closes at the end of the booking's week or month.
        """
        start_time = ensure_utc(start_time)
        end_time = ensure_utc(end_time)
        now = ensure_utc(now) if now else utc_now()
        advance = timedelta(days=settings_row.billing_advance_days or 0)

        if settings_row.is_consultation_based:
            if settings_row.bills_before_consultation:
                due = start_time - advance
            else:
                due = end_time + advance
            if due < now:
                due = now + timedelta(hours=PAST_DUE_GRACE_HOURS)
            return due

        if settings_row.billing_frequency == BillingFrequency.WEEKLY.value:
            closing_day = end_of_week(start_time.date())
        else:
            closing_day = end_of_month(start_time.date())
        return start_time.replace(
            year=closing_day.year, month=closing_day.month, day=closing_day.day
        )

    def schedule_for_booking(
        self,
        booking: Booking,
        settings_row: BillingSettings,
        auto_reminders: bool = True,
        now: Optional[datetime] = None,
    ) -> List[BillingSchedule]:
        """
        Queue the ``send_bill`` action (and reminders) for a booking.

        Runs inside the caller's transaction.
        """
        due = self.calculate_due_date(settings_row, booking.start_time, booking.end_time, now=now)
        base = {
            "booking_id": booking.id,
            "user_id": booking.user_id,
            "client_id": booking.client_id,
            "billing_settings_id": settings_row.id,
        }
        rows = [
            self.repository.create(
                action_type=ScheduleActionType.SEND_BILL.value,
                scheduled_date=due.date(),
                **base,
            )
        ]

        if auto_reminders and settings_row.is_consultation_based:
            start_day = ensure_utc(booking.start_time).date()
            rows.append(
                self.repository.create(
                    action_type=ScheduleActionType.PAYMENT_REMINDER.value,
                    scheduled_date=start_day + timedelta(days=PAYMENT_REMINDER_OFFSET_DAYS),
                    **base,
                )
            )
            rows.append(
                self.repository.create(
                    action_type=ScheduleActionType.OVERDUE_NOTICE.value,
                    scheduled_date=start_day + timedelta(days=OVERDUE_NOTICE_OFFSET_DAYS),
                    **base,
                )
            )

        self.logger.info(
            "Billing schedule created",
            extra={"booking_id": booking.id, "due": due.isoformat(), "rows": len(rows)},
        )
        return rows

    def get_due_actions(self, today: date, action_type: Optional[str] = None) -> List[BillingSchedule]:
        return self.repository.get_due(today, action_type)

    @BaseService.measure_operation("mark_schedule_processed")
    def mark_processed(self, schedule_id: str) -> BillingSchedule:
        row = self._get_or_404(schedule_id)
        return self.repository.apply_updates(
            row,
            status=ScheduleStatus.PROCESSED.value,
            processed_at=utc_now(),
            last_error=None,
        )

    @BaseService.measure_operation("mark_schedule_failed")
    def mark_failed(self, schedule_id: str, error: str) -> BillingSchedule:
        """
        Record a failed attempt.

        The row goes back to ``pending`` for the next scan until it has
        failed ``max_retries`` times.
        """
        row = self._get_or_404(schedule_id)
        retry_count = (row.retry_count or 0) + 1
        status = (
            ScheduleStatus.FAILED.value
            if retry_count >= (row.max_retries or 0)
            else ScheduleStatus.PENDING.value
        )
        self.logger.warning(
            "Billing schedule attempt failed",
            extra={"schedule_id": schedule_id, "retry_count": retry_count, "status": status},
        )
        return self.repository.apply_updates(
            row, retry_count=retry_count, status=status, last_error=error[:2000]
        )

    def mark_bill_sent_for_booking(self, booking_id: str) -> int:
        """Close pending ``send_bill`` rows once the bill went out by another path."""
        rows = [
            row
            for row in self.repository.get_pending_for_booking(booking_id)
            if row.action_type == ScheduleActionType.SEND_BILL.value
        ]
        now = utc_now()
        for row in rows:
            row.status = ScheduleStatus.PROCESSED.value
            row.processed_at = now
        self.db.flush()
        return len(rows)

    def cancel_for_booking(self, booking_id: str) -> int:
        rows = self.repository.get_pending_for_booking(booking_id)
        for row in rows:
            row.status = ScheduleStatus.CANCELLED.value
        self.db.flush()
        return len(rows)

    @staticmethod
    def group_by_frequency(rows: List[BillingSchedule]) -> Dict[str, Dict[str, List[BillingSchedule]]]:
        """Split recurring rows into weekly/monthly buckets keyed by client."""
        grouped: Dict[str, Dict[str, List[BillingSchedule]]] = {
            BillingFrequency.WEEKLY.value: defaultdict(list),
            BillingFrequency.MONTHLY.value: defaultdict(list),
        }
        for row in rows:
            frequency = row.billing_settings.billing_frequency if row.billing_settings else None
            if frequency in grouped:
                grouped[frequency][row.client_id].append(row)
        return {k: dict(v) for k, v in grouped.items()}

    @BaseService.measure_operation("scan_monthly")
    def scan_monthly(self, today: date) -> List[Dict[str, Any]]:
        """Due monthly ``send_bill`` rows grouped by (client, YYYY-MM)."""
        rows = self.get_due_actions(today, ScheduleActionType.SEND_BILL.value)
        groups: Dict[tuple, Dict[str, Any]] = {}
        for row in rows:
            settings_row = row.billing_settings
            if not settings_row or not settings_row.is_monthly:
                continue
            period = period_key(row.scheduled_date)
            key = (row.client_id, period)
            group = groups.get(key)
            if group is None:
                group = {
                    "client_id": row.client_id,
                    "period": period,
                    "total_amount": 0.0,
                    "bookings": [],
                }
                groups[key] = group
            group["total_amount"] = round(group["total_amount"] + float(settings_row.billing_amount), 2)
            group["bookings"].append(
                {
                    "schedule_id": row.id,
                    "booking_id": row.booking_id,
                    "scheduled_date": row.scheduled_date.isoformat(),
                    "client": _client_summary(row),
                    "billing_settings": {
                        "id": settings_row.id,
                        "amount": settings_row.billing_amount,
                        "frequency": settings_row.billing_frequency,
                    },
                }
            )
        return list(groups.values())

    @BaseService.measure_operation("scan_consultation")
    def scan_consultation(self, today: date) -> List[Dict[str, Any]]:
        """Due consultation ``send_bill`` rows, flat."""
        rows = self.get_due_actions(today, ScheduleActionType.SEND_BILL.value)
        items = []
        for row in rows:
            settings_row = row.billing_settings
            if not settings_row or not settings_row.is_consultation_based:
                continue
            booking = row.booking
            practitioner = row.practitioner
            items.append(
                {
                    "schedule_id": row.id,
                    "booking_id": row.booking_id,
                    "scheduled_date": row.scheduled_date.isoformat(),
                    "consultation_date": ensure_utc(booking.start_time).isoformat() if booking else None,
                    "user_id": row.user_id,
                    "practitioner": {
                        "name": practitioner.full_name if practitioner else None,
                        "email": practitioner.email if practitioner else None,
                    },
                    "client": _client_summary(row),
                    "billing_settings": {
                        "id": settings_row.id,
                        "amount": settings_row.billing_amount,
                        "trigger": settings_row.billing_trigger,
                        "advance_days": settings_row.billing_advance_days,
                    },
                    "amount": settings_row.billing_amount,
                    "trigger": settings_row.billing_trigger,
                }
            )
        return items

    def _get_or_404(self, schedule_id: str) -> BillingSchedule:
        row = self.repository.get_by_id(schedule_id, load_relationships=False)
        if not row:
            raise NotFoundException(f"Billing schedule {schedule_id} not found")
        return row


def _client_summary(row: BillingSchedule) -> Dict[str, Any]:
    client = row.client
    if not client:
        return {"id": row.client_id, "name": None, "email": None}
    return {"id": client.id, "name": client.full_name, "email": client.email}
