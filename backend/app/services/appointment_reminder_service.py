# backend/app/services/appointment_reminder_service.py
"""
Appointment Reminder Service

Daily run that emails clients whose appointment starts later today in the
practice timezone. Unpaid bookings get the payment link; online bookings
get the Meet link from their calendar event. ``reminder_sent_at`` keeps a
second run on the same day from reminding twice.
"""

from datetime import datetime
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import BookingMode
from ..core.timezone_utils import ensure_utc, local_to_utc, utc_now, utc_to_local
from ..models.booking import Booking
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .email import EmailService
from .payment_orchestration_service import booking_payment_link

logger = logging.getLogger(__name__)


class AppointmentReminderService(BaseService):
    def __init__(self, db: Session, email_service: Optional[EmailService] = None):
        super().__init__(db)
        self.email_service = email_service or EmailService(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)
        self.event_repository = RepositoryFactory.create_calendar_event_repository(db)

    def _reminder_window(self, now: datetime) -> tuple:
        tz_name = settings.default_timezone
        local_now = utc_to_local(now, tz_name)
        end_of_day = local_now.replace(hour=23, minute=59, second=59, microsecond=999999)
        return now, local_to_utc(end_of_day, tz_name)

    def _meeting_details(self, booking: Booking) -> Dict[str, Optional[str]]:
        if booking.mode == BookingMode.IN_PERSON.value:
            return {"meeting_link": None, "location": booking.location_text}
        event_row = self.event_repository.get_active_for_booking(booking.id)
        return {"meeting_link": event_row.google_meet_link if event_row else None, "location": None}

    @BaseService.measure_operation("send_appointment_reminders")
    def send_appointment_reminders(
        self, now: Optional[datetime] = None, delay_seconds: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Remind every client with an appointment between ``now`` and the end
        of the local day.

        Returns:
            ``{"window": {"start", "end"}, "counts": {"picked", "sent", "skipped", "failed"}}``
        """
        now = ensure_utc(now) if now else utc_now()
        window_start, window_end = self._reminder_window(now)
        bookings = self.booking_repository.get_due_for_reminder(window_start, window_end)
        delay = settings.email_batch_delay_seconds if delay_seconds is None else delay_seconds

        sent = 0
        skipped = 0
        failed = 0
        for booking in bookings:
            client = booking.client
            if not client or not client.email:
                skipped += 1
                continue
            if sent + failed and delay > 0:
                time.sleep(delay)

            practitioner = booking.practitioner
            payable = self.bill_repository.get_payable_for_booking(booking.id)
            success = self.email_service.send_appointment_reminder(
                to_email=client.email,
                client_name=client.full_name,
                practitioner_name=practitioner.full_name if practitioner else "",
                consultation_date=utc_to_local(booking.start_time, settings.default_timezone),
                payment_url=booking_payment_link(booking.id) if payable else None,
                **self._meeting_details(booking),
            )
            if success:
                with self.transaction():
                    booking.reminder_sent_at = utc_now()
                sent += 1
            else:
                failed += 1

        counts = {"picked": len(bookings), "sent": sent, "skipped": skipped, "failed": failed}
        self.log_operation("appointment_reminders_sent", **counts)
        return {
            "window": {"start": window_start.isoformat(), "end": window_end.isoformat()},
            "counts": counts,
        }
