# backend/app/services/calendar_sync_service.py
"""
Calendar Sync Service

Keeps Google Calendar events in step with bookings. Every operation is best
effort: failures are logged, counted and returned as a falsy result so the
booking or payment flow that triggered them carries on.

CalendarEvent rows are flushed into the caller's transaction.
"""

from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import CALENDAR_RECONCILE_LIMIT, CALENDAR_TOKEN_REFRESH_MARGIN_MINUTES
from ..core.crypto import decrypt_str, encrypt_str, encryption_available
from ..core.enums import BookingMode, BookingStatus, CalendarEventStatus, CalendarEventType
from ..core.timezone_utils import ensure_utc, utc_now
from ..integrations.google_calendar_client import (
    GoogleCalendarClient,
    build_cancelled_patch,
    build_confirmed_event,
    build_pending_event,
    build_recurring_master_event,
    extract_meet_link,
)
from ..models.booking import Booking, BookingSeries
from ..models.calendar import CalendarEvent
from ..models.profile import Client, Profile
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def build_google_calendar_client() -> GoogleCalendarClient:
    return GoogleCalendarClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
    )


class CalendarSyncService(BaseService):
    """Best-effort Google Calendar mirroring of bookings."""

    def __init__(self, db: Session, client: Optional[GoogleCalendarClient] = None):
        super().__init__(db)
        self.client = client or build_google_calendar_client()
        self.token_repository = RepositoryFactory.create_calendar_token_repository(db)
        self.event_repository = RepositoryFactory.create_calendar_event_repository(db)
        self.profile_repository = RepositoryFactory.create_profile_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    # ------------------------------------------------------------------ Tokens

    @BaseService.measure_operation("calendar_save_oauth_tokens")
    def save_oauth_tokens(self, user_id: str, code: str) -> bool:
        """
        Exchange an OAuth code and store the encrypted tokens.

        Re-consent may omit the refresh token; the stored one is kept then.

        Returns:
            True when the granted scopes include calendar event access

        Raises:
            GoogleCalendarError: If the code exchange fails
        """
        payload = self.client.exchange_code(code)
        access_token = payload.get("access_token") or ""
        refresh_token = payload.get("refresh_token")
        expires_in = int(payload.get("expires_in") or 3600)
        scope = payload.get("scope") or ""
        if not encryption_available():
            self.logger.warning("CALENDAR_TOKEN_ENCRYPTION_KEY not set; storing calendar tokens in plain text")

        with self.transaction():
            token = self.token_repository.get_by_user(user_id)
            values: Dict[str, Any] = {
                "access_token": encrypt_str(access_token),
                "expiry": utc_now() + timedelta(seconds=expires_in),
                "scope": scope,
            }
            if refresh_token:
                values["refresh_token"] = encrypt_str(refresh_token)
            if token:
                self.token_repository.apply_updates(token, **values)
            else:
                self.token_repository.create(user_id=user_id, **values)

        self.log_operation("calendar_connected", user_id=user_id)
        return "calendar" in scope

    def _get_access_token(self, user_id: str) -> Optional[Tuple[str, str]]:
        """Decrypted access token and calendar id, refreshed when close to expiry."""
        token = self.token_repository.get_by_user(user_id)
        if not token:
            return None

        access_token = decrypt_str(token.access_token)
        expiry = ensure_utc(token.expiry)
        margin = timedelta(minutes=CALENDAR_TOKEN_REFRESH_MARGIN_MINUTES)
        if expiry is None or expiry <= utc_now() + margin:
            if not token.refresh_token:
                self.logger.warning("Calendar token expired without refresh token", extra={"user_id": user_id})
                return None
            payload = self.client.refresh_access_token(decrypt_str(token.refresh_token))
            access_token = payload["access_token"]
            self.token_repository.apply_updates(
                token,
                access_token=encrypt_str(access_token),
                expiry=utc_now() + timedelta(seconds=int(payload.get("expires_in") or 3600)),
            )
        return access_token, token.calendar_id or "primary"

    def _context(self, booking: Booking) -> Tuple[Optional[Profile], Optional[Client]]:
        practitioner = booking.practitioner or self.profile_repository.get_by_id(booking.user_id)
        client = booking.client or self.client_repository.get_by_id(booking.client_id)
        return practitioner, client

    def _fail(self, operation: str, booking_id: Optional[str], error: Exception) -> None:
        self.logger.error(
            f"Calendar {operation} failed: {str(error)}",
            extra={"booking_id": booking_id},
            exc_info=True,
        )
        prometheus_metrics.record_calendar_failure(operation)

    # ------------------------------------------------------------------ Events

    @BaseService.measure_operation("calendar_create_pending_event")
    def create_pending_event(self, booking: Booking) -> Optional[CalendarEvent]:
        """Hold the slot with a practitioner-only placeholder until payment arrives."""
        try:
            credentials = self._get_access_token(booking.user_id)
            if not credentials:
                return None
            access_token, calendar_id = credentials
            practitioner, client = self._context(booking)
            if not practitioner or not client:
                return None
            body = build_pending_event(
                client_name=client.full_name,
                practitioner_email=practitioner.email,
                start=ensure_utc(booking.start_time),
                end=ensure_utc(booking.end_time),
                location=booking.location_text if booking.mode == BookingMode.IN_PERSON.value else None,
            )
            event = self.client.insert_event(access_token, calendar_id, body, send_updates="none")
            return self.event_repository.create(
                booking_id=booking.id,
                user_id=booking.user_id,
                google_event_id=event["id"],
                event_type=CalendarEventType.PENDING.value,
                event_status=CalendarEventStatus.CREATED.value,
            )
        except Exception as e:
            self._fail("create_pending", booking.id, e)
            return None

    @BaseService.measure_operation("calendar_create_confirmed_event")
    def create_confirmed_event(self, booking: Booking) -> Optional[CalendarEvent]:
        """Create the full appointment with the client invited."""
        try:
            credentials = self._get_access_token(booking.user_id)
            if not credentials:
                return None
            access_token, calendar_id = credentials
            practitioner, client = self._context(booking)
            if not practitioner or not client:
                return None
            in_person = booking.mode == BookingMode.IN_PERSON.value
            body = build_confirmed_event(
                client_name=client.full_name,
                client_email=client.email,
                practitioner_name=practitioner.full_name,
                practitioner_email=practitioner.email,
                start=ensure_utc(booking.start_time),
                end=ensure_utc(booking.end_time),
                location=booking.location_text if in_person else None,
                include_meet=not in_person,
                notes=booking.notes,
            )
            event = self.client.insert_event(access_token, calendar_id, body, send_updates="all")
            return self.event_repository.create(
                booking_id=booking.id,
                user_id=booking.user_id,
                google_event_id=event["id"],
                google_meet_link=extract_meet_link(event),
                event_type=CalendarEventType.CONFIRMED.value,
                event_status=CalendarEventStatus.CREATED.value,
            )
        except Exception as e:
            self._fail("create_confirmed", booking.id, e)
            return None

    @BaseService.measure_operation("calendar_confirm_pending_event")
    def confirm_pending_event(self, booking: Booking) -> bool:
        """
        Promote the pending placeholder to a confirmed appointment.

        Invites the client and adds a Meet conference unless the event has a
        location.
        """
        try:
            event_row = self.event_repository.get_pending_for_booking(booking.id)
            if not event_row:
                return False
            credentials = self._get_access_token(booking.user_id)
            if not credentials:
                return False
            access_token, calendar_id = credentials
            practitioner, client = self._context(booking)
            if not practitioner or not client:
                return False

            current = self.client.get_event(access_token, calendar_id, event_row.google_event_id)
            has_location = bool(current.get("location"))
            body = build_confirmed_event(
                client_name=client.full_name,
                client_email=client.email,
                practitioner_name=practitioner.full_name,
                practitioner_email=practitioner.email,
                include_meet=not has_location,
            )
            updated = self.client.patch_event(
                access_token, calendar_id, event_row.google_event_id, body, send_updates="all"
            )
            self.event_repository.apply_updates(
                event_row,
                event_type=CalendarEventType.CONFIRMED.value,
                event_status=CalendarEventStatus.UPDATED.value,
                google_meet_link=extract_meet_link(updated) or event_row.google_meet_link,
            )
            return True
        except Exception as e:
            self._fail("confirm", booking.id, e)
            return False

    @BaseService.measure_operation("calendar_cancel_for_booking")
    def cancel_or_delete_for_booking(self, booking: Booking) -> bool:
        """
        Remove the booking's active event.

        Pending bookings only ever had a placeholder, so it is deleted
        silently. Otherwise the event is marked cancelled and attendees are
        notified.
        """
        try:
            event_row = self.event_repository.get_active_for_booking(booking.id)
            if not event_row:
                return True
            credentials = self._get_access_token(booking.user_id)
            if not credentials:
                return False
            access_token, calendar_id = credentials

            if booking.status == BookingStatus.PENDING.value:
                self.client.delete_event(access_token, calendar_id, event_row.google_event_id, send_updates="none")
            else:
                current = self.client.get_event(access_token, calendar_id, event_row.google_event_id)
                self.client.patch_event(
                    access_token,
                    calendar_id,
                    event_row.google_event_id,
                    build_cancelled_patch(current),
                    send_updates="all",
                )
            self.event_repository.apply_updates(event_row, event_status=CalendarEventStatus.CANCELLED.value)
            return True
        except Exception as e:
            self._fail("cancel", booking.id, e)
            return False

    @BaseService.measure_operation("calendar_reschedule_event")
    def reschedule_event(self, booking: Booking, new_start: datetime, new_end: datetime) -> bool:
        try:
            event_row = self.event_repository.get_active_for_booking(booking.id)
            if not event_row:
                return True
            credentials = self._get_access_token(booking.user_id)
            if not credentials:
                return False
            access_token, calendar_id = credentials
            body = {
                "start": {"dateTime": ensure_utc(new_start).isoformat(), "timeZone": "UTC"},
                "end": {"dateTime": ensure_utc(new_end).isoformat(), "timeZone": "UTC"},
            }
            self.client.patch_event(access_token, calendar_id, event_row.google_event_id, body, send_updates="all")
            self.event_repository.apply_updates(event_row, event_status=CalendarEventStatus.UPDATED.value)
            return True
        except Exception as e:
            self._fail("reschedule", booking.id, e)
            return False

    @BaseService.measure_operation("calendar_reconcile_missing_events")
    def reconcile_missing_events(
        self, user_id: str, limit: int = CALENDAR_RECONCILE_LIMIT, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Create events for upcoming bookings that have none, typically right
        after the practitioner connects a calendar.

        Scheduled bookings get a confirmed event when the client has an
        email, a placeholder otherwise. More than ``limit`` candidates is
        treated as deliberate and nothing is created.
        """
        if not self.token_repository.get_by_user(user_id):
            return {"processed": 0, "created": 0}
        now = ensure_utc(now) if now else utc_now()
        candidates = self.booking_repository.get_missing_calendar_events(user_id, now, limit + 1)
        if len(candidates) > limit:
            self.logger.info(
                "Calendar reconciliation skipped",
                extra={"user_id": user_id, "candidates": len(candidates), "limit": limit},
            )
            return {"processed": 0, "created": 0, "skipped": True}

        created = 0
        with self.transaction():
            for booking in candidates:
                client = booking.client
                confirmed = booking.status in (BookingStatus.SCHEDULED.value, BookingStatus.COMPLETED.value)
                if confirmed and client and client.email:
                    event_row = self.create_confirmed_event(booking)
                else:
                    event_row = self.create_pending_event(booking)
                if event_row is not None:
                    created += 1

        self.log_operation(
            "calendar_reconciled", user_id=user_id, processed=len(candidates), events_created=created
        )
        return {"processed": len(candidates), "created": created}

    @BaseService.measure_operation("calendar_create_recurring_master_event")
    def create_recurring_master_event(self, series: BookingSeries, client: Client) -> Optional[str]:
        """Create a weekly RRULE event for a series. Returns the Google event id."""
        try:
            credentials = self._get_access_token(series.user_id)
            if not credentials:
                return None
            access_token, calendar_id = credentials
            practitioner = self.profile_repository.get_by_id(series.user_id)
            start_local = datetime.strptime(series.dtstart_local, "%Y-%m-%dT%H:%M:%S")
            end_local = start_local + timedelta(minutes=series.duration_min)
            body = build_recurring_master_event(
                client_name=client.full_name,
                client_email=client.email,
                practitioner_name=practitioner.full_name if practitioner else None,
                timezone=series.timezone,
                dtstart_local=series.dtstart_local,
                dtend_local=end_local.strftime("%Y-%m-%dT%H:%M:%S"),
                interval_weeks=series.interval_weeks,
                by_weekday=series.by_weekday,
                mode=series.mode,
                location_text=series.location_text,
            )
            event = self.client.insert_event(access_token, calendar_id, body, send_updates="all")
            return event.get("id")
        except Exception as e:
            self._fail("create_master", None, e)
            return None

    def delete_recurring_master_event(self, series: BookingSeries) -> bool:
        if not series.master_event_id:
            return True
        try:
            credentials = self._get_access_token(series.user_id)
            if not credentials:
                return False
            access_token, calendar_id = credentials
            self.client.delete_event(access_token, calendar_id, series.master_event_id, send_updates="all")
            return True
        except Exception as e:
            self._fail("delete_master", None, e)
            return False
