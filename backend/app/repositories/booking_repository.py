# backend/app/repositories/booking_repository.py
"""
Booking Repository

Data access for bookings, booking series, practitioner profiles and clients.
"""

from datetime import datetime
import logging
from typing import List, Optional, Set

from sqlalchemy import exists
from sqlalchemy.orm import Query, Session, joinedload

from ..core.enums import BookingStatus, CalendarEventStatus, SeriesStatus
from ..models.booking import Booking, BookingSeries
from ..models.calendar import CalendarEvent
from ..models.profile import Client, Profile
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    def __init__(self, db: Session):
        super().__init__(db, Booking)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Booking.client), joinedload(Booking.practitioner))

    def get_for_user(self, booking_id: str, user_id: str) -> Optional[Booking]:
        query = self._apply_eager_loading(self._build_query()).filter(
            Booking.id == booking_id, Booking.user_id == user_id
        )
        return self._execute_first(query)

    def get_series_occurrence_indexes(self, series_id: str) -> Set[int]:
        rows = self._execute_query(
            self.db.query(Booking.occurrence_index).filter(Booking.series_id == series_id)
        )
        return {row[0] for row in rows if row[0] is not None}

    def get_future_series_bookings(self, series_id: str, from_time: datetime) -> List[Booking]:
        query = (
            self._build_query()
            .filter(
                Booking.series_id == series_id,
                Booking.start_time >= from_time,
                Booking.status != BookingStatus.CANCELED.value,
            )
            .order_by(Booking.start_time.asc())
        )
        return self._execute_query(query)

    def get_due_for_reminder(self, window_start: datetime, window_end: datetime) -> List[Booking]:
        """Pending or scheduled bookings starting in the window and not yet reminded."""
        query = (
            self._apply_eager_loading(self._build_query())
            .filter(
                Booking.start_time >= window_start,
                Booking.start_time <= window_end,
                Booking.status.in_([BookingStatus.PENDING.value, BookingStatus.SCHEDULED.value]),
                Booking.reminder_sent_at.is_(None),
            )
            .order_by(Booking.start_time.asc(), Booking.id.asc())
        )
        return self._execute_query(query)

    def get_missing_calendar_events(self, user_id: str, from_time: datetime, limit: int) -> List[Booking]:
        """Upcoming, non-canceled bookings with no live calendar event."""
        has_event = exists().where(
            CalendarEvent.booking_id == Booking.id,
            CalendarEvent.event_status != CalendarEventStatus.CANCELLED.value,
        )
        query = (
            self._apply_eager_loading(self._build_query())
            .filter(
                Booking.user_id == user_id,
                Booking.start_time >= from_time,
                Booking.status != BookingStatus.CANCELED.value,
                Booking.series_id.is_(None),
                ~has_event,
            )
            .order_by(Booking.start_time.asc())
            .limit(limit)
        )
        return self._execute_query(query)


class BookingSeriesRepository(BaseRepository[BookingSeries]):
    def __init__(self, db: Session):
        super().__init__(db, BookingSeries)

    def get_for_user(self, series_id: str, user_id: str) -> Optional[BookingSeries]:
        return self.find_one_by(id=series_id, user_id=user_id)

    def get_active(self) -> List[BookingSeries]:
        return self.find_by(status=SeriesStatus.ACTIVE.value)


class ProfileRepository(BaseRepository[Profile]):
    def __init__(self, db: Session):
        super().__init__(db, Profile)


class ClientRepository(BaseRepository[Client]):
    def __init__(self, db: Session):
        super().__init__(db, Client)

    def get_for_user(self, client_id: str, user_id: str) -> Optional[Client]:
        return self.find_one_by(id=client_id, user_id=user_id)
