# backend/app/repositories/calendar_repository.py
"""
Calendar Repository

OAuth tokens and booking-to-event links for Google Calendar sync.
"""

from typing import Optional

from sqlalchemy.orm import Session

from ..core.enums import CalendarEventStatus, CalendarEventType
from ..models.calendar import CalendarEvent, CalendarToken
from .base_repository import BaseRepository


class CalendarTokenRepository(BaseRepository[CalendarToken]):
    def __init__(self, db: Session):
        super().__init__(db, CalendarToken)

    def get_by_user(self, user_id: str) -> Optional[CalendarToken]:
        return self.find_one_by(user_id=user_id)


class CalendarEventRepository(BaseRepository[CalendarEvent]):
    def __init__(self, db: Session):
        super().__init__(db, CalendarEvent)

    def get_active_for_booking(self, booking_id: str) -> Optional[CalendarEvent]:
        query = (
            self._build_query()
            .filter(
                CalendarEvent.booking_id == booking_id,
                CalendarEvent.event_status != CalendarEventStatus.CANCELLED.value,
            )
            .order_by(CalendarEvent.created_at.desc())
        )
        return self._execute_first(query)

    def get_pending_for_booking(self, booking_id: str) -> Optional[CalendarEvent]:
        query = self._build_query().filter(
            CalendarEvent.booking_id == booking_id,
            CalendarEvent.event_type == CalendarEventType.PENDING.value,
            CalendarEvent.event_status != CalendarEventStatus.CANCELLED.value,
        )
        return self._execute_first(query)
