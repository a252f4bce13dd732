"""
Google Calendar integration models.
"""

from datetime import datetime
from typing import Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.enums import CalendarEventStatus, CalendarEventType
from app.database import Base


class CalendarToken(Base):
    """OAuth credentials for a practitioner's Google Calendar. Tokens are Fernet-encrypted."""

    __tablename__ = "calendar_tokens"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expiry: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    calendar_id: Mapped[str] = mapped_column(String(255), nullable=False, default="primary")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<CalendarToken(user_id={self.user_id}, calendar={self.calendar_id})>"


class CalendarEvent(Base):
    """Link between a booking and its Google Calendar event."""

    __tablename__ = "calendar_events"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    google_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    google_meet_link: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False, default=CalendarEventType.PENDING.value)
    event_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CalendarEventStatus.CREATED.value
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<CalendarEvent(booking_id={self.booking_id}, type={self.event_type}, status={self.event_status})>"
