"""
Booking and recurring booking series models.

A Booking is one appointment between a practitioner and a client. A
BookingSeries describes a weekly or bi-weekly rule whose occurrences are
materialized as bookings tagged with ``series_id`` and ``occurrence_index``.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.enums import BookingMode, BookingStatus, SeriesStatus
from app.database import Base

if TYPE_CHECKING:
    from app.models.bill import Bill
    from app.models.profile import Client, Profile


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("series_id", "occurrence_index", name="uq_bookings_series_occurrence"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingMode.ONLINE.value)
    location_text: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    consultation_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    billing_settings_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("billing_settings.id", ondelete="SET NULL"), nullable=True
    )
    billing_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    series_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("booking_series.id", ondelete="SET NULL"), nullable=True, index=True
    )
    occurrence_index: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    client: Mapped["Client"] = relationship("Client", back_populates="bookings")
    practitioner: Mapped["Profile"] = relationship("Profile")
    bills: Mapped[List["Bill"]] = relationship("Bill", back_populates="booking")
    series: Mapped[Optional["BookingSeries"]] = relationship("BookingSeries", back_populates="bookings")

    @property
    def is_terminal(self) -> bool:
        return self.status in (BookingStatus.CANCELED.value, BookingStatus.COMPLETED.value)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, status={self.status}, start={self.start_time})>"


class BookingSeries(Base):
    __tablename__ = "booking_series"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    dtstart_local: Mapped[str] = mapped_column(String(19), nullable=False, comment="YYYY-MM-DDTHH:MM:SS")
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False)
    interval_weeks: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    by_weekday: Mapped[int] = mapped_column(Integer, nullable=False, comment="0=Sunday..6=Saturday")
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default=BookingMode.ONLINE.value)
    location_text: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    consultation_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    billing_type: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SeriesStatus.ACTIVE.value)
    master_event_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    bookings: Mapped[List["Booking"]] = relationship("Booking", back_populates="series")

    def __repr__(self) -> str:
        return f"<BookingSeries(id={self.id}, weekday={self.by_weekday}, every={self.interval_weeks}w)>"
