"""
Billing configuration and the billing schedule queue.
"""

from datetime import date, datetime
from typing import Optional

import ulid
from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.constants import DEFAULT_CURRENCY, DEFAULT_MAX_RETRIES
from app.core.enums import BillingFrequency, BillingTrigger, BillingType, ScheduleStatus
from app.database import Base


class BillingSettings(Base):
    """
    Amount and billing cadence.

    Scope is derived from the nullable keys: a user default has neither
    ``client_id`` nor ``booking_id``; a client override has ``client_id``;
    a booking-specific row has ``booking_id``.
    """

    __tablename__ = "billing_settings"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=True, index=True
    )
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    billing_type: Mapped[str] = mapped_column(String(30), nullable=False)
    billing_frequency: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    billing_trigger: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    billing_advance_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    billing_amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    first_consultation_amount: Mapped[Optional[float]] = mapped_column(
        Numeric(10, 2, asdecimal=False), nullable=True
    )
    vat_rate: Mapped[Optional[float]] = mapped_column(Numeric(5, 2, asdecimal=False), nullable=True)
    suppress_email: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_consultation_based(self) -> bool:
        return self.billing_type == BillingType.CONSULTATION_BASED.value

    @property
    def is_monthly(self) -> bool:
        return (
            self.billing_type == BillingType.RECURRING.value
            and self.billing_frequency == BillingFrequency.MONTHLY.value
        )

    @property
    def bills_before_consultation(self) -> bool:
        return self.billing_trigger == BillingTrigger.BEFORE_CONSULTATION.value

    def __repr__(self) -> str:
        return (
            f"<BillingSettings(id={self.id}, type={self.billing_type}, "
            f"amount={self.billing_amount})>"
        )


class BillingSchedule(Base):
    """A date-keyed work item: perform ``action_type`` for a booking on ``scheduled_date``."""

    __tablename__ = "billing_schedule"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    client_id: Mapped[str] = mapped_column(String(26), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    billing_settings_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("billing_settings.id", ondelete="SET NULL"), nullable=True
    )
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ScheduleStatus.PENDING.value, index=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_MAX_RETRIES)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    booking = relationship("Booking")
    client = relationship("Client")
    practitioner = relationship("Profile")
    billing_settings = relationship("BillingSettings")

    def __repr__(self) -> str:
        return (
            f"<BillingSchedule(id={self.id}, action={self.action_type}, "
            f"date={self.scheduled_date}, status={self.status})>"
        )
