"""
Bill model: a single line-item charge tied to one booking.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.constants import DEFAULT_CURRENCY
from app.core.enums import BillStatus
from app.database import Base

if TYPE_CHECKING:
    from app.models.booking import Booking
    from app.models.invoice import Invoice


class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )

    amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    tax_amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, default=0.0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=BillStatus.PENDING.value, index=True)
    billing_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Snapshots taken when the bill is created
    client_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    email_scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    email_locked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    stripe_receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    refund_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    booking: Mapped[Optional["Booking"]] = relationship("Booking", back_populates="bills")
    invoice: Mapped[Optional["Invoice"]] = relationship(
        "Invoice", back_populates="bills", foreign_keys=[invoice_id]
    )

    @property
    def is_paid(self) -> bool:
        return self.status == BillStatus.PAID.value

    def __repr__(self) -> str:
        return f"<Bill(id={self.id}, booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"
