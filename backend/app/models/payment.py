"""
Payment models for Stripe integration.

Local mirrors of Stripe state: practitioners' Connect accounts and the
Checkout sessions created for bookings and invoices. Stripe stays the source
of truth; these rows are updated from API responses and webhooks.
"""

from datetime import datetime
from typing import Optional

import ulid
from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.constants import DEFAULT_CURRENCY
from app.core.enums import PaymentSessionStatus
from app.database import Base


class StripeAccount(Base):
    """Practitioner Stripe Connect account for receiving payments."""

    __tablename__ = "stripe_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    stripe_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payments_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def ready_for_payments(self) -> bool:
        return bool(self.onboarding_completed and self.payments_enabled)

    def __repr__(self) -> str:
        return f"<StripeAccount(user_id={self.user_id}, completed={self.onboarding_completed})>"


class PaymentSession(Base):
    """Stripe Checkout session created for a booking or an invoice."""

    __tablename__ = "payment_sessions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True
    )
    stripe_session_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentSessionStatus.PENDING.value
    )
    checkout_url: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<PaymentSession(id={self.stripe_session_id}, status={self.status})>"
