"""
Practitioner profiles and the clients they book appointments with.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.constants import DEFAULT_TIMEZONE
from app.database import Base

if TYPE_CHECKING:
    from app.models.booking import Booking


class Profile(Base):
    """A practitioner account; the authenticated user of the API."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_TIMEZONE)

    # Fiscal data copied onto issued invoices
    tax_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    fiscal_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    clients: Mapped[List["Client"]] = relationship("Client", back_populates="owner")

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.name, self.last_name) if p]
        return " ".join(parts) if parts else self.email

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, email={self.email})>"


class Client(Base):
    """A person receiving consultations from a practitioner."""

    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    tax_id: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    owner: Mapped["Profile"] = relationship("Profile", back_populates="clients")
    bookings: Mapped[List["Booking"]] = relationship("Booking", back_populates="client")

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.last_name}".strip() if self.last_name else self.name

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, user_id={self.user_id})>"
