"""
Invoice models.

An Invoice aggregates bills for one client over one billing period. Credit
notes are invoices with negative totals that rectify a paid invoice.
Numbers are sequential per ``(user_id, series)`` and allocated from
``invoice_counters`` when the invoice is issued.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

import ulid
from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.constants import DEFAULT_CURRENCY
from app.core.enums import DocumentKind, InvoiceStatus
from app.database import Base

if TYPE_CHECKING:
    from app.models.bill import Bill


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("user_id", "series", "number", name="uq_invoices_user_series_number"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True
    )
    document_kind: Mapped[str] = mapped_column(String(20), nullable=False, default=DocumentKind.INVOICE.value)
    series: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    billing_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    billing_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    subtotal: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, default=0.0)
    tax_total: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, default=0.0)
    total: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)

    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    legacy_bill_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    rectifies_invoice_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True
    )
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_receipt_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Rendered document references (rendering happens elsewhere)
    pdf_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    pdf_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    client_name_snapshot: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_email_snapshot: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    client_tax_id_snapshot: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    issuer_name_snapshot: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issuer_tax_id_snapshot: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    issuer_address_snapshot: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    bills: Mapped[List["Bill"]] = relationship(
        "Bill", back_populates="invoice", foreign_keys="Bill.invoice_id"
    )

    @property
    def display_number(self) -> Optional[str]:
        if self.series is None or self.number is None:
            return None
        return f"{self.series}-{self.number:04d}"

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, status={self.status}, total={self.total})>"


class InvoiceCounter(Base):
    """Next sequential number per practitioner and series."""

    __tablename__ = "invoice_counters"
    __table_args__ = (UniqueConstraint("user_id", "series", name="uq_invoice_counters_user_series"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    series: Mapped[str] = mapped_column(String(16), nullable=False)
    next_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<InvoiceCounter(user_id={self.user_id}, series={self.series}, next={self.next_number})>"
