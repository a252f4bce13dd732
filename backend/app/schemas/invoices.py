# backend/app/schemas/invoices.py
"""Invoice schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from .base import StandardizedModel
from .booking import BillResponse


class InvoiceResponse(StandardizedModel):
    id: str
    user_id: str
    client_id: Optional[str] = None
    document_kind: str
    series: Optional[str] = None
    number: Optional[int] = None
    display_number: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = None
    billing_period_start: Optional[datetime] = None
    billing_period_end: Optional[datetime] = None
    currency: str
    subtotal: float
    tax_total: float
    total: float
    status: str
    issued_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    legacy_bill_id: Optional[str] = None
    rectifies_invoice_id: Optional[str] = None
    reason: Optional[str] = None
    stripe_receipt_url: Optional[str] = None
    stripe_refund_id: Optional[str] = None
    pdf_url: Optional[str] = None
    client_name_snapshot: Optional[str] = None
    client_email_snapshot: Optional[str] = None
    issuer_name_snapshot: Optional[str] = None
    issuer_tax_id_snapshot: Optional[str] = None
    issuer_address_snapshot: Optional[str] = None


class InvoiceSummaryResponse(StandardizedModel):
    invoice: InvoiceResponse
    bills: List[BillResponse] = Field(default_factory=list)
