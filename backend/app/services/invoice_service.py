# backend/app/services/invoice_service.py
"""
Invoice Service

Invoices aggregate bills for one client over one period. Drafts carry no
number; issuing allocates the next sequential number in the ``YYYY-MM``
series (``R-YYYY-MM`` for credit notes). Totals are always recomputed from
the linked bills.

Methods here run inside the caller's transaction unless noted.
"""

from datetime import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.enums import BillStatus, DocumentKind, InvoiceStatus
from ..core.exceptions import NotFoundException, ValidationException
from ..core.timezone_utils import ensure_utc, utc_now
from ..models.bill import Bill
from ..models.invoice import Invoice
from ..models.payment import PaymentSession
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def compute_totals_from_bills(bills: Iterable[Bill]) -> Dict[str, float]:
    """
    Subtotal, tax and total for a set of bills.

    Bill amounts are tax-inclusive, so the taxable base is ``amount - tax``.
    """
    subtotal = 0.0
    tax_total = 0.0
    for bill in bills:
        amount = float(bill.amount or 0)
        tax = float(bill.tax_amount or 0)
        if tax > 0:
            subtotal += amount - tax
            tax_total += tax
        else:
            subtotal += amount
    return {
        "subtotal": round(subtotal, 2),
        "tax_total": round(tax_total, 2),
        "total": round(subtotal + tax_total, 2),
    }


def series_for(kind: str, when: datetime) -> str:
    label = f"{when.year:04d}-{when.month:02d}"
    return f"R-{label}" if kind == DocumentKind.CREDIT_NOTE.value else label


class InvoiceService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_invoice_repository(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)
        self.profile_repository = RepositoryFactory.create_profile_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    def get(self, invoice_id: str) -> Invoice:
        invoice = self.repository.get_by_id(invoice_id)
        if not invoice:
            raise NotFoundException("Invoice not found", code="INVOICE_NOT_FOUND")
        return invoice

    def _snapshots(self, user_id: str, client_id: Optional[str]) -> Dict[str, Any]:
        snapshots: Dict[str, Any] = {}
        if client_id:
            client = self.client_repository.get_by_id(client_id, load_relationships=False)
            if client:
                snapshots.update(
                    client_name_snapshot=client.full_name,
                    client_email_snapshot=client.email,
                    client_tax_id_snapshot=client.tax_id,
                )
        profile = self.profile_repository.get_by_id(user_id, load_relationships=False)
        if profile:
            snapshots.update(
                issuer_name_snapshot=profile.full_name,
                issuer_tax_id_snapshot=profile.tax_id,
                issuer_address_snapshot=profile.fiscal_address,
            )
        return snapshots

    def find_or_create_monthly_invoice(
        self,
        user_id: str,
        client_id: Optional[str],
        period_start: datetime,
        period_end: datetime,
        currency: str = "EUR",
    ) -> Tuple[Invoice, bool]:
        """Reuse the open invoice for the period or create a draft. Returns ``(invoice, created)``."""
        existing = self.repository.find_open_for_period(user_id, client_id, period_start, period_end)
        if existing:
            return existing, False
        invoice = self.repository.create(
            user_id=user_id,
            client_id=client_id,
            document_kind=DocumentKind.INVOICE.value,
            status=InvoiceStatus.DRAFT.value,
            currency=currency,
            year=period_start.year,
            month=period_start.month,
            billing_period_start=period_start,
            billing_period_end=period_end,
            **self._snapshots(user_id, client_id),
        )
        return invoice, True

    @BaseService.measure_operation("issue_invoice")
    def issue(self, invoice: Invoice, issued_at: Optional[datetime] = None) -> Invoice:
        """Move a draft to ``issued`` and allocate its number."""
        if invoice.status != InvoiceStatus.DRAFT.value:
            return invoice
        issued_at = issued_at or utc_now()
        series = series_for(invoice.document_kind, issued_at)
        number = self.repository.allocate_number(invoice.user_id, series)
        self.repository.apply_updates(
            invoice,
            status=InvoiceStatus.ISSUED.value,
            series=series,
            number=number,
            issued_at=issued_at,
            year=invoice.year or issued_at.year,
            month=invoice.month or issued_at.month,
        )
        self.logger.info(
            "Invoice issued",
            extra={"invoice_id": invoice.id, "series": series, "number": number},
        )
        return invoice

    def mark_paid(
        self,
        invoice: Invoice,
        payment_intent_id: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> Invoice:
        updates: Dict[str, Any] = {"status": InvoiceStatus.PAID.value, "paid_at": invoice.paid_at or utc_now()}
        if payment_intent_id:
            updates["stripe_payment_intent_id"] = payment_intent_id
        if receipt_url is not None:
            updates["stripe_receipt_url"] = receipt_url
        return self.repository.apply_updates(invoice, **updates)

    def mark_refunded(self, invoice: Invoice, refund_id: Optional[str]) -> Invoice:
        return self.repository.apply_updates(
            invoice, status=InvoiceStatus.REFUNDED.value, stripe_refund_id=refund_id
        )

    def cancel(self, invoice: Invoice) -> Invoice:
        return self.repository.apply_updates(
            invoice, status=InvoiceStatus.CANCELED.value, canceled_at=utc_now()
        )

    def recalculate_totals(self, invoice: Invoice) -> Invoice:
        bills = self.bill_repository.get_by_invoice(invoice.id)
        return self.repository.apply_updates(invoice, **compute_totals_from_bills(bills))

    def delete_empty_drafts(
        self,
        invoice_ids: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
    ) -> int:
        drafts = self.repository.get_empty_drafts(invoice_ids=invoice_ids, user_id=user_id)
        deleted = self.repository.delete_entities(drafts)
        if deleted:
            self.logger.info("Deleted empty draft invoices", extra={"count": deleted})
        return deleted

    @BaseService.measure_operation("ensure_invoice_for_bill_on_payment")
    def ensure_invoice_for_bill_on_payment(
        self,
        bill: Bill,
        payment_intent_id: Optional[str] = None,
        receipt_url: Optional[str] = None,
        payment_session: Optional[PaymentSession] = None,
    ) -> Invoice:
        """
        Per-booking payment path: make sure a paid invoice exists for the bill.

        Reuses the invoice created for this bill, otherwise creates one with
        the bill as its only line. A monthly invoice the bill was linked to
        keeps its other bills: its totals are recomputed, and it is deleted
        when it is a draft left empty.
        """
        previous_invoice_id = bill.invoice_id
        invoice = self.repository.get_by_legacy_bill(bill.id)
        if invoice is None:
            booking_start = ensure_utc(bill.booking.start_time) if bill.booking else utc_now()
            invoice = self.repository.create(
                user_id=bill.user_id,
                client_id=bill.client_id,
                document_kind=DocumentKind.INVOICE.value,
                status=InvoiceStatus.DRAFT.value,
                currency=bill.currency,
                year=booking_start.year,
                month=booking_start.month,
                legacy_bill_id=bill.id,
                **self._snapshots(bill.user_id, bill.client_id),
            )
        if bill.invoice_id != invoice.id:
            bill.invoice_id = invoice.id
            self.db.flush()
        if previous_invoice_id and previous_invoice_id != invoice.id:
            self._release_bill_from(previous_invoice_id, bill.id)

        self.recalculate_totals(invoice)
        self.issue(invoice)
        self.mark_paid(invoice, payment_intent_id=payment_intent_id, receipt_url=receipt_url)
        if payment_session is not None and payment_session.invoice_id != invoice.id:
            payment_session.invoice_id = invoice.id
            self.db.flush()
        return invoice

    def _release_bill_from(self, invoice_id: str, bill_id: str) -> None:
        previous = self.repository.get_by_id(invoice_id, load_relationships=False)
        if previous is None or previous.status not in (
            InvoiceStatus.DRAFT.value,
            InvoiceStatus.ISSUED.value,
        ):
            return
        self.db.expire(previous, ["bills"])
        self.recalculate_totals(previous)
        deleted = 0
        if previous.status == InvoiceStatus.DRAFT.value:
            deleted = self.delete_empty_drafts(invoice_ids=[previous.id])
        self.logger.info(
            "Bill moved off monthly invoice",
            extra={"invoice_id": invoice_id, "bill_id": bill_id, "draft_deleted": bool(deleted)},
        )

    @BaseService.measure_operation("ensure_monthly_draft_and_link_bills")
    def ensure_monthly_draft_and_link_bills(
        self,
        user_id: str,
        client_id: Optional[str],
        period_start: datetime,
        period_end: datetime,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """
        Monthly aggregation path for one (user, client, period).

        Links every open monthly bill whose booking starts in
        ``[period_start, period_end)`` to the period's invoice, unlinks bills
        that no longer belong, and recomputes totals. Never issues.
        """
        invoice = self.repository.find_open_for_period(user_id, client_id, period_start, period_end)
        created = False
        if invoice is None and not dry_run:
            invoice, created = self.find_or_create_monthly_invoice(
                user_id, client_id, period_start, period_end
            )
        elif invoice is None:
            created = True

        invoice_id = invoice.id if invoice else None
        candidates = self.bill_repository.get_monthly_candidates(user_id, client_id, invoice_id)
        desired: List[Bill] = []
        for bill in candidates:
            if bill.status == BillStatus.PAID.value and bill.invoice_id != invoice_id:
                continue
            start = ensure_utc(bill.booking.start_time) if bill.booking else None
            if start is not None and period_start <= start < period_end:
                desired.append(bill)

        desired_ids = [b.id for b in desired]
        current_ids = (
            [b.id for b in self.bill_repository.get_by_invoice(invoice_id)] if invoice_id else []
        )
        to_link = [bill_id for bill_id in desired_ids if bill_id not in current_ids]
        to_unlink = [bill_id for bill_id in current_ids if bill_id not in desired_ids]

        if not dry_run and invoice is not None:
            if to_unlink:
                self.bill_repository.set_invoice(to_unlink, None)
            if to_link:
                self.bill_repository.set_invoice(to_link, invoice.id)
            self.db.expire(invoice, ["bills"])
            self.recalculate_totals(invoice)

        self.logger.info(
            "Monthly invoice linking",
            extra={
                "user_id": user_id,
                "client_id": client_id,
                "invoice_id": invoice_id,
                "linked": len(to_link),
                "unlinked": len(to_unlink),
                "dry_run": dry_run,
            },
        )
        return {
            "invoice": invoice,
            "created": created,
            "linked_bill_ids": to_link,
            "unlinked_bill_ids": to_unlink,
            "total": compute_totals_from_bills(desired)["total"],
        }

    @BaseService.measure_operation("finalize_invoice_on_payment")
    def finalize_invoice_on_payment(
        self,
        invoice_id: str,
        payment_intent_id: Optional[str] = None,
        receipt_url: Optional[str] = None,
    ) -> Optional[Invoice]:
        """Monthly payment path: issue if draft, mark paid, mark linked bills paid."""
        invoice = self.repository.get_by_id(invoice_id, load_relationships=False)
        if not invoice:
            self.logger.warning("Invoice not found while finalizing payment", extra={"invoice_id": invoice_id})
            return None
        self.issue(invoice)
        self.mark_paid(invoice, payment_intent_id=payment_intent_id, receipt_url=receipt_url)
        now = utc_now()
        for bill in self.bill_repository.get_by_invoice(invoice.id):
            if bill.status != BillStatus.PAID.value:
                bill.status = BillStatus.PAID.value
                bill.paid_at = now
        self.db.flush()
        return invoice

    @BaseService.measure_operation("create_credit_note")
    def create_credit_note(
        self,
        invoice: Invoice,
        reason: Optional[str] = None,
        refund_id: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> Invoice:
        """
        Issue a credit note rectifying ``invoice``.

        Raises:
            ValidationException: If the invoice was never issued
        """
        if invoice.status == InvoiceStatus.DRAFT.value or invoice.number is None:
            raise ValidationException("Only issued invoices can be rectified")
        total = float(amount) if amount is not None else float(invoice.total or 0)
        ratio = total / float(invoice.total) if invoice.total else 1.0
        tax_total = round(float(invoice.tax_total or 0) * ratio, 2)
        now = utc_now()
        note = self.repository.create(
            user_id=invoice.user_id,
            client_id=invoice.client_id,
            document_kind=DocumentKind.CREDIT_NOTE.value,
            status=InvoiceStatus.DRAFT.value,
            currency=invoice.currency,
            year=now.year,
            month=now.month,
            subtotal=-round(total - tax_total, 2),
            tax_total=-tax_total,
            total=-round(total, 2),
            rectifies_invoice_id=invoice.id,
            reason=reason,
            stripe_refund_id=refund_id,
            client_name_snapshot=invoice.client_name_snapshot,
            client_email_snapshot=invoice.client_email_snapshot,
            client_tax_id_snapshot=invoice.client_tax_id_snapshot,
            issuer_name_snapshot=invoice.issuer_name_snapshot,
            issuer_tax_id_snapshot=invoice.issuer_tax_id_snapshot,
            issuer_address_snapshot=invoice.issuer_address_snapshot,
        )
        self.issue(note, issued_at=now)
        return note

    def get_summary(self, invoice_id: str, user_id: str) -> Dict[str, Any]:
        invoice = self.repository.get_for_user(invoice_id, user_id)
        if not invoice:
            raise NotFoundException("Invoice not found", code="INVOICE_NOT_FOUND")
        bills = self.bill_repository.get_by_invoice(invoice.id)
        return {"invoice": invoice, "bills": bills}
