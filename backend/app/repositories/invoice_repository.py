# backend/app/repositories/invoice_repository.py
"""
Invoice Repository

Invoice lookup, empty-draft cleanup and per-series number allocation.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import exists
from sqlalchemy.orm import Query, Session, selectinload

from ..core.enums import DocumentKind, InvoiceStatus
from ..models.bill import Bill
from ..models.invoice import Invoice, InvoiceCounter
from .base_repository import BaseRepository


class InvoiceRepository(BaseRepository[Invoice]):
    def __init__(self, db: Session):
        super().__init__(db, Invoice)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Invoice.bills))

    def get_for_user(self, invoice_id: str, user_id: str) -> Optional[Invoice]:
        query = self._apply_eager_loading(self._build_query()).filter(
            Invoice.id == invoice_id, Invoice.user_id == user_id
        )
        return self._execute_first(query)

    def find_open_for_period(
        self,
        user_id: str,
        client_id: Optional[str],
        period_start: datetime,
        period_end: datetime,
    ) -> Optional[Invoice]:
        """Draft or issued invoice for (user, client, period), preferring the oldest."""
        query = self._build_query().filter(
            Invoice.user_id == user_id,
            Invoice.document_kind == DocumentKind.INVOICE.value,
            Invoice.billing_period_start == period_start,
            Invoice.billing_period_end == period_end,
            Invoice.status.in_([InvoiceStatus.DRAFT.value, InvoiceStatus.ISSUED.value]),
        )
        if client_id is None:
            query = query.filter(Invoice.client_id.is_(None))
        else:
            query = query.filter(Invoice.client_id == client_id)
        return self._execute_first(query.order_by(Invoice.created_at.asc()))

    def get_by_legacy_bill(self, bill_id: str) -> Optional[Invoice]:
        query = self._build_query().filter(
            Invoice.legacy_bill_id == bill_id,
            Invoice.document_kind == DocumentKind.INVOICE.value,
            Invoice.status != InvoiceStatus.CANCELED.value,
        )
        return self._execute_first(query)

    def get_empty_drafts(
        self,
        invoice_ids: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
    ) -> List[Invoice]:
        has_bills = exists().where(Bill.invoice_id == Invoice.id)
        query = self._build_query().filter(
            Invoice.status == InvoiceStatus.DRAFT.value,
            Invoice.document_kind == DocumentKind.INVOICE.value,
            ~has_bills,
        )
        if invoice_ids is not None:
            if not invoice_ids:
                return []
            query = query.filter(Invoice.id.in_(list(invoice_ids)))
        if user_id:
            query = query.filter(Invoice.user_id == user_id)
        return self._execute_query(query)

    def delete_entities(self, invoices: Sequence[Invoice]) -> int:
        for invoice in invoices:
            self.db.delete(invoice)
        self.db.flush()
        return len(invoices)

    def allocate_number(self, user_id: str, series: str) -> int:
        """
        Return the next number for ``(user_id, series)`` and advance the counter.

        The counter row is locked for update on databases that support it.
        """
        query = (
            self.db.query(InvoiceCounter)
            .filter(InvoiceCounter.user_id == user_id, InvoiceCounter.series == series)
            .with_for_update()
        )
        counter = self._execute_first(query)
        if counter is None:
            counter = InvoiceCounter(user_id=user_id, series=series, next_number=1)
            self.db.add(counter)
            self.db.flush()
        number = counter.next_number
        counter.next_number = number + 1
        self.db.flush()
        return number
