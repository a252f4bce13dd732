# backend/app/repositories/bill_repository.py
"""
Bill Repository

Queries over per-booking bills, including the monthly linking candidates
and the scheduled-email claim used by the cron sender.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, joinedload

from ..core.constants import EMAIL_LOCK_TIMEOUT_MINUTES
from ..core.enums import PAYABLE_BILL_STATUSES, BillCadence, BillStatus
from ..models.bill import Bill
from ..models.booking import Booking
from .base_repository import BaseRepository

_CLOSED_BILL_STATUSES = (BillStatus.CANCELED.value, BillStatus.REFUNDED.value)


class BillRepository(BaseRepository[Bill]):
    def __init__(self, db: Session):
        super().__init__(db, Bill)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Bill.booking))

    def get_by_booking(self, booking_id: str) -> List[Bill]:
        query = self._build_query().filter(Bill.booking_id == booking_id).order_by(Bill.created_at.desc())
        return self._execute_query(query)

    def get_latest_for_booking(self, booking_id: str) -> Optional[Bill]:
        query = self._build_query().filter(Bill.booking_id == booking_id).order_by(Bill.created_at.desc())
        return self._execute_first(query)

    def get_paid_for_booking(self, booking_id: str) -> Optional[Bill]:
        query = self._build_query().filter(
            Bill.booking_id == booking_id, Bill.status == BillStatus.PAID.value
        )
        return self._execute_first(query)

    def get_payable_for_booking(self, booking_id: str) -> Optional[Bill]:
        query = (
            self._build_query()
            .filter(Bill.booking_id == booking_id, Bill.status.in_(PAYABLE_BILL_STATUSES))
            .order_by(Bill.created_at.desc())
        )
        return self._execute_first(query)

    def get_open_for_booking(self, booking_id: str) -> List[Bill]:
        """Bills that can still be canceled (not paid, refunded or already canceled)."""
        query = self._build_query().filter(
            Bill.booking_id == booking_id,
            Bill.status.notin_([BillStatus.PAID.value, BillStatus.CANCELED.value, BillStatus.REFUNDED.value]),
        )
        return self._execute_query(query)

    def get_by_invoice(self, invoice_id: str) -> List[Bill]:
        query = self._build_query().filter(Bill.invoice_id == invoice_id).order_by(Bill.created_at.asc())
        return self._execute_query(query)

    def get_monthly_candidates(
        self,
        user_id: str,
        client_id: Optional[str],
        invoice_id: Optional[str] = None,
    ) -> List[Bill]:
        """
        Monthly-cadence bills of one (user, client) that are still open.

        Includes bills already linked to ``invoice_id`` so callers can diff the
        desired set against the current links.
        """
        query = (
            self._build_query()
            .options(joinedload(Bill.booking))
            .filter(
                Bill.user_id == user_id,
                Bill.billing_type == BillCadence.MONTHLY.value,
                Bill.status.notin_(_CLOSED_BILL_STATUSES),
            )
        )
        if client_id is None:
            query = query.filter(Bill.client_id.is_(None))
        else:
            query = query.filter(Bill.client_id == client_id)
        if invoice_id:
            query = query.filter(or_(Bill.invoice_id.is_(None), Bill.invoice_id == invoice_id))
        else:
            query = query.filter(Bill.invoice_id.is_(None))
        return self._execute_query(query)

    def get_monthly_groups_in_period(self, period_start: datetime, period_end: datetime) -> List[tuple]:
        """Distinct ``(user_id, client_id)`` pairs with open monthly bills in the period."""
        query = (
            self.db.query(Bill.user_id, Bill.client_id)
            .join(Booking, Booking.id == Bill.booking_id)
            .filter(
                Bill.billing_type == BillCadence.MONTHLY.value,
                Bill.status.notin_(_CLOSED_BILL_STATUSES + (BillStatus.PAID.value,)),
                Booking.start_time >= period_start,
                Booking.start_time < period_end,
            )
            .distinct()
        )
        return [(row[0], row[1]) for row in self._execute_query(query)]

    def set_invoice(self, bill_ids: Sequence[str], invoice_id: Optional[str]) -> int:
        if not bill_ids:
            return 0
        updated = (
            self._build_query()
            .filter(Bill.id.in_(list(bill_ids)))
            .update({Bill.invoice_id: invoice_id}, synchronize_session="fetch")
        )
        self.db.flush()
        return updated

    def claim_due_for_email(self, now: datetime, limit: int) -> List[Bill]:
        """
        Lock up to ``limit`` pending bills whose email is due.

        Locks older than the lock timeout are considered abandoned.
        """
        stale_before = now - timedelta(minutes=EMAIL_LOCK_TIMEOUT_MINUTES)
        query = (
            self._build_query()
            .filter(
                Bill.status == BillStatus.PENDING.value,
                Bill.email_scheduled_at.isnot(None),
                Bill.email_scheduled_at <= now,
                or_(Bill.email_locked_at.is_(None), Bill.email_locked_at < stale_before),
            )
            .order_by(Bill.email_scheduled_at.asc())
            .limit(limit)
        )
        bills = self._execute_query(query)
        for bill in bills:
            bill.email_locked_at = now
        self.db.flush()
        return bills
