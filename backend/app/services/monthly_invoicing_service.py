# backend/app/services/monthly_invoicing_service.py
"""
Monthly Invoicing Service

Consolidates monthly-cadence bills into one invoice per (practitioner,
client, month) and emails the client a single payment link.

A client is emailed only when the run linked new bills to the invoice, so
re-running the job for the same period sends nothing new.
"""

from datetime import datetime
import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from ..core.exceptions import DomainException, ValidationException
from ..core.timezone_utils import ensure_utc, parse_period, period_bounds, previous_period
from ..models.invoice import Invoice
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .email import EmailService
from .invoice_service import InvoiceService
from .payment_orchestration_service import invoice_payment_link

logger = logging.getLogger(__name__)


def _empty_summary() -> Dict[str, Any]:
    return {
        "groupsProcessed": 0,
        "invoicesCreated": 0,
        "invoicesReused": 0,
        "itemsLinked": 0,
        "itemsUnlinked": 0,
        "emailsSent": 0,
        "draftsDeleted": 0,
        "errors": [],
    }


class MonthlyInvoicingService(BaseService):
    def __init__(self, db: Session, email_service: Optional[EmailService] = None):
        super().__init__(db)
        self.invoice_service = InvoiceService(db)
        self.email_service = email_service or EmailService(db)
        self.bill_repository = RepositoryFactory.create_bill_repository(db)
        self.profile_repository = RepositoryFactory.create_profile_repository(db)
        self.client_repository = RepositoryFactory.create_client_repository(db)

    @BaseService.measure_operation("run_monthly_invoicing")
    def run_monthly(
        self,
        period: Optional[str] = None,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Consolidate one month.

        Args:
            period: ``YYYY-MM``; defaults to the month before ``now`` (UTC)
            dry_run: Compute the plan without writing or emailing

        Returns:
            ``{"period", "dryRun", "summary"}``

        Raises:
            ValidationException: If the period is malformed
        """
        period = period or previous_period(now)
        try:
            year, month = parse_period(period)
        except ValueError as e:
            raise ValidationException(str(e), code="INVALID_PERIOD")
        period_start, period_end = period_bounds(year, month)

        summary = _empty_summary()
        emailed: Set[str] = set()
        groups = self.bill_repository.get_monthly_groups_in_period(period_start, period_end)
        self.logger.info(
            "Monthly invoicing started",
            extra={"period": period, "groups": len(groups), "dry_run": dry_run},
        )

        for user_id, client_id in groups:
            try:
                with self.transaction():
                    result = self.invoice_service.ensure_monthly_draft_and_link_bills(
                        user_id, client_id, period_start, period_end, dry_run=dry_run
                    )
            except DomainException as e:
                self.logger.error(
                    f"Monthly invoicing failed for user {user_id} client {client_id}: {e.message}"
                )
                summary["errors"].append({"userId": user_id, "clientId": client_id, "error": e.message})
                continue

            summary["groupsProcessed"] += 1
            summary["invoicesCreated" if result["created"] else "invoicesReused"] += 1
            summary["itemsLinked"] += len(result["linked_bill_ids"])
            summary["itemsUnlinked"] += len(result["unlinked_bill_ids"])

            invoice = result["invoice"]
            if dry_run or invoice is None or not result["linked_bill_ids"]:
                continue
            if invoice.id in emailed or not invoice.total or float(invoice.total) <= 0:
                continue
            if self._send_invoice_email(invoice, period):
                emailed.add(invoice.id)
                summary["emailsSent"] += 1

        if not dry_run:
            with self.transaction():
                summary["draftsDeleted"] = self.invoice_service.delete_empty_drafts()

        self.log_operation("monthly_invoicing_finished", period=period, dry_run=dry_run, **{
            k: v for k, v in summary.items() if k != "errors"
        })
        return {"period": period, "dryRun": dry_run, "summary": summary}

    def _send_invoice_email(self, invoice: Invoice, period: str) -> bool:
        client = self.client_repository.get_by_id(invoice.client_id) if invoice.client_id else None
        practitioner = self.profile_repository.get_by_id(invoice.user_id)
        bills = self.bill_repository.get_by_invoice(invoice.id)
        sessions: List[Dict[str, Any]] = [
            {
                "date": ensure_utc(bill.booking.start_time) if bill.booking else None,
                "amount": float(bill.amount),
            }
            for bill in bills
        ]
        return self.email_service.send_monthly_bill(
            to_email=invoice.client_email_snapshot or (client.email if client else None),
            client_name=invoice.client_name_snapshot or (client.full_name if client else ""),
            practitioner_name=practitioner.full_name if practitioner else "",
            amount=float(invoice.total),
            currency=invoice.currency,
            month_label=period,
            payment_url=invoice_payment_link(invoice.id),
            sessions=sessions,
        )
