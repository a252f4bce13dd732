"""
Tests for invoice numbering, credit notes, payment finalization and the
monthly consolidation run.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import Session

from app.core.enums import BillStatus, DocumentKind, InvoiceStatus
from app.core.exceptions import ValidationException
from app.models import Invoice, Profile
from app.services.invoice_service import InvoiceService, compute_totals_from_bills
from app.services.monthly_invoicing_service import MonthlyInvoicingService


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _draft(db: Session, user_id: str, client_id=None, **values) -> Invoice:
    invoice = Invoice(user_id=user_id, client_id=client_id, status=InvoiceStatus.DRAFT.value, **values)
    db.add(invoice)
    db.commit()
    return invoice


class TestNumbering:
    def test_numbers_are_sequential_per_series(self, db, practitioner):
        service = InvoiceService(db)
        first = _draft(db, practitioner.id, total=10.0)
        second = _draft(db, practitioner.id, total=20.0)

        service.issue(first, issued_at=_utc(2026, 5, 3))
        service.issue(second, issued_at=_utc(2026, 5, 20))
        db.commit()

        assert (first.series, first.number) == ("2026-05", 1)
        assert second.display_number == "2026-05-0002"
        assert second.status == InvoiceStatus.ISSUED.value

    def test_counters_are_per_practitioner_and_month(self, db, practitioner):
        service = InvoiceService(db)
        other = Profile(email="other@example.com", name="Other")
        db.add(other)
        db.commit()

        mine = _draft(db, practitioner.id)
        theirs = _draft(db, other.id)
        next_month = _draft(db, practitioner.id)
        service.issue(mine, issued_at=_utc(2026, 5, 3))
        service.issue(theirs, issued_at=_utc(2026, 5, 3))
        service.issue(next_month, issued_at=_utc(2026, 6, 1))

        assert mine.number == 1
        assert theirs.number == 1
        assert (next_month.series, next_month.number) == ("2026-06", 1)

    def test_issue_is_a_noop_once_issued(self, db, practitioner):
        service = InvoiceService(db)
        invoice = _draft(db, practitioner.id)
        service.issue(invoice, issued_at=_utc(2026, 5, 3))

        service.issue(invoice, issued_at=_utc(2026, 7, 1))

        assert invoice.display_number == "2026-05-0001"

    def test_draft_has_no_display_number(self, db, practitioner):
        assert _draft(db, practitioner.id).display_number is None

    def test_cancel_keeps_number_and_stamps_time(self, db, practitioner):
        service = InvoiceService(db)
        invoice = _draft(db, practitioner.id, total=40.0)
        service.issue(invoice, issued_at=_utc(2026, 5, 3))

        service.cancel(invoice)
        db.commit()

        assert invoice.status == InvoiceStatus.CANCELED.value
        assert invoice.canceled_at is not None
        assert invoice.display_number == "2026-05-0001"


class TestCreditNotes:
    def test_partial_credit_note(self, db, practitioner, client_row):
        service = InvoiceService(db)
        invoice = _draft(db, practitioner.id, client_row.id, subtotal=100.0, tax_total=21.0, total=121.0)
        service.issue(invoice)
        service.mark_paid(invoice)

        note = service.create_credit_note(invoice, reason="One session refunded", amount=60.5)

        assert note.document_kind == DocumentKind.CREDIT_NOTE.value
        assert note.series.startswith("R-")
        assert note.total == -60.5
        assert note.tax_total == -10.5
        assert note.rectifies_invoice_id == invoice.id
        assert invoice.status == InvoiceStatus.PAID.value

    def test_draft_cannot_be_rectified(self, db, practitioner):
        with pytest.raises(ValidationException):
            InvoiceService(db).create_credit_note(_draft(db, practitioner.id, total=50.0))


class TestPaymentPaths:
    def test_per_booking_payment_creates_paid_invoice_once(self, db, create_booking):
        service = InvoiceService(db)
        _, bill = create_booking(bill_status=BillStatus.PAID.value)

        invoice = service.ensure_invoice_for_bill_on_payment(bill, payment_intent_id="pi_1")
        again = service.ensure_invoice_for_bill_on_payment(bill, payment_intent_id="pi_1")
        db.commit()

        assert again.id == invoice.id
        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.legacy_bill_id == bill.id
        assert invoice.total == 60.0
        assert invoice.number == 1
        assert invoice.client_email_snapshot == "ana.ruiz@example.com"

    def test_invoice_payment_marks_linked_bills_paid(self, db, practitioner, client_row, create_booking):
        service = InvoiceService(db)
        invoice = _draft(db, practitioner.id, client_row.id, total=120.0)
        _, first = create_booking(cadence="monthly")
        _, second = create_booking(cadence="monthly")
        first.invoice_id = invoice.id
        second.invoice_id = invoice.id
        db.commit()

        service.finalize_invoice_on_payment(invoice.id, payment_intent_id="pi_2")
        db.commit()

        assert invoice.status == InvoiceStatus.PAID.value
        assert invoice.number is not None
        assert {first.status, second.status} == {BillStatus.PAID.value}

    def test_totals_split_vat_inclusive_amounts(self, create_booking):
        _, bill = create_booking(amount=121.0)
        bill.tax_amount = 21.0

        assert compute_totals_from_bills([bill]) == {"subtotal": 100.0, "tax_total": 21.0, "total": 121.0}


class TestMonthlyRun:
    @pytest.fixture
    def april_bills(self, create_booking):
        _, first = create_booking(start=_utc(2026, 4, 6, 10), cadence="monthly")
        _, second = create_booking(start=_utc(2026, 4, 20, 10), cadence="monthly")
        return first, second

    def test_first_run_links_and_emails(self, db, april_bills, mock_resend):
        service = MonthlyInvoicingService(db)

        result = service.run_monthly("2026-04")

        summary = result["summary"]
        assert result["period"] == "2026-04"
        assert summary["groupsProcessed"] == 1
        assert summary["invoicesCreated"] == 1
        assert summary["itemsLinked"] == 2
        assert summary["emailsSent"] == 1
        invoice = db.query(Invoice).one()
        assert invoice.total == 120.0
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert {b.invoice_id for b in april_bills} == {invoice.id}
        mock_resend.assert_called_once()

    def test_second_run_is_idempotent(self, db, april_bills, mock_resend):
        service = MonthlyInvoicingService(db)
        service.run_monthly("2026-04")

        result = service.run_monthly("2026-04")

        summary = result["summary"]
        assert summary["invoicesCreated"] == 0
        assert summary["invoicesReused"] == 1
        assert summary["itemsLinked"] == 0
        assert summary["emailsSent"] == 0
        assert db.query(Invoice).count() == 1
        mock_resend.assert_called_once()

    def test_new_bill_is_linked_and_emailed(self, db, april_bills, create_booking, mock_resend):
        service = MonthlyInvoicingService(db)
        service.run_monthly("2026-04")
        create_booking(start=_utc(2026, 4, 27, 10), cadence="monthly")

        result = service.run_monthly("2026-04")

        assert result["summary"]["itemsLinked"] == 1
        assert result["summary"]["emailsSent"] == 1
        assert db.query(Invoice).one().total == 180.0
        assert mock_resend.call_count == 2

    def test_moved_booking_is_unlinked(self, db, april_bills):
        service = MonthlyInvoicingService(db)
        service.run_monthly("2026-04")
        _, second = april_bills
        second.booking.start_time = _utc(2026, 5, 4, 10)
        second.booking.end_time = _utc(2026, 5, 4, 11)
        db.commit()

        result = service.run_monthly("2026-04")

        db.refresh(second)
        assert result["summary"]["itemsUnlinked"] == 1
        assert second.invoice_id is None
        assert db.query(Invoice).one().total == 60.0

    def test_paid_bill_leaves_monthly_draft_with_the_rest(self, db, april_bills):
        MonthlyInvoicingService(db).run_monthly("2026-04")
        first, second = april_bills
        monthly = db.query(Invoice).one()
        first.status = BillStatus.PAID.value

        paid = InvoiceService(db).ensure_invoice_for_bill_on_payment(first, payment_intent_id="pi_single")
        db.commit()

        assert paid.id != monthly.id
        assert paid.legacy_bill_id == first.id
        assert paid.status == InvoiceStatus.PAID.value
        assert paid.total == 60.0
        assert first.invoice_id == paid.id
        assert monthly.status == InvoiceStatus.DRAFT.value
        assert monthly.total == 60.0
        assert second.invoice_id == monthly.id
        assert second.status != BillStatus.PAID.value

    def test_monthly_draft_left_empty_is_deleted(self, db, create_booking):
        _, bill = create_booking(start=_utc(2026, 4, 6, 10), cadence="monthly")
        MonthlyInvoicingService(db).run_monthly("2026-04")
        monthly_id = db.query(Invoice).one().id
        bill.status = BillStatus.PAID.value

        paid = InvoiceService(db).ensure_invoice_for_bill_on_payment(bill)
        db.commit()

        assert db.get(Invoice, monthly_id) is None
        assert db.query(Invoice).one().id == paid.id

    def test_dry_run_writes_nothing(self, db, april_bills, mock_resend):
        result = MonthlyInvoicingService(db).run_monthly("2026-04", dry_run=True)

        assert result["dryRun"] is True
        assert result["summary"]["itemsLinked"] == 2
        assert db.query(Invoice).count() == 0
        mock_resend.assert_not_called()

    def test_other_cadences_are_ignored(self, db, create_booking):
        create_booking(start=_utc(2026, 4, 6, 10), cadence="right_after")

        result = MonthlyInvoicingService(db).run_monthly("2026-04")

        assert result["summary"]["groupsProcessed"] == 0

    def test_defaults_to_previous_month(self, db):
        result = MonthlyInvoicingService(db).run_monthly(now=_utc(2026, 1, 15))

        assert result["period"] == "2025-12"

    @pytest.mark.parametrize("period", ["2026-13", "April", "2026-4"])
    def test_invalid_period(self, db, period):
        with pytest.raises(ValidationException) as exc_info:
            MonthlyInvoicingService(db).run_monthly(period)
        assert exc_info.value.code == "INVALID_PERIOD"
