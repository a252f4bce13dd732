# backend/app/tasks/billing_tasks.py
"""
Periodic billing tasks.

Each task opens its own session and delegates to the service the matching
cron route uses, so both entry points behave identically.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.services.appointment_reminder_service import AppointmentReminderService
from app.services.booking_series_service import BookingSeriesService
from app.services.consultation_billing_service import ConsultationBillingService
from app.services.monthly_invoicing_service import MonthlyInvoicingService
from app.tasks.celery_app import BaseTask, celery_app

logger = logging.getLogger(__name__)


@celery_app.task(base=BaseTask, name="app.tasks.billing_tasks.process_consultation_billing")
def process_consultation_billing() -> Dict[str, Any]:
    db: Session = SessionLocal()
    try:
        result = ConsultationBillingService(db).process_due_consultation_bills()
        logger.info(f"Consultation billing run: {result.get('emails_sent', 0)} emails sent")
        return result
    finally:
        db.close()


@celery_app.task(base=BaseTask, name="app.tasks.billing_tasks.send_scheduled_bills")
def send_scheduled_bills() -> Dict[str, int]:
    db: Session = SessionLocal()
    try:
        return ConsultationBillingService(db).send_scheduled_bills()
    finally:
        db.close()


@celery_app.task(base=BaseTask, name="app.tasks.billing_tasks.run_monthly_invoicing")
def run_monthly_invoicing(period: Optional[str] = None, dry_run: bool = False) -> Dict[str, Any]:
    """
    Consolidate ``period`` (default: last month).

    Safe to re-run: bills already linked are skipped and invoices already
    emailed in the period are not emailed again.
    """
    db: Session = SessionLocal()
    try:
        result = MonthlyInvoicingService(db).run_monthly(period=period, dry_run=dry_run)
        logger.info(f"Monthly invoicing {result['period']}: {result['summary']}")
        return result
    finally:
        db.close()


@celery_app.task(base=BaseTask, name="app.tasks.billing_tasks.extend_booking_series")
def extend_booking_series() -> Dict[str, Any]:
    db: Session = SessionLocal()
    try:
        return BookingSeriesService(db).extend_active_series()
    finally:
        db.close()


@celery_app.task(base=BaseTask, name="app.tasks.billing_tasks.send_appointment_reminders")
def send_appointment_reminders() -> Dict[str, Any]:
    db: Session = SessionLocal()
    try:
        result = AppointmentReminderService(db).send_appointment_reminders()
        logger.info(f"Appointment reminders: {result['counts']}")
        return result
    finally:
        db.close()
