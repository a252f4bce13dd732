# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets fresh service instances bound to its session. Tests
override these to inject fakes for Stripe, Google or email.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.appointment_reminder_service import AppointmentReminderService
from ...services.billing_schedule_service import BillingScheduleService
from ...services.billing_settings_service import BillingSettingsService
from ...services.booking_series_service import BookingSeriesService
from ...services.booking_service import BookingService
from ...services.calendar_sync_service import CalendarSyncService
from ...services.consultation_billing_service import ConsultationBillingService
from ...services.email import EmailService
from ...services.invoice_service import InvoiceService
from ...services.monthly_invoicing_service import MonthlyInvoicingService
from ...services.payment_orchestration_service import PaymentOrchestrationService
from ...services.stripe_service import StripeService
from ...services.stripe_webhook_service import StripeWebhookService
from .database import get_db

logger = logging.getLogger(__name__)


def get_email_service(db: Session = Depends(get_db)) -> EmailService:
    return EmailService(db)


def get_stripe_service(db: Session = Depends(get_db)) -> StripeService:
    return StripeService(db)


def get_calendar_sync_service(db: Session = Depends(get_db)) -> CalendarSyncService:
    return CalendarSyncService(db)


def get_payment_orchestration_service(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    email_service: EmailService = Depends(get_email_service),
) -> PaymentOrchestrationService:
    return PaymentOrchestrationService(db, stripe_service=stripe_service, email_service=email_service)


def get_booking_service(
    db: Session = Depends(get_db),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
    calendar_service: CalendarSyncService = Depends(get_calendar_sync_service),
    email_service: EmailService = Depends(get_email_service),
) -> BookingService:
    """
    Get booking service instance.

    Args:
        db: Database session
        payment_service: Stripe checkout, cancellation and refunds
        calendar_service: Best-effort Google Calendar sync
        email_service: Notifications

    Returns:
        BookingService instance
    """
    return BookingService(
        db,
        payment_service=payment_service,
        calendar_service=calendar_service,
        email_service=email_service,
    )


def get_booking_series_service(
    db: Session = Depends(get_db),
    booking_service: BookingService = Depends(get_booking_service),
    calendar_service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> BookingSeriesService:
    return BookingSeriesService(db, booking_service=booking_service, calendar_service=calendar_service)


def get_billing_settings_service(db: Session = Depends(get_db)) -> BillingSettingsService:
    return BillingSettingsService(db)


def get_billing_schedule_service(db: Session = Depends(get_db)) -> BillingScheduleService:
    return BillingScheduleService(db)


def get_invoice_service(db: Session = Depends(get_db)) -> InvoiceService:
    return InvoiceService(db)


def get_monthly_invoicing_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> MonthlyInvoicingService:
    return MonthlyInvoicingService(db, email_service=email_service)


def get_consultation_billing_service(
    db: Session = Depends(get_db),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
    email_service: EmailService = Depends(get_email_service),
) -> ConsultationBillingService:
    return ConsultationBillingService(db, payment_service=payment_service, email_service=email_service)


def get_stripe_webhook_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    calendar_service: CalendarSyncService = Depends(get_calendar_sync_service),
) -> StripeWebhookService:
    return StripeWebhookService(db, email_service=email_service, calendar_service=calendar_service)


def get_appointment_reminder_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> AppointmentReminderService:
    return AppointmentReminderService(db, email_service=email_service)
