"""
FastAPI dependencies: database session, authentication and services.
"""

from .auth import get_current_user, verify_cron_secret
from .database import get_db
from .services import (
    get_appointment_reminder_service,
    get_billing_schedule_service,
    get_billing_settings_service,
    get_booking_series_service,
    get_booking_service,
    get_calendar_sync_service,
    get_consultation_billing_service,
    get_email_service,
    get_invoice_service,
    get_monthly_invoicing_service,
    get_payment_orchestration_service,
    get_stripe_service,
    get_stripe_webhook_service,
)

__all__ = [
    "get_current_user",
    "verify_cron_secret",
    "get_db",
    "get_appointment_reminder_service",
    "get_billing_schedule_service",
    "get_billing_settings_service",
    "get_booking_series_service",
    "get_booking_service",
    "get_calendar_sync_service",
    "get_consultation_billing_service",
    "get_email_service",
    "get_invoice_service",
    "get_monthly_invoicing_service",
    "get_payment_orchestration_service",
    "get_stripe_service",
    "get_stripe_webhook_service",
]
