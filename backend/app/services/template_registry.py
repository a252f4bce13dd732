# backend/app/services/template_registry.py
"""Registry of email template paths relative to app/templates."""

from enum import Enum


class TemplateRegistry(str, Enum):
    # Billing
    BILLING_CONSULTATION_BILL = "email/billing/consultation_bill.html"
    BILLING_MONTHLY_BILL = "email/billing/monthly_bill.html"

    # Payments
    PAYMENT_RECEIPT = "email/payments/receipt.html"
    PAYMENT_INVOICE_RECEIPT = "email/payments/invoice_receipt.html"
    PAYMENT_REFUND = "email/payments/refund.html"

    # Booking notifications
    BOOKING_CANCELLATION = "email/booking/cancellation.html"
    BOOKING_REMINDER = "email/booking/reminder.html"
