"""
Database models for the practice billing backend.

The models are organized by functionality:
- Practitioner profiles and clients
- Bookings and recurring series
- Billing settings and the billing schedule queue
- Bills, invoices and invoice numbering
- Stripe payment mirrors
- Google Calendar tokens and events
"""

from .bill import Bill
from .billing import BillingSchedule, BillingSettings
from .booking import Booking, BookingSeries
from .calendar import CalendarEvent, CalendarToken
from .invoice import Invoice, InvoiceCounter
from .payment import PaymentSession, StripeAccount
from .profile import Client, Profile

__all__ = [
    "Bill",
    "BillingSchedule",
    "BillingSettings",
    "Booking",
    "BookingSeries",
    "CalendarEvent",
    "CalendarToken",
    "Client",
    "Invoice",
    "InvoiceCounter",
    "PaymentSession",
    "Profile",
    "StripeAccount",
]
