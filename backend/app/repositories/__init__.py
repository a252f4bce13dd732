# backend/app/repositories/__init__.py
"""
Repository layer for data access, separating business logic from queries.

Usage:
    from app.repositories import RepositoryFactory

    bill_repository = RepositoryFactory.create_bill_repository(db)
    bill = bill_repository.get_paid_for_booking(booking_id)
"""

from .base_repository import BaseRepository, IRepository
from .bill_repository import BillRepository
from .billing_repository import BillingScheduleRepository, BillingSettingsRepository
from .booking_repository import (
    BookingRepository,
    BookingSeriesRepository,
    ClientRepository,
    ProfileRepository,
)
from .calendar_repository import CalendarEventRepository, CalendarTokenRepository
from .factory import RepositoryFactory
from .invoice_repository import InvoiceRepository
from .payment_repository import PaymentSessionRepository, StripeAccountRepository

__all__ = [
    "BaseRepository",
    "BillRepository",
    "BillingScheduleRepository",
    "BillingSettingsRepository",
    "BookingRepository",
    "BookingSeriesRepository",
    "CalendarEventRepository",
    "CalendarTokenRepository",
    "ClientRepository",
    "IRepository",
    "InvoiceRepository",
    "PaymentSessionRepository",
    "ProfileRepository",
    "RepositoryFactory",
    "StripeAccountRepository",
]
