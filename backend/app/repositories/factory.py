# backend/app/repositories/factory.py
"""
Repository Factory

Centralized creation of repository instances so services share one
construction path and tests can patch a single seam.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .bill_repository import BillRepository
    from .billing_repository import BillingScheduleRepository, BillingSettingsRepository
    from .booking_repository import (
        BookingRepository,
        BookingSeriesRepository,
        ClientRepository,
        ProfileRepository,
    )
    from .calendar_repository import CalendarEventRepository, CalendarTokenRepository
    from .invoice_repository import InvoiceRepository
    from .payment_repository import PaymentSessionRepository, StripeAccountRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        return BaseRepository(db, model)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_booking_series_repository(db: Session) -> "BookingSeriesRepository":
        from .booking_repository import BookingSeriesRepository

        return BookingSeriesRepository(db)

    @staticmethod
    def create_profile_repository(db: Session) -> "ProfileRepository":
        from .booking_repository import ProfileRepository

        return ProfileRepository(db)

    @staticmethod
    def create_client_repository(db: Session) -> "ClientRepository":
        from .booking_repository import ClientRepository

        return ClientRepository(db)

    @staticmethod
    def create_billing_settings_repository(db: Session) -> "BillingSettingsRepository":
        from .billing_repository import BillingSettingsRepository

        return BillingSettingsRepository(db)

    @staticmethod
    def create_billing_schedule_repository(db: Session) -> "BillingScheduleRepository":
        from .billing_repository import BillingScheduleRepository

        return BillingScheduleRepository(db)

    @staticmethod
    def create_bill_repository(db: Session) -> "BillRepository":
        from .bill_repository import BillRepository

        return BillRepository(db)

    @staticmethod
    def create_invoice_repository(db: Session) -> "InvoiceRepository":
        from .invoice_repository import InvoiceRepository

        return InvoiceRepository(db)

    @staticmethod
    def create_stripe_account_repository(db: Session) -> "StripeAccountRepository":
        from .payment_repository import StripeAccountRepository

        return StripeAccountRepository(db)

    @staticmethod
    def create_payment_session_repository(db: Session) -> "PaymentSessionRepository":
        from .payment_repository import PaymentSessionRepository

        return PaymentSessionRepository(db)

    @staticmethod
    def create_calendar_token_repository(db: Session) -> "CalendarTokenRepository":
        from .calendar_repository import CalendarTokenRepository

        return CalendarTokenRepository(db)

    @staticmethod
    def create_calendar_event_repository(db: Session) -> "CalendarEventRepository":
        from .calendar_repository import CalendarEventRepository

        return CalendarEventRepository(db)
