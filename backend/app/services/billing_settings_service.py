# backend/app/services/billing_settings_service.py
"""
Billing settings resolution.

Settings exist at three scopes. Resolution order for a booking is:
booking-specific, then the client override, then the practitioner default.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.constants import DEFAULT_CURRENCY, SUPPORTED_CURRENCIES
from ..core.enums import BillingFrequency, BillingTrigger, BillingType, ConsultationType
from ..core.exceptions import BillingSettingsNotFoundException, ValidationException
from ..models.billing import BillingSettings
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "billing_type",
    "billing_frequency",
    "billing_trigger",
    "billing_advance_days",
    "billing_amount",
    "currency",
    "first_consultation_amount",
    "vat_rate",
    "suppress_email",
)


class BillingSettingsService(BaseService):
    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_billing_settings_repository(db)

    @staticmethod
    def validate(data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Normalize and validate a settings payload.

        Raises:
            ValidationException: On inconsistent type/frequency/trigger or bad amounts
        """
        cleaned = {k: data[k] for k in _EDITABLE_FIELDS if k in data}
        billing_type = cleaned.get("billing_type")
        if billing_type not in {t.value for t in BillingType}:
            raise ValidationException(f"Invalid billing_type: {billing_type}")

        if billing_type == BillingType.RECURRING.value:
            if cleaned.get("billing_frequency") not in {f.value for f in BillingFrequency}:
                raise ValidationException("Recurring billing requires billing_frequency weekly or monthly")
            cleaned["billing_trigger"] = None
        else:
            if cleaned.get("billing_trigger") not in {t.value for t in BillingTrigger}:
                raise ValidationException(
                    "Consultation billing requires billing_trigger before_consultation or after_consultation"
                )
            cleaned["billing_frequency"] = None

        amount = cleaned.get("billing_amount")
        if amount is None or float(amount) < 0:
            raise ValidationException("billing_amount must be a non-negative number")
        cleaned["billing_amount"] = round(float(amount), 2)

        first_amount = cleaned.get("first_consultation_amount")
        if first_amount is not None:
            if float(first_amount) < 0:
                raise ValidationException("first_consultation_amount must be non-negative")
            cleaned["first_consultation_amount"] = round(float(first_amount), 2)

        advance_days = int(cleaned.get("billing_advance_days") or 0)
        if advance_days < 0:
            raise ValidationException("billing_advance_days must be non-negative")
        cleaned["billing_advance_days"] = advance_days

        currency = (cleaned.get("currency") or DEFAULT_CURRENCY).upper()
        if currency not in SUPPORTED_CURRENCIES:
            raise ValidationException(f"Unsupported currency: {currency}")
        cleaned["currency"] = currency
        return cleaned

    def get_user_default(self, user_id: str) -> Optional[BillingSettings]:
        return self.repository.get_user_default(user_id)

    def get_client_settings(self, user_id: str, client_id: str) -> Optional[BillingSettings]:
        return self.repository.get_client_override(user_id, client_id)

    @BaseService.measure_operation("upsert_user_default")
    def upsert_user_default(self, user_id: str, data: Dict[str, Any]) -> BillingSettings:
        cleaned = self.validate(data)
        with self.transaction():
            existing = self.repository.get_user_default(user_id)
            if existing:
                settings_row = self.repository.apply_updates(existing, **cleaned)
            else:
                settings_row = self.repository.create(user_id=user_id, is_default=True, **cleaned)
        self.log_operation("billing_default_saved", user_id=user_id, settings_id=settings_row.id)
        return settings_row

    @BaseService.measure_operation("upsert_client_settings")
    def upsert_client_settings(self, user_id: str, client_id: str, data: Dict[str, Any]) -> BillingSettings:
        cleaned = self.validate(data)
        with self.transaction():
            existing = self.repository.get_client_override(user_id, client_id)
            if existing:
                settings_row = self.repository.apply_updates(existing, **cleaned)
            else:
                settings_row = self.repository.create(
                    user_id=user_id, client_id=client_id, is_default=False, **cleaned
                )
        return settings_row

    def create_booking_settings(
        self, user_id: str, booking_id: str, client_id: Optional[str], data: Dict[str, Any]
    ) -> BillingSettings:
        """Create booking-scoped settings inside the caller's transaction."""
        cleaned = self.validate(data)
        return self.repository.create(
            user_id=user_id, client_id=client_id, booking_id=booking_id, is_default=False, **cleaned
        )

    @BaseService.measure_operation("resolve_billing_settings")
    def resolve_for_booking(
        self, user_id: str, client_id: Optional[str], booking_id: Optional[str] = None
    ) -> BillingSettings:
        """
        Resolve the effective settings for a booking.

        Raises:
            BillingSettingsNotFoundException: When no scope has settings
        """
        if booking_id:
            booking_settings = self.repository.get_for_booking(booking_id)
            if booking_settings:
                return booking_settings
        if client_id:
            client_settings = self.repository.get_client_override(user_id, client_id)
            if client_settings:
                return client_settings
        default = self.repository.get_user_default(user_id)
        if default:
            return default
        raise BillingSettingsNotFoundException(user_id, client_id)

    @staticmethod
    def resolve_amount(
        settings_row: BillingSettings,
        consultation_type: Optional[str] = None,
        override_amount: Optional[float] = None,
    ) -> float:
        """Amount to bill for one booking under ``settings_row``."""
        if override_amount is not None and float(override_amount) >= 0:
            return round(float(override_amount), 2)
        if (
            consultation_type == ConsultationType.FIRST.value
            and settings_row.first_consultation_amount is not None
        ):
            return round(float(settings_row.first_consultation_amount), 2)
        return round(float(settings_row.billing_amount), 2)
