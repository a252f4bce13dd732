# backend/app/schemas/booking.py
"""
Booking and booking series schemas.

Times are ISO-8601 instants; naive values are read as UTC. Series use a
local wall time (``dtstart_local``) plus an IANA timezone instead.
"""

from datetime import datetime
import re
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import BookingMode, ConsultationType, SeriesBillingPolicy
from ..core.timezone_utils import ensure_utc
from .base import StandardizedModel, StrictRequestModel
from .billing import BillingSettingsPayload

LOCAL_DATETIME_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$")


class BookingCreate(StrictRequestModel):
    """
    Schedule an appointment with one of the practitioner's clients.

    ``billing_settings`` creates booking-specific settings; otherwise the
    client override or the practitioner default applies. ``amount`` overrides
    the resolved amount for this booking only.
    """

    client_id: str
    start_time: datetime
    end_time: datetime
    mode: BookingMode = BookingMode.ONLINE
    location_text: Optional[str] = Field(None, max_length=500)
    consultation_type: Optional[ConsultationType] = None
    notes: Optional[str] = Field(None, max_length=2000)
    amount: Optional[float] = Field(None, ge=0)
    billing_settings: Optional[BillingSettingsPayload] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("notes", "location_text")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() or None if v else v

    @model_validator(mode="after")
    def _check_range(self) -> "BookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BookingReschedule(StrictRequestModel):
    start_time: datetime
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RefundRequest(StrictRequestModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(StandardizedModel):
    id: str
    user_id: str
    client_id: str
    start_time: datetime
    end_time: datetime
    status: str
    mode: str
    location_text: Optional[str] = None
    consultation_type: Optional[str] = None
    notes: Optional[str] = None
    billing_settings_id: Optional[str] = None
    billing_status: Optional[str] = None
    series_id: Optional[str] = None
    occurrence_index: Optional[int] = None
    reminder_sent_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class BillResponse(StandardizedModel):
    id: str
    booking_id: Optional[str] = None
    client_id: Optional[str] = None
    invoice_id: Optional[str] = None
    amount: float
    tax_amount: float = 0.0
    currency: str
    status: str
    billing_type: str
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    email_scheduled_at: Optional[datetime] = None
    stripe_refund_id: Optional[str] = None
    refunded_at: Optional[datetime] = None


class BookingDetailResponse(StandardizedModel):
    booking: BookingResponse
    bills: List[BillResponse] = Field(default_factory=list)


class BookingCreateResponse(StandardizedModel):
    booking: BookingResponse
    bill: Optional[BillResponse] = None
    requires_payment: bool
    payment_url: Optional[str] = None
    warning: Optional[str] = None


class BookingActionResponse(StandardizedModel):
    success: bool = True
    message: str
    booking: Dict[str, Any]


class CancelBookingResponse(StandardizedModel):
    success: bool
    message: str
    booking: Dict[str, Any]
    willRefund: bool
    refundId: Optional[str] = None


class RescheduleResponse(StandardizedModel):
    success: bool = True
    booking: BookingResponse
    warning: Optional[str] = None
    calendarError: Optional[str] = None


class RefundResponse(StandardizedModel):
    success: bool = True
    refund_id: str
    status: str
    reason: Optional[str] = None


class BookingSeriesCreate(StrictRequestModel):
    """A weekly or bi-weekly recurring appointment."""

    client_id: str
    timezone: str = Field(..., min_length=1, max_length=64)
    dtstart_local: str = Field(..., description="YYYY-MM-DDTHH:MM:SS wall time, no offset")
    duration_min: int = Field(..., ge=15, le=720)
    interval_weeks: int
    by_weekday: int = Field(..., description="0=Sunday .. 6=Saturday")
    amount: float
    currency: str = "EUR"
    billing_policy: SeriesBillingPolicy = SeriesBillingPolicy.MONTHLY
    mode: BookingMode = BookingMode.ONLINE
    location_text: Optional[str] = Field(None, max_length=500)
    consultation_type: Optional[ConsultationType] = None
    max_occurrences: Optional[int] = Field(None, ge=1, le=52)

    @field_validator("dtstart_local")
    @classmethod
    def _local_format(cls, v: str) -> str:
        candidate = v.strip()
        if not LOCAL_DATETIME_REGEX.fullmatch(candidate):
            raise ValueError("dtstart_local must be YYYY-MM-DDTHH:MM:SS without offset")
        return candidate

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()


class BookingSeriesResponse(StandardizedModel):
    id: str
    user_id: str
    client_id: str
    timezone: str
    dtstart_local: str
    duration_min: int
    interval_weeks: int
    by_weekday: int
    mode: str
    location_text: Optional[str] = None
    consultation_type: Optional[str] = None
    billing_type: str
    amount: float
    currency: str
    status: str
    master_event_id: Optional[str] = None


class BookingSeriesCreateResponse(StandardizedModel):
    series: BookingSeriesResponse
    booking_ids: List[str]
    master_event_created: bool


class SeriesCancelRequest(StrictRequestModel):
    from_date: Optional[datetime] = Field(None, description="Cancel occurrences starting at or after this instant")


class SeriesCancelResponse(StandardizedModel):
    success: bool = True
    series_id: str
    canceled_booking_ids: List[str]
    failed: List[Dict[str, Any]] = Field(default_factory=list)
