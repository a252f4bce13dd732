# backend/app/schemas/__init__.py
"""
Pydantic request and response schemas.
"""

from .billing import (
    BillingSettingsPayload,
    BillingSettingsResponse,
    ConsultationRunResponse,
    MonthlyRunRequest,
    MonthlyRunResponse,
    MonthlyRunSummary,
)
from .booking import (
    BillResponse,
    BookingActionResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingDetailResponse,
    BookingReschedule,
    BookingResponse,
    BookingSeriesCreate,
    BookingSeriesCreateResponse,
    BookingSeriesResponse,
    CancelBookingResponse,
    RefundRequest,
    RefundResponse,
    RescheduleResponse,
    SeriesCancelRequest,
    SeriesCancelResponse,
)
from .invoices import InvoiceResponse, InvoiceSummaryResponse
from .payments import (
    CheckoutResponse,
    CreateAccountResponse,
    CreateCheckoutRequest,
    OnboardingLinkRequest,
    OnboardingLinkResponse,
    OnboardingStatusResponse,
)
from .webhooks import WebhookAck

__all__ = [
    "BillingSettingsPayload",
    "BillingSettingsResponse",
    "ConsultationRunResponse",
    "MonthlyRunRequest",
    "MonthlyRunResponse",
    "MonthlyRunSummary",
    "BillResponse",
    "BookingActionResponse",
    "BookingCreate",
    "BookingCreateResponse",
    "BookingDetailResponse",
    "BookingReschedule",
    "BookingResponse",
    "BookingSeriesCreate",
    "BookingSeriesCreateResponse",
    "BookingSeriesResponse",
    "CancelBookingResponse",
    "RefundRequest",
    "RefundResponse",
    "RescheduleResponse",
    "SeriesCancelRequest",
    "SeriesCancelResponse",
    "InvoiceResponse",
    "InvoiceSummaryResponse",
    "CheckoutResponse",
    "CreateAccountResponse",
    "CreateCheckoutRequest",
    "OnboardingLinkRequest",
    "OnboardingLinkResponse",
    "OnboardingStatusResponse",
    "WebhookAck",
]
