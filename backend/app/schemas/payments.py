# backend/app/schemas/payments.py
"""
Stripe Connect onboarding and checkout schemas.
"""

from typing import Optional

from pydantic import Field

from .base import StandardizedModel, StrictRequestModel


class CreateAccountResponse(StandardizedModel):
    accountExists: bool
    accountId: str


class OnboardingLinkRequest(StrictRequestModel):
    origin: Optional[str] = Field(None, description="Base URL Stripe returns to; defaults to the API base URL")


class OnboardingLinkResponse(StandardizedModel):
    url: str


class OnboardingStatusResponse(StandardizedModel):
    hasAccount: bool
    accountId: Optional[str] = None
    onboardingCompleted: bool
    paymentsEnabled: bool


class CreateCheckoutRequest(StrictRequestModel):
    booking_id: str
    amount: Optional[float] = Field(None, gt=0, description="Defaults to the booking's payable bill amount")


class CheckoutResponse(StandardizedModel):
    sessionId: str
    url: Optional[str] = None
    amount: float
    currency: str
