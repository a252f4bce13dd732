# backend/app/routes/payments.py
"""
Payment routes

Stripe Connect onboarding for practitioners, checkout creation and the
public pay links embedded in emails. Pay links redirect the browser to
Stripe Checkout, or to the frontend's payment pages.

Endpoints:
    POST /create-account - Create the practitioner's Connect account
    POST /onboarding-link - Stripe-hosted onboarding URL
    GET /onboarding-status - Account flags
    GET /onboarding-callback - Stripe return URL (redirect)
    POST /create-checkout - Checkout session for one booking
    GET /invoices/{invoice_id} - Invoice pay link (redirect)
    GET /{booking_id} - Booking pay link (redirect)
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from ..api.dependencies import get_current_user, get_payment_orchestration_service
from ..core.config import settings
from ..core.exceptions import DomainException
from ..models.profile import Profile
from ..schemas.payments import (
    CheckoutResponse,
    CreateAccountResponse,
    CreateCheckoutRequest,
    OnboardingLinkRequest,
    OnboardingLinkResponse,
    OnboardingStatusResponse,
)
from ..services.payment_orchestration_service import PaymentOrchestrationService, payment_error_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ------------------------------------------------------------------ Onboarding


@router.post("/create-account", response_model=CreateAccountResponse)
async def create_account(
    current_user: Profile = Depends(get_current_user),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> CreateAccountResponse:
    """Create the Express account once; later calls return the existing id."""
    try:
        result = await asyncio.to_thread(payment_service.create_account_for_user, current_user)
        return CreateAccountResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/onboarding-link", response_model=OnboardingLinkResponse)
async def create_onboarding_link(
    link_data: Optional[OnboardingLinkRequest] = Body(None),
    current_user: Profile = Depends(get_current_user),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> OnboardingLinkResponse:
    origin = link_data.origin if link_data else None
    try:
        result = await asyncio.to_thread(payment_service.create_onboarding_link_for_user, current_user, origin)
        return OnboardingLinkResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/onboarding-status", response_model=OnboardingStatusResponse)
async def get_onboarding_status(
    current_user: Profile = Depends(get_current_user),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> OnboardingStatusResponse:
    result = await asyncio.to_thread(payment_service.get_onboarding_status, current_user.id)
    return OnboardingStatusResponse.model_validate(result)


@router.get("/onboarding-callback")
async def onboarding_callback(
    user_id: Optional[str] = Query(None),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> RedirectResponse:
    """Refresh the account flags and send the browser back to onboarding."""
    try:
        path = await asyncio.to_thread(payment_service.handle_onboarding_callback, user_id)
    except DomainException as e:
        logger.error(f"Onboarding callback failed for {user_id}: {e.message}")
        path = "/onboarding?step=4&stripe_error=callback_failed"
    return RedirectResponse(url=f"{settings.frontend_url}{path}", status_code=status.HTTP_302_FOUND)


# -------------------------------------------------------------------- Checkout


@router.post("/create-checkout", response_model=CheckoutResponse)
async def create_checkout(
    checkout_data: CreateCheckoutRequest,
    current_user: Profile = Depends(get_current_user),
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> CheckoutResponse:
    try:
        result = await asyncio.to_thread(
            payment_service.create_checkout_for_user,
            current_user,
            checkout_data.booking_id,
            checkout_data.amount,
        )
        return CheckoutResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


# Declared before /{booking_id} so "invoices" is not read as a booking id
@router.get("/invoices/{invoice_id}")
async def pay_invoice(
    invoice_id: str,
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> RedirectResponse:
    """Public invoice pay link."""
    try:
        target = await asyncio.to_thread(payment_service.checkout_for_invoice_link, invoice_id)
    except Exception as e:
        logger.error(f"Invoice pay link failed for {invoice_id}: {str(e)}")
        target = payment_error_url("server_error")
    return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)


@router.get("/{booking_id}")
async def pay_booking(
    booking_id: str,
    payment_service: PaymentOrchestrationService = Depends(get_payment_orchestration_service),
) -> RedirectResponse:
    """
    Public booking pay link.

    Creates (or reuses) a Checkout session for the payable bill. Paid
    bookings land on the success page.
    """
    try:
        target = await asyncio.to_thread(payment_service.checkout_for_booking_link, booking_id)
    except Exception as e:
        logger.error(f"Booking pay link failed for {booking_id}: {str(e)}")
        target = payment_error_url("server_error")
    return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)
