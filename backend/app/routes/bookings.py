# backend/app/routes/bookings.py
"""
Booking routes

Practitioner booking endpoints under /api/bookings.
All business logic delegated to BookingService.

Endpoints:
    POST / - Create a booking with its bill and schedule
    GET /{booking_id} - Booking with its bills
    POST /{booking_id}/confirm - Confirm a pending reservation
    POST /{booking_id}/cancel - Cancel, releasing or refunding payment
    POST /{booking_id}/reschedule - Move a booking
    POST /{booking_id}/mark-paid - Record a payment received outside Stripe
    POST /{booking_id}/resend-email - Email the unpaid bill again with a fresh link
    POST /{booking_id}/refund - Refund the paid bill
    POST /{booking_id}/archive - Hide from the active list
    POST /{booking_id}/unarchive - Restore to the active list
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ..api.dependencies import get_booking_service, get_current_user
from ..core.exceptions import DomainException
from ..models.profile import Profile
from ..schemas.booking import (
    BookingActionResponse,
    BookingCreate,
    BookingCreateResponse,
    BookingDetailResponse,
    BookingReschedule,
    BookingResponse,
    CancelBookingResponse,
    RefundRequest,
    RefundResponse,
    RescheduleResponse,
)
from ..services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=BookingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingCreateResponse:
    """
    Create a booking.

    Settings resolve booking → client → practitioner default. Reservations
    paid before the consultation come back ``pending`` with a payment URL.
    """
    try:
        result = await asyncio.to_thread(booking_service.create_booking, current_user, booking_data)
        return BookingCreateResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: str,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingDetailResponse:
    try:
        result = await asyncio.to_thread(booking_service.get_booking, current_user, booking_id)
        return BookingDetailResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.confirm_booking, current_user, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=CancelBookingResponse)
async def cancel_booking(
    booking_id: str,
    cancel_data: Optional[RefundRequest] = Body(None),
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> CancelBookingResponse:
    """
    Cancel a booking.

    Open bills are canceled, pending checkout sessions expired and a paid
    bill refunded. Cancelling twice is a no-op.
    """
    reason = cancel_data.reason if cancel_data else None
    try:
        result = await asyncio.to_thread(booking_service.cancel_booking, current_user, booking_id, reason)
        return CancelBookingResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_booking(
    booking_id: str,
    reschedule_data: BookingReschedule,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> RescheduleResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.reschedule_booking,
            current_user,
            booking_id,
            reschedule_data.start_time,
            reschedule_data.end_time,
        )
        return RescheduleResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/mark-paid", response_model=BookingActionResponse)
async def mark_booking_paid(
    booking_id: str,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingActionResponse:
    try:
        result = await asyncio.to_thread(booking_service.mark_paid, current_user, booking_id)
        return BookingActionResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/refund", response_model=RefundResponse)
async def refund_booking(
    booking_id: str,
    refund_data: Optional[RefundRequest] = Body(None),
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> RefundResponse:
    """
    Refund the booking's paid bill in full.

    Returns 400 when no paid bill exists.
    """
    reason = refund_data.reason if refund_data else None
    try:
        result = await asyncio.to_thread(booking_service.refund_booking, current_user, booking_id, reason)
        return RefundResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/archive", response_model=BookingResponse)
async def archive_booking(
    booking_id: str,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.archive_booking, current_user, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/unarchive", response_model=BookingResponse)
async def unarchive_booking(
    booking_id: str,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(booking_service.unarchive_booking, current_user, booking_id)
        return BookingResponse.model_validate(booking)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/resend-email", response_model=BookingActionResponse)
async def resend_bill_email(
    booking_id: str,
    current_user: Profile = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingActionResponse:
    try:
        result = await asyncio.to_thread(booking_service.resend_bill_email, current_user, booking_id)
        return BookingActionResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)
