# backend/app/routes/booking_series.py
"""
Booking series routes

Endpoints:
    POST / - Create a weekly or bi-weekly series and its first month
    POST /{series_id}/cancel - Cancel future occurrences and close the series
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ..api.dependencies import get_booking_series_service, get_current_user
from ..core.exceptions import DomainException
from ..models.profile import Profile
from ..schemas.booking import (
    BookingSeriesCreate,
    BookingSeriesCreateResponse,
    SeriesCancelRequest,
    SeriesCancelResponse,
)
from ..services.booking_series_service import BookingSeriesService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["booking-series"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=BookingSeriesCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_series(
    series_data: BookingSeriesCreate,
    current_user: Profile = Depends(get_current_user),
    series_service: BookingSeriesService = Depends(get_booking_series_service),
) -> BookingSeriesCreateResponse:
    """
    Create a recurring series.

    Occurrences for the first month (capped by ``max_occurrences``, default
    2) are created immediately; later ones come from the extension job.
    """
    try:
        result = await asyncio.to_thread(series_service.create_series, current_user, series_data)
        return BookingSeriesCreateResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{series_id}/cancel", response_model=SeriesCancelResponse)
async def cancel_booking_series(
    series_id: str,
    cancel_data: Optional[SeriesCancelRequest] = Body(None),
    current_user: Profile = Depends(get_current_user),
    series_service: BookingSeriesService = Depends(get_booking_series_service),
) -> SeriesCancelResponse:
    from_date = cancel_data.from_date if cancel_data else None
    try:
        result = await asyncio.to_thread(series_service.cancel_series, current_user, series_id, from_date)
        return SeriesCancelResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)
