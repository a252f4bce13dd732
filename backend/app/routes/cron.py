# backend/app/routes/cron.py
"""
Cron-triggered routes

Called by an external scheduler with the shared secret. Each route wraps
the same service call as its Celery task.

Endpoints:
    GET /invoicing/monthly - Consolidate a month (``period``, ``dryRun``)
    GET /send-scheduled-bills - Email bills whose send time has passed
    GET /billing-schedule - Send due consultation bills
    GET /series/extend - Materialize upcoming series occurrences
    GET /send-appointment-reminders - Remind clients of appointments later today
"""

import asyncio
import logging
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..api.dependencies import (
    get_appointment_reminder_service,
    get_booking_series_service,
    get_consultation_billing_service,
    get_monthly_invoicing_service,
    verify_cron_secret,
)
from ..core.exceptions import DomainException
from ..schemas.billing import ConsultationRunResponse, MonthlyRunResponse
from ..services.appointment_reminder_service import AppointmentReminderService
from ..services.booking_series_service import BookingSeriesService
from ..services.consultation_billing_service import ConsultationBillingService
from ..services.monthly_invoicing_service import MonthlyInvoicingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"], dependencies=[Depends(verify_cron_secret)])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/invoicing/monthly", response_model=MonthlyRunResponse)
async def cron_monthly_invoicing(
    period: Optional[str] = Query(None, description="YYYY-MM; defaults to last month"),
    dry_run: bool = Query(False, alias="dryRun"),
    invoicing_service: MonthlyInvoicingService = Depends(get_monthly_invoicing_service),
) -> MonthlyRunResponse:
    try:
        result = await asyncio.to_thread(invoicing_service.run_monthly, period, dry_run)
        return MonthlyRunResponse.model_validate({"ok": True, **result})
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/send-scheduled-bills")
async def cron_send_scheduled_bills(
    billing_service: ConsultationBillingService = Depends(get_consultation_billing_service),
) -> Dict[str, Any]:
    try:
        result = await asyncio.to_thread(billing_service.send_scheduled_bills)
        return {"ok": True, **result}
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/billing-schedule", response_model=ConsultationRunResponse)
async def cron_billing_schedule(
    billing_service: ConsultationBillingService = Depends(get_consultation_billing_service),
) -> ConsultationRunResponse:
    try:
        result = await asyncio.to_thread(billing_service.process_due_consultation_bills)
        return ConsultationRunResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/series/extend")
async def cron_extend_series(
    series_service: BookingSeriesService = Depends(get_booking_series_service),
) -> Dict[str, Any]:
    try:
        result = await asyncio.to_thread(series_service.extend_active_series)
        return {"ok": True, **result}
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/send-appointment-reminders")
async def cron_send_appointment_reminders(
    reminder_service: AppointmentReminderService = Depends(get_appointment_reminder_service),
) -> Dict[str, Any]:
    try:
        result = await asyncio.to_thread(reminder_service.send_appointment_reminders)
        return {"ok": True, **result}
    except DomainException as e:
        handle_domain_exception(e)
