# backend/app/routes/billing.py
"""
Billing routes

Settings are edited by the authenticated practitioner. The scan and run
endpoints are operator tools behind the cron secret, sharing the services
the cron routes and Celery tasks use.

Endpoints:
    GET /settings - Practitioner default settings
    PUT /settings - Create or replace the default
    PUT /settings/clients/{client_id} - Create or replace a client override
    GET /monthly - Due monthly schedule rows grouped by client and month
    POST /monthly - Consolidate a period into invoices
    GET /consultation - Due consultation bills
    POST /consultation - Send due consultation bills
"""

import asyncio
import logging
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ..api.dependencies import (
    get_billing_schedule_service,
    get_billing_settings_service,
    get_consultation_billing_service,
    get_current_user,
    get_monthly_invoicing_service,
    verify_cron_secret,
)
from ..core.exceptions import DomainException
from ..core.timezone_utils import utc_now
from ..models.profile import Profile
from ..schemas.billing import (
    BillingSettingsPayload,
    BillingSettingsResponse,
    ConsultationRunResponse,
    MonthlyRunRequest,
    MonthlyRunResponse,
)
from ..services.billing_schedule_service import BillingScheduleService
from ..services.billing_settings_service import BillingSettingsService
from ..services.consultation_billing_service import ConsultationBillingService
from ..services.monthly_invoicing_service import MonthlyInvoicingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ------------------------------------------------------------------ Settings


@router.get("/settings", response_model=Optional[BillingSettingsResponse])
async def get_default_settings(
    current_user: Profile = Depends(get_current_user),
    settings_service: BillingSettingsService = Depends(get_billing_settings_service),
) -> Optional[BillingSettingsResponse]:
    settings_row = await asyncio.to_thread(settings_service.get_user_default, current_user.id)
    if not settings_row:
        return None
    return BillingSettingsResponse.model_validate(settings_row)


@router.put("/settings", response_model=BillingSettingsResponse)
async def save_default_settings(
    payload: BillingSettingsPayload,
    current_user: Profile = Depends(get_current_user),
    settings_service: BillingSettingsService = Depends(get_billing_settings_service),
) -> BillingSettingsResponse:
    try:
        settings_row = await asyncio.to_thread(
            settings_service.upsert_user_default, current_user.id, payload.model_dump()
        )
        return BillingSettingsResponse.model_validate(settings_row)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/settings/clients/{client_id}", response_model=BillingSettingsResponse)
async def save_client_settings(
    client_id: str,
    payload: BillingSettingsPayload,
    current_user: Profile = Depends(get_current_user),
    settings_service: BillingSettingsService = Depends(get_billing_settings_service),
) -> BillingSettingsResponse:
    """Override the default for one client; bookings resolve this first."""
    try:
        settings_row = await asyncio.to_thread(
            settings_service.upsert_client_settings, current_user.id, client_id, payload.model_dump()
        )
        return BillingSettingsResponse.model_validate(settings_row)
    except DomainException as e:
        handle_domain_exception(e)


# ---------------------------------------------------------------- Billing runs


@router.get("/monthly", dependencies=[Depends(verify_cron_secret)])
async def scan_monthly_billing(
    schedule_service: BillingScheduleService = Depends(get_billing_schedule_service),
) -> Dict[str, Any]:
    groups = await asyncio.to_thread(schedule_service.scan_monthly, utc_now().date())
    return {"success": True, "groups": groups}


@router.post("/monthly", response_model=MonthlyRunResponse, dependencies=[Depends(verify_cron_secret)])
async def run_monthly_billing(
    run_data: Optional[MonthlyRunRequest] = Body(None),
    invoicing_service: MonthlyInvoicingService = Depends(get_monthly_invoicing_service),
) -> MonthlyRunResponse:
    """Consolidate ``period`` (default last month). ``dryRun`` writes nothing."""
    run_data = run_data or MonthlyRunRequest()
    try:
        result = await asyncio.to_thread(invoicing_service.run_monthly, run_data.period, run_data.dry_run)
        return MonthlyRunResponse.model_validate({"ok": True, **result})
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/consultation", dependencies=[Depends(verify_cron_secret)])
async def scan_consultation_billing(
    schedule_service: BillingScheduleService = Depends(get_billing_schedule_service),
) -> Dict[str, Any]:
    items = await asyncio.to_thread(schedule_service.scan_consultation, utc_now().date())
    return {"success": True, "total": len(items), "items": items}


@router.post(
    "/consultation", response_model=ConsultationRunResponse, dependencies=[Depends(verify_cron_secret)]
)
async def run_consultation_billing(
    billing_service: ConsultationBillingService = Depends(get_consultation_billing_service),
) -> ConsultationRunResponse:
    try:
        result = await asyncio.to_thread(billing_service.process_due_consultation_bills)
        return ConsultationRunResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)
