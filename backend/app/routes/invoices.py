# backend/app/routes/invoices.py
"""
Invoice routes

Endpoints:
    GET /{invoice_id}/summary - Invoice with its linked bills
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from ..api.dependencies import get_current_user, get_invoice_service
from ..core.exceptions import DomainException
from ..models.profile import Profile
from ..schemas.invoices import InvoiceSummaryResponse
from ..services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["invoices"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/{invoice_id}/summary", response_model=InvoiceSummaryResponse)
async def get_invoice_summary(
    invoice_id: str,
    current_user: Profile = Depends(get_current_user),
    invoice_service: InvoiceService = Depends(get_invoice_service),
) -> InvoiceSummaryResponse:
    try:
        result = await asyncio.to_thread(invoice_service.get_summary, invoice_id, current_user.id)
        return InvoiceSummaryResponse.model_validate(result)
    except DomainException as e:
        handle_domain_exception(e)
