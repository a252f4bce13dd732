# backend/app/routes/stripe_webhooks.py
"""
Stripe Webhook Endpoint

Verifies the signature against every configured secret (platform and
Connect), then hands the event to StripeWebhookService. Redelivered
events are acknowledged without side effects.

Endpoints:
    POST / - Receive a Stripe event
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..api.dependencies import get_stripe_service, get_stripe_webhook_service
from ..core.exceptions import ValidationException
from ..schemas.webhooks import WebhookAck
from ..services.stripe_service import StripeService
from ..services.stripe_webhook_service import StripeWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stripe-webhooks"])


@router.post("", response_model=WebhookAck)
async def handle_stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    webhook_service: StripeWebhookService = Depends(get_stripe_webhook_service),
) -> WebhookAck:
    """
    Handle Stripe events:
    - checkout.session.completed / checkout.session.expired
    - account.updated / account.application.deauthorized

    Raises:
        HTTPException: 400 on a bad signature, 500 when local processing fails
            so Stripe retries
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("Missing Stripe signature header")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header")

    try:
        stripe_service.construct_event(payload, signature)
    except ValidationException as e:
        raise e.to_http_exception()

    try:
        event = json.loads(payload.decode("utf-8"))
        result = await asyncio.to_thread(webhook_service.process_event, event)
    except Exception as e:
        logger.error(f"Error processing Stripe webhook: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to process webhook"
        )
    return WebhookAck.model_validate({"received": True, **result})
