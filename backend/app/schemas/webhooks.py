# backend/app/schemas/webhooks.py
"""Webhook acknowledgement schema."""

from typing import Optional

from .base import StandardizedModel


class WebhookAck(StandardizedModel):
    """Body returned to Stripe; any 2xx stops retries."""

    received: bool = True
    handled: Optional[bool] = None
    duplicate: Optional[bool] = None
    booking_id: Optional[str] = None
    invoice_id: Optional[str] = None
