"""Request helpers shared by route tests."""

import hashlib
import hmac
import time

CRON_HEADERS = {"X-CRON-KEY": "test-cron-secret"}
WEBHOOK_SECRET = "whsec_test_secret"


def sign_stripe_payload(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Build a ``Stripe-Signature`` header the way Stripe signs webhooks."""
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"
