# backend/app/services/stripe_service.py
"""
Stripe Service

Thin wrapper around the Stripe API used by payment orchestration:
- Connect Express accounts and onboarding links
- Checkout sessions on connected accounts
- Session expiry and refunds
- Webhook signature verification

Every Stripe failure surfaces as a ServiceException so callers handle one
error type. Local rows are never touched here.
"""

import logging
from typing import Any, Dict, Optional

import stripe
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import STRIPE_MAX_NETWORK_RETRIES, STRIPE_TIMEOUT_SECONDS
from ..core.exceptions import ServiceException, ValidationException
from .base import BaseService

logger = logging.getLogger(__name__)


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


def account_payments_enabled(account: Any) -> bool:
    """Charges, payouts and details all enabled with nothing currently due."""
    requirements = _get(account, "requirements") or {}
    currently_due = _get(requirements, "currently_due") or []
    return bool(
        _get(account, "charges_enabled")
        and _get(account, "payouts_enabled")
        and _get(account, "details_submitted")
        and not currently_due
    )


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


class StripeService(BaseService):
    """Service wrapping Stripe Connect, Checkout and Refund calls."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.stripe_configured = False
        secret = settings.stripe_secret_key.get_secret_value() if settings.stripe_secret_key else ""
        if secret:
            stripe.api_key = secret
            try:
                # 8s overall timeout; 1 retry for transient failures
                stripe.default_http_client = stripe.HTTPXClient(timeout=STRIPE_TIMEOUT_SECONDS)
                stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES
            except Exception as exc:
                # Non-fatal: the SDK falls back to its default client
                self.logger.warning(f"Could not customize Stripe HTTP client: {exc}")
            self.stripe_configured = True
        else:
            self.logger.warning("Stripe secret key not configured")

    def _check_stripe_configured(self) -> None:
        """Check if Stripe is properly configured before making API calls."""
        if not self.stripe_configured:
            raise ServiceException(
                "Stripe service not configured. Please check STRIPE_SECRET_KEY environment variable."
            )

    @BaseService.measure_operation("stripe_create_connect_account")
    def create_connect_account(self, email: str, country: Optional[str] = None) -> Any:
        """
        Create an Express account able to take card payments.

        Raises:
            ServiceException: If Stripe rejects the request
        """
        self._check_stripe_configured()
        try:
            return stripe.Account.create(
                type="express",
                country=country or settings.stripe_connect_country,
                email=email,
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating connected account: {str(e)}")
            raise ServiceException(f"Failed to create connected account: {str(e)}")

    @BaseService.measure_operation("stripe_create_onboarding_link")
    def create_onboarding_link(self, account_id: str, return_url: str, refresh_url: str) -> str:
        self._check_stripe_configured()
        try:
            account_link = stripe.AccountLink.create(
                account=account_id,
                refresh_url=refresh_url,
                return_url=return_url,
                type="account_onboarding",
            )
            return account_link.url
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating account link: {str(e)}")
            raise ServiceException(f"Failed to create account link: {str(e)}")

    @BaseService.measure_operation("stripe_get_account_status")
    def get_account_status(self, account_id: str) -> Dict[str, Any]:
        """
        Current capability flags for a connected account.

        Returns:
            Dict with charges/payouts/details flags, currently due requirements
            and the derived ``payments_enabled``
        """
        self._check_stripe_configured()
        try:
            account = stripe.Account.retrieve(account_id)
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error retrieving account {account_id}: {str(e)}")
            raise ServiceException(f"Failed to retrieve account status: {str(e)}")

        requirements = _get(account, "requirements") or {}
        return {
            "charges_enabled": bool(_get(account, "charges_enabled")),
            "payouts_enabled": bool(_get(account, "payouts_enabled")),
            "details_submitted": bool(_get(account, "details_submitted")),
            "currently_due": list(_get(requirements, "currently_due") or []),
            "payments_enabled": account_payments_enabled(account),
        }

    @BaseService.measure_operation("stripe_create_checkout_session")
    def create_checkout_session(
        self,
        *,
        stripe_account_id: str,
        amount: float,
        currency: str,
        product_name: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        idempotency_key: str,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Any:
        """Create a one-item payment Checkout session on the connected account."""
        self._check_stripe_configured()
        product_data: Dict[str, Any] = {"name": product_name}
        if description:
            product_data["description"] = description
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": product_data,
                        "unit_amount": to_cents(amount),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata, "application_fee_amount": 0},
        }
        if customer_email:
            params["customer_email"] = customer_email
        try:
            return stripe.checkout.Session.create(
                **params,
                stripe_account=stripe_account_id,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating checkout session: {str(e)}")
            raise ServiceException(f"Failed to create checkout session: {str(e)}")

    def expire_checkout_session(self, session_id: str, stripe_account_id: Optional[str] = None) -> Any:
        self._check_stripe_configured()
        try:
            if stripe_account_id:
                return stripe.checkout.Session.expire(session_id, stripe_account=stripe_account_id)
            return stripe.checkout.Session.expire(session_id)
        except stripe.StripeError as e:
            self.logger.warning(f"Stripe error expiring checkout session {session_id}: {str(e)}")
            raise ServiceException(f"Failed to expire checkout session: {str(e)}")

    @BaseService.measure_operation("stripe_create_refund")
    def create_refund(
        self,
        payment_intent_id: str,
        stripe_account_id: Optional[str] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Refund a payment intent in full.

        Tries the connected account first; when Stripe reports the intent
        missing there, retries on the platform account.
        """
        self._check_stripe_configured()
        params: Dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "reason": "requested_by_customer",
            "metadata": {**(metadata or {}), "reason": (reason or "")[:500]},
        }
        try:
            if stripe_account_id:
                return stripe.Refund.create(**params, stripe_account=stripe_account_id)
            return stripe.Refund.create(**params)
        except stripe.InvalidRequestError as e:
            if stripe_account_id and getattr(e, "code", None) == "resource_missing":
                self.logger.info(
                    "Payment intent not on connected account, retrying refund on platform",
                    extra={"payment_intent_id": payment_intent_id},
                )
                try:
                    return stripe.Refund.create(**params)
                except stripe.StripeError as platform_error:
                    self.logger.error(f"Stripe error refunding on platform: {str(platform_error)}")
                    raise ServiceException(f"Failed to process refund: {str(platform_error)}")
            self.logger.error(f"Stripe error creating refund: {str(e)}")
            raise ServiceException(f"Failed to process refund: {str(e)}")
        except stripe.StripeError as e:
            self.logger.error(f"Stripe error creating refund: {str(e)}")
            raise ServiceException(f"Failed to process refund: {str(e)}")

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """
        Verify a webhook payload against each configured secret in turn.

        Raises:
            ValidationException: If no configured secret verifies the signature
        """
        secrets = settings.webhook_secrets
        if not secrets:
            raise ValidationException("Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
        for secret in secrets:
            try:
                return stripe.Webhook.construct_event(payload, signature, secret)
            except stripe.SignatureVerificationError:
                continue
            except ValueError as e:
                raise ValidationException(f"Invalid webhook payload: {str(e)}", code="WEBHOOK_INVALID_PAYLOAD")
        self.logger.warning("Invalid webhook signature")
        raise ValidationException("Invalid webhook signature", code="WEBHOOK_INVALID_SIGNATURE")
