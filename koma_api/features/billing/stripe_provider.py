"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API. The API key is passed
per request; the module-level `stripe.api_key` is never set.
"""
import json
import logging
from typing import Dict, Any, List, Optional

import stripe

from koma_api.core.errors import ValidationError
from koma_api.features.billing.provider import (
    BillingProviderError,
    WebhookSignatureError,
)

logger = logging.getLogger("koma")

DEFAULT_TOLERANCE_SECONDS = 300


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secrets: Optional[List[str]] = None,
        tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    ):
        """
        Args:
            secret_key: Stripe secret key
            webhook_secrets: One or more webhook signing secrets (several during rotation)
            tolerance_seconds: Maximum accepted age of a signed webhook timestamp
        """
        self.secret_key = secret_key
        self.webhook_secrets = list(webhook_secrets or [])
        self.tolerance_seconds = tolerance_seconds

    def _require_key(self) -> str:
        if not self.secret_key:
            raise BillingProviderError(
                "Billing processor is not configured",
                processor_message="STRIPE_SECRET_KEY missing",
            )
        return self.secret_key

    def create_customer(self, user_id: str, email: str) -> str:
        api_key = self._require_key()
        try:
            customer = stripe.Customer.create(
                email=email,
                metadata={"user_id": user_id},
                api_key=api_key,
            )
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(
                "Failed to create billing customer",
                processor_message=str(e),
            )

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        api_key = self._require_key()
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                mode="subscription",
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
                api_key=api_key,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(
                "Failed to create checkout session",
                processor_message=str(e),
            )

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        api_key = self._require_key()
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=api_key,
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(
                "Failed to create portal session",
                processor_message=str(e),
            )

    def verify_webhook(self, body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Verify against every configured secret, then parse the raw body."""
        if not self.webhook_secrets:
            raise WebhookSignatureError("Webhook signing secret not configured")
        if not signature_header:
            raise WebhookSignatureError("Missing signature header")

        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise WebhookSignatureError("Invalid signature")

        verified = False
        for secret in self.webhook_secrets:
            try:
                stripe.WebhookSignature.verify_header(
                    payload, signature_header, secret, tolerance=self.tolerance_seconds
                )
                verified = True
                break
            except stripe.SignatureVerificationError:
                continue

        if not verified:
            raise WebhookSignatureError("Invalid signature")

        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
            raise ValidationError("Invalid webhook payload")
        return event
