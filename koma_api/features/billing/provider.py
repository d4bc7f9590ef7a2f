"""
Billing provider protocol.

Defines the interface the billing services use to talk to the payment
processor (hosted checkout, hosted portal, signed webhooks).
"""
from typing import Protocol, Dict, Any, Optional

from koma_api.core.errors import AppError


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation
    - Checkout session creation
    - Portal session creation
    - Webhook signature verification and parsing
    """

    def create_customer(self, user_id: str, email: str) -> str:
        """
        Create a billing customer for the user.

        Returns:
            Provider customer ID (e.g., Stripe customer ID)

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """
        Create a hosted checkout session for a subscription.

        Returns:
            Checkout session URL

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """
        Create a hosted billing portal session for customer self-service.

        Returns:
            Portal session URL

        Raises:
            BillingProviderError: If portal session creation fails
        """
        ...

    def verify_webhook(self, body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """
        Verify the webhook signature against the raw body, then parse it.

        Args:
            body: Raw, unparsed request body
            signature_header: Value of the processor's signature header

        Returns:
            Event envelope {id, type, created, data: {object}}

        Raises:
            WebhookSignatureError: If the signature is missing, invalid or stale
        """
        ...


class BillingProviderError(AppError):
    """Processor call failed. The processor's text stays in logs, never in responses."""
    code = "BILLING_ERROR"
    status_code = 500

    def __init__(self, message: str, *, processor_message: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.processor_message = processor_message


class WebhookSignatureError(AppError):
    code = "INVALID_SIGNATURE"
    status_code = 401
