"""
Hosted checkout and portal session issuance.

- CheckoutSessionFactory: binds the purchase to the authenticated identity,
  validates consent, lazily creates the processor customer, records consent
  evidence and requests a hosted checkout session.
- PortalSessionFactory: hosted self-service portal for an existing customer,
  with return-URL sanitization.

Processor-specific code lives in stripe_provider.py.
"""
from typing import Optional

from koma_api.core.auth import Identity
from koma_api.core.clock import Clock, utc_now
from koma_api.core.config import Settings
from koma_api.core.errors import (
    AuthRequiredError,
    BillingDisabledError,
    ForbiddenError,
    NoSubscriptionError,
    ValidationError,
)
from koma_api.core.logging import log_event
from koma_api.features.billing.provider import BillingProvider, BillingProviderError
from koma_api.features.billing.redirects import sanitize_return_url
from koma_api.features.consent.service import ConsentRecorder
from koma_api.features.users.service import UserDirectory
from koma_api.models.plan import PAID_PLANS

SUCCESS_PATH = "/subscription/success?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "/pricing"


def require_billing(settings: Settings) -> None:
    if not settings.BILLING_ENABLED:
        raise BillingDisabledError("Billing is temporarily disabled")


def require_identity(identity: Optional[Identity]) -> Identity:
    if identity is None:
        raise AuthRequiredError("Authentication required", hint="Sign in before subscribing.")
    return identity


def _log_provider_failure(exc: BillingProviderError, user_id: str, operation: str) -> None:
    log_event(
        "error",
        f"billing.{operation}_failed",
        user_id=user_id,
        error_code=exc.code,
        extra={"processor_message": exc.processor_message or exc.message},
    )


class CheckoutSessionFactory:
    def __init__(
        self,
        settings: Settings,
        provider: BillingProvider,
        directory: UserDirectory,
        consent_recorder: ConsentRecorder,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.provider = provider
        self.directory = directory
        self.consent_recorder = consent_recorder
        self.clock = clock

    def _ensure_customer(self, identity: Identity) -> str:
        user = self.directory.get_user(identity.user_id)
        if user and user.billing_customer_id:
            return user.billing_customer_id

        customer_id = self.provider.create_customer(identity.user_id, identity.email)
        self.directory.attach_customer_id(identity.user_id, identity.email, customer_id)
        log_event("info", "billing.customer_created", user_id=identity.user_id)
        return customer_id

    def create_checkout(
        self,
        identity: Optional[Identity],
        *,
        plan: Optional[str],
        user_id: Optional[str],
        user_email: Optional[str],
        consent_accepted: Optional[bool],
        consent_version: Optional[str],
        client_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """
        Create a hosted checkout session and return its URL.

        Raises:
            BillingDisabledError: billing switched off by configuration
            AuthRequiredError: no authenticated identity
            ValidationError: bad plan or missing consent
            ForbiddenError: user_id/user_email name another account
            BillingProviderError: processor call failed
        """
        require_billing(self.settings)
        identity = require_identity(identity)

        if plan not in PAID_PLANS:
            raise ValidationError("Invalid plan")
        if not isinstance(user_id, str) or not isinstance(user_email, str):
            raise ValidationError("userEmail and userId are required")
        if not identity.matches(user_id) or not identity.matches(user_email):
            log_event("warning", "checkout.identity_mismatch", user_id=identity.user_id)
            raise ForbiddenError("Forbidden")
        if consent_accepted is not True or not (consent_version or "").strip():
            raise ValidationError("Consent is required before checkout")

        price_id = self.settings.price_ids.get(plan)
        if not price_id:
            raise BillingProviderError(
                "Failed to create checkout session",
                processor_message=f"price id for plan {plan} not configured",
            )

        try:
            customer_id = self._ensure_customer(identity)
        except BillingProviderError as exc:
            _log_provider_failure(exc, identity.user_id, "customer")
            raise

        version = consent_version.strip()
        self.consent_recorder.record(
            identity.user_id,
            version,
            client_address=client_address,
            user_agent=user_agent,
        )

        # Redirect targets come from configuration, never from the request Origin
        base = self.settings.app_origin
        metadata = {
            "user_id": identity.user_id,
            "plan": plan,
            "consent_version": version,
            "consent_accepted_at": self.clock().isoformat(),
        }
        try:
            url = self.provider.create_checkout_session(
                customer_id=customer_id,
                price_id=price_id,
                success_url=f"{base}{SUCCESS_PATH}",
                cancel_url=f"{base}{CANCEL_PATH}",
                metadata=metadata,
            )
        except BillingProviderError as exc:
            _log_provider_failure(exc, identity.user_id, "checkout")
            raise

        log_event("info", "billing.checkout_created", user_id=identity.user_id, extra={"plan": plan})
        return url


class PortalSessionFactory:
    def __init__(self, settings: Settings, provider: BillingProvider, directory: UserDirectory):
        self.settings = settings
        self.provider = provider
        self.directory = directory

    def resolve_return_url(self, return_url: Optional[str]) -> str:
        return sanitize_return_url(
            return_url,
            self.settings.app_origin,
            self.settings.allowed_return_origins,
        )

    def create_portal_session(self, identity: Optional[Identity], return_url: Optional[str] = None) -> str:
        """
        Create a hosted portal session for the caller's billing customer.

        Raises:
            BillingDisabledError, AuthRequiredError, NoSubscriptionError,
            BillingProviderError
        """
        require_billing(self.settings)
        identity = require_identity(identity)

        user = self.directory.get_user(identity.user_id)
        if not user or not user.billing_customer_id:
            raise NoSubscriptionError(
                "No subscription found",
                hint="Choose a plan on the pricing page first.",
            )

        try:
            return self.provider.create_portal_session(
                customer_id=user.billing_customer_id,
                return_url=self.resolve_return_url(return_url),
            )
        except BillingProviderError as exc:
            _log_provider_failure(exc, identity.user_id, "portal")
            raise
