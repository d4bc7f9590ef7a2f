"""
Process-wide component wiring.

Built once at startup from Settings and stored on `app.state.engine`; route
handlers read their collaborators from it instead of looking up globals.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from koma_api.core.clock import Clock, utc_now
from koma_api.core.config import Settings
from koma_api.core.counter_store import CounterStore
from koma_api.features.access.service import AccessGate
from koma_api.features.billing.provider import BillingProvider
from koma_api.features.billing.service import CheckoutSessionFactory, PortalSessionFactory
from koma_api.features.billing.stripe_provider import StripeProvider
from koma_api.features.billing.webhook import WebhookProcessor
from koma_api.features.consent.service import ConsentRecorder
from koma_api.features.demo.service import DemoRateLimiter
from koma_api.features.usage.service import UsageLedger
from koma_api.features.users.service import UserDirectory


@dataclass
class EngineContext:
    settings: Settings
    session_factory: sessionmaker
    directory: UserDirectory
    demo_limiter: DemoRateLimiter
    ledger: UsageLedger
    consent_recorder: ConsentRecorder
    checkout: CheckoutSessionFactory
    portal: PortalSessionFactory
    webhooks: WebhookProcessor
    access: AccessGate


def build_context(
    settings: Settings,
    session_factory: sessionmaker,
    counter_store: CounterStore,
    provider: Optional[BillingProvider] = None,
    clock: Clock = utc_now,
) -> EngineContext:
    if provider is None:
        provider = StripeProvider(
            secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secrets=settings.webhook_secrets,
            tolerance_seconds=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )

    directory = UserDirectory(session_factory, clock=clock)
    demo_limiter = DemoRateLimiter(
        counter_store,
        settings.demo_limits,
        credential_configured=bool(settings.DEMO_GEMINI_API_KEY),
        clock=clock,
    )
    ledger = UsageLedger(session_factory, clock=clock)
    consent_recorder = ConsentRecorder(session_factory, clock=clock)

    return EngineContext(
        settings=settings,
        session_factory=session_factory,
        directory=directory,
        demo_limiter=demo_limiter,
        ledger=ledger,
        consent_recorder=consent_recorder,
        checkout=CheckoutSessionFactory(settings, provider, directory, consent_recorder, clock=clock),
        portal=PortalSessionFactory(settings, provider, directory),
        webhooks=WebhookProcessor(
            provider,
            session_factory,
            WebhookProcessor.plan_map_from_price_ids(settings.price_ids),
            clock=clock,
        ),
        access=AccessGate(demo_limiter, ledger),
    )


def get_context(request: Request) -> EngineContext:
    """FastAPI dependency."""
    return request.app.state.engine
