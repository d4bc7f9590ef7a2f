# koma_api/conftest.py
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert, update

from koma_api.core.config import Settings
from koma_api.core.context import build_context
from koma_api.core.database import get_db_session, get_session_factory, init_engine, create_all_tables, users, usage_events
from koma_api.features.billing.stripe_provider import StripeProvider
from koma_api.main import create_app
from koma_api.tests.mocks import (
    CHECKOUT_URL,
    IDENTITY_HEADER,
    PORTAL_URL,
    WEBHOOK_SECRET,
    FakeClock,
    InMemoryCounterStore,
)


@pytest.fixture
def settings(tmp_path):
    """Settings for a fully configured deployment, backed by a throwaway SQLite file."""
    return Settings(
        _env_file=None,
        ENV="test",
        DATABASE_URL=f"sqlite:///{tmp_path / 'koma-test.db'}",
        BILLING_ENABLED=True,
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        STRIPE_LITE_PRICE_ID="price_lite",
        STRIPE_PRO_PRICE_ID="price_pro",
        CONSENT_VERSION="2025-01",
        APP_BASE_URL="https://blog4koma.com",
        ALLOWED_RETURN_ORIGINS="https://www.blog4koma.com",
        DEMO_DAILY_LIMIT=3,
        MOVIE_DEMO_DAILY_LIMIT=1,
        DEMO_GEMINI_API_KEY="demo-key",
    )


@pytest.fixture
def session_factory(settings):
    engine = init_engine(settings.DATABASE_URL)
    create_all_tables(engine)
    yield get_session_factory()
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def counter_store(clock):
    return InMemoryCounterStore(clock)


@pytest.fixture
def provider():
    """
    Processor double. Session calls are mocked; webhook verification is the
    real Stripe signature check against WEBHOOK_SECRET.
    """
    mock_provider = Mock()
    mock_provider.create_customer.return_value = "cus_123"
    mock_provider.create_checkout_session.return_value = CHECKOUT_URL
    mock_provider.create_portal_session.return_value = PORTAL_URL
    mock_provider.verify_webhook.side_effect = StripeProvider(
        secret_key=None,
        webhook_secrets=[WEBHOOK_SECRET],
    ).verify_webhook
    return mock_provider


@pytest.fixture
def context(settings, session_factory, counter_store, provider, clock):
    return build_context(settings, session_factory, counter_store, provider=provider, clock=clock)


@pytest.fixture
def client(context):
    return TestClient(create_app(context=context), raise_server_exceptions=False)


@pytest.fixture
def auth_headers():
    return {IDENTITY_HEADER: "alice@example.com"}


@pytest.fixture
def make_user(session_factory):
    """Insert a user row directly: make_user(email, plan=..., customer_id=...)."""
    def _make(email, plan="free", customer_id=None, subscription_id=None):
        user_id = email.strip().lower()
        with get_db_session(session_factory) as session:
            session.execute(
                insert(users).values(
                    id=user_id,
                    email=email,
                    plan=plan,
                    billing_customer_id=customer_id,
                    billing_subscription_id=subscription_id,
                )
            )
        return user_id
    return _make


@pytest.fixture
def set_plan(session_factory):
    def _set(user_id, plan):
        with get_db_session(session_factory) as session:
            session.execute(update(users).where(users.c.id == user_id).values(plan=plan))
    return _set


@pytest.fixture
def seed_usage(session_factory, clock):
    """Bulk-insert `count` usage events at the current fake time."""
    def _seed(user_id, count, kind="blog", at=None):
        created_at = at or clock()
        rows = [{"user_id": user_id, "kind": kind, "created_at": created_at} for _ in range(count)]
        with get_db_session(session_factory) as session:
            session.execute(insert(usage_events), rows)
    return _seed
