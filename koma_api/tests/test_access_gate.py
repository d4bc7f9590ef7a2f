from unittest.mock import Mock

import pytest

from koma_api.core.auth import Identity
from koma_api.core.errors import (
    AuthRequiredError,
    DemoLimitExceededError,
    DemoUnavailableError,
    UsageLimitExceededError,
    ValidationError,
)
from koma_api.features.access.service import AccessGate
from koma_api.features.demo.service import DemoRateLimiter

ALICE = Identity(email="Alice@Example.com")


def test_byok_is_never_metered(context, counter_store):
    gate = context.access

    grant = gate.admit("byok", "blog", None, "1.2.3.4")

    assert grant.mode == "byok"
    assert counter_store.incr_calls == 0
    assert gate.complete(grant) is True


def test_demo_consumes_until_limit(context):
    gate = context.access

    grant = gate.admit("demo", "movie", None, "1.2.3.4")
    assert grant.remaining == 0

    with pytest.raises(DemoLimitExceededError) as exc_info:
        gate.admit("demo", "movie", None, "1.2.3.4")
    assert exc_info.value.status_code == 429
    assert "BYOK" in exc_info.value.hint


def test_demo_unavailable_without_credential(context, counter_store, clock):
    gate = AccessGate(
        DemoRateLimiter(counter_store, {"blog": 3, "movie": 1}, credential_configured=False, clock=clock),
        context.ledger,
    )

    with pytest.raises(DemoUnavailableError):
        gate.admit("demo", "blog", None, "1.2.3.4")
    assert counter_store.incr_calls == 0


def test_subscription_requires_identity(context):
    with pytest.raises(AuthRequiredError):
        context.access.admit("subscription", "blog", None, "1.2.3.4")


def test_subscription_free_user_rejected(context, make_user):
    make_user("alice@example.com")

    with pytest.raises(UsageLimitExceededError):
        context.access.admit("subscription", "blog", ALICE, "1.2.3.4")


def test_subscription_records_usage_on_complete(context, make_user):
    make_user("alice@example.com", plan="lite")

    grant = context.access.admit("subscription", "blog", ALICE, "1.2.3.4")
    assert grant.user_id == "alice@example.com"
    assert grant.remaining == 30

    assert context.access.complete(grant) is True
    assert context.ledger.get_usage("alice@example.com").used == 1


def test_complete_reports_failed_recording(context):
    ledger = Mock()
    ledger.record_usage.return_value = False
    gate = AccessGate(context.demo_limiter, ledger)
    grant = Mock(mode="subscription", feature="blog", user_id="alice@example.com")

    assert gate.complete(grant) is False


def test_invalid_mode_and_feature(context):
    with pytest.raises(ValidationError):
        context.access.admit("free-for-all", "blog", None, "1.2.3.4")
    with pytest.raises(ValidationError):
        context.access.admit("byok", "podcast", None, "1.2.3.4")
