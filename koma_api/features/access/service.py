"""
Generation access gate.

The generation endpoints (outside this package) call `admit` before running a
generation and `complete` after it succeeded:

    grant = gate.admit("subscription", "blog", identity, client_address)
    result = generate(...)
    gate.complete(grant)

Modes:
- byok: caller brings their own AI key, nothing is metered
- demo: anonymous, bounded per client address per day
- subscription: authenticated, bounded per calendar month by plan
"""
from dataclasses import dataclass
from typing import Optional

from koma_api.core.auth import Identity
from koma_api.core.errors import (
    AuthRequiredError,
    DemoLimitExceededError,
    DemoUnavailableError,
    ValidationError,
)
from koma_api.features.demo.service import DemoRateLimiter
from koma_api.features.usage.service import UsageLedger
from koma_api.models.plan import FEATURE_KINDS

MODES = ("byok", "demo", "subscription")


@dataclass(frozen=True)
class AccessGrant:
    mode: str
    feature: str
    user_id: Optional[str] = None
    remaining: Optional[int] = None


class AccessGate:
    def __init__(self, demo_limiter: DemoRateLimiter, ledger: UsageLedger):
        self.demo_limiter = demo_limiter
        self.ledger = ledger

    def admit(
        self,
        mode: str,
        feature: str,
        identity: Optional[Identity],
        client_address: str,
        required_plan: str = "lite",
    ) -> AccessGrant:
        if mode not in MODES:
            raise ValidationError(f"Invalid mode: {mode}")
        if feature not in FEATURE_KINDS:
            raise ValidationError(f"Invalid feature: {feature}")

        if mode == "byok":
            return AccessGrant(mode=mode, feature=feature)

        if mode == "demo":
            if not self.demo_limiter.credential_configured:
                raise DemoUnavailableError("Demo is not available right now")
            decision = self.demo_limiter.check_and_consume(client_address, feature)
            if not decision.allowed:
                raise DemoLimitExceededError(
                    f"Daily demo limit of {decision.max} reached",
                )
            return AccessGrant(mode=mode, feature=feature, remaining=decision.remaining)

        if identity is None:
            raise AuthRequiredError("Authentication required", hint="Sign in to use your subscription.")
        summary = self.ledger.ensure_allowed(identity.user_id, required_plan)
        return AccessGrant(mode=mode, feature=feature, user_id=identity.user_id, remaining=summary.remaining)

    def complete(self, grant: AccessGrant) -> bool:
        """Record usage for a successful subscription generation (best-effort)."""
        if grant.mode != "subscription" or not grant.user_id:
            return True
        return self.ledger.record_usage(grant.user_id, grant.feature)
