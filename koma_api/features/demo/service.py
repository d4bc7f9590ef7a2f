"""
Demo tier rate limiting.

Anonymous callers get a small number of generations per client address per UTC
day, counted separately for blog and movie.

The check and the increment are two separate calls against the counter store.
Two concurrent requests from the same address can both pass the check, so the
daily maximum can be exceeded by at most (concurrent requests - 1). The
increment itself is atomic (Redis INCR), so no consumed request is lost.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from koma_api.core.clock import Clock, utc_now
from koma_api.core.counter_store import CounterStore
from koma_api.models.plan import FEATURE_KINDS

logger = logging.getLogger("koma")

ONE_DAY_SECONDS = 60 * 60 * 24

# Key prefixes per feature kind
KEY_PREFIXES: Dict[str, str] = {
    "blog": "demo",
    "movie": "movie-demo",
}

UNCONFIGURED_MESSAGE = "The demo is currently paused. You can keep generating with your own API key (BYOK)."


@dataclass(frozen=True)
class DemoDecision:
    allowed: bool
    remaining: int
    max: int


@dataclass(frozen=True)
class DemoStatus:
    remaining: int
    max: int
    is_available: bool
    message: Optional[str] = None


class DemoRateLimiter:
    def __init__(
        self,
        store: CounterStore,
        daily_limits: Dict[str, int],
        credential_configured: bool,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.daily_limits = daily_limits
        self.credential_configured = credential_configured
        self.clock = clock

    def key_for(self, client_address: str, feature: str) -> str:
        today = self.clock().date().isoformat()
        return f"{KEY_PREFIXES[feature]}:{client_address}:{today}"

    def max_for(self, feature: str) -> int:
        if feature not in FEATURE_KINDS:
            raise ValueError(f"Unknown feature kind: {feature}")
        return max(0, int(self.daily_limits.get(feature, 0)))

    def _used(self, key: str) -> int:
        return self.store.get(key) or 0

    def peek(self, client_address: str, feature: str) -> DemoStatus:
        """Remaining count without consuming anything."""
        maximum = self.max_for(feature)
        used = self._used(self.key_for(client_address, feature))
        remaining = max(0, maximum - used)
        if not self.credential_configured:
            return DemoStatus(remaining=remaining, max=maximum, is_available=False, message=UNCONFIGURED_MESSAGE)
        return DemoStatus(remaining=remaining, max=maximum, is_available=remaining > 0)

    def check_and_consume(self, client_address: str, feature: str) -> DemoDecision:
        maximum = self.max_for(feature)
        key = self.key_for(client_address, feature)
        used = self._used(key)

        if used >= maximum:
            logger.info("demo.limit_reached", extra={"feature": feature})
            return DemoDecision(allowed=False, remaining=0, max=maximum)

        new_count = self.store.incr(key, ONE_DAY_SECONDS)
        return DemoDecision(allowed=True, remaining=max(0, maximum - new_count), max=maximum)
