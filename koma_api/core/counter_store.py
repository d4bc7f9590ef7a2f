"""
Key-value counter store for the demo tier.

Counters are plain integers with a time-to-live; the Redis implementation is
used in every deployed environment.
"""
import logging
from typing import Optional, Protocol

from redis import Redis

logger = logging.getLogger("koma")


class CounterStore(Protocol):
    def get(self, key: str) -> Optional[int]:
        """Current value, or None when the key is absent/expired."""
        ...

    def incr(self, key: str, ttl_seconds: int) -> int:
        """Increment by one and (re)set the expiry. Returns the new value."""
        ...


class RedisCounterStore:
    """CounterStore backed by Redis INCR + EXPIRE in one MULTI/EXEC."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(Redis.from_url(url))

    def get(self, key: str) -> Optional[int]:
        raw = self.client.get(key)
        if raw is None:
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("counter.corrupt", extra={"counter_key": key})
            return None

    def incr(self, key: str, ttl_seconds: int) -> int:
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, ttl_seconds)
        value, _ = pipe.execute()
        return int(value)
