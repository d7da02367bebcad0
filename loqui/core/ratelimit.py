"""
Fixed-window rate limiter.

- Counters live behind a CounterStore: in-memory for a single instance,
  Redis (INCR + EXPIRE) when several instances share one budget.
- Policies are named classes (default, analysis, repurpose, health, auth).
- Defaults are safe (disabled unless enabled via env/settings).
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple


class CounterStore(Protocol):
    def incr(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """Increment key, starting a window on first hit. Returns (count, ttl_seconds)."""
        ...

    def decr(self, key: str) -> None:
        ...


class InMemoryCounterStore:
    """Single-process store. Windows are keyed by start time per key."""

    def __init__(self, time_fn: Callable[[], float] = time.monotonic):
        self.time_fn = time_fn
        self.windows: Dict[str, Tuple[float, float, int]] = {}
        self._lock = threading.Lock()

    def incr(self, key: str, window_seconds: int) -> Tuple[int, int]:
        now = self.time_fn()
        with self._lock:
            window_start, window, count = self.windows.get(key, (now, float(window_seconds), 0))
            if now - window_start >= window:
                window_start, window, count = now, float(window_seconds), 0
            count += 1
            self.windows[key] = (window_start, window, count)
            ttl = max(1, int(round(window_start + window - now)))
        return count, ttl

    def decr(self, key: str) -> None:
        with self._lock:
            entry = self.windows.get(key)
            if entry and entry[2] > 0:
                self.windows[key] = (entry[0], entry[1], entry[2] - 1)


class RedisCounterStore:
    """Shared store. The first INCR of a window sets its expiry."""

    def __init__(self, client, prefix: str = "rl"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def incr(self, key: str, window_seconds: int) -> Tuple[int, int]:
        redis_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, window_seconds, nx=True)
        pipe.ttl(redis_key)
        count, _, ttl = pipe.execute()
        if ttl is None or int(ttl) < 0:
            # Key lost its expiry (e.g. created by an older client); restart the window
            self.client.expire(redis_key, window_seconds)
            ttl = window_seconds
        return int(count), int(ttl)

    def decr(self, key: str) -> None:
        self.client.decr(self._key(key))


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: int
    max_requests: int
    skip_successful: bool = False
    alert: bool = False


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int
    policy: str


def build_policies(settings_obj) -> Dict[str, RateLimitPolicy]:
    """Named limiter classes. Analysis and repurpose are tighter in production."""
    production = settings_obj.is_production
    return {
        "default": RateLimitPolicy(
            "default",
            window_seconds=settings_obj.RATE_LIMIT_WINDOW_SECONDS,
            max_requests=settings_obj.RATE_LIMIT_MAX_REQUESTS,
        ),
        "analysis": RateLimitPolicy("analysis", window_seconds=900, max_requests=10 if production else 50, alert=True),
        "repurpose": RateLimitPolicy("repurpose", window_seconds=600, max_requests=20 if production else 100),
        "health": RateLimitPolicy("health", window_seconds=60, max_requests=100),
        "auth": RateLimitPolicy("auth", window_seconds=900, max_requests=5, skip_successful=True, alert=True),
    }


class FixedWindowRateLimiter:
    def __init__(self, store: CounterStore, policies: Dict[str, RateLimitPolicy]):
        self.store = store
        self.policies = policies

    def policy(self, name: str) -> RateLimitPolicy:
        return self.policies.get(name) or self.policies["default"]

    def hit(self, identity: str, policy_name: str) -> RateLimitDecision:
        policy = self.policy(policy_name)
        count, ttl = self.store.incr(f"{policy.name}:{identity}", policy.window_seconds)
        allowed = count <= policy.max_requests
        return RateLimitDecision(
            allowed=allowed,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            retry_after=0 if allowed else max(1, ttl),
            policy=policy.name,
        )

    def refund(self, identity: str, policy_name: str) -> None:
        policy = self.policy(policy_name)
        self.store.decr(f"{policy.name}:{identity}")


def build_rate_limiter(settings_obj, *, redis_client=None, time_fn: Optional[Callable[[], float]] = None) -> FixedWindowRateLimiter:
    """Pick the counter store from RATE_LIMIT_STORE (memory | redis)."""
    if settings_obj.RATE_LIMIT_STORE == "redis":
        if redis_client is None:
            import redis

            redis_client = redis.Redis.from_url(settings_obj.REDIS_URL, decode_responses=True)
        store: CounterStore = RedisCounterStore(redis_client)
    else:
        store = InMemoryCounterStore(time_fn=time_fn or time.monotonic)
    return FixedWindowRateLimiter(store, build_policies(settings_obj))
