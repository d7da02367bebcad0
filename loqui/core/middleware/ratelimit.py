import logging
from typing import Callable, List, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from loqui.core.errors import RateLimitError, app_error_handler
from loqui.core.logging import get_request_id
from loqui.core.metrics import ratelimit_alert_total, ratelimit_block_total, normalize_path
from loqui.core.ratelimit import FixedWindowRateLimiter


# Longest prefix first; anything under /api not listed falls into "default"
PREFIX_MAP: List[Tuple[str, str]] = [
    ("/api/integrations", "auth"),
    ("/api/analyses", "analysis"),
    ("/api/repurpose", "repurpose"),
    ("/healthz", "health"),
    ("/readyz", "health"),
    ("/metrics", "health"),
    ("/api", "default"),
]


def default_alert(policy: str, identity: str, path: str) -> None:
    """Breach of an alerting class: error log plus a counter for monitoring."""
    ratelimit_alert_total.inc(labels={"limiter": policy})
    logging.getLogger("loqui").error(
        "ratelimit.alert",
        extra={"limiter": policy, "identity": identity, "path": path},
    )


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window rate limiting middleware (opt-in via settings)."""

    def __init__(
        self,
        app,
        *,
        limiter: FixedWindowRateLimiter,
        enabled: bool = False,
        alert_fn: Optional[Callable[[str, str, str], None]] = None,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled
        self.alert_fn = alert_fn or default_alert

    def _policy_for_path(self, path: str) -> Optional[str]:
        for prefix, policy in PREFIX_MAP:
            if path.startswith(prefix):
                return policy
        return None

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        policy_name = self._policy_for_path(request.url.path)
        if not policy_name:
            return await call_next(request)

        identity = client_identity(request)
        decision = self.limiter.hit(identity, policy_name)
        policy = self.limiter.policy(policy_name)

        if decision.allowed:
            response = await call_next(request)
            if policy.skip_successful and response.status_code < 400:
                self.limiter.refund(identity, policy_name)
            response.headers["RateLimit-Limit"] = str(decision.limit)
            response.headers["RateLimit-Remaining"] = str(decision.remaining)
            return response

        ratelimit_block_total.inc(labels={"scope": normalize_path(request.url.path)})
        if policy.alert:
            self.alert_fn(policy.name, identity, request.url.path)

        rid = getattr(request.state, "request_id", None) or get_request_id()
        response = await app_error_handler(
            request,
            RateLimitError("Too many requests, please try again later", retry_after=decision.retry_after, request_id=rid),
        )
        response.headers["RateLimit-Limit"] = str(decision.limit)
        response.headers["RateLimit-Remaining"] = "0"
        return response
