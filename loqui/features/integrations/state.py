"""OAuth state tokens: signed {tenant, ts} that expire after ten minutes."""

import time
from typing import Callable

import jwt

from loqui.core.errors import ValidationError


STATE_TTL_SECONDS = 10 * 60


def sign_state(tenant_id: str, provider: str, secret: str, *, time_fn: Callable[[], float] = time.time) -> str:
    now = int(time_fn())
    return jwt.encode(
        {"tenant": tenant_id, "provider": provider, "ts": now, "exp": now + STATE_TTL_SECONDS},
        secret,
        algorithm="HS256",
    )


def verify_state(state: str, provider: str, secret: str, *, time_fn: Callable[[], float] = time.time) -> str:
    """Return the tenant id the state was issued to. Raises ValidationError otherwise."""
    if not state:
        raise ValidationError("Missing state")
    try:
        # Expiry is checked against time_fn below so tests can move the clock
        claims = jwt.decode(state, secret, algorithms=["HS256"], options={"verify_exp": False})
    except jwt.InvalidTokenError:
        raise ValidationError("Invalid state")

    if claims.get("provider") != provider or not claims.get("tenant"):
        raise ValidationError("Invalid state")
    if int(time_fn()) - int(claims.get("ts", 0)) > STATE_TTL_SECONDS:
        raise ValidationError("State expired")
    return str(claims["tenant"])
