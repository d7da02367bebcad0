"""
Auth seam.

The identity provider is external; this service only needs the tenant id.
Bearer JWTs are verified (HS256) when AUTH_JWT_SECRET is configured.
Falls back to the X-User-Id header for internal callers and tests.
"""
import logging
from typing import Optional

import jwt
from fastapi import Header, HTTPException, Request

from loqui.core.config import settings


logger = logging.getLogger(__name__)


def decode_tenant_from_jwt(token: str, secret: str) -> str:
    """
    Verify a JWT and return its 'sub' claim.

    Raises:
        HTTPException 401: Invalid, expired or subject-less token
    """
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    tenant_id = payload.get("sub")
    if not tenant_id:
        raise HTTPException(status_code=401, detail="Token missing subject")
    return str(tenant_id)


def get_current_tenant_id(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_user_id: Optional[str] = Header(None),
) -> str:
    """FastAPI dependency resolving the calling tenant."""
    cfg = getattr(request.app.state, "settings", None) or settings

    if authorization and authorization.lower().startswith("bearer ") and cfg.AUTH_JWT_SECRET:
        return decode_tenant_from_jwt(authorization[7:].strip(), cfg.AUTH_JWT_SECRET)

    if x_user_id:
        return x_user_id

    raise HTTPException(status_code=401, detail="Authentication required")
