"""
Email marketing provider integrations.

Unsupported operations are not errors: they return 200 with
{supported: false, fallback, message} so the UI can offer the manual path.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from loqui.api.deps import get_now, get_registry
from loqui.core.auth import get_current_tenant_id
from loqui.core.config import settings
from loqui.core.errors import NotFoundError
from loqui.core.logging import get_request_id
from loqui.features.integrations.base import ProviderAdapter
from loqui.features.integrations.contracts import AdapterContext, result_to_dict
from loqui.features.integrations.registry import ProviderRegistry
from loqui.features.integrations.state import verify_state
from loqui.features.integrations.store import get_connected_account


logger = logging.getLogger("loqui")

router = APIRouter(prefix="/api/integrations", tags=["integrations"])


class ConnectRequest(BaseModel):
    api_key: str


def _adapter(provider: str, registry: ProviderRegistry) -> ProviderAdapter:
    adapter = registry.get(provider)
    if adapter is None:
        raise NotFoundError(f"Unknown provider: {provider}")
    return adapter


def _context(tenant_id: str, adapter: ProviderAdapter, now: Optional[datetime] = None) -> AdapterContext:
    return AdapterContext(
        tenant_id=tenant_id,
        provider=adapter.provider,
        request_id=get_request_id(),
        account=get_connected_account(tenant_id, adapter.provider),
        now=now,
    )


def _settings(request: Request):
    return getattr(request.app.state, "settings", None) or settings


@router.get("/{provider}/status")
def status(
    provider: str,
    tenant_id: str = Depends(get_current_tenant_id),
    registry: ProviderRegistry = Depends(get_registry),
    now: datetime = Depends(get_now),
):
    adapter = _adapter(provider, registry)
    payload = adapter.get_status(_context(tenant_id, adapter, now)).data.to_dict()
    payload["deliveryMode"] = adapter.delivery_mode().value
    return payload


@router.get("/{provider}/auth-url")
def auth_url(
    provider: str,
    tenant_id: str = Depends(get_current_tenant_id),
    registry: ProviderRegistry = Depends(get_registry),
):
    adapter = _adapter(provider, registry)
    return result_to_dict(adapter.get_auth_url(_context(tenant_id, adapter)))


@router.get("/{provider}/callback")
def oauth_callback(
    provider: str,
    request: Request,
    registry: ProviderRegistry = Depends(get_registry),
):
    """OAuth redirect target. The tenant comes from the signed state, not a session."""
    adapter = _adapter(provider, registry)
    params: Dict[str, str] = dict(request.query_params)
    tenant_id = verify_state(params.get("state", ""), adapter.provider, _settings(request).OAUTH_STATE_SECRET)

    result = adapter.handle_callback(_context(tenant_id, adapter), params)
    if not result.supported:
        return result_to_dict(result)
    return RedirectResponse(f"{_settings(request).FRONTEND_PUBLIC_URL}/?oauth={adapter.provider}", status_code=302)


@router.post("/{provider}/connect")
def connect_with_key(
    provider: str,
    body: ConnectRequest,
    tenant_id: str = Depends(get_current_tenant_id),
    registry: ProviderRegistry = Depends(get_registry),
):
    """API-key providers connect directly instead of through a redirect."""
    adapter = _adapter(provider, registry)
    return result_to_dict(adapter.handle_callback(_context(tenant_id, adapter), {"api_key": body.api_key}))


@router.post("/{provider}/disconnect")
def disconnect(
    provider: str,
    tenant_id: str = Depends(get_current_tenant_id),
    registry: ProviderRegistry = Depends(get_registry),
):
    adapter = _adapter(provider, registry)
    return result_to_dict(adapter.disconnect(_context(tenant_id, adapter)))


@router.get("/{provider}/audiences")
def audiences(
    provider: str,
    tenant_id: str = Depends(get_current_tenant_id),
    registry: ProviderRegistry = Depends(get_registry),
):
    adapter = _adapter(provider, registry)
    return result_to_dict(adapter.list_audiences(_context(tenant_id, adapter)))
