"""
loqui/features/integrations/base.py

ProviderAdapter base class.

Public operations check the declared capabilities first; an operation the
provider does not support returns Unsupported("manual") without touching the
network. Subclasses implement the _underscore hooks for what they support.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from loqui.core.errors import AppError
from loqui.core.metrics import integration_calls_total
from loqui.features.integrations.contracts import (
    AdapterContext,
    AdapterResult,
    DeliveryMode,
    IntegrationStatus,
    ProviderCapabilities,
    Supported,
    Unsupported,
    supported_response,
    unsupported_response,
)
from loqui.features.integrations.events import log_integration_event
from loqui.features.integrations.store import disconnect_account


logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 10.0


class ProviderError(AppError):
    code = "provider_error"
    status_code = 502


class ProviderAdapter:
    provider: str = ""
    display_name: str = ""
    capabilities: ProviderCapabilities = ProviderCapabilities()

    def __init__(self, *, http_client: Optional[httpx.Client] = None):
        self.http = http_client or httpx.Client(timeout=HTTP_TIMEOUT_SECONDS)

    # -- capability helpers -------------------------------------------------

    def delivery_mode(self) -> DeliveryMode:
        if self.capabilities.tag:
            return DeliveryMode.TAG_TRIGGER
        if self.capabilities.send_or_trigger:
            return DeliveryMode.SEND
        return DeliveryMode.MANUAL

    def is_configured(self) -> bool:
        return True

    def manual_message(self, operation: str) -> str:
        name = self.display_name or self.provider
        return f"{name} does not support {operation} through the API yet; complete this step in {name}."

    def _gate(self, capability: str, operation: str) -> Optional[Unsupported]:
        if not getattr(self.capabilities, capability):
            integration_calls_total.inc(labels={"provider": self.provider, "operation": operation, "supported": "false"})
            return unsupported_response(self.manual_message(operation), "manual")
        integration_calls_total.inc(labels={"provider": self.provider, "operation": operation, "supported": "true"})
        return None

    def _require_token(self, ctx: AdapterContext) -> Optional[str]:
        account = ctx.account or {}
        if account.get("status") == "disconnected":
            return None
        return account.get("access_token")

    def _not_connected(self) -> Unsupported:
        return unsupported_response(f"{self.display_name or self.provider} is not connected", "not_configured")

    def _check_response(self, response: httpx.Response, what: str) -> Dict[str, Any]:
        if response.is_error:
            raise ProviderError(f"{self.display_name} {what} failed: {response.status_code}")
        if not response.content:
            return {}
        return response.json()

    # -- operations ---------------------------------------------------------

    def get_auth_url(self, ctx: AdapterContext) -> AdapterResult[Dict[str, str]]:
        blocked = self._gate("auth", "connect")
        if blocked:
            return blocked
        if not self.is_configured():
            return unsupported_response(f"{self.display_name} credentials are not configured", "not_configured")
        log_integration_event(ctx.tenant_id, self.provider, "auth_start", "pending")
        return supported_response({"authUrl": self._auth_url(ctx)})

    def handle_callback(self, ctx: AdapterContext, params: Dict[str, str]) -> AdapterResult[Dict[str, bool]]:
        blocked = self._gate("auth", "connect")
        if blocked:
            return blocked
        if not self.is_configured():
            return unsupported_response(f"{self.display_name} credentials are not configured", "not_configured")
        try:
            self._handle_callback(ctx, params)
        except AppError as e:
            log_integration_event(ctx.tenant_id, self.provider, "auth_failure", "failure", error=e.message)
            raise
        log_integration_event(ctx.tenant_id, self.provider, "auth_success", "success")
        return supported_response({"connected": True})

    def get_status(self, ctx: AdapterContext) -> Supported[IntegrationStatus]:
        account = ctx.account
        if not account:
            return supported_response(IntegrationStatus(connected=False))

        now = ctx.now or datetime.now(timezone.utc)
        expires_at = account.get("expires_at")
        expired = bool(expires_at and expires_at < now)
        status = account.get("status") or "connected"
        profile = account.get("profile") or {}
        return supported_response(
            IntegrationStatus(
                connected=not expired and status != "disconnected",
                account_name=self._account_name(profile),
                account_id=account.get("provider_user_id"),
                scopes=account.get("scopes"),
                token_expired=expired,
                expires_at=expires_at,
                last_sync_at=account.get("last_sync_at"),
                status=status,
            )
        )

    def disconnect(self, ctx: AdapterContext) -> AdapterResult[Dict[str, bool]]:
        disconnected = disconnect_account(ctx.tenant_id, self.provider)
        log_integration_event(ctx.tenant_id, self.provider, "disconnect", "success")
        return supported_response({"disconnected": disconnected})

    def list_audiences(self, ctx: AdapterContext) -> AdapterResult[Dict[str, Any]]:
        blocked = self._gate("audiences", "audiences")
        if blocked:
            return blocked
        token = self._require_token(ctx)
        if not token:
            return self._not_connected()
        return supported_response({"audiences": self._list_audiences(ctx, token)})

    def upsert_contact(self, ctx: AdapterContext, email: str, fields: Optional[Dict[str, Any]] = None) -> AdapterResult[Dict[str, Any]]:
        blocked = self._gate("upsert_contact", "contact sync")
        if blocked:
            return blocked
        token = self._require_token(ctx)
        if not token:
            return self._not_connected()
        contact_id = self._upsert_contact(ctx, token, email, fields or {})
        log_integration_event(ctx.tenant_id, self.provider, "contact_upsert", "success")
        return supported_response({"contactId": contact_id})

    def subscribe(self, ctx: AdapterContext, audience_id: str, email: str) -> AdapterResult[Dict[str, bool]]:
        blocked = self._gate("subscribe", "subscribe")
        if blocked:
            return blocked
        token = self._require_token(ctx)
        if not token:
            return self._not_connected()
        self._subscribe(ctx, token, audience_id, email)
        log_integration_event(ctx.tenant_id, self.provider, "subscribe", "success", payload={"audience_id": audience_id})
        return supported_response({"subscribed": True})

    def tag(self, ctx: AdapterContext, email: str, tag: str) -> AdapterResult[Dict[str, bool]]:
        blocked = self._gate("tag", "tagging")
        if blocked:
            return blocked
        token = self._require_token(ctx)
        if not token:
            return self._not_connected()
        self._tag(ctx, token, email, tag)
        log_integration_event(ctx.tenant_id, self.provider, "tag", "success", payload={"tag": tag})
        return supported_response({"tagged": True})

    def send_or_trigger(self, ctx: AdapterContext, payload: Dict[str, Any]) -> AdapterResult[Dict[str, Any]]:
        blocked = self._gate("send_or_trigger", "sending")
        if blocked:
            return blocked
        token = self._require_token(ctx)
        if not token:
            return self._not_connected()
        try:
            send_id = self._send_or_trigger(ctx, token, payload)
        except ProviderError as e:
            log_integration_event(ctx.tenant_id, self.provider, "send_failure", "failure", error=e.message)
            raise
        log_integration_event(ctx.tenant_id, self.provider, "send", "success", payload={"id": send_id})
        return supported_response({"id": send_id})

    # -- hooks --------------------------------------------------------------

    def _account_name(self, profile: Dict[str, Any]) -> Optional[str]:
        account = profile.get("account") or {}
        return account.get("name") or profile.get("name")

    def _auth_url(self, ctx: AdapterContext) -> str:
        raise NotImplementedError

    def _handle_callback(self, ctx: AdapterContext, params: Dict[str, str]) -> None:
        raise NotImplementedError

    def _list_audiences(self, ctx: AdapterContext, token: str):
        raise NotImplementedError

    def _upsert_contact(self, ctx: AdapterContext, token: str, email: str, fields: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def _subscribe(self, ctx: AdapterContext, token: str, audience_id: str, email: str) -> None:
        raise NotImplementedError

    def _tag(self, ctx: AdapterContext, token: str, email: str, tag: str) -> None:
        raise NotImplementedError

    def _send_or_trigger(self, ctx: AdapterContext, token: str, payload: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError
