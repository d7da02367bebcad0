"""Kit (formerly ConvertKit). Email automations are started by applying a tag."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from loqui.core.errors import PermissionError, ValidationError
from loqui.features.integrations.base import ProviderAdapter, ProviderError
from loqui.features.integrations.contracts import AdapterContext, ProviderCapabilities
from loqui.features.integrations.state import sign_state, verify_state
from loqui.features.integrations.store import upsert_connected_account


KIT_AUTH_URL = "https://api.kit.com/v4/oauth/authorize"
KIT_TOKEN_URL = "https://api.kit.com/v4/oauth/token"
KIT_API_BASE = "https://api.kit.com/v4"


class KitAdapter(ProviderAdapter):
    provider = "kit"
    display_name = "Kit"
    capabilities = ProviderCapabilities(
        auth=True,
        audiences=True,
        upsert_contact=True,
        subscribe=True,
        tag=True,
        send_or_trigger=False,
    )

    def __init__(
        self,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: Optional[str],
        state_secret: str,
        http_client=None,
    ):
        super().__init__(http_client=http_client)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.state_secret = state_secret

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def _headers(self, token: str) -> Dict[str, str]:
        return {"Accept": "application/json", "Authorization": f"Bearer {token}"}

    def _auth_url(self, ctx: AdapterContext) -> str:
        # scope omitted -> Kit grants "public"
        query = urlencode({
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": sign_state(ctx.tenant_id, self.provider, self.state_secret),
        })
        return f"{KIT_AUTH_URL}?{query}"

    def _handle_callback(self, ctx: AdapterContext, params: Dict[str, str]) -> None:
        code = params.get("code")
        if not code:
            raise ValidationError("Missing code")
        tenant_id = verify_state(params.get("state", ""), self.provider, self.state_secret)
        if tenant_id != ctx.tenant_id:
            raise PermissionError("OAuth state was issued to another tenant")

        token_resp = self.http.post(
            KIT_TOKEN_URL,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            },
            headers={"Accept": "application/json"},
        )
        token_json = self._check_response(token_resp, "token exchange")
        access_token = token_json.get("access_token")
        if not access_token:
            raise ProviderError("Kit token exchange returned no access token")

        scope = str(token_json.get("scope") or "public")
        expires_in = int(token_json.get("expires_in") or 0)
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in) if expires_in else None

        account_resp = self.http.get(f"{KIT_API_BASE}/account", headers=self._headers(access_token))
        profile = account_resp.json() if account_resp.is_success and account_resp.content else {}
        account_id = (profile.get("account") or {}).get("id")

        upsert_connected_account(
            tenant_id,
            self.provider,
            access_token=access_token,
            refresh_token=token_json.get("refresh_token"),
            expires_at=expires_at,
            scopes=scope.split(),
            provider_user_id=str(account_id) if account_id is not None else None,
            profile=profile,
            metadata={"scope": scope},
        )

    def _list_audiences(self, ctx: AdapterContext, token: str) -> List[Dict[str, Any]]:
        resp = self.http.get(f"{KIT_API_BASE}/forms", headers=self._headers(token))
        forms = self._check_response(resp, "forms lookup").get("forms", [])
        return [{"id": str(f.get("id")), "name": f.get("name") or "Untitled form", "type": "form"} for f in forms]

    def _upsert_contact(self, ctx: AdapterContext, token: str, email: str, fields: Dict[str, Any]) -> Optional[str]:
        body: Dict[str, Any] = {"email_address": email}
        if fields.get("first_name"):
            body["first_name"] = fields["first_name"]
        extra = {k: v for k, v in fields.items() if k != "first_name"}
        if extra:
            body["fields"] = extra
        resp = self.http.post(f"{KIT_API_BASE}/subscribers", json=body, headers=self._headers(token))
        subscriber = self._check_response(resp, "subscriber upsert").get("subscriber") or {}
        return str(subscriber["id"]) if subscriber.get("id") is not None else None

    def _subscribe(self, ctx: AdapterContext, token: str, audience_id: str, email: str) -> None:
        resp = self.http.post(
            f"{KIT_API_BASE}/forms/{audience_id}/subscribers",
            json={"email_address": email},
            headers=self._headers(token),
        )
        self._check_response(resp, "form subscribe")

    def _tag(self, ctx: AdapterContext, token: str, email: str, tag: str) -> None:
        resp = self.http.post(
            f"{KIT_API_BASE}/tags/{tag}/subscribers",
            json={"email_address": email},
            headers=self._headers(token),
        )
        self._check_response(resp, "tag")
