"""Mailchimp. Automations (customer journeys) start when a member is tagged."""

import hashlib
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from loqui.core.errors import PermissionError, ValidationError
from loqui.features.integrations.base import ProviderAdapter, ProviderError
from loqui.features.integrations.contracts import AdapterContext, ProviderCapabilities
from loqui.features.integrations.state import sign_state, verify_state
from loqui.features.integrations.store import upsert_connected_account


MAILCHIMP_AUTH_URL = "https://login.mailchimp.com/oauth2/authorize"
MAILCHIMP_TOKEN_URL = "https://login.mailchimp.com/oauth2/token"
MAILCHIMP_METADATA_URL = "https://login.mailchimp.com/oauth2/metadata"


def subscriber_hash(email: str) -> str:
    return hashlib.md5(email.strip().lower().encode("utf-8")).hexdigest()


class MailchimpAdapter(ProviderAdapter):
    provider = "mailchimp"
    display_name = "Mailchimp"
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
        return {"Accept": "application/json", "Authorization": f"OAuth {token}"}

    def _api_base(self, ctx: AdapterContext) -> str:
        metadata = (ctx.account or {}).get("metadata") or {}
        endpoint = metadata.get("api_endpoint")
        if not endpoint:
            raise ProviderError("Mailchimp account is missing its API endpoint; reconnect Mailchimp")
        return f"{endpoint.rstrip('/')}/3.0"

    def _default_audience(self, ctx: AdapterContext, fields: Optional[Dict[str, Any]] = None) -> str:
        audience_id = (fields or {}).get("audience_id") or ((ctx.account or {}).get("metadata") or {}).get("audience_id")
        if not audience_id:
            raise ValidationError("Mailchimp audience_id is required")
        return audience_id

    def _auth_url(self, ctx: AdapterContext) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": sign_state(ctx.tenant_id, self.provider, self.state_secret),
        })
        return f"{MAILCHIMP_AUTH_URL}?{query}"

    def _handle_callback(self, ctx: AdapterContext, params: Dict[str, str]) -> None:
        code = params.get("code")
        if not code:
            raise ValidationError("Missing code")
        tenant_id = verify_state(params.get("state", ""), self.provider, self.state_secret)
        if tenant_id != ctx.tenant_id:
            raise PermissionError("OAuth state was issued to another tenant")

        token_resp = self.http.post(
            MAILCHIMP_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )
        token_json = self._check_response(token_resp, "token exchange")
        access_token = token_json.get("access_token")
        if not access_token:
            raise ProviderError("Mailchimp token exchange returned no access token")

        meta_resp = self.http.get(MAILCHIMP_METADATA_URL, headers=self._headers(access_token))
        meta = self._check_response(meta_resp, "metadata")

        # Mailchimp tokens do not expire
        upsert_connected_account(
            tenant_id,
            self.provider,
            access_token=access_token,
            expires_at=None,
            scopes=str(token_json.get("scope") or "").split(),
            provider_user_id=str(meta.get("user_id")) if meta.get("user_id") is not None else None,
            profile={"name": meta.get("accountname"), "login": meta.get("login"), "dc": meta.get("dc")},
            metadata={"dc": meta.get("dc"), "api_endpoint": meta.get("api_endpoint")},
        )

    def _list_audiences(self, ctx: AdapterContext, token: str) -> List[Dict[str, Any]]:
        resp = self.http.get(f"{self._api_base(ctx)}/lists", params={"count": 100}, headers=self._headers(token))
        lists = self._check_response(resp, "audience lookup").get("lists", [])
        return [{"id": str(a.get("id")), "name": a.get("name") or "Untitled audience", "type": "list"} for a in lists]

    def _put_member(self, ctx: AdapterContext, token: str, audience_id: str, email: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.http.put(
            f"{self._api_base(ctx)}/lists/{audience_id}/members/{subscriber_hash(email)}",
            json={"email_address": email, **body},
            headers=self._headers(token),
        )
        return self._check_response(resp, "member upsert")

    def _upsert_contact(self, ctx: AdapterContext, token: str, email: str, fields: Dict[str, Any]) -> Optional[str]:
        audience_id = self._default_audience(ctx, fields)
        merge_fields = {k.upper(): v for k, v in fields.items() if k != "audience_id"}
        member = self._put_member(ctx, token, audience_id, email, {"status_if_new": "subscribed", "merge_fields": merge_fields})
        return member.get("id")

    def _subscribe(self, ctx: AdapterContext, token: str, audience_id: str, email: str) -> None:
        self._put_member(ctx, token, audience_id, email, {"status_if_new": "subscribed", "status": "subscribed"})

    def _tag(self, ctx: AdapterContext, token: str, email: str, tag: str) -> None:
        audience_id = self._default_audience(ctx)
        resp = self.http.post(
            f"{self._api_base(ctx)}/lists/{audience_id}/members/{subscriber_hash(email)}/tags",
            json={"tags": [{"name": tag, "status": "active"}]},
            headers=self._headers(token),
        )
        self._check_response(resp, "tag")
