"""SendGrid. Connected with an API key; emails go out as scheduled Single Sends."""

from typing import Any, Dict, List, Optional

from loqui.core.errors import ValidationError
from loqui.features.integrations.base import ProviderAdapter, ProviderError
from loqui.features.integrations.contracts import AdapterContext, AdapterResult, ProviderCapabilities, unsupported_response
from loqui.features.integrations.store import upsert_connected_account


SG_BASE = "https://api.sendgrid.com/v3"


def looks_like_sendgrid_key(api_key: str) -> bool:
    return isinstance(api_key, str) and api_key.strip().startswith("SG.")


class SendGridAdapter(ProviderAdapter):
    provider = "sendgrid"
    display_name = "SendGrid"
    capabilities = ProviderCapabilities(
        auth=True,
        audiences=True,
        upsert_contact=True,
        subscribe=True,
        tag=False,
        send_or_trigger=True,
    )

    def __init__(self, *, default_api_key: Optional[str] = None, http_client=None):
        super().__init__(http_client=http_client)
        self.default_api_key = default_api_key

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def _require_token(self, ctx: AdapterContext) -> Optional[str]:
        return super()._require_token(ctx) or self.default_api_key

    def get_auth_url(self, ctx: AdapterContext) -> AdapterResult[Dict[str, str]]:
        return unsupported_response("SendGrid connects with an API key; no redirect is needed.", "manual")

    def _handle_callback(self, ctx: AdapterContext, params: Dict[str, str]) -> None:
        api_key = (params.get("api_key") or "").strip()
        if not looks_like_sendgrid_key(api_key):
            raise ValidationError("A SendGrid API key starting with 'SG.' is required")

        resp = self.http.get(f"{SG_BASE}/user/account", headers=self._headers(api_key))
        account = self._check_response(resp, "key validation")

        email = None
        email_resp = self.http.get(f"{SG_BASE}/user/email", headers=self._headers(api_key))
        if email_resp.is_success and email_resp.content:
            email = email_resp.json().get("email")

        upsert_connected_account(
            ctx.tenant_id,
            self.provider,
            access_token=api_key,
            profile={"name": email or account.get("username") or "SendGrid", "email": email, "username": account.get("username")},
            metadata={"auth": "api_key"},
        )

    def _list_audiences(self, ctx: AdapterContext, token: str) -> List[Dict[str, Any]]:
        resp = self.http.get(f"{SG_BASE}/marketing/lists", params={"page_size": 100}, headers=self._headers(token))
        # Marketing Campaigns not enabled on the account
        if resp.status_code in (403, 404):
            return []
        lists = self._check_response(resp, "list lookup").get("result", [])
        return [{"id": str(item.get("id")), "name": item.get("name") or "Untitled list", "type": "list"} for item in lists]

    def _put_contacts(self, token: str, contact: Dict[str, Any], list_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"contacts": [contact]}
        if list_ids:
            body["list_ids"] = list_ids
        resp = self.http.put(f"{SG_BASE}/marketing/contacts", json=body, headers=self._headers(token))
        return self._check_response(resp, "contact upsert")

    def _upsert_contact(self, ctx: AdapterContext, token: str, email: str, fields: Dict[str, Any]) -> Optional[str]:
        contact = {"email": email}
        contact.update({k: v for k, v in fields.items() if k in ("first_name", "last_name")})
        # Upserts are processed asynchronously; SendGrid returns a job id
        return self._put_contacts(token, contact).get("job_id")

    def _subscribe(self, ctx: AdapterContext, token: str, audience_id: str, email: str) -> None:
        self._put_contacts(token, {"email": email}, [audience_id])

    def _send_or_trigger(self, ctx: AdapterContext, token: str, payload: Dict[str, Any]) -> Optional[str]:
        list_ids = payload.get("list_ids") or []
        if not list_ids:
            raise ValidationError("SendGrid sends require at least one list id")

        email_config: Dict[str, Any] = {"subject": payload.get("subject") or "", "suppression_group_id": None}
        if payload.get("template_id"):
            email_config["design_id"] = payload["template_id"]
        else:
            email_config["html_content"] = payload.get("html_content") or ""
            email_config["plain_content"] = payload.get("plain_content") or ""

        create_resp = self.http.post(
            f"{SG_BASE}/marketing/singlesends",
            json={"name": payload.get("name") or payload.get("subject") or "Scheduled email", "send_to": {"list_ids": list_ids}, "email_config": email_config},
            headers=self._headers(token),
        )
        single_send_id = self._check_response(create_resp, "Single Send creation").get("id")
        if not single_send_id:
            raise ProviderError("SendGrid did not return a Single Send id")

        schedule_resp = self.http.put(
            f"{SG_BASE}/marketing/singlesends/{single_send_id}/schedule",
            json={"send_at": payload.get("send_at") or "now"},
            headers=self._headers(token),
        )
        self._check_response(schedule_resp, "Single Send scheduling")
        return str(single_send_id)
