"""
End-to-end API tests through the FastAPI app.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest

from loqui.conftest import RecordingTransport
from loqui.features.integrations.registry import build_default_registry
from loqui.features.usage.service import UsageAggregator


UTC = timezone.utc
ANCHOR = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
TENANT = {"X-User-Id": "tenant-1"}


def _post(content="New episode is live", **extra):
    return {"channel": "twitter", "content": content, "scheduled_at": "2026-03-01T09:00:00Z", **extra}


@pytest.fixture
def client(make_client):
    return make_client()


def test_healthz_and_request_id(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["x-request-id"]

    echoed = client.get("/healthz", headers={"x-request-id": "abc-123"})
    assert echoed.headers["x-request-id"] == "abc-123"


def test_readyz(client):
    assert client.get("/readyz").json()["db"] == "connected"


def test_metrics_exposes_request_counter(client):
    client.get("/healthz")
    body = client.get("/metrics").text
    assert "# TYPE http_requests_total counter" in body
    assert 'path="/healthz"' in body


def test_identity_required(client):
    response = client.get("/api/usage")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


def test_bearer_token_identifies_tenant(make_client, test_settings):
    secret = "jwt-secret"
    client = make_client(test_settings.model_copy(update={"AUTH_JWT_SECRET": secret}))
    token = jwt.encode({"sub": "tenant-jwt"}, secret, algorithm="HS256")

    assert client.get("/api/schedule", headers={"Authorization": f"Bearer {token}"}).status_code == 200
    assert client.get("/api/schedule", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_free_plan_schedule_cap_end_to_end(make_client, make_tenant, clock):
    make_tenant("tenant-1", "free", cycle_anchor_at=ANCHOR, created_at=ANCHOR)
    client = make_client()

    for i in range(5):
        response = client.post("/api/schedule", json=_post(f"post {i}"), headers=TENANT)
        assert response.status_code == 201
        assert response.json()["count"] == 1

    blocked = client.post("/api/schedule", json=_post("one too many"), headers=TENANT)

    assert blocked.status_code == 403
    body = blocked.json()
    assert body["code"] == "plan_limit_reached"
    assert body["plan"] == "free"
    assert body["resource"] == "scheduled_posts"
    assert (body["limit"], body["used"]) == (5, 5)
    assert body["upgradeRequired"] is True
    assert body["cycleEnd"] == "2026-02-15T12:00:00Z"
    assert body["request_id"] == blocked.headers["x-request-id"]

    # The next cycle starts with a clean count
    clock.now = datetime(2026, 2, 15, 12, 0, tzinfo=UTC)
    assert client.post("/api/schedule", json=_post("next cycle"), headers=TENANT).status_code == 201


def test_schedule_thread_returns_ids(client):
    body = {"kind": "thread", "channel": "twitter", "scheduled_at": "2026-03-01T09:00:00Z", "parts": ["a", "b", "c"]}
    response = client.post("/api/schedule", json=body, headers=TENANT)

    assert response.status_code == 201
    assert response.json()["count"] == 3

    listed = client.get("/api/schedule", headers=TENANT).json()
    assert listed["count"] == 3
    assert [d["meta"]["thread_index"] for d in listed["deliveries"]] == [1, 2, 3]
    assert listed["deliveries"][0]["status"] == "Scheduled"


def test_schedule_without_kind_is_single_post(client):
    body = {"channel": "twitter", "content": "No kind given", "scheduled_at": "2026-03-01T09:00:00Z"}
    response = client.post("/api/schedule", json=body, headers=TENANT)

    assert response.status_code == 201
    assert response.json()["count"] == 1


def test_thread_counts_every_part_against_cap(make_client, make_tenant):
    make_tenant("tenant-1", "free", cycle_anchor_at=ANCHOR, created_at=ANCHOR)
    client = make_client()
    for i in range(4):
        assert client.post("/api/schedule", json=_post(f"post {i}"), headers=TENANT).status_code == 201

    def thread(n):
        return {"kind": "thread", "channel": "twitter", "scheduled_at": "2026-03-01T09:00:00Z", "parts": [f"part {i}" for i in range(n)]}

    blocked = client.post("/api/schedule", json=thread(40), headers=TENANT)
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "plan_limit_reached"
    assert (blocked.json()["limit"], blocked.json()["used"]) == (5, 4)
    assert client.get("/api/schedule", headers=TENANT).json()["count"] == 4

    assert client.post("/api/schedule", json=thread(2), headers=TENANT).status_code == 403
    assert client.post("/api/schedule", json=thread(1), headers=TENANT).status_code == 201
    assert client.get("/api/schedule", headers=TENANT).json()["count"] == 5


def test_schedule_validation_envelope(client):
    body = {"kind": "thread", "channel": "twitter", "scheduled_at": "2026-03-01T09:00:00Z", "parts": []}
    response = client.post("/api/schedule", json=body, headers=TENANT)

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "validation_error"
    assert error["request_id"] == response.headers["x-request-id"]


def test_schedule_expansion_failure(client):
    response = client.post("/api/schedule", json=_post(channel="email", provider="kit"), headers=TENANT)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "expansion_failed"
    assert client.get("/api/schedule", headers=TENANT).json()["count"] == 0


def test_edit_and_cancel_delivery(client):
    [delivery_id] = client.post("/api/schedule", json=_post(), headers=TENANT).json()["ids"]

    patched = client.patch(f"/api/schedule/{delivery_id}", json={"content": "edited"}, headers=TENANT)
    assert patched.status_code == 200
    assert patched.json()["content"] == "edited"

    assert client.get(f"/api/schedule/{delivery_id}", headers={"X-User-Id": "tenant-2"}).status_code == 404

    assert client.delete(f"/api/schedule/{delivery_id}", headers=TENANT).status_code == 204
    assert client.get(f"/api/schedule/{delivery_id}", headers=TENANT).status_code == 404


def test_usage_summary(make_client, make_tenant):
    make_tenant("tenant-1", "starter", cycle_anchor_at=ANCHOR, created_at=ANCHOR)
    client = make_client()
    client.post("/api/schedule", json=_post(), headers=TENANT)

    body = client.get("/api/usage", headers=TENANT).json()

    assert body["plan"] == "starter"
    assert body["usage"]["scheduled_posts"]["used"] == 1
    assert body["usage"]["scheduled_posts"]["limit"] == 20
    assert body["cycleStart"] == "2026-01-15T12:00:00Z"
    assert body["cycleEnd"] == "2026-02-15T12:00:00Z"


def test_analyses_capped_at_three_on_free(client):
    for _ in range(3):
        assert client.post("/api/analyses", json={"title": "Episode"}, headers=TENANT).status_code == 201

    blocked = client.post("/api/analyses", json={"title": "Episode"}, headers=TENANT)
    assert blocked.status_code == 403
    assert blocked.json()["resource"] == "analyses"
    assert blocked.json()["limit"] == 3


def test_repurpose_resolves_transcript(client):
    transcript = client.post("/api/analyses", json={"title": "Episode 7"}, headers=TENANT).json()

    response = client.post("/api/repurpose", json={"transcript_id": transcript["id"], "channel": "linkedin"}, headers=TENANT)
    assert response.status_code == 200
    assert response.json()["title"] == "Episode 7"

    missing = client.post("/api/repurpose", json={"transcript_id": "nope"}, headers=TENANT)
    assert missing.status_code == 404


def test_automations_count_against_plan(client):
    first = client.post("/api/automations", json={"provider": "kit", "name": "Welcome", "trigger_tag": "welcome"}, headers=TENANT)
    assert first.status_code == 201
    assert first.json()["triggerTag"] == "welcome"

    second = client.post("/api/automations", json={"provider": "kit", "name": "Launch", "trigger_tag": "launch"}, headers=TENANT)
    assert second.status_code == 403
    assert "cycleEnd" not in second.json()

    assert client.delete(f"/api/automations/{first.json()['id']}", headers=TENANT).status_code == 204
    assert client.get("/api/automations", headers=TENANT).json()["count"] == 0


def test_automation_requires_tag_capable_provider(client):
    response = client.post("/api/automations", json={"provider": "sendgrid", "name": "x", "trigger_tag": "t"}, headers=TENANT)
    assert response.status_code == 400


def test_unexpected_errors_use_envelope(make_client):
    aggregator = MagicMock(spec=UsageAggregator)
    aggregator.usage.side_effect = RuntimeError("boom")
    client = make_client(aggregator=aggregator)

    response = client.get("/api/usage", headers=TENANT)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "internal_error"
    assert "boom" not in response.text


def test_unknown_provider_is_404(client):
    response = client.get("/api/integrations/aweber/status", headers=TENANT)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "not_found"


def test_unsupported_operation_is_200(client):
    response = client.get("/api/integrations/sendgrid/auth-url", headers=TENANT)
    assert response.status_code == 200
    body = response.json()
    assert body["supported"] is False
    assert body["fallback"] == "manual"


def test_status_reports_delivery_mode(client):
    body = client.get("/api/integrations/beehiiv/status", headers=TENANT).json()
    assert body == {"connected": False, "tokenExpired": False, "deliveryMode": "manual"}


def test_kit_oauth_flow(make_client, test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v4/oauth/token":
            return httpx.Response(200, json={"access_token": "kit-tok", "expires_in": 3600})
        if request.url.path == "/v4/account":
            return httpx.Response(200, json={"account": {"id": 1, "name": "Pod Co"}})
        if request.url.path == "/v4/forms":
            return httpx.Response(200, json={"forms": [{"id": 5, "name": "Newsletter"}]})
        return httpx.Response(404)

    client = make_client(registry=build_default_registry(test_settings, transport=RecordingTransport(handler)))

    auth = client.get("/api/integrations/kit/auth-url", headers=TENANT).json()
    assert auth["supported"] is True
    state = parse_qs(urlparse(auth["data"]["authUrl"]).query)["state"][0]

    callback = client.get("/api/integrations/kit/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert callback.status_code == 302
    assert callback.headers["location"] == "http://frontend.test/?oauth=kit"

    status = client.get("/api/integrations/kit/status", headers=TENANT).json()
    assert status["connected"] is True
    assert status["accountName"] == "Pod Co"
    assert status["deliveryMode"] == "tag_trigger"

    audiences = client.get("/api/integrations/kit/audiences", headers=TENANT).json()
    assert audiences["data"]["audiences"] == [{"id": "5", "name": "Newsletter", "type": "form"}]

    assert client.post("/api/integrations/kit/disconnect", headers=TENANT).json()["data"] == {"disconnected": True}
    assert client.get("/api/integrations/kit/status", headers=TENANT).json()["connected"] is False


def test_callback_with_bad_state(client):
    response = client.get("/api/integrations/kit/callback", params={"code": "abc", "state": "forged"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_sendgrid_connect_with_api_key(make_client, test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v3/user/account":
            return httpx.Response(200, json={"type": "free", "username": "podco"})
        if request.url.path == "/v3/user/email":
            return httpx.Response(200, json={"email": "hello@pod.co"})
        return httpx.Response(404)

    client = make_client(registry=build_default_registry(test_settings, transport=RecordingTransport(handler)))

    response = client.post("/api/integrations/sendgrid/connect", json={"api_key": "SG.abc"}, headers=TENANT)
    assert response.json() == {"supported": True, "data": {"connected": True}}

    status = client.get("/api/integrations/sendgrid/status", headers=TENANT).json()
    assert status["accountName"] == "hello@pod.co"
    assert status["deliveryMode"] == "send"
