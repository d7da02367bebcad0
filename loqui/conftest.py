# loqui/conftest.py
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from loqui.core import database
from loqui.core.config import Settings
from loqui.core.metrics import METRICS


class FakeClock:
    """Wall clock for cycle and scheduling tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTime:
    """Monotonic clock for rate limiter windows."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it served."""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []

        def _handle(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if handler is None:
                return httpx.Response(500, json={"error": "unexpected call"})
            return handler(request)

        super().__init__(_handle)


@pytest.fixture(autouse=True)
def sqlite_db(tmp_path):
    """Fresh file-backed SQLite database per test."""
    database.init_engine(f"sqlite:///{tmp_path / 'loqui-test.db'}")
    database.reset_database()
    yield database.get_engine()
    database.get_engine().dispose()


@pytest.fixture(autouse=True)
def reset_metrics():
    METRICS.reset()
    yield


@pytest.fixture
def test_settings():
    return Settings(
        ENV="test",
        DATABASE_URL="sqlite://",
        OAUTH_STATE_SECRET="test-state-secret",
        KIT_CLIENT_ID="kit-client",
        KIT_CLIENT_SECRET="kit-secret",
        KIT_REDIRECT_URI="http://testserver/api/integrations/kit/callback",
        MAILCHIMP_CLIENT_ID="mc-client",
        MAILCHIMP_CLIENT_SECRET="mc-secret",
        MAILCHIMP_REDIRECT_URI="http://testserver/api/integrations/mailchimp/callback",
        FRONTEND_PUBLIC_URL="http://frontend.test",
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def registry(test_settings, transport):
    from loqui.features.integrations.registry import build_default_registry

    return build_default_registry(test_settings, transport=transport)


@pytest.fixture
def make_tenant():
    from loqui.features.plans.service import create_tenant

    def _make(tenant_id: str = "tenant-1", plan: str = "free", **kwargs):
        return create_tenant(tenant_id, plan, **kwargs)

    return _make


@pytest.fixture
def make_client(test_settings, registry, clock):
    from loqui.main import create_app

    def _make(settings_obj: Optional[Settings] = None, **overrides) -> TestClient:
        kwargs = {"registry": registry, "clock": clock, **overrides}
        app = create_app(settings_obj or test_settings, **kwargs)
        return TestClient(app, raise_server_exceptions=False)

    return _make
