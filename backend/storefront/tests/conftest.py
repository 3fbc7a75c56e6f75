"""Pytest configuration for storefront tests

WHAT: Provides shared fixtures for engine unit tests and HTTP endpoint tests
WHY: Every network effect goes through one httpx client, so a single
     MockTransport-backed fake answers for both the hosted backend and the
     geo API and records what the engine sent
REFERENCES:
    - storefront/main.py: FastAPI application
    - storefront/deps.py: Settings
    - storefront/state.py: Runtime wiring
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
import pytest
from fastapi.testclient import TestClient

# Ensure backend is in path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from storefront.deps import Settings  # noqa: E402
from storefront.visitor.models import VisitorIdentity  # noqa: E402

BACKEND_URL = "https://backend.test"
GEO_API_URL = "https://geo.test"
PUBLIC_IP = "81.2.69.142"

GEO_PAYLOAD = {
    "ip": PUBLIC_IP,
    "city": "Lahore",
    "country_name": "Pakistan",
    "country_code": "PK",
    "region": "Punjab",
}


# ============================================================================
# Fake backend
# ============================================================================

class FakeBackend:
    """In-process stand-in for the hosted backend and the geo API.

    Records every request. Failures are switched on per concern:
    - fail_tables: tables whose writes answer 503
    - fail_rpc: record_marketing_lead answers 500
    - geo_error / geo_status: geo lookup raises / answers with this status
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.profiles: Dict[str, Dict[str, Any]] = {"ref42": {"name": "Zara"}}
        self.rpc_result: Any = {"status": "new", "created_at": "2026-03-01T10:00:00+00:00"}
        self.fail_tables: set = set()
        self.fail_rpc = False
        self.geo_payload: Any = dict(GEO_PAYLOAD)
        self.geo_status = 200
        self.geo_error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == httpx.URL(GEO_API_URL).host:
            if self.geo_error is not None:
                raise self.geo_error
            return httpx.Response(self.geo_status, json=self.geo_payload)

        path = request.url.path
        if path.startswith("/rest/v1/rpc/"):
            if self.fail_rpc:
                return httpx.Response(500, json={"message": "function failed"})
            return httpx.Response(200, json=self.rpc_result)

        table = path.rsplit("/", 1)[-1]
        if request.method == "GET":
            profile_id = request.url.params.get("id", "").removeprefix("eq.")
            profile = self.profiles.get(profile_id)
            return httpx.Response(200, json=[profile] if profile else [])

        if table in self.fail_tables:
            return httpx.Response(503, json={"message": "service unavailable"})
        return httpx.Response(201 if request.method == "POST" else 204)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> List[httpx.Request]:
        """Recorded requests, optionally filtered by method and URL path."""
        return [
            request for request in self.requests
            if (method is None or request.method == method)
            and (path is None or request.url.path == path)
        ]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def cookie_value(identity: VisitorIdentity) -> str:
    """Encode an identity the way the browser stores the visitor cookie."""
    return quote(identity.to_cookie_value(), safe="")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Test settings (no .env, fake hosts, short handshake delay)."""
    return Settings(
        _env_file=None,
        BACKEND_URL=BACKEND_URL,
        BACKEND_API_KEY="anon-key",
        GEO_API_URL=GEO_API_URL,
        HANDSHAKE_DELAY_SECONDS=0.01,
        SENTRY_DSN=None,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def app(settings, backend):
    """Create FastAPI test application wired to the fake backend."""
    from storefront.main import create_app

    return create_app(settings, http_client=backend.client())


@pytest.fixture
def client(app):
    """TestClient with startup/shutdown run (background tasks drained on exit)."""
    with TestClient(app) as test_client:
        yield test_client
