"""HTTP tests for the storefront app.

WHAT:
    Visitor middleware, visitor endpoints and referral handshake endpoints
    through FastAPI's TestClient against the fake backend.

WHY:
    The cookies written on responses are the engine's only state; these
    tests check what each endpoint sets or leaves alone.

REFERENCES:
    - storefront/main.py
    - storefront/web/middleware.py
    - storefront/routers/visitor.py
    - storefront/routers/handshake.py
"""

import importlib
import json
import warnings
from datetime import timedelta
from urllib.parse import unquote

from fastapi.testclient import TestClient

from storefront.main import WELCOME_BACK_BANNER
from storefront.referral.handshake import RETRY_MESSAGE, SUCCESS_MESSAGE
from storefront.routers import handshake as handshake_router
from storefront.visitor.models import SessionRecord, VisitorIdentity, utc_now

from conftest import PUBLIC_IP, cookie_value

SESSIONS_PATH = "/rest/v1/visitor_sessions"
RPC_PATH = "/rest/v1/rpc/record_marketing_lead"


def _visitor_cookie(response) -> dict:
    return json.loads(unquote(response.cookies["visitor_tracking"]))


def _returning_identity(hours_ago: float = 2) -> VisitorIdentity:
    return VisitorIdentity(
        visitor_id="v-returning",
        sessions=[
            SessionRecord(
                session_id="s-old",
                last_activity=utc_now() - timedelta(hours=hours_ago),
                utm_source="facebook",
            ),
        ],
    )


class TestHealth:
    def test_health_is_not_tracked(self, client, backend):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert "set-cookie" not in response.headers


class TestVisitorMiddleware:
    def test_first_page_view_sets_visitor_cookie(self, app, backend):
        with TestClient(app) as client:
            response = client.get("/?utm_source=facebook&utm_campaign=eid_sale")

        assert response.status_code == 200
        body = response.json()
        cookie = _visitor_cookie(response)
        assert body["visitor_id"] == cookie["visitorId"]
        assert body["session_id"] == cookie["sessions"][0]["sessionId"]
        assert body["is_returning"] is False
        assert body["banner"] is None
        assert cookie["sessions"][0]["utmSource"] == "facebook"

        set_cookie = response.headers["set-cookie"].lower()
        assert "max-age=31536000" in set_cookie
        assert "httponly" in set_cookie

        # Shutdown drained the background insert
        (insert,) = backend.calls("POST", SESSIONS_PATH)
        row = backend.body(insert)
        assert row["visitor_id"] == body["visitor_id"]
        assert row["utm_campaign"] == "eid_sale"

    def test_follow_up_page_view_continues_session(self, app, backend):
        with TestClient(app) as client:
            first = client.get("/").json()
            second = client.get("/").json()

        assert second["visitor_id"] == first["visitor_id"]
        assert second["session_id"] == first["session_id"]
        assert len(backend.calls("POST", SESSIONS_PATH)) == 1
        assert len(backend.calls("PATCH", SESSIONS_PATH)) == 1

    def test_returning_visitor_gets_welcome_back_banner(self, app, backend):
        with TestClient(app) as client:
            client.cookies.set("visitor_tracking", cookie_value(_returning_identity()))
            body = client.get("/").json()

        assert body["visitor_id"] == "v-returning"
        assert body["session_id"] != "s-old"
        assert body["is_returning"] is True
        assert body["visit_count"] == 2
        assert body["banner"] == WELCOME_BACK_BANNER

    def test_forwarded_public_ip_is_geolocated(self, app, backend):
        with TestClient(app) as client:
            client.get("/", headers={"X-Forwarded-For": f"{PUBLIC_IP}, 10.0.0.2"})

        (geo_update,) = backend.calls("PATCH", SESSIONS_PATH)
        assert backend.body(geo_update)["city"] == "Lahore"

    def test_api_paths_are_not_tracked(self, client, backend):
        response = client.get("/v1/visitor")

        assert "set-cookie" not in response.headers
        assert response.json() == {"visitor_id": None, "session_id": None, "session_count": 0}

    def test_lifecycle_failure_still_serves_page(self, app, backend, monkeypatch):
        """WHAT: An exception inside the engine leaves the page intact.
        WHY: Attribution must never break shopping.
        """
        def boom(store, context):
            raise RuntimeError("engine exploded")

        with TestClient(app) as client:
            monkeypatch.setattr(app.state.runtime.lifecycle, "on_route_change", boom)
            response = client.get("/")

        assert response.status_code == 200
        assert response.json()["visitor_id"] is None
        assert "set-cookie" not in response.headers
        assert backend.requests == []


class TestVisitorEndpoints:
    def test_get_visitor_reads_cookie_without_touching_session(self, app, backend):
        identity = _returning_identity()

        with TestClient(app) as client:
            client.cookies.set("visitor_tracking", cookie_value(identity))
            response = client.get("/v1/visitor")

        assert response.json() == {"visitor_id": "v-returning", "session_id": "s-old", "session_count": 1}
        assert backend.requests == []

    def test_pulse_uses_page_url_and_document_referrer(self, app, backend):
        with TestClient(app) as client:
            response = client.post(
                "/v1/visitor/pulse",
                json={
                    "url": "https://shop.example.com/products?utm_source=instagram&utm_medium=story",
                    "referrer": "https://l.instagram.com/",
                },
            )

        assert response.status_code == 200
        body = response.json()
        assert body["new_session"] is True
        assert body["reason"] == "first_session"
        assert body["session_count"] == 1
        assert _visitor_cookie(response)["visitorId"] == body["visitor_id"]

        row = backend.body(backend.calls("POST", SESSIONS_PATH)[0])
        assert row["utm_source"] == "instagram"
        assert row["utm_medium"] == "story"
        assert row["referrer"] == "https://l.instagram.com/"

    def test_pulse_campaign_change_opens_new_session(self, app, backend):
        with TestClient(app) as client:
            client.cookies.set("visitor_tracking", cookie_value(_returning_identity(hours_ago=0.1)))
            body = client.post(
                "/v1/visitor/pulse",
                json={"url": "https://shop.example.com/?utm_source=tiktok"},
            ).json()

        assert body["reason"] == "campaign_change"
        assert body["is_returning"] is True
        assert body["session_count"] == 2


class TestHandshakeEndpoints:
    def test_referral_link_is_pending_with_name_and_delay(self, client):
        response = client.get("/v1/handshake", params={"ref": "ref42"})

        assert response.json() == {
            "state": "pending",
            "referrer_id": "ref42",
            "referrer_name": "Zara",
            "show_after_ms": 10,
        }

    def test_no_referral_token_is_idle(self, client, backend):
        body = client.get("/v1/handshake").json()

        assert body["state"] == "idle"
        assert body["show_after_ms"] is None
        assert backend.requests == []

    def test_completed_browser_is_idle(self, client):
        client.cookies.set("handshake_completed", "true")

        assert client.get("/v1/handshake", params={"ref": "abc123"}).json()["state"] == "idle"

    def test_lead_success_sets_marker_and_blocks_repeat(self, app, backend):
        with TestClient(app) as client:
            response = client.post(
                "/v1/handshake/lead",
                json={"referrer_id": "ref42", "name": "Aisha", "phone": "03001234567"},
            )
            again = client.get("/v1/handshake", params={"ref": "ref42"}).json()
            repeat = client.post(
                "/v1/handshake/lead",
                json={"referrer_id": "ref42", "name": "Aisha", "phone": "03001234567"},
            )

        assert response.status_code == 200
        assert response.json() == {"state": "submitted", "message": SUCCESS_MESSAGE}
        assert response.cookies["handshake_completed"] == "true"
        assert again["state"] == "idle"
        assert repeat.status_code == 409
        assert len(backend.calls("POST", RPC_PATH)) == 1

    def test_lead_with_blank_phone_is_rejected(self, client, backend):
        response = client.post(
            "/v1/handshake/lead",
            json={"referrer_id": "ref42", "name": "Aisha", "phone": " "},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["missing_fields"] == ["phone"]
        assert "set-cookie" not in response.headers
        assert backend.calls("POST", RPC_PATH) == []

    def test_lead_backend_failure_is_retryable(self, client, backend):
        backend.fail_rpc = True

        response = client.post(
            "/v1/handshake/lead",
            json={"referrer_id": "ref42", "name": "Aisha", "phone": "03001234567"},
        )

        assert response.status_code == 502
        assert response.json()["detail"] == RETRY_MESSAGE
        assert "set-cookie" not in response.headers

    def test_lead_without_token_is_rejected(self, client, backend):
        response = client.post("/v1/handshake/lead", json={"referrer_id": " ", "name": "A", "phone": "1"})

        assert response.status_code == 422
        assert backend.requests == []

    def test_handshake_router_uses_no_deprecated_status_names(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            importlib.reload(handshake_router)

        assert [w for w in caught if w.filename == handshake_router.__file__] == []

    def test_dismiss_does_not_set_marker(self, client):
        response = client.post("/v1/handshake/dismiss", json={"referrer_id": "ref42"})

        assert response.json()["state"] == "dismissed"
        assert "set-cookie" not in response.headers
        assert client.get("/v1/handshake", params={"ref": "ref42"}).json()["state"] == "pending"
