"""Visitor lifecycle middleware.

WHAT:
    Runs the visitor lifecycle on every storefront page request (a "route
    change"), exposes the snapshot on `request.state.visitor` and writes the
    visitor cookie onto the response.

WHY:
    Attribution must never break the shopping flow: any failure inside the
    engine is logged and reported, and the page is served without a visitor
    snapshot.

NOTES:
    - Only GET requests count as page views
    - API, docs and health paths are excluded; single-page frontends report
      route changes through POST /v1/visitor/pulse instead
"""

import logging
from typing import Mapping, Optional, Sequence
from urllib.parse import parse_qsl, urlsplit

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..telemetry import capture_exception
from ..visitor.identity_store import IdentityStore
from ..visitor.lifecycle import RouteContext
from .cookies import CookieStorage

logger = logging.getLogger(__name__)

# Each entry matches the path itself and everything below it
EXCLUDED_PATHS: Sequence[str] = (
    "/v1",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/static",
    "/favicon.ico",
)


def client_ip(request: Request) -> Optional[str]:
    """Visitor IP, preferring the first X-Forwarded-For hop (load balancers)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else None


def query_params_from_url(url: Optional[str]) -> Mapping[str, str]:
    """Query parameters of a page URL (first value wins)."""
    if not url:
        return {}
    params: dict[str, str] = {}
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def route_context(
    request: Request,
    url_params: Optional[Mapping[str, str]] = None,
    referrer: Optional[str] = None,
) -> RouteContext:
    """Build the engine's view of a page request.

    Defaults come from the request itself (query string, Referer header);
    the SPA pulse endpoint overrides them with the browser's page URL and
    document.referrer.
    """
    return RouteContext(
        url_params=dict(request.query_params) if url_params is None else dict(url_params),
        referrer=request.headers.get("referer") if referrer is None else (referrer or None),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip(request),
    )


def cookie_storage(request: Request) -> CookieStorage:
    """CookieStorage configured from the application settings."""
    settings = request.app.state.runtime.settings
    return CookieStorage(request.cookies, domain=settings.COOKIE_DOMAIN, secure=settings.COOKIE_SECURE)


def is_page_request(request: Request) -> bool:
    if request.method != "GET":
        return False
    path = request.url.path
    return not any(path == excluded or path.startswith(excluded + "/") for excluded in EXCLUDED_PATHS)


class VisitorLifecycleMiddleware(BaseHTTPMiddleware):
    """Pulse the visitor session on each storefront page view."""

    async def dispatch(self, request, call_next):
        if not is_page_request(request):
            return await call_next(request)

        runtime = request.app.state.runtime
        storage = cookie_storage(request)
        try:
            store = IdentityStore(storage, cookie_name=runtime.settings.VISITOR_COOKIE_NAME)
            request.state.visitor = runtime.lifecycle.on_route_change(store, route_context(request))
        except Exception as e:
            logger.error(f"[VISITOR] Lifecycle failed for {request.url.path}: {e}")
            capture_exception(e, extra={"path": request.url.path})
            request.state.visitor = None

        response = await call_next(request)
        storage.apply(response)
        return response
