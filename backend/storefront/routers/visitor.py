"""Visitor endpoints.

WHAT:
    Exposes the current visitor identifier and accepts route-change pulses
    from single-page frontends.

WHY:
    A single-page storefront changes routes without full page requests, so
    the lifecycle middleware never sees them. The frontend reports each route
    change (page URL + document.referrer) here instead; server-rendered pages
    are handled by the middleware.

REFERENCES:
    - storefront/visitor/lifecycle.py
    - storefront/web/middleware.py
"""

import logging

from fastapi import APIRouter, HTTPException, Request, Response, status

from ..schemas import PulseRequest, VisitorIdentityResponse, VisitorResponse
from ..telemetry import capture_exception
from ..visitor.identity_store import IdentityStore
from ..web.middleware import cookie_storage, query_params_from_url, route_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/visitor", tags=["Visitor"])


@router.get("", response_model=VisitorIdentityResponse, summary="Current visitor")
def read_visitor(request: Request) -> VisitorIdentityResponse:
    """Read the visitor cookie without starting or extending a session."""
    runtime = request.app.state.runtime
    identity = IdentityStore(
        cookie_storage(request),
        cookie_name=runtime.settings.VISITOR_COOKIE_NAME,
    ).load()

    if identity is None:
        return VisitorIdentityResponse()

    last = identity.last_session
    return VisitorIdentityResponse(
        visitor_id=identity.visitor_id,
        session_id=last.session_id if last else None,
        session_count=len(identity.sessions),
    )


@router.post("/pulse", response_model=VisitorResponse, summary="Report a route change")
async def pulse(payload: PulseRequest, request: Request, response: Response) -> VisitorResponse:
    """Run the session boundary check for a client-side route change.

    The visitor cookie is written on the response before any backend call
    completes; session rows and heartbeats are sent in the background.
    """
    runtime = request.app.state.runtime
    storage = cookie_storage(request)
    store = IdentityStore(storage, cookie_name=runtime.settings.VISITOR_COOKIE_NAME)
    context = route_context(
        request,
        url_params=query_params_from_url(payload.url),
        referrer=payload.referrer or "",
    )

    try:
        snapshot = runtime.lifecycle.on_route_change(store, context)
    except Exception as e:
        logger.error(f"[VISITOR] Pulse failed: {e}")
        capture_exception(e, extra={"url": payload.url})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Visitor tracking unavailable")

    storage.apply(response)
    return VisitorResponse(
        visitor_id=snapshot.visitor_id,
        session_id=snapshot.session_id,
        new_session=snapshot.new_session,
        reason=snapshot.reason,
        is_returning=snapshot.is_returning,
        session_count=snapshot.session_count,
    )
