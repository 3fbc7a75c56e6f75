"""FastAPI application entrypoint.

Configures CORS, the visitor lifecycle middleware, includes routers, and
exposes a healthcheck endpoint.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from . import schemas
from .deps import Settings, get_settings, get_visitor
from .routers import handshake as handshake_router
from .routers import visitor as visitor_router
from .state import build_runtime
from .telemetry import init_observability
from .visitor.lifecycle import VisitorSnapshot
from .web.middleware import VisitorLifecycleMiddleware

WELCOME_BACK_BANNER = "Welcome back! We've added new items since your last visit."


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the storefront application.

    Args:
        settings: Overrides the cached environment settings (tests)
        http_client: Pre-built client for the backend and geo calls (tests
            pass one backed by httpx.MockTransport)
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        status = init_observability(settings)
        logger.info(f"[STARTUP] Observability: {status}")

        app.state.runtime = build_runtime(settings, http_client=http_client)
        try:
            yield
        finally:
            # Drains in-flight session writes before the loop goes away
            await app.state.runtime.aclose()

    app = FastAPI(
        title="Storefront Visitor API",
        description="""
        Visitor session tracking and referral lead capture for the storefront.

        - **Visitor sessions**: anonymous visitor identity in a first-party cookie,
          session boundaries (30 minute idle timeout, campaign change), UTM attribution
        - **Referral handshake**: one-time lead capture for friend-shared `?ref=` links

        Page requests are tracked by middleware; single-page frontends report
        client-side route changes to `POST /v1/visitor/pulse`.
        """,
        version="1.0.0",
        lifespan=lifespan,
    )

    # Trust X-Forwarded-* from the load balancer so client IPs and schemes are correct
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    logger.info(f"[CORS] Allowed origins: {settings.cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last so it runs first, before CORS
    app.add_middleware(VisitorLifecycleMiddleware)

    app.include_router(visitor_router.router)
    app.include_router(handshake_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.get(
        "/",
        response_model=schemas.StorefrontHomeResponse,
        tags=["Storefront"],
        summary="Storefront landing page",
        description="""
        Landing page payload for the app shell. Counts as a page view: the
        visitor cookie is created or refreshed on the response.
        """,
    )
    def home(visitor: Optional[VisitorSnapshot] = Depends(get_visitor)):
        if visitor is None:
            return schemas.StorefrontHomeResponse()

        show_banner = visitor.is_returning and visitor.session_count > 1
        return schemas.StorefrontHomeResponse(
            visitor_id=visitor.visitor_id,
            session_id=visitor.session_id,
            is_returning=visitor.is_returning,
            visit_count=visitor.session_count,
            banner=WELCOME_BACK_BANNER if show_banner else None,
        )

    return app


app = create_app()
