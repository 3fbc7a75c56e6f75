"""
Application State
=================

Runtime objects shared by every request, built once on startup.

WHAT it stores:
- http_client: Shared httpx.AsyncClient (connection pooling for backend + geo)
- remote: RemoteDataClient for the hosted backend
- geo: GeoClient for best-effort IP geolocation
- tasks: BackgroundTaskSet holding fire-and-forget network effects
- sync: SessionSyncClient
- lifecycle: VisitorLifecycle (route-change orchestrator)

WHERE it's used:
- app factory (storefront/main.py): builds on startup, closes on shutdown
- web/middleware.py and routers: read it from `request.app.state.runtime`

Design:
- One event loop, no worker threads; all tasks live on that loop
- Shutdown drains in-flight tasks briefly, then abandons the rest
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .deps import Settings
from .services.remote_data_client import RemoteDataClient
from .visitor.geo import GeoClient
from .visitor.lifecycle import VisitorLifecycle
from .visitor.sync import SessionSyncClient
from .visitor.tasks import BackgroundTaskSet

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 2.0


@dataclass
class Runtime:
    """Shared engine objects for one application instance."""

    settings: Settings
    http_client: httpx.AsyncClient
    remote: RemoteDataClient
    geo: GeoClient
    tasks: BackgroundTaskSet
    sync: SessionSyncClient
    lifecycle: VisitorLifecycle

    async def aclose(self) -> None:
        """Drain background work and release HTTP connections."""
        await self.tasks.drain(timeout=SHUTDOWN_GRACE_SECONDS)
        await self.http_client.aclose()
        logger.info("[STATE] Runtime closed")


def build_runtime(settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> Runtime:
    """Wire the visitor engine from settings.

    Args:
        settings: Application settings
        http_client: Optional pre-built client (tests pass one with a MockTransport)
    """
    client = http_client or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    remote = RemoteDataClient(
        base_url=settings.BACKEND_URL,
        api_key=settings.BACKEND_API_KEY,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        http_client=client,
    )
    geo = GeoClient(client, base_url=settings.GEO_API_URL, timeout=settings.HTTP_TIMEOUT_SECONDS)
    tasks = BackgroundTaskSet()
    sync = SessionSyncClient(remote, geo, tasks)
    lifecycle = VisitorLifecycle(sync, ttl_days=settings.VISITOR_COOKIE_TTL_DAYS)

    logger.info(f"[STATE] Visitor engine wired (backend={settings.BACKEND_URL}, geo={settings.GEO_API_URL})")
    return Runtime(
        settings=settings,
        http_client=client,
        remote=remote,
        geo=geo,
        tasks=tasks,
        sync=sync,
        lifecycle=lifecycle,
    )
