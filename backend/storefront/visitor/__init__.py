"""Visitor Session & Attribution Engine.

Decides on every route change whether a page view continues the visitor's
last session or opens a new (possibly campaign-attributed) one, keeps the
decision in the visitor cookie and mirrors it to the backend.

Modules:
- models.py: VisitorIdentity, SessionRecord, SessionRow, GeoInfo, ReferralLead
- identity_store.py: Cookie-backed load/save of the visitor identity
- boundary.py: Pure continue/new session decision
- geo.py: Best-effort IP geolocation
- sync.py: Session create / heartbeat / geo merge against the backend
- tasks.py: Fire-and-forget task registry
- lifecycle.py: Route-change orchestrator
"""

from .boundary import SESSION_IDLE_TIMEOUT, BoundaryDecision, BoundaryReason, decide_session_boundary
from .geo import GeoClient
from .identity_store import ClientStorage, IdentityStore, InMemoryStorage
from .lifecycle import RouteContext, VisitorLifecycle, VisitorSnapshot
from .models import MAX_SESSION_HISTORY, GeoInfo, SessionRecord, SessionRow, VisitorIdentity
from .sync import SessionSyncClient, classify_device
from .tasks import BackgroundTaskSet

__all__ = [
    "SESSION_IDLE_TIMEOUT",
    "MAX_SESSION_HISTORY",
    "BoundaryDecision",
    "BoundaryReason",
    "decide_session_boundary",
    "GeoClient",
    "GeoInfo",
    "ClientStorage",
    "IdentityStore",
    "InMemoryStorage",
    "RouteContext",
    "VisitorLifecycle",
    "VisitorSnapshot",
    "SessionRecord",
    "SessionRow",
    "VisitorIdentity",
    "SessionSyncClient",
    "classify_device",
    "BackgroundTaskSet",
]
