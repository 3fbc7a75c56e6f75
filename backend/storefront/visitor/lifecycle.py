"""Visitor Lifecycle Orchestrator.

WHAT:
    Composition root of the visitor engine. Runs on every route change:
    reads the identity cookie, asks the boundary detector for a decision,
    commits the cookie, then hands network effects to the sync client.

WHY:
    The local decision must be made synchronously and immediately. Remote
    writes and geo lookups are layered on afterwards so a page render never
    waits on session bookkeeping.

HOW:
    route change
        -> IdentityStore.load()          (fresh visitor if absent)
        -> decide_session_boundary()
        -> new:      start_session() + save() + sync.begin_session()
           continue: touch_session() + save() + sync.heartbeat()
        -> VisitorSnapshot

    Two tabs racing on the same cookie may both start a session. That is
    accepted: the cookie is last-writer-wins.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Optional

from .boundary import BoundaryReason, decide_session_boundary
from .identity_store import DEFAULT_TTL_DAYS, IdentityStore, start_session, touch_session
from .models import SessionRecord, VisitorIdentity, new_id, utc_now
from .sync import SessionSyncClient, build_session_row


@dataclass(frozen=True)
class RouteContext:
    """What the engine can observe about the current page view."""

    url_params: Mapping[str, str] = field(default_factory=dict)
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None


@dataclass(frozen=True)
class VisitorSnapshot:
    """Current visitor as seen by the rest of the application."""

    visitor_id: str
    session_id: str
    new_session: bool
    reason: BoundaryReason
    # A prior session existed in the cookie ("welcome back" banner)
    is_returning: bool
    session_count: int


class VisitorLifecycle:
    """Runs the session boundary check on each route change.

    Usage:
        ```python
        lifecycle = VisitorLifecycle(sync_client)
        snapshot = lifecycle.on_route_change(IdentityStore(storage), context)
        ```
    """

    def __init__(
        self,
        sync: SessionSyncClient,
        clock: Callable[[], datetime] = utc_now,
        ttl_days: int = DEFAULT_TTL_DAYS,
    ):
        self.sync = sync
        self.clock = clock
        self.ttl_days = ttl_days

    def on_route_change(self, store: IdentityStore, context: RouteContext) -> VisitorSnapshot:
        """Decide continue/new for this route change and commit the result.

        Must be called from inside the running event loop: network effects
        are scheduled on it, never awaited.
        """
        # The cookie keeps whole milliseconds; decide on the same resolution
        now = self.clock()
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        stored = store.load()
        identity = stored or VisitorIdentity.create()
        previous = identity.last_session

        decision = decide_session_boundary(
            stored,
            previous,
            now,
            context.url_params,
            context.referrer,
        )

        if decision.new_session:
            record = SessionRecord(
                session_id=new_id(),
                last_activity=now,
                utm_source=context.url_params.get("utm_source") or None,
            )
            identity = start_session(identity, record)
            store.save(identity, self.ttl_days)

            row = build_session_row(
                session_id=record.session_id,
                visitor_id=identity.visitor_id,
                now=now,
                url_params=context.url_params,
                referrer=context.referrer,
                user_agent=context.user_agent,
            )
            self.sync.begin_session(row, context.client_ip)
        else:
            identity, record = touch_session(identity, now)
            store.save(identity, self.ttl_days)
            self.sync.heartbeat(record.session_id, now)

        return VisitorSnapshot(
            visitor_id=identity.visitor_id,
            session_id=record.session_id,
            new_session=decision.new_session,
            reason=decision.reason,
            is_returning=previous is not None,
            session_count=len(identity.sessions),
        )
