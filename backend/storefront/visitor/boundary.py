"""Session Boundary Detector.

WHAT:
    Decides, for one route change, whether the visitor continues their last
    session or starts a new one.

HOW:
    Rules evaluated in order, first match wins:
        1. No prior session                            -> new (FIRST_SESSION)
        2. Idle for more than 30 minutes               -> new (IDLE_TIMEOUT)
        3. URL utm_source present and different        -> new (CAMPAIGN_CHANGE)
        4. Otherwise                                   -> continue (CONTINUE)

CONSTRAINTS:
    - Pure: no clock reads, no I/O, no mutation of its inputs
    - The idle timeout is exact and not configurable at runtime
    - A missing utm_source never forces a new session on its own
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Optional

from .models import SessionRecord, VisitorIdentity

SESSION_IDLE_TIMEOUT = timedelta(minutes=30)


class BoundaryReason(str, Enum):
    """Why the detector made its decision."""
    FIRST_SESSION = "first_session"
    IDLE_TIMEOUT = "idle_timeout"
    CAMPAIGN_CHANGE = "campaign_change"
    CONTINUE = "continue"


@dataclass(frozen=True)
class BoundaryDecision:
    """Result of a boundary check."""

    new_session: bool
    reason: BoundaryReason


def decide_session_boundary(
    identity: Optional[VisitorIdentity],
    last_session: Optional[SessionRecord],
    now: datetime,
    url_params: Mapping[str, str],
    document_referrer: Optional[str] = None,
) -> BoundaryDecision:
    """Decide whether this route change continues the last session.

    Args:
        identity: Stored visitor identity (None for a first-ever visit)
        last_session: Newest session record from the identity, if any
        now: Current time (timezone-aware)
        url_params: Query parameters of the current URL
        document_referrer: Referrer of the current page. Recorded on new
            session rows but not used as a boundary signal.

    Returns:
        BoundaryDecision with new_session flag and reason
    """
    if identity is None or last_session is None:
        return BoundaryDecision(new_session=True, reason=BoundaryReason.FIRST_SESSION)

    if now - last_session.last_activity > SESSION_IDLE_TIMEOUT:
        return BoundaryDecision(new_session=True, reason=BoundaryReason.IDLE_TIMEOUT)

    utm_source = url_params.get("utm_source")
    if utm_source and utm_source != last_session.utm_source:
        # Campaign re-entry counts as fresh attribution even mid-session
        return BoundaryDecision(new_session=True, reason=BoundaryReason.CAMPAIGN_CHANGE)

    return BoundaryDecision(new_session=False, reason=BoundaryReason.CONTINUE)
