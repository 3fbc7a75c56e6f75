"""Identity Store: the visitor cookie behind an explicit load/save contract.

WHAT:
    Reads and writes the serialized VisitorIdentity through a ClientStorage
    (HTTP cookies in the web shell, a dict in tests and non-HTTP hosts).

WHY:
    The visitor cookie is the only shared mutable state of the engine. Putting
    it behind an injected store keeps the session boundary detector pure and
    testable without a real cookie jar.

DESIGN:
    - Malformed, missing or wrongly-typed data is "no prior visitor", never an error
    - One value per save, no network I/O
    - Last writer wins; concurrent tabs are not coordinated
"""

import json
import logging
from datetime import datetime
from typing import Dict, Optional, Protocol, Tuple

from pydantic import ValidationError

from .models import MAX_SESSION_HISTORY, SessionRecord, VisitorIdentity

logger = logging.getLogger(__name__)

DEFAULT_COOKIE_NAME = "visitor_tracking"
DEFAULT_TTL_DAYS = 365


class ClientStorage(Protocol):
    """Client-side key/value persistence (cookie jar or local storage).

    `ttl_days=None` means the value never expires on its own.
    """

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str, ttl_days: Optional[int] = None) -> None:
        ...


class InMemoryStorage:
    """Dict-backed ClientStorage. Expiry is recorded but not enforced."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.values: Dict[str, str] = dict(initial or {})
        self.ttls: Dict[str, Optional[int]] = {}

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str, ttl_days: Optional[int] = None) -> None:
        self.values[key] = value
        self.ttls[key] = ttl_days


class IdentityStore:
    """Load/save the VisitorIdentity cookie.

    Usage:
        ```python
        store = IdentityStore(storage)
        identity = store.load() or VisitorIdentity.create()
        store.save(identity, ttl_days=365)
        ```
    """

    def __init__(self, storage: ClientStorage, cookie_name: str = DEFAULT_COOKIE_NAME):
        self.storage = storage
        self.cookie_name = cookie_name

    def load(self) -> Optional[VisitorIdentity]:
        """Return the stored identity, or None if absent or unreadable."""
        raw = self.storage.get(self.cookie_name)
        if not raw:
            return None

        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"[IDENTITY] Ignoring non-JSON {self.cookie_name} cookie")
            return None

        if not isinstance(data, dict):
            logger.debug(f"[IDENTITY] Ignoring {self.cookie_name} cookie with unexpected shape")
            return None

        try:
            return VisitorIdentity.model_validate(data)
        except ValidationError as e:
            logger.debug(f"[IDENTITY] Ignoring invalid {self.cookie_name} cookie: {e.error_count()} errors")
            return None

    def save(self, identity: VisitorIdentity, ttl_days: int = DEFAULT_TTL_DAYS) -> None:
        """Persist the identity as a single client-side value."""
        self.storage.set(self.cookie_name, identity.to_cookie_value(), ttl_days)


def start_session(identity: VisitorIdentity, record: SessionRecord) -> VisitorIdentity:
    """Append a new session record, dropping the oldest beyond the history cap."""
    sessions = [*identity.sessions, record][-MAX_SESSION_HISTORY:]
    return identity.model_copy(update={"sessions": sessions})


def touch_session(identity: VisitorIdentity, now: datetime) -> Tuple[VisitorIdentity, SessionRecord]:
    """Refresh the newest session's last activity.

    Returns:
        (updated identity, updated newest record)

    Raises:
        ValueError: If the identity has no session to continue
    """
    last = identity.last_session
    if last is None:
        raise ValueError("Cannot continue a session for a visitor without sessions")

    touched = last.model_copy(update={"last_activity": now})
    sessions = [*identity.sessions[:-1], touched]
    return identity.model_copy(update={"sessions": sessions}), touched
