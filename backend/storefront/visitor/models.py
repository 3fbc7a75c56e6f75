"""Visitor engine data model.

WHAT:
    Client-owned identity (cookie payload), the backend session row, geo
    enrichment results and referral leads.

WHY:
    The cookie format stays wire-compatible with the browser storefront
    (camelCase keys, epoch-millisecond timestamps), while Python code works
    with snake_case attributes and timezone-aware datetimes.

REFERENCES:
    - storefront/visitor/identity_store.py (cookie serialization)
    - storefront/visitor/sync.py (SessionRow payloads)
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

# Cookie stays small; the backend keeps the full history
MAX_SESSION_HISTORY = 5


def new_id() -> str:
    """Generate an opaque unique token for visitors and sessions."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def _to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class SessionRecord(BaseModel):
    """Client-local summary of a session, stored inside the visitor cookie."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    last_activity: datetime = Field(alias="lastActivity")
    utm_source: Optional[str] = Field(default=None, alias="utmSource")

    @field_validator("last_activity", mode="before")
    @classmethod
    def _parse_last_activity(cls, value: Any) -> Any:
        # Browser cookies carry epoch milliseconds
        if isinstance(value, bool):
            raise ValueError("lastActivity must be a timestamp")
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        return value

    @field_validator("last_activity")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_serializer("last_activity")
    def _serialize_last_activity(self, value: datetime) -> int:
        return _to_epoch_ms(value)


class VisitorIdentity(BaseModel):
    """Durable anonymous visitor identity (cookie payload, ~1 year).

    `sessions` is ordered oldest -> newest and never longer than
    MAX_SESSION_HISTORY.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    visitor_id: str = Field(alias="visitorId", min_length=1)
    sessions: List[SessionRecord] = Field(default_factory=list)

    @field_validator("sessions")
    @classmethod
    def _trim_history(cls, value: List[SessionRecord]) -> List[SessionRecord]:
        return value[-MAX_SESSION_HISTORY:]

    @classmethod
    def create(cls) -> "VisitorIdentity":
        """Create a brand-new visitor with no session history."""
        return cls(visitor_id=new_id(), sessions=[])

    @property
    def last_session(self) -> Optional[SessionRecord]:
        """Most recent session, or None for a first-ever visit."""
        return self.sessions[-1] if self.sessions else None

    def to_cookie_value(self) -> str:
        """Serialize to the JSON cookie format (camelCase keys)."""
        return self.model_dump_json(by_alias=True)


class GeoInfo(BaseModel):
    """Coarse location resolved from the visitor's IP. Empty means unknown."""

    city: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    ip_address: Optional[str] = None

    def is_empty(self) -> bool:
        return not any([self.city, self.country, self.country_code, self.ip_address])

    def to_row_fields(self) -> Dict[str, str]:
        """Fields to merge into the session row (unknown values omitted)."""
        return self.model_dump(exclude_none=True)


class SessionRow(BaseModel):
    """Backend-durable session row (table `visitor_sessions`).

    Exactly one row is created per session boundary decision; heartbeats only
    update `last_activity`.
    """

    session_id: str
    visitor_id: str
    started_at: datetime
    last_activity: datetime

    # Attribution
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    referrer: Optional[str] = None

    # Device
    device_type: str = "desktop"
    user_agent: Optional[str] = None

    # Geo (merged later by a best-effort follow-up update)
    city: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    ip_address: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready insert payload (datetimes as ISO 8601 strings)."""
        return self.model_dump(mode="json")


class ReferralLead(BaseModel):
    """Lead captured by the referral handshake (recorded server-side)."""

    name: str
    phone: str
    referrer_id: str
    status: Optional[str] = None  # Server-assigned
    created_at: Optional[datetime] = None
