"""Pydantic schemas for request/response payloads."""

from typing import Optional

from pydantic import BaseModel, Field

from .referral.handshake import HandshakeState
from .visitor.boundary import BoundaryReason


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])


class VisitorResponse(BaseModel):
    """Current visitor as decided for this route change."""

    visitor_id: str = Field(description="Durable anonymous visitor identifier")
    session_id: str = Field(description="Current session identifier")
    new_session: bool = Field(description="Whether this route change opened a new session")
    reason: BoundaryReason = Field(description="Why the session was continued or started")
    is_returning: bool = Field(description="A previous session exists for this visitor")
    session_count: int = Field(description="Sessions remembered in the visitor cookie (max 5)")


class VisitorIdentityResponse(BaseModel):
    """Stored visitor identity, read without starting or extending a session."""

    visitor_id: Optional[str] = Field(default=None, description="None before the first page view")
    session_id: Optional[str] = Field(default=None, description="Newest remembered session")
    session_count: int = 0


class PulseRequest(BaseModel):
    """Route change reported by a single-page frontend."""

    url: str = Field(
        description="Full page URL including the query string",
        examples=["https://shop.example.com/products?utm_source=facebook&utm_campaign=eid_sale"],
    )
    referrer: Optional[str] = Field(default=None, description="document.referrer of the page")


class HandshakeStatusResponse(BaseModel):
    """Whether the referral dialog should be shown to this browser."""

    state: HandshakeState = Field(description="idle (never show) or pending (show after delay)")
    referrer_id: Optional[str] = None
    referrer_name: Optional[str] = Field(default=None, description="Referrer display name, when known")
    show_after_ms: Optional[int] = Field(default=None, description="Delay before opening the dialog")


class LeadRequest(BaseModel):
    """Referral lead-capture form submission.

    Blank fields are rejected by the handshake controller (not here) so the
    error reaches the visitor as a form message.
    """

    referrer_id: str = Field(description="Referral token from the landing URL", examples=["ref42"])
    name: str = Field(default="", examples=["Aisha"])
    phone: str = Field(default="", description="WhatsApp number", examples=["03001234567"])


class LeadResponse(BaseModel):
    """Result of a lead submission."""

    state: HandshakeState
    message: str


class DismissRequest(BaseModel):
    """Visitor closed the referral dialog without submitting."""

    referrer_id: str


class StorefrontHomeResponse(BaseModel):
    """Landing page payload: visitor context for the app shell."""

    visitor_id: Optional[str] = Field(default=None, description="None when visitor tracking failed")
    session_id: Optional[str] = None
    is_returning: bool = False
    visit_count: int = Field(default=0, description="Sessions remembered in the visitor cookie")
    banner: Optional[str] = Field(default=None, description="Welcome-back banner text, if it should be shown")
