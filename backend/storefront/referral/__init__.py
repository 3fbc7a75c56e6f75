"""Viral Referral Handshake: referral link -> captured lead, once per browser."""

from .handshake import (
    HANDSHAKE_MARKER,
    REFERRAL_PARAM,
    HandshakeResult,
    HandshakeState,
    ReferralHandshakeController,
)

__all__ = [
    "HANDSHAKE_MARKER",
    "REFERRAL_PARAM",
    "HandshakeResult",
    "HandshakeState",
    "ReferralHandshakeController",
]
