"""Exception types for the storefront visitor engine.

WHAT:
    Small exception hierarchy shared by the remote data client, the session
    sync client and the referral handshake.

WHY:
    Network failures are caught at the call site and logged, so callers only
    need to branch on user-input errors. Keeping the types in one module lets
    routers map them to HTTP responses without importing engine internals.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base exception for storefront engine errors."""
    pass


class RemoteDataError(StorefrontError):
    """Raised when a call to the hosted backend fails.

    Attributes:
        status_code: HTTP status returned by the backend (None for transport errors)
        message: Backend error message, if any
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.status_code}: {self.message}"


class HandshakeValidationError(StorefrontError):
    """Raised when the lead-capture form is submitted with missing fields."""

    def __init__(self, missing_fields: list[str]):
        self.missing_fields = missing_fields
        super().__init__(f"Missing required fields: {', '.join(missing_fields)}")


class InvalidHandshakeTransition(StorefrontError):
    """Raised when a handshake action is not legal in the current state."""

    def __init__(self, current_state: str, action: str):
        self.current_state = current_state
        self.action = action
        super().__init__(f"Cannot {action} handshake in state '{current_state}'")
