"""HTTP cookie implementation of ClientStorage.

WHAT:
    Reads values from the incoming request's cookies and queues writes that
    are applied to the outgoing response as Set-Cookie headers.

WHY:
    In the web shell the "client storage" of the visitor engine is the
    browser's cookie jar. Values are percent-encoded the same way the
    storefront's JavaScript cookie helper encodes JSON cookies.
"""

from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import quote, unquote

from starlette.responses import Response

# Permanent values (no TTL) still need an expiry on the wire: 10 years
PERMANENT_MAX_AGE = 10 * 365 * 24 * 60 * 60
SECONDS_PER_DAY = 24 * 60 * 60


class CookieStorage:
    """ClientStorage over one request/response pair."""

    def __init__(
        self,
        cookies: Mapping[str, str],
        domain: Optional[str] = None,
        secure: bool = False,
    ):
        self._cookies = dict(cookies)
        self._pending: Dict[str, Tuple[str, Optional[int]]] = {}
        self.domain = domain
        self.secure = secure

    def get(self, key: str) -> Optional[str]:
        if key in self._pending:
            return self._pending[key][0]
        raw = self._cookies.get(key)
        if raw is None:
            return None
        return unquote(raw)

    def set(self, key: str, value: str, ttl_days: Optional[int] = None) -> None:
        self._pending[key] = (value, ttl_days)

    def apply(self, response: Response) -> None:
        """Write queued values onto the response."""
        for key, (value, ttl_days) in self._pending.items():
            max_age = ttl_days * SECONDS_PER_DAY if ttl_days is not None else PERMANENT_MAX_AGE
            response.set_cookie(
                key,
                quote(value, safe=""),
                max_age=max_age,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite="lax",
            )
