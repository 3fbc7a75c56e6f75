"""Remote data / procedure client for the hosted backend.

WHAT:
    Thin async wrapper over the backend's PostgREST-compatible REST API:
    row insert, partial update by equality filter, single-row select and
    remote procedure calls.

WHY:
    The storefront delegates persistence to a hosted backend. Session rows,
    heartbeats, referrer profile lookups and lead capture all go through this
    one client so transport details (headers, filters, error mapping) live in
    a single place.

HOW:
    POST   {base_url}/rest/v1/{table}                 insert
    PATCH  {base_url}/rest/v1/{table}?col=eq.value    update
    GET    {base_url}/rest/v1/{table}?select=...      select
    POST   {base_url}/rest/v1/rpc/{function}          rpc

    Every failure (transport error or non-2xx status) is raised as
    RemoteDataError. Callers in the visitor engine catch it at the call site.

REFERENCES:
    - https://postgrest.org/en/stable/references/api/tables_views.html
    - storefront/visitor/sync.py (session rows)
    - storefront/referral/handshake.py (profiles, record_marketing_lead)
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import RemoteDataError

logger = logging.getLogger(__name__)

REST_PREFIX = "/rest/v1"


class RemoteDataClient:
    """Async client for the hosted row store and its remote procedures.

    Usage:
        ```python
        client = RemoteDataClient(base_url="https://xyz.supabase.co", api_key="anon-key")
        await client.insert("visitor_sessions", {"session_id": "...", ...})
        await client.update("visitor_sessions", {"session_id": "..."}, {"last_activity": "..."})
        profile = await client.select_single("profiles", {"id": "ref42"}, columns="name")
        await client.rpc("record_marketing_lead", {"p_referrer_id": "ref42", ...})
        await client.aclose()
        ```
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Backend root URL (without the /rest/v1 suffix)
            api_key: Public API key, sent as both `apikey` and bearer token
            timeout: Per-request timeout in seconds
            http_client: Pre-built httpx client (tests inject a MockTransport here)
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def insert(self, table: str, row: Dict[str, Any]) -> None:
        """Insert a single row. The backend response body is not needed."""
        await self._request(
            "POST",
            f"{REST_PREFIX}/{table}",
            json=row,
            headers={"Prefer": "return=minimal"},
        )

    async def update(
        self,
        table: str,
        match: Dict[str, Any],
        values: Dict[str, Any],
    ) -> None:
        """Partially update rows matching every `column = value` in `match`."""
        if not match:
            # An empty filter would update the whole table
            raise ValueError("update() requires at least one match column")

        await self._request(
            "PATCH",
            f"{REST_PREFIX}/{table}",
            params=_eq_filters(match),
            json=values,
            headers={"Prefer": "return=minimal"},
        )

    async def select_single(
        self,
        table: str,
        match: Dict[str, Any],
        columns: str = "*",
    ) -> Optional[Dict[str, Any]]:
        """Fetch the first row matching `match`, or None when nothing matches."""
        params = _eq_filters(match)
        params["select"] = columns
        params["limit"] = "1"

        response = await self._request("GET", f"{REST_PREFIX}/{table}", params=params)
        rows = _json_body(response)
        if isinstance(rows, list) and rows:
            return rows[0]
        return None

    async def rpc(self, function: str, params: Dict[str, Any]) -> Any:
        """Invoke a remote procedure and return its decoded result (or None)."""
        response = await self._request("POST", f"{REST_PREFIX}/rpc/{function}", json=params)
        if not response.content:
            return None
        return _json_body(response)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send a request and map failures to RemoteDataError."""
        request_headers = dict(self._headers)
        if headers:
            request_headers.update(headers)

        url = f"{self.base_url}{path}"
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
            )
        except httpx.HTTPError as e:
            raise RemoteDataError(f"{method} {path} failed: {e.__class__.__name__}: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.debug(f"[BACKEND] {method} {path} -> {response.status_code}: {message}")
            raise RemoteDataError(message, status_code=response.status_code)

        return response


def _eq_filters(match: Dict[str, Any]) -> Dict[str, str]:
    """Build PostgREST equality filters: {"id": 5} -> {"id": "eq.5"}."""
    return {column: f"eq.{value}" for column, value in match.items()}


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise RemoteDataError("Backend returned a non-JSON body", status_code=response.status_code) from e


def _error_message(response: httpx.Response) -> str:
    """Extract the most useful error message from a backend error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
