"""Geo Enrichment Client.

WHAT:
    Best-effort lookup of coarse location (city, country) for a visitor IP
    using a public IP-geolocation endpoint (ipapi.co compatible).

WHY:
    Session rows are enriched with location for the admin analytics, but
    location is telemetry, never a gate: fetch_geo() resolves to an empty
    GeoInfo on any failure so callers need no error handling.

HOW:
    GET {base_url}/{ip}/json/   (or {base_url}/json/ when no IP is given,
    which geolocates the caller's own address)

    Response fields used: city, country_name, country_code, ip.
    ipapi.co reports lookup failures as HTTP 200 with {"error": true, ...}.

REFERENCES:
    - https://ipapi.co/api/#complete-location
"""

import ipaddress
import logging
from typing import Any, Dict, Optional

import httpx

from .models import GeoInfo

logger = logging.getLogger(__name__)

DEFAULT_GEO_API_URL = "https://ipapi.co"


class GeoClient:
    """Never-raising IP geolocation client."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = DEFAULT_GEO_API_URL,
        timeout: float = 5.0,
    ):
        self._client = http_client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch_geo(self, ip_address: Optional[str] = None) -> GeoInfo:
        """Resolve coarse location for an IP.

        Args:
            ip_address: Visitor IP. None looks up the caller's own address.

        Returns:
            GeoInfo, empty when the lookup is impossible or fails
        """
        if ip_address is not None and not _is_public_ip(ip_address):
            # Private/loopback addresses cannot be geolocated
            return GeoInfo()

        path = f"/{ip_address}/json/" if ip_address else "/json/"
        try:
            response = await self._client.get(f"{self.base_url}{path}", timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.info(f"[GEO] Lookup failed: {e.__class__.__name__}: {e}")
            return GeoInfo()

        if not isinstance(payload, dict) or payload.get("error"):
            reason = payload.get("reason") if isinstance(payload, dict) else "unexpected payload"
            logger.info(f"[GEO] Lookup returned no location: {reason}")
            return GeoInfo()

        return _parse_geo(payload)


def _is_public_ip(value: str) -> bool:
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return False
    return ip.is_global


def _parse_geo(payload: Dict[str, Any]) -> GeoInfo:
    def _text(key: str) -> Optional[str]:
        value = payload.get(key)
        return str(value) if value not in (None, "") else None

    return GeoInfo(
        city=_text("city"),
        country=_text("country_name"),
        country_code=_text("country_code"),
        ip_address=_text("ip"),
    )
