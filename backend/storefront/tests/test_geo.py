"""Unit tests for GeoClient.

WHAT:
    ipapi-style payload mapping and the never-raise contract.

WHY:
    Geo is telemetry; any failure must resolve to an empty GeoInfo so the
    session row is still created.

REFERENCES:
    - storefront/visitor/geo.py (module under test)
"""

import asyncio

import httpx
import pytest

from storefront.visitor.geo import GeoClient
from storefront.visitor.models import GeoInfo

GEO_URL = "https://geo.test"


def _fetch(handler, ip_address=None) -> GeoInfo:
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            return await GeoClient(http_client, base_url=GEO_URL).fetch_geo(ip_address)

    return asyncio.run(run())


def test_maps_ipapi_payload():
    seen = []

    def handler(request):
        seen.append(str(request.url))
        return httpx.Response(200, json={
            "ip": "81.2.69.142",
            "city": "London",
            "country_name": "United Kingdom",
            "country_code": "GB",
            "latitude": 51.5,
        })

    geo = _fetch(handler, "81.2.69.142")

    assert seen == ["https://geo.test/81.2.69.142/json/"]
    assert geo == GeoInfo(city="London", country="United Kingdom", country_code="GB", ip_address="81.2.69.142")
    assert geo.to_row_fields() == {
        "city": "London",
        "country": "United Kingdom",
        "country_code": "GB",
        "ip_address": "81.2.69.142",
    }


def test_unknown_ip_looks_up_caller():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, json={"ip": "8.8.8.8", "country_name": "United States"})

    geo = _fetch(handler, None)

    assert seen == ["/json/"]
    assert geo.country == "United States"
    assert geo.city is None


@pytest.mark.parametrize("ip_address", ["127.0.0.1", "10.0.0.7", "192.168.1.10", "::1", "testclient"])
def test_non_public_ip_is_not_sent_upstream(ip_address):
    def handler(request):
        raise AssertionError("geo API must not be called")

    assert _fetch(handler, ip_address).is_empty()


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "boom"}),
        httpx.Response(429, text="rate limited"),
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json={"error": True, "reason": "Reserved IP Address"}),
        httpx.Response(200, json=["unexpected"]),
    ],
)
def test_bad_responses_resolve_to_empty(response):
    geo = _fetch(lambda request: response, "8.8.8.8")

    assert geo.is_empty()


def test_timeout_resolves_to_empty():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    assert _fetch(handler, "8.8.8.8") == GeoInfo()
