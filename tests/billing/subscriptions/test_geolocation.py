"""
Tests for client IP extraction and IP geolocation lookups.
"""

import httpx
import pytest

from randevu.platform.billing.subscriptions.geolocation import (
    IPGeolocationClient,
    extract_client_ip,
    is_private_ip,
)


class TestExtractClientIp:
    def test_forwarded_for_takes_first_hop(self):
        headers = {"X-Forwarded-For": "88.255.1.10, 10.0.0.2, 10.0.0.3"}
        assert extract_client_ip(headers, "10.0.0.3") == "88.255.1.10"

    def test_header_precedence(self):
        headers = {"X-Real-IP": "88.255.1.11", "CF-Connecting-IP": "88.255.1.12"}
        assert extract_client_ip(headers) == "88.255.1.11"

    def test_falls_back_to_peer(self):
        assert extract_client_ip({}, "88.255.1.13") == "88.255.1.13"

    @pytest.mark.parametrize(
        "ip, private",
        [("10.1.2.3", True), ("127.0.0.1", True), ("not-an-ip", True), ("88.255.1.10", False)],
    )
    def test_is_private_ip(self, ip, private):
        assert is_private_ip(ip) is private


class TestIPGeolocationClient:
    """Lookups against a mocked provider."""

    @pytest.mark.asyncio
    async def test_lookup_maps_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/88.255.1.10/json/"
            return httpx.Response(
                200, json={"city": "Ankara", "region": "Ankara", "country_name": "Turkey"}
            )

        client = IPGeolocationClient(
            "https://geo.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        location = await client.lookup("88.255.1.10")

        assert location is not None
        assert location.city == "Ankara"
        assert location.country == "Turkey"

    @pytest.mark.asyncio
    async def test_lookup_failure_returns_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, json={"error": True, "reason": "RateLimited"})

        client = IPGeolocationClient(
            "https://geo.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        assert await client.lookup("88.255.1.10") is None

    @pytest.mark.asyncio
    async def test_private_ip_is_not_looked_up(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("private addresses must not be sent to the provider")

        client = IPGeolocationClient(
            "https://geo.test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        assert await client.lookup("192.168.1.20") is None
