"""
IP geolocation client used to pick a location for plan pricing.

Only the caller's IP is looked up; any failure falls back to the
default location.
"""

import ipaddress
from collections.abc import Mapping

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from randevu.platform.billing.subscriptions.models import LocationHint
from randevu.platform.logging import get_logger

logger = get_logger(__name__)

# Checked in order; the first present header wins
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def extract_client_ip(headers: Mapping[str, str], peer_host: str | None = None) -> str | None:
    """Pick the client IP from proxy headers, falling back to the socket peer."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in CLIENT_IP_HEADERS:
        value = lowered.get(header)
        if value:
            # X-Forwarded-For is "client, proxy1, proxy2"
            candidate = value.split(",")[0].strip()
            if candidate:
                return candidate
    return peer_host


def is_private_ip(ip: str) -> bool:
    """True for private, loopback, link-local and unparseable addresses."""
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return True
    return address.is_private or address.is_loopback or address.is_link_local


class IPGeolocationClient:
    """Looks up a city/region/country for a public IP address."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=1),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch(self, ip: str) -> dict:
        response = await self._get_client().get(f"{self.base_url}/{ip}/json/")
        response.raise_for_status()
        return response.json()

    async def lookup(self, ip: str | None) -> LocationHint | None:
        """Return the location of ``ip`` or None when it cannot be resolved."""
        if not ip or is_private_ip(ip):
            logger.debug("geolocation.lookup.skipped", ip=ip)
            return None

        try:
            payload = await self._fetch(ip)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("geolocation.lookup.failed", ip=ip, error=str(exc))
            return None

        if payload.get("error") or not payload.get("city"):
            logger.info("geolocation.lookup.unresolved", ip=ip, reason=payload.get("reason"))
            return None

        return LocationHint(
            city=payload.get("city"),
            state=payload.get("region"),
            country=payload.get("country_name"),
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = ["IPGeolocationClient", "extract_client_ip", "is_private_ip", "CLIENT_IP_HEADERS"]
