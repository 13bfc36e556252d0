"""Best-effort IP geolocation for activity events.

Looks up the client IP against an ip-api compatible JSON endpoint. Any
failure (timeout, non-success status, private address) yields None so
the event is stored without location data.
"""

from __future__ import annotations

import ipaddress
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from blockserved.models.domain import Geolocation

if TYPE_CHECKING:
    from blockserved.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_FIELDS = "status,country,countryCode,regionName,city,zip,lat,lon,timezone,isp,org"


def clean_ip(raw: str | None) -> str | None:
    """First address of a forwarded-for list, with IPv4-mapped IPv6 unwrapped."""
    if not raw:
        return None
    candidate = raw.split(",")[0].strip().removeprefix("::ffff:")
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


class IpGeolocator:
    """ip-api lookup client."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._base_url = settings.geolocation_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.geolocation_timeout_seconds
        )
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def locate(self, ip_address: str | None) -> Geolocation | None:
        ip = clean_ip(ip_address)
        if ip is None:
            return None
        parsed = ipaddress.ip_address(ip)
        if parsed.is_private or parsed.is_loopback or parsed.is_link_local:
            return None

        try:
            response = await self._client.get(f"{self._base_url}/{ip}", params={"fields": _FIELDS})
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("geolocation_unavailable", ip=ip, error=str(exc))
            return None

        if data.get("status") != "success":
            logger.info("geolocation_unavailable", ip=ip, status=data.get("status"))
            return None

        return Geolocation(
            country=data.get("country"),
            country_code=data.get("countryCode"),
            region=data.get("regionName"),
            city=data.get("city"),
            zip=data.get("zip"),
            latitude=data.get("lat"),
            longitude=data.get("lon"),
            timezone=data.get("timezone"),
            isp=data.get("isp"),
            org=data.get("org"),
        )
