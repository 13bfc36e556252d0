"""Tests for IP cleanup, geolocation lookup, and the service certificate."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from blockserved.core.config import Settings
from blockserved.services.activity.certificate import TRONSCAN_TX_URL, build_certificate
from blockserved.services.activity.geolocation import IpGeolocator, clean_ip
from tests.conftest import RECIPIENT, make_notice


class TestCleanIp:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("203.0.113.9", "203.0.113.9"),
            ("203.0.113.9, 10.0.0.1", "203.0.113.9"),
            ("::ffff:203.0.113.9", "203.0.113.9"),
            ("2001:db8::1", "2001:db8::1"),
            ("not-an-ip", None),
            ("", None),
            (None, None),
        ],
    )
    def test_clean_ip(self, raw: str | None, expected: str | None) -> None:
        assert clean_ip(raw) == expected


class TestIpGeolocator:
    async def test_maps_successful_lookup(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "status": "success",
                    "country": "Canada",
                    "countryCode": "CA",
                    "regionName": "Ontario",
                    "city": "Toronto",
                    "lat": 43.65,
                    "lon": -79.38,
                    "timezone": "America/Toronto",
                },
            )

        geolocator = IpGeolocator(
            test_settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        location = await geolocator.locate("203.0.113.9")

        assert location is not None
        assert location.city == "Toronto"
        assert location.region == "Ontario"
        assert location.latitude == 43.65
        assert seen[0].url.path.endswith("/203.0.113.9")
        assert "city" in seen[0].url.params["fields"]

    @pytest.mark.parametrize("ip", ["127.0.0.1", "10.1.2.3", "192.168.0.4", "garbage"])
    async def test_skips_unroutable_addresses(self, test_settings: Settings, ip: str) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("lookup should not be attempted")

        geolocator = IpGeolocator(
            test_settings, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )

        assert await geolocator.locate(ip) is None

    async def test_failed_status_returns_none(self, test_settings: Settings) -> None:
        geolocator = IpGeolocator(
            test_settings,
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda request: httpx.Response(
                        200, json={"status": "fail", "message": "reserved range"}
                    )
                )
            ),
        )

        assert await geolocator.locate("203.0.113.9") is None

    async def test_http_error_returns_none(self, test_settings: Settings) -> None:
        geolocator = IpGeolocator(
            test_settings,
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(429))
            ),
        )

        assert await geolocator.locate("203.0.113.9") is None


class TestBuildCertificate:
    def test_certificate_links_transaction(self) -> None:
        signed_at = datetime(2024, 5, 3, 8, 0, tzinfo=UTC)
        notice = make_notice(notice_id="7", notice_type="Summons")

        certificate = build_certificate(
            notice,
            recipient=RECIPIENT,
            transaction_hash="abc123",
            signed_at=signed_at,
            contract_address="TLhYHQatauDtZ4iNCePU26WbVjsXtMPdoN",
        )

        assert certificate.verification_url == f"{TRONSCAN_TX_URL}abc123"
        assert certificate.document_type == "Summons"
        assert certificate.case_number == "CV-2024-0042"
        assert certificate.notice_id == "7"
        assert certificate.date_served == notice.timestamp
        assert certificate.date_signed == signed_at
        assert certificate.blockchain_network == "TRON Mainnet"
