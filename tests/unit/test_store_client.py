"""Tests for the Record Store HTTP client."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from blockserved.core.config import Settings
from blockserved.core.exceptions import (
    InvalidAddress,
    NotFoundError,
    RecordStoreError,
    StoreUnavailable,
)
from blockserved.models.domain import ActivityEventType
from blockserved.services.store.client import WALLET_HEADER, RecordStoreClient
from tests.conftest import RECIPIENT, make_event

NOW = datetime(2024, 5, 3, 8, 0, tzinfo=UTC)


def _client(
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response],
) -> RecordStoreClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RecordStoreClient(settings, http_client=http)


class TestGetNoticesForRecipient:
    async def test_parses_notices_and_skips_invalid(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "recipient": RECIPIENT,
                    "notices": [
                        {"notice_id": "7", "case_number": "CV-1", "acknowledged": True},
                        {"notice_id": "8", "timestamp": "yesterday-ish"},
                    ],
                },
            )

        notices = await _client(test_settings, handler).get_notices_for_recipient(RECIPIENT)

        assert [n.notice_id for n in notices] == ["7"]
        assert notices[0].acknowledged is True
        assert seen[0].url.path == f"/api/v1/notices/recipient/{RECIPIENT}"
        assert seen[0].headers[WALLET_HEADER] == RECIPIENT

    async def test_server_error_is_unavailable(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda request: httpx.Response(503))

        with pytest.raises(StoreUnavailable):
            await client.get_notices_for_recipient(RECIPIENT)

    async def test_transport_error_is_unavailable(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(StoreUnavailable, match="unreachable"):
            await _client(test_settings, handler).get_notices_for_recipient(RECIPIENT)

    async def test_invalid_address_error_mapped(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"error": "invalid_address", "message": "Invalid TRON address"}
            )

        with pytest.raises(InvalidAddress, match="Invalid TRON address"):
            await _client(test_settings, handler).get_notices_for_recipient(RECIPIENT)


class TestUpsertActivityEvent:
    @pytest.mark.parametrize(
        ("event_type", "path"),
        [
            (ActivityEventType.CONNECTION, "/api/v1/recipient-logs/connection"),
            (ActivityEventType.VIEW, "/api/v1/recipient-logs/notice-view"),
            (ActivityEventType.DOCUMENT_ACTION, "/api/v1/recipient-logs/document-action"),
            (ActivityEventType.ACKNOWLEDGMENT, "/api/v1/recipient-logs/acknowledgment"),
        ],
    )
    async def test_posts_to_event_path(
        self, test_settings: Settings, event_type: ActivityEventType, path: str
    ) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                201,
                json={"event_id": 5, "event_type": event_type.value, "recorded_at": NOW.isoformat()},
            )

        ack = await _client(test_settings, handler).upsert_activity_event(
            make_event(event_type=event_type)
        )

        assert ack.event_id == 5
        assert seen[0].url.path == path
        body = json.loads(seen[0].content)
        assert "event_type" not in body
        assert body["wallet_address"] == RECIPIENT

    async def test_rejected_event_raises_store_error(self, test_settings: Settings) -> None:
        client = _client(
            test_settings, lambda request: httpx.Response(422, json={"detail": "bad body"})
        )

        with pytest.raises(RecordStoreError):
            await client.upsert_activity_event(make_event())

    async def test_malformed_receipt_raises_store_error(self, test_settings: Settings) -> None:
        client = _client(test_settings, lambda request: httpx.Response(201, json={"ok": True}))

        with pytest.raises(RecordStoreError, match="malformed"):
            await client.upsert_activity_event(make_event())


class TestMarkAcknowledged:
    async def test_posts_case_acknowledgment(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"case_number": "CV 1/2", "status": "signed", "updated": 2}
            )

        updated = await _client(test_settings, handler).mark_acknowledged(
            "CV 1/2", "abc123", NOW, wallet_address=RECIPIENT
        )

        assert updated == 2
        assert seen[0].url.raw_path == b"/api/v1/cases/CV%201%2F2/acknowledge"
        assert seen[0].headers[WALLET_HEADER] == RECIPIENT
        assert json.loads(seen[0].content) == {"tx_id": "abc123", "signed_at": NOW.isoformat()}

    async def test_sends_notice_id_for_chain_only_case(self, test_settings: Settings) -> None:
        bodies: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200, json={"case_number": "CV-9", "status": "signed", "updated": 1}
            )

        await _client(test_settings, handler).mark_acknowledged(
            "CV-9", "abc123", NOW, wallet_address=RECIPIENT, notice_id="7"
        )

        assert bodies[0]["notice_id"] == "7"

    async def test_unknown_case_raises_not_found(self, test_settings: Settings) -> None:
        client = _client(
            test_settings,
            lambda request: httpx.Response(404, json={"error": "not_found", "message": "No case"}),
        )

        with pytest.raises(NotFoundError, match="No case"):
            await client.mark_acknowledged("CV-404", "abc", NOW, wallet_address=RECIPIENT)
