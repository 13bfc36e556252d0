"""API tests for the recipient activity endpoints.

POST /api/v1/recipient-logs/{connection,notice-view,document-action,acknowledgment}
GET  /api/v1/recipient-logs/activity/{wallet}
GET  /api/v1/recipient-logs/case-activity/{case_number}
GET  /api/v1/metrics
"""

from __future__ import annotations

from datetime import UTC, datetime
from types import SimpleNamespace
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest

from blockserved.api.dependencies import get_activity_repo
from blockserved.models.domain import ActivityEventType, RecipientActivityEvent
from tests.conftest import OTHER_WALLET, RECIPIENT

if TYPE_CHECKING:
    from fastapi import FastAPI
    from httpx import AsyncClient

RECORDED_AT = datetime(2024, 5, 3, 8, 0, 5, tzinfo=UTC)
OCCURRED_AT = datetime(2024, 5, 3, 8, 0, tzinfo=UTC)


def _row(event_id: int = 1, **overrides: object) -> SimpleNamespace:
    fields: dict[str, object] = {
        "id": event_id,
        "event_type": "view",
        "wallet_address": RECIPIENT,
        "case_number": "CV-1",
        "notice_id": "7",
        "action_type": "detail_view",
        "occurred_at": OCCURRED_AT,
        "recorded_at": RECORDED_AT,
        "ip_address": "203.0.113.9",
        "session_id": "session-1",
        "transaction_hash": None,
        "geolocation": None,
        "details": {},
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def activity_repo(app: FastAPI) -> AsyncMock:
    repo = AsyncMock()
    repo.record.return_value = _row(event_id=11)
    app.dependency_overrides[get_activity_repo] = lambda: repo
    return repo


def _recorded(repo: AsyncMock) -> RecipientActivityEvent:
    event: RecipientActivityEvent = repo.record.call_args.args[0]
    return event


class TestRecordEvents:
    @pytest.mark.parametrize(
        ("path", "event_type"),
        [
            ("connection", ActivityEventType.CONNECTION),
            ("notice-view", ActivityEventType.VIEW),
            ("document-action", ActivityEventType.DOCUMENT_ACTION),
        ],
    )
    async def test_event_recorded(
        self,
        client: AsyncClient,
        activity_repo: AsyncMock,
        path: str,
        event_type: ActivityEventType,
    ) -> None:
        response = await client.post(
            f"/api/v1/recipient-logs/{path}",
            json={"wallet_address": RECIPIENT, "case_number": "CV-1", "notice_id": "7"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["event_id"] == 11
        assert body["event_type"] == event_type.value
        assert _recorded(activity_repo).event_type == event_type

    async def test_defaults_time_and_forwarded_ip(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        response = await client.post(
            "/api/v1/recipient-logs/connection",
            json={"wallet_address": RECIPIENT},
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

        assert response.status_code == 201
        event = _recorded(activity_repo)
        assert event.ip_address == "203.0.113.9"
        assert event.timestamp.tzinfo is not None

    async def test_client_supplied_fields_kept(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        await client.post(
            "/api/v1/recipient-logs/notice-view",
            json={
                "wallet_address": RECIPIENT,
                "notice_id": "7",
                "timestamp": OCCURRED_AT.isoformat(),
                "ip_address": "198.51.100.4",
                "action_type": "list_view",
                "geolocation": {"country": "Canada", "city": "Toronto"},
            },
        )

        event = _recorded(activity_repo)
        assert event.timestamp == OCCURRED_AT
        assert event.ip_address == "198.51.100.4"
        assert event.action_type == "list_view"
        assert event.geolocation is not None
        assert event.geolocation.city == "Toronto"

    async def test_view_without_target_is_422(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        response = await client.post(
            "/api/v1/recipient-logs/notice-view",
            json={"wallet_address": RECIPIENT},
        )

        assert response.status_code == 422
        activity_repo.record.assert_not_awaited()

    async def test_invalid_wallet_is_400(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        response = await client.post(
            "/api/v1/recipient-logs/connection",
            json={"wallet_address": "0xdeadbeef"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_address"

    async def test_mismatched_wallet_header_is_401(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        response = await client.post(
            "/api/v1/recipient-logs/connection",
            json={"wallet_address": RECIPIENT},
            headers={"X-Wallet-Address": OTHER_WALLET},
        )

        assert response.status_code == 401
        activity_repo.record.assert_not_awaited()


class TestAcknowledgmentEndpoint:
    async def test_acknowledgment_returns_200(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        activity_repo.record.return_value = _row(event_id=42, event_type="acknowledgment")

        response = await client.post(
            "/api/v1/recipient-logs/acknowledgment",
            json={
                "wallet_address": RECIPIENT,
                "case_number": "CV-1",
                "transaction_hash": "abc123",
                "signature": "0xsig",
            },
            headers={"X-Wallet-Address": RECIPIENT},
        )

        assert response.status_code == 200
        assert response.json()["event_id"] == 42
        event = _recorded(activity_repo)
        assert event.event_type == ActivityEventType.ACKNOWLEDGMENT
        assert event.transaction_hash == "abc123"

    async def test_acknowledgment_requires_case_number(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        response = await client.post(
            "/api/v1/recipient-logs/acknowledgment",
            json={"wallet_address": RECIPIENT, "notice_id": "7"},
        )

        assert response.status_code == 422


class TestTimelines:
    async def test_wallet_timeline(self, client: AsyncClient, activity_repo: AsyncMock) -> None:
        activity_repo.list_for_wallet.return_value = [
            _row(1, event_type="connection", case_number=None, notice_id=None),
            _row(2, geolocation={"country": "Canada"}),
        ]

        response = await client.get(f"/api/v1/recipient-logs/activity/{RECIPIENT}?limit=50")

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert [e["event_type"] for e in body["events"]] == ["connection", "view"]
        assert body["events"][1]["geolocation"]["country"] == "Canada"
        activity_repo.list_for_wallet.assert_awaited_once_with(RECIPIENT, limit=50)

    async def test_case_timeline(self, client: AsyncClient, activity_repo: AsyncMock) -> None:
        activity_repo.list_for_case.return_value = [_row(3)]

        response = await client.get("/api/v1/recipient-logs/case-activity/CV-1")

        assert response.status_code == 200
        assert response.json()["events"][0]["id"] == 3
        activity_repo.list_for_case.assert_awaited_once_with("CV-1", limit=200)

    async def test_limit_bounds_enforced(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        response = await client.get("/api/v1/recipient-logs/case-activity/CV-1?limit=0")

        assert response.status_code == 422


class TestMetrics:
    async def test_metrics_use_route_templates(
        self, client: AsyncClient, activity_repo: AsyncMock
    ) -> None:
        activity_repo.list_for_wallet.return_value = []
        await client.get(f"/api/v1/recipient-logs/activity/{RECIPIENT}")

        response = await client.get("/api/v1/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert RECIPIENT not in response.text
