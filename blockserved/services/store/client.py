"""Async HTTP client for the Record Store API.

Used by the recipient-side core: the notification poller reads notices
through it and the activity logger writes events through it. Retries are
the caller's concern (the poller retries on its next tick, the activity
logger has its own bounded retry), so each request here is one attempt
with an explicit timeout.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from blockserved.core.exceptions import (
    InvalidAddress,
    NotFoundError,
    RecordStoreError,
    StoreUnavailable,
)
from blockserved.models.domain import (
    ActivityAck,
    ActivityEventType,
    Notice,
    RecipientActivityEvent,
)

if TYPE_CHECKING:
    from blockserved.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

WALLET_HEADER = "X-Wallet-Address"

_EVENT_PATHS: dict[ActivityEventType, str] = {
    ActivityEventType.CONNECTION: "/recipient-logs/connection",
    ActivityEventType.VIEW: "/recipient-logs/notice-view",
    ActivityEventType.DOCUMENT_ACTION: "/recipient-logs/document-action",
    ActivityEventType.ACKNOWLEDGMENT: "/recipient-logs/acknowledgment",
}


class RecordStoreClient:
    """Async HTTP client for notice and activity endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient | None = None) -> None:
        self._base_url = settings.record_store_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.record_store_timeout_seconds
        )
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        wallet_address: str | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {"Accept": "application/json"}
        if wallet_address:
            headers[WALLET_HEADER] = wallet_address

        try:
            response = await self._client.request(method, url, headers=headers, json=json)
        except httpx.TransportError as exc:
            msg = f"Record Store unreachable: {exc}"
            raise StoreUnavailable(msg, details={"path": path}) from exc

        if response.status_code >= 500:
            raise StoreUnavailable(
                f"Record Store error: {response.status_code}",
                details={"path": path, "status_code": response.status_code},
            )
        if response.status_code >= 400:
            body = _safe_json(response)
            message = str(body.get("message") or body.get("error") or response.reason_phrase)
            if response.status_code == 404:
                raise NotFoundError(message, details={"path": path})
            if body.get("error") == "invalid_address":
                raise InvalidAddress(message, details=body.get("details") or {})
            raise RecordStoreError(
                message,
                details={"path": path, "status_code": response.status_code},
            )

        return _safe_json(response)

    async def get_notices_for_recipient(self, address: str) -> list[Notice]:
        """Backend notices for a recipient, including ones not yet indexed on chain."""
        data = await self._request(
            "GET", f"/notices/recipient/{address}", wallet_address=address
        )
        notices: list[Notice] = []
        for raw in data.get("notices", []):
            try:
                notices.append(Notice.model_validate(raw))
            except ValidationError as exc:
                logger.warning("store_notice_invalid", errors=exc.error_count())
        logger.debug("store_notices_loaded", recipient=address, count=len(notices))
        return notices

    async def upsert_activity_event(self, event: RecipientActivityEvent) -> ActivityAck:
        """Store an activity event; acknowledgments are upserted per (case, wallet)."""
        data = await self._request(
            "POST",
            _EVENT_PATHS[event.event_type],
            wallet_address=event.wallet_address,
            json=event.model_dump(mode="json", exclude={"event_type"}),
        )
        try:
            return ActivityAck.model_validate(data)
        except ValidationError as exc:
            msg = "Record Store returned a malformed activity receipt"
            raise RecordStoreError(msg, details={"errors": exc.error_count()}) from exc

    async def mark_acknowledged(
        self,
        case_number: str,
        tx_id: str,
        signed_at: datetime,
        *,
        wallet_address: str,
        notice_id: str | None = None,
    ) -> int:
        """Move a case to the terminal signed state. Returns rows updated."""
        body: dict[str, Any] = {"tx_id": tx_id, "signed_at": signed_at.isoformat()}
        if notice_id is not None:
            body["notice_id"] = notice_id
        data = await self._request(
            "POST",
            f"/cases/{quote(case_number, safe='')}/acknowledge",
            wallet_address=wallet_address,
            json=body,
        )
        return int(data.get("updated", 0))


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
