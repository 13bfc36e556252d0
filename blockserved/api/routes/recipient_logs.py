"""Recipient activity audit-trail endpoints.

POST /recipient-logs/connection
POST /recipient-logs/notice-view
POST /recipient-logs/document-action
POST /recipient-logs/acknowledgment: upserted per (case, wallet)
GET  /recipient-logs/activity/{wallet}: timeline for a wallet
GET  /recipient-logs/case-activity/{case_number}: timeline for a case
"""

from __future__ import annotations

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from blockserved.api.dependencies import client_ip, get_activity_repo, get_optional_wallet
from blockserved.core.exceptions import WalletAuthError
from blockserved.db.repositories import ActivityRepo  # noqa: TC001
from blockserved.models.domain import ActivityAck, ActivityEventType
from blockserved.models.requests import ActivityEventRequest  # noqa: TC001
from blockserved.models.responses import ActivityEventResponse, ActivityTimelineResponse
from blockserved.services.chain.address import validate_address

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

router = APIRouter(prefix="/recipient-logs", tags=["recipient-logs"])


async def _record(
    event_type: ActivityEventType,
    body: ActivityEventRequest,
    request: Request,
    header_wallet: str | None,
    repo: ActivityRepo,
) -> ActivityAck:
    wallet = validate_address(body.wallet_address)
    if header_wallet is not None and header_wallet != wallet:
        raise WalletAuthError(
            "X-Wallet-Address does not match the event wallet",
            details={"wallet_address": wallet},
        )

    try:
        event = body.to_event(
            event_type,
            received_at=datetime.now(UTC),
            client_ip=client_ip(request),
        )
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc

    row = await repo.record(event)
    logger.info(
        "activity_recorded",
        event_type=event_type.value,
        event_id=row.id,
        case_number=event.case_number,
    )
    return ActivityAck(event_id=row.id, event_type=event_type, recorded_at=row.recorded_at)


@router.post("/connection", response_model=ActivityAck, status_code=201)
async def log_connection(
    body: ActivityEventRequest,
    request: Request,
    header_wallet: str | None = Depends(get_optional_wallet),
    repo: ActivityRepo = Depends(get_activity_repo),
) -> ActivityAck:
    return await _record(ActivityEventType.CONNECTION, body, request, header_wallet, repo)


@router.post("/notice-view", response_model=ActivityAck, status_code=201)
async def log_notice_view(
    body: ActivityEventRequest,
    request: Request,
    header_wallet: str | None = Depends(get_optional_wallet),
    repo: ActivityRepo = Depends(get_activity_repo),
) -> ActivityAck:
    return await _record(ActivityEventType.VIEW, body, request, header_wallet, repo)


@router.post("/document-action", response_model=ActivityAck, status_code=201)
async def log_document_action(
    body: ActivityEventRequest,
    request: Request,
    header_wallet: str | None = Depends(get_optional_wallet),
    repo: ActivityRepo = Depends(get_activity_repo),
) -> ActivityAck:
    return await _record(ActivityEventType.DOCUMENT_ACTION, body, request, header_wallet, repo)


@router.post("/acknowledgment", response_model=ActivityAck)
async def log_acknowledgment(
    body: ActivityEventRequest,
    request: Request,
    header_wallet: str | None = Depends(get_optional_wallet),
    repo: ActivityRepo = Depends(get_activity_repo),
) -> ActivityAck:
    """Idempotent: a repeated acknowledgment updates the existing record."""
    return await _record(ActivityEventType.ACKNOWLEDGMENT, body, request, header_wallet, repo)


@router.get("/activity/{wallet}", response_model=ActivityTimelineResponse)
async def wallet_activity(
    wallet: str,
    limit: int = Query(default=200, ge=1, le=1000),
    repo: ActivityRepo = Depends(get_activity_repo),
) -> ActivityTimelineResponse:
    rows = await repo.list_for_wallet(validate_address(wallet), limit=limit)
    events = [ActivityEventResponse.model_validate(row) for row in rows]
    return ActivityTimelineResponse(count=len(events), events=events)


@router.get("/case-activity/{case_number}", response_model=ActivityTimelineResponse)
async def case_activity(
    case_number: str,
    limit: int = Query(default=200, ge=1, le=1000),
    repo: ActivityRepo = Depends(get_activity_repo),
) -> ActivityTimelineResponse:
    rows = await repo.list_for_case(case_number, limit=limit)
    events = [ActivityEventResponse.model_validate(row) for row in rows]
    return ActivityTimelineResponse(count=len(events), events=events)
