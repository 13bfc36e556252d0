"""Notice and case endpoints.

GET  /notices/recipient/{address}: notices served to a wallet, one per case
POST /cases/{case_number}/acknowledge: mark a case signed (X-Wallet-Address required)

A case the Record Store has no rows for yet (served on chain, not yet
written by the serving workflow) is recorded for the signing wallet.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from blockserved.api.dependencies import get_notice_repo, get_wallet_address
from blockserved.core.exceptions import NotFoundError
from blockserved.db.repositories import NoticeRepo  # noqa: TC001
from blockserved.models.domain import CaseStatus
from blockserved.models.requests import AcknowledgeCaseRequest  # noqa: TC001
from blockserved.models.responses import AcknowledgeCaseResponse, RecipientNoticesResponse
from blockserved.services.chain.address import validate_address

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

router = APIRouter(tags=["notices"])


@router.get(
    "/notices/recipient/{address}",
    response_model=RecipientNoticesResponse,
    summary="List notices served to a recipient",
)
async def list_recipient_notices(
    address: str,
    repo: NoticeRepo = Depends(get_notice_repo),
) -> RecipientNoticesResponse:
    """Alert and document rows of one case are returned as a single notice."""
    wallet = validate_address(address)
    notices = await repo.list_for_recipient(wallet)
    return RecipientNoticesResponse(recipient=wallet, count=len(notices), notices=notices)


@router.post(
    "/cases/{case_number}/acknowledge",
    response_model=AcknowledgeCaseResponse,
    summary="Mark a served case as signed",
)
async def acknowledge_case(
    case_number: str,
    request: AcknowledgeCaseRequest,
    wallet: str = Depends(get_wallet_address),
    repo: NoticeRepo = Depends(get_notice_repo),
) -> AcknowledgeCaseResponse:
    updated, case_found = await repo.mark_acknowledged(
        case_number,
        wallet_address=wallet,
        tx_id=request.tx_id,
        signed_at=request.signed_at,
        notice_id=request.notice_id,
    )
    if not case_found:
        raise NotFoundError(
            f"Case {case_number} was not served to this wallet",
            details={"case_number": case_number},
        )

    logger.info(
        "case_acknowledged",
        case_number=case_number,
        wallet=wallet,
        tx_id=request.tx_id,
        notices_updated=updated,
    )
    return AcknowledgeCaseResponse(
        case_number=case_number,
        status=CaseStatus.SIGNED,
        updated=updated,
    )
