"""Read served notices for a recipient from the notice contract.

Two lookup strategies, because the deployed contract exposes both:

1. ``recipientAlerts(address, i)``: walk the per-recipient index until it
   returns 0 or reverts.
2. ``tokenOfOwnerByIndex(address, i)``: only when strategy 1 finds
   nothing; scans at most ``fallback_limit`` owned tokens and keeps those
   whose alert record names the queried address as recipient.

Every alert is paired with its document token in the same pass. Numeric
values are normalized here (ids to decimal strings, times to UTC
datetimes) so nothing downstream ever sees raw uint256 integers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from blockserved.core.exceptions import ChainUnavailable, ContractCallReverted, NotFoundError
from blockserved.models.domain import ChainReadResult, Notice
from blockserved.services.chain.address import same_address, validate_address

if TYPE_CHECKING:
    from blockserved.services.chain.tron_client import TronClient

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_ALERT_FIELDS = (
    "address",  # recipient
    "address",  # sender
    "uint256",  # documentId
    "uint256",  # timestamp
    "bool",  # acknowledged
    "string",  # issuingAgency
    "string",  # noticeType
    "string",  # caseNumber
    "string",  # caseDetails
    "string",  # legalRights
    "uint256",  # responseDeadline
    "string",  # previewImage
)
_DOCUMENT_FIELDS = ("string", "string", "address", "uint256", "bool")

_ZERO_ADDRESS = "T9yD14Nj9j7xAB4dbGeiX9h8unkKHxuWwb"
_MAX_CONSECUTIVE_INDEX_FAILURES = 3


def normalize_token_id(value: object) -> str | None:
    """Return a token id as a decimal string; 0 means 'no token'."""
    number = int(value)  # type: ignore[call-overload]
    return str(number) if number > 0 else None


def normalize_timestamp(value: object) -> datetime | None:
    """Convert a uint256 seconds value to a UTC datetime; 0 or out of range is None."""
    seconds = int(value)  # type: ignore[call-overload]
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _text(value: object) -> str | None:
    return str(value) if value else None


class ChainReader:
    """Read-only access to notices recorded on the TRON contract."""

    def __init__(
        self,
        client: TronClient,
        *,
        index_limit: int = 500,
        fallback_limit: int = 20,
    ) -> None:
        self._client = client
        self._index_limit = index_limit
        self._fallback_limit = fallback_limit

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def is_recipient(self, address: str) -> bool:
        """True if the wallet holds at least one notice token."""
        validate_address(address)
        return await self._balance_of(address) > 0

    async def get_notice(self, token_id: str | int) -> Notice:
        """Fetch one notice by alert id, or by document id via its paired alert."""
        notice = await self._resolve_alert(str(token_id))
        if notice is not None:
            return notice

        document = await self._client.call(
            "documentNotices(uint256)", ["uint256"], [token_id], _DOCUMENT_FIELDS
        )
        alert_id = normalize_token_id(document[3])
        if alert_id is not None:
            notice = await self._resolve_alert(alert_id)
            if notice is not None:
                return notice

        raise NotFoundError(f"Notice {token_id} not found on chain", details={"id": str(token_id)})

    async def list_notices_for_recipient(self, address: str) -> ChainReadResult:
        """Return every notice served to ``address`` plus a skipped-entry count."""
        validate_address(address)

        alert_ids, failed = await self._indexed_alert_ids(address)
        notices: list[Notice] = []

        if alert_ids:
            for alert_id in alert_ids:
                try:
                    notice = await self._resolve_alert(alert_id)
                except (ChainUnavailable, ContractCallReverted) as exc:
                    failed += 1
                    logger.warning("chain_entry_skipped", alert_id=alert_id, error=exc.message)
                    continue
                if notice is not None:
                    notices.append(notice)
        else:
            owned, owned_failed = await self._owned_notices(address)
            notices.extend(owned)
            failed += owned_failed

        notices.sort(
            key=lambda n: n.timestamp or datetime.min.replace(tzinfo=UTC),
            reverse=True,
        )
        logger.info(
            "chain_notices_loaded",
            recipient=address,
            count=len(notices),
            failed=failed,
        )
        return ChainReadResult(notices=notices, failed=failed)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _indexed_alert_ids(self, address: str) -> tuple[list[str], int]:
        """Walk recipientAlerts(address, i) until the sentinel."""
        alert_ids: list[str] = []
        failed = 0
        consecutive_failures = 0

        for index in range(self._index_limit):
            try:
                (raw_id,) = await self._client.call(
                    "recipientAlerts(address,uint256)",
                    ["address", "uint256"],
                    [address, index],
                    ["uint256"],
                )
            except ContractCallReverted:
                break
            except ChainUnavailable as exc:
                if index == 0:
                    raise
                failed += 1
                consecutive_failures += 1
                logger.warning("chain_index_skipped", index=index, error=exc.message)
                if consecutive_failures >= _MAX_CONSECUTIVE_INDEX_FAILURES:
                    break
                continue

            consecutive_failures = 0
            alert_id = normalize_token_id(raw_id)
            if alert_id is None:
                break
            alert_ids.append(alert_id)

        return alert_ids, failed

    async def _owned_notices(self, address: str) -> tuple[list[Notice], int]:
        """Fallback: scan owned tokens and keep alerts addressed to ``address``."""
        balance = await self._balance_of(address)
        scan = min(balance, self._fallback_limit)
        notices: list[Notice] = []
        failed = 0

        for index in range(scan):
            try:
                (raw_id,) = await self._client.call(
                    "tokenOfOwnerByIndex(address,uint256)",
                    ["address", "uint256"],
                    [address, index],
                    ["uint256"],
                )
                token_id = normalize_token_id(raw_id)
                if token_id is None:
                    continue
                notice = await self._resolve_alert(token_id)
            except (ChainUnavailable, ContractCallReverted) as exc:
                failed += 1
                logger.warning("chain_token_skipped", index=index, error=exc.message)
                continue

            if notice is not None and same_address(notice.recipient_address, address):
                notices.append(notice)

        logger.debug("owned_token_scan", recipient=address, balance=balance, scanned=scan)
        return notices, failed

    # ------------------------------------------------------------------
    # Record resolution
    # ------------------------------------------------------------------

    async def _balance_of(self, address: str) -> int:
        try:
            (balance,) = await self._client.call(
                "balanceOf(address)", ["address"], [address], ["uint256"]
            )
        except ContractCallReverted:
            return 0
        return int(balance)  # type: ignore[call-overload]

    async def _resolve_alert(self, alert_id: str) -> Notice | None:
        """Build a Notice from an alert token; None if the token is not an alert."""
        values = await self._client.call(
            "alertNotices(uint256)", ["uint256"], [alert_id], _ALERT_FIELDS
        )
        (
            recipient,
            sender,
            raw_document_id,
            raw_timestamp,
            acknowledged,
            agency,
            notice_type,
            case_number,
            case_details,
            legal_rights,
            raw_deadline,
            preview_image,
        ) = values

        if recipient == _ZERO_ADDRESS:
            return None

        document_id, has_document = await self._resolve_document(
            alert_id, normalize_token_id(raw_document_id)
        )

        return Notice(
            notice_id=alert_id,
            alert_id=alert_id,
            document_id=document_id,
            case_number=_text(case_number),
            sender=str(sender),
            recipient_address=str(recipient),
            issuing_agency=_text(agency),
            notice_type=_text(notice_type),
            timestamp=normalize_timestamp(raw_timestamp),
            acknowledged=bool(acknowledged),
            response_deadline=normalize_timestamp(raw_deadline),
            case_details=_text(case_details),
            legal_rights=_text(legal_rights),
            has_document=has_document,
            preview_image=_text(preview_image),
            verified_on_chain=True,
        )

    async def _resolve_document(
        self, alert_id: str, document_id: str | None
    ) -> tuple[str | None, bool | None]:
        """Confirm the paired document token. Failures leave the companion empty."""
        if document_id is None:
            return None, None
        try:
            encrypted_ipfs, _key, _viewer, raw_alert_id, _restricted = await self._client.call(
                "documentNotices(uint256)", ["uint256"], [document_id], _DOCUMENT_FIELDS
            )
        except (ChainUnavailable, ContractCallReverted) as exc:
            logger.warning(
                "companion_lookup_failed",
                alert_id=alert_id,
                document_id=document_id,
                error=exc.message,
            )
            return None, None

        paired = normalize_token_id(raw_alert_id)
        if paired is not None and paired != alert_id:
            logger.warning(
                "companion_mismatch",
                alert_id=alert_id,
                document_id=document_id,
                paired_alert_id=paired,
            )
            return None, None
        return document_id, bool(encrypted_ipfs)
