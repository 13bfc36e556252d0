"""Repository for served notices and case service records.

A case is served as an alert token and a document token, stored as
separate served_notices rows. Recipient queries fold the rows of one
case back into a single Notice.
"""

from collections import defaultdict
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import CursorResult, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from blockserved.models.database import CaseServiceRecordRow, ServedNoticeRow
from blockserved.models.domain import CaseStatus, Notice

_EPOCH = datetime.min.replace(tzinfo=UTC)


def _first(values: list[Any]) -> Any:
    return next((value for value in values if value is not None), None)


def fold_case_rows(rows: list[ServedNoticeRow]) -> Notice:
    """Merge one recipient's served_notices rows of a case into a single Notice.

    Acknowledgment comes from the recipient's own rows; the case record only
    contributes signing details once those rows are accepted.
    """
    case = _first([row.case for row in rows])
    alert_rows = [row for row in rows if row.alert_id is not None] or rows
    accepted = any(row.accepted for row in rows)

    case_status: CaseStatus | None = None
    if case is not None:
        case_status = CaseStatus.SIGNED if accepted else CaseStatus.SERVED
    signed_case = case if accepted else None

    return Notice(
        notice_id=_first([row.notice_id or row.alert_id for row in alert_rows]),
        alert_id=_first([row.alert_id for row in rows]),
        document_id=_first([row.document_id for row in rows]),
        case_number=_first([row.case_number for row in rows]),
        sender=_first([row.server_address for row in rows])
        or (case.server_address if case is not None else None),
        recipient_address=rows[0].recipient_address,
        recipient_name=_first([row.recipient_name for row in rows]),
        issuing_agency=_first([row.issuing_agency for row in rows]),
        notice_type=_first([row.notice_type for row in rows]),
        timestamp=min(row.created_at for row in rows),
        response_deadline=_first([row.response_deadline for row in rows]),
        acknowledged=accepted,
        signature_timestamp=_first([row.signature_timestamp for row in rows])
        or (signed_case.accepted_at if signed_case is not None else None),
        signature_tx_id=_first([row.signature_tx_id for row in rows])
        or (signed_case.transaction_hash if signed_case is not None else None),
        case_status=case_status,
        case_metadata=case.case_metadata if case is not None else None,
    )


class NoticeRepo:
    """Async repository for served notices."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_served(
        self,
        *,
        case_number: str,
        recipient_address: str,
        server_address: str | None = None,
        alert_id: str | None = None,
        document_id: str | None = None,
        notice_type: str | None = None,
        issuing_agency: str | None = None,
        recipient_name: str | None = None,
        response_deadline: datetime | None = None,
        case_metadata: dict[str, Any] | None = None,
    ) -> list[ServedNoticeRow]:
        """Store the alert/document rows written when a case is served."""
        case_stmt = (
            pg_insert(CaseServiceRecordRow)
            .values(
                case_number=case_number,
                server_address=server_address,
                case_metadata=case_metadata,
            )
            .on_conflict_do_nothing(index_elements=["case_number"])
        )
        await self._session.execute(case_stmt)

        rows: list[ServedNoticeRow] = []
        for token_id, is_alert in ((alert_id, True), (document_id, False)):
            if token_id is None:
                continue
            rows.append(
                ServedNoticeRow(
                    notice_id=token_id if is_alert else None,
                    alert_id=token_id if is_alert else None,
                    document_id=None if is_alert else token_id,
                    case_number=case_number,
                    recipient_address=recipient_address,
                    recipient_name=recipient_name,
                    server_address=server_address,
                    notice_type=notice_type,
                    issuing_agency=issuing_agency,
                    response_deadline=response_deadline,
                )
            )
        self._session.add_all(rows)
        await self._session.flush()
        return rows

    async def list_for_recipient(self, address: str) -> list[Notice]:
        """Notices served to the address, one per case, newest first."""
        stmt = (
            select(ServedNoticeRow)
            .where(func.lower(ServedNoticeRow.recipient_address) == address.lower())
            .options(selectinload(ServedNoticeRow.case))
            .order_by(ServedNoticeRow.created_at.desc(), ServedNoticeRow.id.desc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)

        groups: dict[str, list[ServedNoticeRow]] = defaultdict(list)
        for row in result.scalars().all():
            group_key = row.case_number or f"row:{row.id}"
            groups[group_key].append(row)

        notices = [fold_case_rows(rows) for rows in groups.values()]
        notices.sort(key=lambda n: n.timestamp or _EPOCH, reverse=True)
        return notices

    async def get_case(self, case_number: str) -> CaseServiceRecordRow | None:
        stmt = select(CaseServiceRecordRow).where(
            CaseServiceRecordRow.case_number == case_number
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_acknowledged(
        self,
        case_number: str,
        *,
        wallet_address: str,
        tx_id: str,
        signed_at: datetime,
        notice_id: str | None = None,
    ) -> tuple[int, bool]:
        """Accept the wallet's notices for a case and move the case to signed.

        Returns (notice rows accepted, whether the case was signed). A case
        served only to other wallets is left untouched. A case with no served
        rows yet (indexed on chain before the serving workflow wrote it) is
        recorded for this wallet. The signed status is terminal.
        """
        notice_stmt = (
            update(ServedNoticeRow)
            .where(
                ServedNoticeRow.case_number == case_number,
                func.lower(ServedNoticeRow.recipient_address) == wallet_address.lower(),
            )
            .values(accepted=True, signature_tx_id=tx_id, signature_timestamp=signed_at)
        )
        notices: CursorResult[tuple[()]] = await self._session.execute(notice_stmt)  # type: ignore[assignment]
        updated = notices.rowcount

        if updated == 0:
            served_rows = await self._session.scalar(
                select(func.count())
                .select_from(ServedNoticeRow)
                .where(ServedNoticeRow.case_number == case_number)
            )
            if served_rows:
                return 0, False

        case_stmt = pg_insert(CaseServiceRecordRow).values(
            case_number=case_number,
            status=CaseStatus.SIGNED.value,
            accepted=True,
            accepted_at=signed_at,
            transaction_hash=tx_id,
        )
        case_stmt = case_stmt.on_conflict_do_update(
            index_elements=["case_number"],
            set_={
                "status": case_stmt.excluded.status,
                "accepted": True,
                "accepted_at": case_stmt.excluded.accepted_at,
                "transaction_hash": case_stmt.excluded.transaction_hash,
                "updated_at": func.now(),
            },
        )
        await self._session.execute(case_stmt)

        if updated == 0:
            self._session.add(
                ServedNoticeRow(
                    notice_id=notice_id,
                    alert_id=notice_id,
                    case_number=case_number,
                    recipient_address=wallet_address,
                    accepted=True,
                    signature_tx_id=tx_id,
                    signature_timestamp=signed_at,
                )
            )
            await self._session.flush()
            updated = 1
        return updated, True
