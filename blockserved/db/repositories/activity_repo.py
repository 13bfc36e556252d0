"""Repository for the recipient activity audit trail.

Connection, view and document-action events are appended. Acknowledgments
are upserted on (case_number, wallet_address) through the partial unique
index, so a retried acknowledgment updates the row instead of adding one.
"""

from typing import Any

from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from blockserved.models.database import RecipientActivityRow
from blockserved.models.domain import ActivityEventType, RecipientActivityEvent

_ACK_INDEX_WHERE = text("event_type = 'acknowledgment'")


def _row_values(event: RecipientActivityEvent) -> dict[str, Any]:
    return {
        "event_type": event.event_type.value,
        "wallet_address": event.wallet_address,
        "case_number": event.case_number,
        "notice_id": event.notice_id,
        "action_type": event.action_type,
        "occurred_at": event.timestamp,
        "ip_address": event.ip_address,
        "user_agent": event.user_agent,
        "session_id": event.session_id,
        "recipient_timezone": event.timezone,
        "signature": event.signature,
        "transaction_hash": event.transaction_hash,
        "geolocation": event.geolocation.model_dump() if event.geolocation else None,
        "details": event.details,
    }


class ActivityRepo:
    """Async repository for recipient activity events."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, event: RecipientActivityEvent) -> RecipientActivityRow:
        """Store an event, upserting acknowledgments."""
        if event.event_type == ActivityEventType.ACKNOWLEDGMENT:
            return await self.upsert_acknowledgment(event)
        return await self.insert_event(event)

    async def insert_event(self, event: RecipientActivityEvent) -> RecipientActivityRow:
        row = RecipientActivityRow(**_row_values(event))
        self._session.add(row)
        await self._session.flush()
        await self._session.refresh(row)
        return row

    async def upsert_acknowledgment(self, event: RecipientActivityEvent) -> RecipientActivityRow:
        """Insert or update the single acknowledgment row for (case, wallet)."""
        values = _row_values(event)
        stmt = pg_insert(RecipientActivityRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["case_number", "wallet_address"],
            index_where=_ACK_INDEX_WHERE,
            set_={
                key: stmt.excluded[key]
                for key in values
                if key not in ("event_type", "case_number", "wallet_address")
            },
        ).returning(RecipientActivityRow)
        result = await self._session.execute(
            stmt, execution_options={"populate_existing": True}
        )
        return result.scalar_one()

    async def list_for_wallet(self, wallet_address: str, *, limit: int = 200) -> list[RecipientActivityRow]:
        """Events for a wallet, oldest first."""
        stmt = (
            select(RecipientActivityRow)
            .where(RecipientActivityRow.wallet_address == wallet_address)
            .order_by(RecipientActivityRow.occurred_at, RecipientActivityRow.id)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_case(self, case_number: str, *, limit: int = 200) -> list[RecipientActivityRow]:
        """Events for a case across wallets, oldest first."""
        stmt = (
            select(RecipientActivityRow)
            .where(RecipientActivityRow.case_number == case_number)
            .order_by(RecipientActivityRow.occurred_at, RecipientActivityRow.id)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
