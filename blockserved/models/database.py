"""SQLAlchemy 2.0 ORM models for the Record Store tables.

These map directly to the PostgreSQL schema. Domain enums are stored as
VARCHAR via their StrEnum string values. Activity events live in a single
append-only table; acknowledgments are kept unique per (case, wallet) by a
partial unique index so a repeated signature updates the existing row.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Shared base for all ORM models."""


# ---------------------------------------------------------------------------
# case_service_records
# ---------------------------------------------------------------------------


class CaseServiceRecordRow(Base):
    """Service status of one case, written by the serving workflow."""

    __tablename__ = "case_service_records"

    case_number: Mapped[str] = mapped_column(String(255), primary_key=True)
    server_address: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, server_default="served")
    accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    case_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    notices: Mapped[list["ServedNoticeRow"]] = relationship(back_populates="case")

    def __repr__(self) -> str:
        return f"<CaseServiceRecordRow case={self.case_number!r} status={self.status!r}>"


# ---------------------------------------------------------------------------
# served_notices
# ---------------------------------------------------------------------------


class ServedNoticeRow(Base):
    """One alert or document token minted for a recipient."""

    __tablename__ = "served_notices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notice_id: Mapped[str | None] = mapped_column(String(78), nullable=True, index=True)
    alert_id: Mapped[str | None] = mapped_column(String(78), nullable=True, index=True)
    document_id: Mapped[str | None] = mapped_column(String(78), nullable=True, index=True)
    case_number: Mapped[str | None] = mapped_column(
        String(255),
        ForeignKey("case_service_records.case_number", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    recipient_address: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    server_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notice_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    issuing_agency: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    signature_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    signature_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    case: Mapped[CaseServiceRecordRow | None] = relationship(back_populates="notices")

    __table_args__ = (
        Index("ix_served_notices_recipient_lower", text("lower(recipient_address)")),
    )

    def __repr__(self) -> str:
        return (
            f"<ServedNoticeRow id={self.id} alert={self.alert_id} "
            f"document={self.document_id} case={self.case_number!r}>"
        )


# ---------------------------------------------------------------------------
# recipient_activity_events
# ---------------------------------------------------------------------------


class RecipientActivityRow(Base):
    """Audit-trail entry for a recipient interaction."""

    __tablename__ = "recipient_activity_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    case_number: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    notice_id: Mapped[str | None] = mapped_column(String(78), nullable=True)
    action_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_timezone: Mapped[str | None] = mapped_column(String(100), nullable=True)
    signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    geolocation: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )

    __table_args__ = (
        Index(
            "uq_recipient_acknowledgment",
            "case_number",
            "wallet_address",
            unique=True,
            postgresql_where=text("event_type = 'acknowledgment'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RecipientActivityRow id={self.id} type={self.event_type!r} "
            f"case={self.case_number!r}>"
        )
