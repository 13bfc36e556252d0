"""Core domain models and enumerations.

These are the canonical data shapes for delivery tracking. The chain
reader, Record Store client, reconciler and poller all exchange these
types. Frozen models are used for value objects that must not change
after they leave the component that built them.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ActivityEventType(StrEnum):
    """Kinds of recipient interaction recorded in the audit trail."""

    CONNECTION = "connection"
    VIEW = "view"
    DOCUMENT_ACTION = "document_action"
    ACKNOWLEDGMENT = "acknowledgment"


class ViewType(StrEnum):
    """Where in the recipient UI a notice was viewed."""

    LIST_VIEW = "list_view"
    DETAIL_VIEW = "detail_view"
    DOCUMENT_OPEN = "document_open"


class DocumentAction(StrEnum):
    """Actions a recipient can take on the served document."""

    DOWNLOAD = "download"
    PRINT = "print"
    EMAIL = "email"


class CaseStatus(StrEnum):
    """Service status of a case in the Record Store."""

    SERVED = "served"
    SIGNED = "signed"


# ---------------------------------------------------------------------------
# Notice
# ---------------------------------------------------------------------------


class Notice(BaseModel):
    """A served legal notice as seen by the chain, the backend, or both.

    Token ids are carried as decimal strings and times as UTC datetimes so
    a notice always serializes to plain JSON. Every field is optional
    because each source only knows part of the record; the reconciler
    fills the gaps.
    """

    model_config = ConfigDict(frozen=True)

    notice_id: str | None = None
    alert_id: str | None = None
    document_id: str | None = None
    case_number: str | None = None

    sender: str | None = None
    recipient_address: str | None = None
    issuing_agency: str | None = None
    notice_type: str | None = None
    timestamp: datetime | None = Field(default=None, description="Time of service")
    acknowledged: bool | None = None
    response_deadline: datetime | None = None

    # Reported by the contract only.
    case_details: str | None = None
    legal_rights: str | None = None
    has_document: bool | None = None
    preview_image: str | None = None

    # Reported by the Record Store only.
    recipient_name: str | None = None
    signature_timestamp: datetime | None = None
    signature_tx_id: str | None = None
    case_status: CaseStatus | None = None
    case_metadata: dict[str, Any] | None = None

    verified_on_chain: bool = False
    from_chain_only: bool = False

    @field_validator("timestamp", "response_deadline", "signature_timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def key(self) -> str | None:
        """Best available identity: notice id, then alert id, then case number."""
        return self.notice_id or self.alert_id or self.case_number


class ChainReadResult(BaseModel):
    """Notices read from the contract plus the count of skipped entries."""

    model_config = ConfigDict(frozen=True)

    notices: list[Notice] = Field(default_factory=list)
    failed: int = Field(default=0, ge=0)


class ReconciliationResult(BaseModel):
    """Merged notice list with counts describing how it was assembled.

    ``dropped`` counts entries that could not be keyed (or could not be
    parsed at all). A non-zero count is the expected steady state while
    chain indexing lags behind the backend; it is not an error.
    """

    model_config = ConfigDict(frozen=True)

    notices: list[Notice] = Field(default_factory=list)
    dropped: int = Field(default=0, ge=0)
    matched: int = Field(default=0, ge=0)
    chain_only: int = Field(default=0, ge=0)
    backend_only: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Recipient activity
# ---------------------------------------------------------------------------


class Geolocation(BaseModel):
    """IP-derived location attached to an activity event when available."""

    model_config = ConfigDict(frozen=True)

    country: str | None = None
    country_code: str | None = None
    region: str | None = None
    city: str | None = None
    zip: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    timezone: str | None = None
    isp: str | None = None
    org: str | None = None


class RecipientActivityEvent(BaseModel):
    """A single tracked recipient interaction."""

    model_config = ConfigDict(frozen=True)

    event_type: ActivityEventType
    wallet_address: str = Field(..., min_length=1)
    case_number: str | None = None
    notice_id: str | None = None
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    action_type: str | None = Field(
        default=None,
        description="View kind or document action, e.g. 'detail_view', 'download'",
    )
    timezone: str | None = None
    signature: str | None = None
    transaction_hash: str | None = None
    geolocation: Geolocation | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_target(self) -> "RecipientActivityEvent":
        if self.event_type == ActivityEventType.CONNECTION:
            return self
        if self.event_type == ActivityEventType.ACKNOWLEDGMENT and not self.case_number:
            msg = "acknowledgment events require a case_number"
            raise ValueError(msg)
        if not self.case_number and not self.notice_id:
            msg = f"{self.event_type.value} events require a case_number or notice_id"
            raise ValueError(msg)
        return self


class ActivityAck(BaseModel):
    """Record Store receipt for a stored activity event."""

    model_config = ConfigDict(frozen=True)

    event_id: int
    event_type: ActivityEventType
    recorded_at: datetime


# ---------------------------------------------------------------------------
# Local notification state
# ---------------------------------------------------------------------------


class NotificationEntry(BaseModel):
    """One notice the recipient has been shown."""

    model_config = ConfigDict(frozen=True)

    notice_id: str = Field(..., min_length=1)
    read: bool = False
    received_at: datetime
    notice_type: str | None = None
    sender: str | None = None
    case_number: str | None = None


class NotificationState(BaseModel):
    """What a wallet has already been shown, newest first.

    Persisted by the notification cache; ``schema_version`` guards against
    loading a payload written by an incompatible release.
    """

    model_config = ConfigDict(frozen=True)

    schema_version: Literal[1] = 1
    wallet_address: str = Field(..., min_length=1)
    entries: tuple[NotificationEntry, ...] = ()
    last_sync_failed: bool = False

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "NotificationState":
        ids = [entry.notice_id for entry in self.entries]
        if len(ids) != len(set(ids)):
            msg = "notice ids must be unique within a notification state"
            raise ValueError(msg)
        return self

    @property
    def seen_ids(self) -> frozenset[str]:
        return frozenset(entry.notice_id for entry in self.entries)

    @property
    def unread_count(self) -> int:
        return sum(1 for entry in self.entries if not entry.read)


class ServiceCertificate(BaseModel):
    """Certificate of service acknowledgment issued after a recipient signs."""

    model_config = ConfigDict(frozen=True)

    title: str = "CERTIFICATE OF SERVICE ACKNOWLEDGMENT"
    recipient: str
    document_type: str | None = None
    case_number: str | None = None
    agency: str | None = None
    notice_id: str | None = None
    date_served: datetime | None = None
    date_signed: datetime
    transaction_hash: str
    blockchain_network: str = "TRON Mainnet"
    contract_address: str
    verification_url: str
