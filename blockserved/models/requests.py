"""API request schemas.

Every inbound request body is validated through one of these models.
No raw dicts ever reach the repository layer.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from blockserved.models.domain import ActivityEventType, Geolocation, RecipientActivityEvent

# ---------------------------------------------------------------------------
# Recipient activity
# ---------------------------------------------------------------------------


class ActivityEventRequest(BaseModel):
    """Body of the /recipient-logs/* endpoints. The event type comes from the path."""

    model_config = ConfigDict(frozen=True)

    wallet_address: str = Field(..., min_length=1, max_length=64)
    case_number: str | None = Field(default=None, max_length=255)
    notice_id: str | None = Field(default=None, max_length=78)
    timestamp: datetime | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = Field(default=None, max_length=255)
    action_type: str | None = Field(default=None, max_length=50)
    timezone: str | None = Field(default=None, max_length=100)
    signature: str | None = None
    transaction_hash: str | None = Field(default=None, max_length=128)
    geolocation: Geolocation | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    def to_event(
        self,
        event_type: ActivityEventType,
        *,
        received_at: datetime,
        client_ip: str | None = None,
    ) -> RecipientActivityEvent:
        """Build the domain event, defaulting time and IP from the request."""
        return RecipientActivityEvent(
            event_type=event_type,
            **self.model_dump(exclude={"timestamp", "ip_address"}),
            timestamp=self.timestamp or received_at,
            ip_address=self.ip_address or client_ip,
        )


# ---------------------------------------------------------------------------
# Cases
# ---------------------------------------------------------------------------


class AcknowledgeCaseRequest(BaseModel):
    """Signed acknowledgment of a served case."""

    model_config = ConfigDict(frozen=True)

    tx_id: str = Field(..., min_length=1, max_length=128, description="Signing transaction hash")
    signed_at: datetime
    notice_id: str | None = Field(
        default=None,
        max_length=78,
        description="Alert token id when the case is known only on chain",
    )
