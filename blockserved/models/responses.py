"""API response schemas.

Every outbound response is serialized through one of these models.
Structured error responses are included; the API never leaks raw
stack traces.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from blockserved.models.domain import ActivityEventType, CaseStatus, Geolocation, Notice

# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class DependencyHealth(BaseModel):
    """Health status of a single infrastructure dependency."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: str = Field(..., description="'healthy' or 'unhealthy'")
    latency_ms: float | None = None
    details: str | None = None


class HealthResponse(BaseModel):
    """Aggregate health check response."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(..., description="'healthy', 'degraded', or 'unhealthy'")
    version: str
    uptime_seconds: float
    dependencies: list[DependencyHealth]


# ---------------------------------------------------------------------------
# Notices
# ---------------------------------------------------------------------------


class RecipientNoticesResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    recipient: str
    count: int
    notices: list[Notice]


class AcknowledgeCaseResponse(BaseModel):
    """Result of marking a case acknowledged."""

    model_config = ConfigDict(frozen=True)

    case_number: str
    status: CaseStatus
    updated: int = Field(..., ge=0, description="Served-notice rows marked accepted")


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


class ActivityEventResponse(BaseModel):
    """One audit-trail entry."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    event_type: ActivityEventType
    wallet_address: str
    case_number: str | None = None
    notice_id: str | None = None
    action_type: str | None = None
    occurred_at: datetime
    recorded_at: datetime
    ip_address: str | None = None
    session_id: str | None = None
    transaction_hash: str | None = None
    geolocation: Geolocation | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class ActivityTimelineResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int
    events: list[ActivityEventResponse]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error envelope returned by every exception handler."""

    model_config = ConfigDict(frozen=True)

    error: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    request_id: str | None = None
