"""Custom exception hierarchy for BlockServed delivery tracking.

Every service-layer error inherits from BlockServedError, giving the API
layer and the notification poller a single base class to catch. Transient
errors (ChainUnavailable, StoreUnavailable) are retried on the next poll
tick; AcknowledgmentNotRecorded is the one failure surfaced to the user.
"""

from __future__ import annotations

from typing import Any


class BlockServedError(Exception):
    """Base exception for all delivery-tracking errors."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)


class InvalidAddress(BlockServedError):
    """Raised when a wallet address is not a valid TRON address."""


class ChainUnavailable(BlockServedError):
    """Raised when the TRON node cannot be reached or times out."""


class ContractCallReverted(BlockServedError):
    """Raised when a constant contract call executes but reverts."""


class StoreUnavailable(BlockServedError):
    """Raised when the Record Store cannot be reached or fails server-side."""


class RecordStoreError(BlockServedError):
    """Raised when the Record Store rejects a request."""


class NotFoundError(BlockServedError):
    """Raised when a requested resource does not exist."""


class WalletAuthError(BlockServedError):
    """Raised when a request lacks the wallet address header."""


class NotificationPermissionDenied(BlockServedError):
    """Raised when desktop notifications are not permitted."""


class AcknowledgmentNotRecorded(BlockServedError):
    """Raised when an acknowledgment could not be persisted after retries."""


class DatabaseError(BlockServedError):
    """Raised when a database operation fails."""


class RateLimitError(BlockServedError):
    """Raised when an external rate limit is hit."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.retry_after = retry_after
