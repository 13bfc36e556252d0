"""Record recipient interactions in the Record Store audit trail.

Connection, view and document-action events are fire-and-forget: they
are retried a bounded number of times when the store is unavailable and
then dropped with a warning. Acknowledgments are different. They must
not be lost, so exhausting the retries raises AcknowledgmentNotRecorded
for the UI to surface, and the caller retries explicitly. Retrying an
acknowledgment is always safe because the store upserts it per
(case, wallet).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from blockserved.core.exceptions import (
    AcknowledgmentNotRecorded,
    BlockServedError,
    StoreUnavailable,
)
from blockserved.models.domain import (
    ActivityAck,
    ActivityEventType,
    DocumentAction,
    Geolocation,
    RecipientActivityEvent,
    ViewType,
)

if TYPE_CHECKING:
    from blockserved.services.activity.geolocation import IpGeolocator

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

T = TypeVar("T")


class ActivityStore(Protocol):
    async def upsert_activity_event(self, event: RecipientActivityEvent) -> ActivityAck: ...

    async def mark_acknowledged(
        self,
        case_number: str,
        tx_id: str,
        signed_at: datetime,
        *,
        wallet_address: str,
        notice_id: str | None = None,
    ) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "activity_store_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


class ActivityLogger:
    """Sends RecipientActivityEvents to the Record Store."""

    def __init__(
        self,
        record_store: ActivityStore,
        *,
        geolocator: IpGeolocator | None = None,
        max_attempts: int = 3,
        backoff_multiplier: float = 0.5,
        session_id: str | None = None,
        user_agent: str | None = None,
        timezone: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = record_store
        self._geolocator = geolocator
        self._max_attempts = max_attempts
        self._backoff_multiplier = backoff_multiplier
        self._session_id = session_id
        self._user_agent = user_agent
        self._timezone = timezone
        self._clock = clock
        self._acknowledged: set[str] = set()
        self._pending: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Event logging
    # ------------------------------------------------------------------

    async def log_connection(
        self,
        wallet_address: str,
        *,
        ip_address: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        return await self._send_best_effort(
            ActivityEventType.CONNECTION,
            wallet_address,
            ip_address=ip_address,
            geolocation=await self._locate(ip_address),
            details=details or {},
        )

    async def log_view(
        self,
        wallet_address: str,
        *,
        case_number: str | None = None,
        notice_id: str | None = None,
        view_type: ViewType = ViewType.DETAIL_VIEW,
        ip_address: str | None = None,
        duration_seconds: int | None = None,
    ) -> bool:
        details: dict[str, Any] = {}
        if duration_seconds is not None:
            details["view_duration_seconds"] = duration_seconds
        if case_number is not None and case_number in self._acknowledged:
            details["after_acknowledgment"] = True

        return await self._send_best_effort(
            ActivityEventType.VIEW,
            wallet_address,
            case_number=case_number,
            notice_id=notice_id,
            action_type=view_type.value,
            ip_address=ip_address,
            details=details,
        )

    async def log_document_action(
        self,
        wallet_address: str,
        action: DocumentAction,
        *,
        case_number: str | None = None,
        notice_id: str | None = None,
        ip_address: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        return await self._send_best_effort(
            ActivityEventType.DOCUMENT_ACTION,
            wallet_address,
            case_number=case_number,
            notice_id=notice_id,
            action_type=action.value,
            ip_address=ip_address,
            details=details or {},
        )

    async def log_acknowledgment(
        self,
        wallet_address: str,
        case_number: str,
        *,
        transaction_hash: str,
        signed_at: datetime | None = None,
        signature: str | None = None,
        notice_id: str | None = None,
        ip_address: str | None = None,
    ) -> ActivityAck:
        """Record a signed acknowledgment and mark the case signed.

        Raises:
            AcknowledgmentNotRecorded: If either write fails after all retries
        """
        signed_at = signed_at or self._clock()
        event = self._event(
            ActivityEventType.ACKNOWLEDGMENT,
            wallet_address,
            case_number=case_number,
            notice_id=notice_id,
            timestamp=signed_at,
            ip_address=ip_address,
            geolocation=await self._locate(ip_address),
            signature=signature,
            transaction_hash=transaction_hash,
        )

        try:
            ack = await self._with_retry(lambda: self._store.upsert_activity_event(event))
            await self._with_retry(
                lambda: self._store.mark_acknowledged(
                    case_number,
                    transaction_hash,
                    signed_at,
                    wallet_address=wallet_address,
                    notice_id=notice_id,
                )
            )
        except BlockServedError as exc:
            logger.error(
                "acknowledgment_not_recorded",
                case_number=case_number,
                transaction_hash=transaction_hash,
                error=exc.message,
            )
            raise AcknowledgmentNotRecorded(
                "Your signature was submitted but could not be recorded. Please retry.",
                details={"case_number": case_number, "transaction_hash": transaction_hash},
            ) from exc

        self._acknowledged.add(case_number)
        logger.info(
            "acknowledgment_recorded",
            case_number=case_number,
            transaction_hash=transaction_hash,
            event_id=ack.event_id,
        )
        return ack

    def is_acknowledged(self, case_number: str) -> bool:
        """True once this logger has recorded an acknowledgment for the case."""
        return case_number in self._acknowledged

    # ------------------------------------------------------------------
    # Background scheduling
    # ------------------------------------------------------------------

    def track(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        """Run a log call in the background, keeping a reference until it finishes."""
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for background log calls scheduled with track()."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _event(
        self,
        event_type: ActivityEventType,
        wallet_address: str,
        *,
        timestamp: datetime | None = None,
        **fields: Any,
    ) -> RecipientActivityEvent:
        return RecipientActivityEvent(
            event_type=event_type,
            wallet_address=wallet_address,
            timestamp=timestamp or self._clock(),
            session_id=self._session_id,
            user_agent=self._user_agent,
            timezone=self._timezone,
            **fields,
        )

    async def _locate(self, ip_address: str | None) -> Geolocation | None:
        if self._geolocator is None or not ip_address:
            return None
        try:
            return await self._geolocator.locate(ip_address)
        except Exception:
            logger.exception("geolocation_failed")
            return None

    async def _with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailable),
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._backoff_multiplier, max=4),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result

    async def _send_best_effort(
        self,
        event_type: ActivityEventType,
        wallet_address: str,
        **fields: Any,
    ) -> bool:
        try:
            event = self._event(event_type, wallet_address, **fields)
        except ValidationError as exc:
            logger.warning(
                "activity_event_invalid",
                event_type=event_type.value,
                errors=exc.error_count(),
            )
            return False

        try:
            await self._with_retry(lambda: self._store.upsert_activity_event(event))
        except BlockServedError as exc:
            logger.warning(
                "activity_event_dropped",
                event_type=event.event_type.value,
                case_number=event.case_number,
                error=exc.message,
            )
            return False
        logger.debug("activity_event_logged", event_type=event.event_type.value)
        return True
