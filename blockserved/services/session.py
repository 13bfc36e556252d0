"""One connected recipient wallet.

RecipientSession composes the chain reader, Record Store client,
notification state, poller and activity logger for a single wallet:
  1. connect: validate, log the connection in the background, start polling
  2. open_notice / acknowledge: log the interaction, mark the notice read
  3. disconnect: stop polling and wait for pending activity logs
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import redis.asyncio as aioredis
import structlog

from blockserved.core.logging import bind_wallet_context, clear_wallet_context
from blockserved.models.domain import DocumentAction, Notice, ServiceCertificate, ViewType
from blockserved.services.activity.certificate import build_certificate
from blockserved.services.activity.geolocation import IpGeolocator
from blockserved.services.activity.logger import ActivityLogger
from blockserved.services.chain.address import validate_address
from blockserved.services.chain.reader import ChainReader
from blockserved.services.chain.tron_client import TronClient
from blockserved.services.notifications.cache import build_notification_cache
from blockserved.services.notifications.notifier import LogNotifier
from blockserved.services.notifications.poller import NotificationPoller
from blockserved.services.notifications.state import NotificationStateStore
from blockserved.services.store.client import RecordStoreClient

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from redis.asyncio import Redis

    from blockserved.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


class RecipientSession:
    """Recipient-side tracking for one wallet."""

    def __init__(
        self,
        *,
        wallet_address: str,
        poller: NotificationPoller,
        state_store: NotificationStateStore,
        activity: ActivityLogger,
        contract_address: str,
        session_id: str | None = None,
        ip_address: str | None = None,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self.wallet_address = validate_address(wallet_address)
        self.session_id = session_id or str(uuid.uuid4())
        self.poller = poller
        self.state_store = state_store
        self.activity = activity
        self._contract_address = contract_address
        self._ip_address = ip_address
        self._closers = closers or []
        self._connected = False

    @classmethod
    async def from_settings(
        cls,
        settings: Settings,
        wallet_address: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
        redis: Redis | None = None,
    ) -> RecipientSession:
        """Build a session with production clients for the given wallet."""
        wallet = validate_address(wallet_address)
        session_id = str(uuid.uuid4())

        tron = TronClient(settings)
        store = RecordStoreClient(settings)
        geolocator = IpGeolocator(settings)
        closers: list[Callable[[], Awaitable[None]]] = [tron.close, store.close, geolocator.close]
        if settings.notification_cache_backend == "redis" and redis is None:
            redis = aioredis.from_url(settings.redis_url)
            closers.append(redis.aclose)
        cache = build_notification_cache(settings, redis=redis)
        state_store = await NotificationStateStore.open(wallet, cache)

        poller = NotificationPoller(
            wallet_address=wallet,
            chain_reader=ChainReader(
                tron,
                index_limit=settings.recipient_index_limit,
                fallback_limit=settings.fallback_token_scan_limit,
            ),
            record_store=store,
            state_store=state_store,
            notifier=LogNotifier(),
            interval=settings.poll_interval_seconds,
            cycle_timeout=settings.poll_cycle_timeout_seconds,
            call_timeout=settings.chain_call_timeout_seconds,
        )
        activity = ActivityLogger(
            store,
            geolocator=geolocator,
            max_attempts=settings.activity_max_attempts,
            session_id=session_id,
            user_agent=user_agent,
        )
        return cls(
            wallet_address=wallet,
            poller=poller,
            state_store=state_store,
            activity=activity,
            contract_address=tron.contract_address,
            session_id=session_id,
            ip_address=ip_address,
            closers=closers,
        )

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """Log the connection and start polling. Returns True if the poller runs."""
        bind_wallet_context(self.wallet_address, session_id=self.session_id)
        if not self._connected:
            self._connected = True
            self.activity.track(
                self.activity.log_connection(self.wallet_address, ip_address=self._ip_address)
            )
            logger.info("wallet_connected")
        return await self.poller.start()

    async def disconnect(self) -> None:
        """Stop polling and flush pending activity logs. Safe to call repeatedly."""
        await self.poller.aclose()
        await self.activity.drain()
        if self._connected:
            self._connected = False
            logger.info("wallet_disconnected")
        clear_wallet_context()

    async def aclose(self) -> None:
        await self.disconnect()
        for close in self._closers:
            await close()
        self._closers = []

    async def open_notice(self, notice: Notice, *, view_type: ViewType = ViewType.DETAIL_VIEW) -> None:
        """Record a view and mark the notice read."""
        self.activity.track(
            self.activity.log_view(
                self.wallet_address,
                case_number=notice.case_number,
                notice_id=notice.key,
                view_type=view_type,
                ip_address=self._ip_address,
            )
        )
        if notice.key is not None:
            await self.state_store.mark_read(notice.key)

    async def document_action(self, notice: Notice, action: DocumentAction) -> None:
        self.activity.track(
            self.activity.log_document_action(
                self.wallet_address,
                action,
                case_number=notice.case_number,
                notice_id=notice.key,
                ip_address=self._ip_address,
            )
        )

    async def acknowledge(
        self,
        notice: Notice,
        transaction_hash: str,
        *,
        signature: str | None = None,
        signed_at: datetime | None = None,
    ) -> ServiceCertificate:
        """Record a signed acknowledgment and return the certificate of service.

        Raises:
            AcknowledgmentNotRecorded: If the acknowledgment could not be stored
        """
        if notice.case_number is None:
            msg = "cannot acknowledge a notice without a case number"
            raise ValueError(msg)

        signed_at = signed_at or datetime.now(UTC)
        await self.activity.log_acknowledgment(
            self.wallet_address,
            notice.case_number,
            transaction_hash=transaction_hash,
            signed_at=signed_at,
            signature=signature,
            notice_id=notice.key,
            ip_address=self._ip_address,
        )
        if notice.key is not None:
            await self.state_store.mark_read(notice.key)

        return build_certificate(
            notice,
            recipient=self.wallet_address,
            transaction_hash=transaction_hash,
            signed_at=signed_at,
            contract_address=self._contract_address,
        )
