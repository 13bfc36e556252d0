"""Periodic notice polling for one connected recipient wallet.

NotificationPoller drives the recipient-side loop:
  1. start: confirm the wallet holds notice tokens; only recipients poll
  2. poll_once: fan out chain + Record Store reads, reconcile, diff
     against the seen set, commit new unread entries in one update
  3. stop: cancel the loop synchronously; safe to call repeatedly

A cycle never raises to its caller. Source failures are logged, the
"last sync failed" flag is set, and the next tick retries.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import structlog
from prometheus_client import Counter, Histogram

from blockserved.core.exceptions import BlockServedError, NotificationPermissionDenied
from blockserved.models.domain import (
    ChainReadResult,
    Notice,
    NotificationState,
    ReconciliationResult,
)
from blockserved.services.chain.address import validate_address
from blockserved.services.notifications.state import add_new_notices, record_sync
from blockserved.services.reconciliation.reconciler import reconcile

if TYPE_CHECKING:
    from blockserved.services.notifications.notifier import Notifier
    from blockserved.services.notifications.state import NotificationStateStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

POLL_CYCLES = Counter(
    "poll_cycles_total",
    "Notification poll cycles by outcome",
    ["outcome"],
)
POLL_CYCLE_DURATION = Histogram(
    "poll_cycle_duration_seconds",
    "Notification poll cycle duration in seconds",
)


class ChainSource(Protocol):
    async def is_recipient(self, address: str) -> bool: ...

    async def list_notices_for_recipient(self, address: str) -> ChainReadResult: ...


class BackendSource(Protocol):
    async def get_notices_for_recipient(self, address: str) -> list[Notice]: ...


class PollerStatus(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one poll cycle."""

    ok: bool
    new_notices: list[Notice] = field(default_factory=list)
    reconciliation: ReconciliationResult | None = None
    chain_failed: bool = False
    store_failed: bool = False
    chain_skipped: int = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NotificationPoller:
    """Polls for new notices on a fixed interval for a single wallet."""

    def __init__(
        self,
        *,
        wallet_address: str,
        chain_reader: ChainSource,
        record_store: BackendSource,
        state_store: NotificationStateStore,
        notifier: Notifier | None = None,
        interval: float = 30.0,
        cycle_timeout: float = 10.0,
        call_timeout: float = 8.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._wallet = validate_address(wallet_address)
        self._chain = chain_reader
        self._store = record_store
        self._state_store = state_store
        self._notifier = notifier
        self._interval = interval
        self._cycle_timeout = cycle_timeout
        self._call_timeout = call_timeout
        self._clock = clock
        self._status = PollerStatus.IDLE
        self._task: asyncio.Task[None] | None = None
        self._last_sync_at: datetime | None = None

    @property
    def status(self) -> PollerStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_sync_at(self) -> datetime | None:
        return self._last_sync_at

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Begin polling if the wallet is a notice recipient. Returns True if polling."""
        if self.is_running:
            return True

        try:
            recipient = await asyncio.wait_for(
                self._chain.is_recipient(self._wallet), timeout=self._call_timeout
            )
        except (BlockServedError, TimeoutError) as exc:
            logger.warning("recipient_check_failed", wallet=self._wallet, error=str(exc))
            return False

        if not recipient:
            logger.info("poller_not_recipient", wallet=self._wallet)
            self._status = PollerStatus.IDLE
            return False

        self._status = PollerStatus.IDLE
        self._task = asyncio.create_task(self._run(), name=f"notice-poller-{self._wallet}")
        logger.info("poller_started", wallet=self._wallet, interval=self._interval)
        return True

    def stop(self) -> None:
        """Cancel polling. Synchronous and idempotent."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("poller_stopped", wallet=self._wallet)
        self._status = PollerStatus.STOPPED

    async def aclose(self) -> None:
        """Stop and wait for the loop task to finish unwinding."""
        self.stop()
        task, self._task = self._task, None
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self) -> None:
        while True:
            await self.poll_once()
            await asyncio.sleep(self._interval)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> CycleResult:
        """Run one reconcile-and-diff cycle under the hard cycle timeout."""
        self._status = PollerStatus.POLLING
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(self._cycle(), timeout=self._cycle_timeout)
        except TimeoutError:
            logger.warning("poll_cycle_timed_out", timeout=self._cycle_timeout)
            POLL_CYCLES.labels(outcome="timeout").inc()
            await self._mark_failed()
            result = CycleResult(ok=False)
        except Exception:
            logger.exception("poll_cycle_failed", wallet=self._wallet)
            POLL_CYCLES.labels(outcome="error").inc()
            await self._mark_failed()
            result = CycleResult(ok=False)
        finally:
            POLL_CYCLE_DURATION.observe(time.perf_counter() - start)
            if self._status == PollerStatus.POLLING:
                self._status = PollerStatus.IDLE
        return result

    async def _cycle(self) -> CycleResult:
        (chain_notices, chain_skipped, chain_failed), (backend_notices, store_failed) = (
            await asyncio.gather(self._read_chain(), self._read_store())
        )

        if chain_failed and store_failed:
            logger.warning("poll_cycle_no_sources", wallet=self._wallet)
            POLL_CYCLES.labels(outcome="failed").inc()
            await self._mark_failed()
            return CycleResult(ok=False, chain_failed=True, store_failed=True)

        reconciliation = reconcile(chain_notices, backend_notices)
        now = self._clock()
        partial = chain_failed or store_failed
        added: list[Notice] = []

        def commit(state: NotificationState) -> NotificationState:
            new_state, fresh = add_new_notices(state, reconciliation.notices, now=now)
            added.extend(fresh)
            return record_sync(new_state, failed=partial)

        state = await self._state_store.update(commit)
        self._last_sync_at = now

        if added:
            await self._announce(added)

        outcome = "partial" if partial else "ok"
        POLL_CYCLES.labels(outcome=outcome).inc()
        logger.info(
            "poll_cycle_completed",
            wallet=self._wallet,
            outcome=outcome,
            notices=len(reconciliation.notices),
            new=len(added),
            unread=state.unread_count,
            dropped=reconciliation.dropped,
            chain_skipped=chain_skipped,
        )
        return CycleResult(
            ok=True,
            new_notices=added,
            reconciliation=reconciliation,
            chain_failed=chain_failed,
            store_failed=store_failed,
            chain_skipped=chain_skipped,
        )

    async def _read_chain(self) -> tuple[list[Notice], int, bool]:
        try:
            result = await asyncio.wait_for(
                self._chain.list_notices_for_recipient(self._wallet),
                timeout=self._call_timeout,
            )
        except (BlockServedError, TimeoutError) as exc:
            logger.warning("chain_read_failed", wallet=self._wallet, error=str(exc) or "timeout")
            return [], 0, True
        return result.notices, result.failed, False

    async def _read_store(self) -> tuple[list[Notice], bool]:
        try:
            notices = await asyncio.wait_for(
                self._store.get_notices_for_recipient(self._wallet),
                timeout=self._call_timeout,
            )
        except (BlockServedError, TimeoutError) as exc:
            logger.warning("store_read_failed", wallet=self._wallet, error=str(exc) or "timeout")
            return [], True
        return notices, False

    async def _announce(self, notices: list[Notice]) -> None:
        if self._notifier is None:
            return
        try:
            await asyncio.wait_for(self._notifier.notify(notices), timeout=self._call_timeout)
        except NotificationPermissionDenied:
            logger.info("desktop_notification_suppressed", new=len(notices))
        except Exception:
            logger.exception("desktop_notification_failed")

    async def _mark_failed(self) -> None:
        await self._state_store.update(lambda state: record_sync(state, failed=True))
