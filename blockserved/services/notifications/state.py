"""Notification state transitions and the single serialized update path.

The transition functions are pure: each takes a NotificationState and
returns a new one (or the same object when nothing changes). The
NotificationStateStore is the only place state is replaced. Poll-cycle
commits and user "mark read" actions both go through
``NotificationStateStore.update``, which holds an asyncio.Lock so a click
can never overwrite a concurrent poll result.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from blockserved.models.domain import Notice, NotificationEntry, NotificationState

if TYPE_CHECKING:
    from blockserved.services.notifications.cache import NotificationCache

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

StateListener = Callable[[NotificationState], None]


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------


def _is_staged(notice: Notice) -> bool:
    return notice.notice_id is None and notice.alert_id is None and notice.case_number is not None


def add_new_notices(
    state: NotificationState,
    notices: Iterable[Notice],
    *,
    now: datetime,
) -> tuple[NotificationState, list[Notice]]:
    """Add every not-yet-seen notice as unread. Returns (new_state, newly_added).

    An entry first seen as a staged case (keyed by case number) takes on the
    token id once the chain reports it, keeping its read flag. A staged
    notice for a case that already has an entry is not added again.
    """
    seen = set(state.seen_ids)
    seen_cases = {entry.case_number for entry in state.entries if entry.case_number}
    staged_entries = {
        entry.case_number: entry.notice_id
        for entry in state.entries
        if entry.case_number and entry.notice_id == entry.case_number
    }
    rekeyed: dict[str, str] = {}
    added: list[Notice] = []
    entries: list[NotificationEntry] = []

    for notice in notices:
        key = notice.key
        if key is None or key in seen:
            continue
        if _is_staged(notice) and notice.case_number in seen_cases:
            continue
        staged_id = staged_entries.pop(notice.case_number, None) if notice.case_number else None
        if staged_id is not None:
            rekeyed[staged_id] = key
            seen.add(key)
            continue
        seen.add(key)
        added.append(notice)
        entries.append(
            NotificationEntry(
                notice_id=key,
                read=False,
                received_at=now,
                notice_type=notice.notice_type,
                sender=notice.sender,
                case_number=notice.case_number,
            )
        )

    if not entries and not rekeyed:
        return state, []
    existing = tuple(
        entry.model_copy(update={"notice_id": rekeyed[entry.notice_id]})
        if entry.notice_id in rekeyed
        else entry
        for entry in state.entries
    )
    return state.model_copy(update={"entries": (*entries, *existing)}), added


def mark_read(state: NotificationState, notice_id: str) -> NotificationState:
    """Mark one entry read; unknown or already-read ids leave state unchanged."""
    changed = False
    entries: list[NotificationEntry] = []
    for entry in state.entries:
        if entry.notice_id == notice_id and not entry.read:
            entries.append(entry.model_copy(update={"read": True}))
            changed = True
        else:
            entries.append(entry)
    if not changed:
        return state
    return state.model_copy(update={"entries": tuple(entries)})


def mark_all_read(state: NotificationState) -> NotificationState:
    if state.unread_count == 0:
        return state
    entries = tuple(entry.model_copy(update={"read": True}) for entry in state.entries)
    return state.model_copy(update={"entries": entries})


def record_sync(state: NotificationState, *, failed: bool) -> NotificationState:
    """Set the "last sync failed" indicator; unchanged state is returned as-is."""
    if state.last_sync_failed == failed:
        return state
    return state.model_copy(update={"last_sync_failed": failed})


# ---------------------------------------------------------------------------
# Serialized store
# ---------------------------------------------------------------------------


class NotificationStateStore:
    """Owns the current NotificationState for one wallet."""

    def __init__(self, state: NotificationState, cache: NotificationCache | None = None) -> None:
        self._state = state
        self._cache = cache
        self._lock = asyncio.Lock()
        self._listeners: list[StateListener] = []

    @classmethod
    async def open(
        cls,
        wallet_address: str,
        cache: NotificationCache | None = None,
    ) -> NotificationStateStore:
        """Load cached state for the wallet, or start empty."""
        state = await cache.load(wallet_address) if cache is not None else None
        if state is None:
            state = NotificationState(wallet_address=wallet_address)
        return cls(state, cache)

    @property
    def state(self) -> NotificationState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback invoked once per committed change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def update(
        self,
        change: Callable[[NotificationState], NotificationState],
    ) -> NotificationState:
        """Apply ``change`` to the current state as one atomic replacement."""
        async with self._lock:
            new_state = change(self._state)
            if new_state is self._state:
                return new_state
            self._state = new_state
            self._notify(new_state)
            if self._cache is not None:
                await asyncio.shield(self._persist(new_state))
            return new_state

    async def mark_read(self, notice_id: str) -> NotificationState:
        return await self.update(lambda state: mark_read(state, notice_id))

    async def mark_all_read(self) -> NotificationState:
        return await self.update(mark_all_read)

    def _notify(self, state: NotificationState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("notification_listener_failed")

    async def _persist(self, state: NotificationState) -> None:
        assert self._cache is not None
        try:
            await self._cache.save(state)
        except Exception:
            logger.exception("notification_cache_save_failed", wallet=state.wallet_address)
