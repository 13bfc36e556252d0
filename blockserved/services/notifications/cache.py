"""Local persistence for NotificationState.

The cache is never the system of record; the Record Store is. Payloads
are the JSON form of NotificationState, whose ``schema_version`` is part
of both the file name and the Redis key. A payload that no longer
validates is discarded and the wallet starts from an empty state.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import structlog
from pydantic import ValidationError

from blockserved.models.domain import NotificationState

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from blockserved.core.config import Settings

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

SCHEMA_VERSION = 1


class NotificationCache(Protocol):
    """Load/save interface shared by the cache backends."""

    async def load(self, wallet_address: str) -> NotificationState | None: ...

    async def save(self, state: NotificationState) -> None: ...


def _parse(payload: str | bytes, *, wallet_address: str, source: str) -> NotificationState | None:
    try:
        state = NotificationState.model_validate_json(payload)
    except ValidationError as exc:
        logger.warning(
            "notification_cache_discarded",
            wallet=wallet_address,
            source=source,
            errors=exc.error_count(),
        )
        return None
    if state.wallet_address != wallet_address:
        logger.warning("notification_cache_wallet_mismatch", wallet=wallet_address, source=source)
        return None
    return state


class FileNotificationCache:
    """One JSON file per wallet under a cache directory."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def path_for(self, wallet_address: str) -> Path:
        return self._directory / f"notifications-v{SCHEMA_VERSION}-{wallet_address}.json"

    async def load(self, wallet_address: str) -> NotificationState | None:
        path = self.path_for(wallet_address)
        try:
            payload = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        return _parse(payload, wallet_address=wallet_address, source=str(path))

    async def save(self, state: NotificationState) -> None:
        await asyncio.to_thread(self._write, self.path_for(state.wallet_address), state)

    def _write(self, path: Path, state: NotificationState) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".notifications-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(state.model_dump_json())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class RedisNotificationCache:
    """Stores each wallet's state under a versioned Redis key."""

    def __init__(self, redis: Redis, *, prefix: str = "blockserved:notifications") -> None:
        self._redis = redis
        self._prefix = prefix

    def key_for(self, wallet_address: str) -> str:
        return f"{self._prefix}:v{SCHEMA_VERSION}:{wallet_address}"

    async def load(self, wallet_address: str) -> NotificationState | None:
        key = self.key_for(wallet_address)
        payload = await self._redis.get(key)
        if payload is None:
            return None
        return _parse(payload, wallet_address=wallet_address, source=key)

    async def save(self, state: NotificationState) -> None:
        await self._redis.set(self.key_for(state.wallet_address), state.model_dump_json())


def build_notification_cache(settings: Settings, redis: Redis | None = None) -> NotificationCache:
    """Pick the configured cache backend.

    The Redis backend uses the caller's client; the caller owns and closes it.
    """
    if settings.notification_cache_backend == "redis":
        if redis is None:
            msg = "the redis notification cache needs a Redis client"
            raise ValueError(msg)
        return RedisNotificationCache(redis)
    return FileNotificationCache(settings.notification_cache_dir)
