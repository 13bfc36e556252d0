"""Desktop notification interface for newly discovered notices."""

from __future__ import annotations

from collections.abc import Sequence
from enum import StrEnum
from typing import Protocol

import structlog

from blockserved.core.exceptions import NotificationPermissionDenied
from blockserved.models.domain import Notice

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


class NotificationPermission(StrEnum):
    """Mirrors the browser's Notification.permission values."""

    GRANTED = "granted"
    DENIED = "denied"
    DEFAULT = "default"


class Notifier(Protocol):
    """Protocol for desktop-notification side effects."""

    async def notify(self, notices: Sequence[Notice]) -> None:
        """Announce newly discovered notices.

        Raises:
            NotificationPermissionDenied: If the user has not allowed notifications
        """
        ...


def format_notification(notice: Notice) -> tuple[str, str]:
    """Title and body for a new-notice notification."""
    sender = notice.sender or "an unknown sender"
    if len(sender) > 10:
        sender = f"{sender[:10]}..."
    return "New Legal Notice", f"You have received a new legal notice from {sender}"


class LogNotifier:
    """Emits notifications as structured log events."""

    def __init__(self, permission: NotificationPermission = NotificationPermission.GRANTED) -> None:
        self.permission = permission

    async def notify(self, notices: Sequence[Notice]) -> None:
        if self.permission != NotificationPermission.GRANTED:
            raise NotificationPermissionDenied(
                "Desktop notifications not permitted",
                details={"permission": self.permission.value},
            )
        if not notices:
            return
        # One notification per cycle, tagged with the newest notice.
        title, body = format_notification(notices[0])
        logger.info(
            "desktop_notification",
            title=title,
            body=body,
            tag=notices[0].key,
            new_count=len(notices),
        )
