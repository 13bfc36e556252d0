"""Database repository layer, one repo per aggregate root."""

from blockserved.db.repositories.activity_repo import ActivityRepo
from blockserved.db.repositories.notice_repo import NoticeRepo

__all__ = [
    "ActivityRepo",
    "NoticeRepo",
]
