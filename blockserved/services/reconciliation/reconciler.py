"""Merge chain-sourced and backend-sourced notices into one list.

The merge is keyed by the best id a record carries (notice id, then alert
id, then case number). For a record both sides know, any field the chain
reports wins; fields only the backend knows (case metadata, recipient
name, signature details) are kept. A backend record staged before any
token was minted carries only a case number and matches the chain notice
of that case. ``acknowledged`` is terminal: once either side says True,
the merged record says True.

``reconcile`` is a pure function. Records that cannot be keyed, or raw
mappings that fail validation, are dropped and counted rather than
raised; partial data is normal while the chain index lags the backend.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from blockserved.models.domain import Notice, ReconciliationResult

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

NoticeInput = Notice | Mapping[str, Any]

_PROVENANCE_FIELDS = frozenset({"verified_on_chain", "from_chain_only"})
_EPOCH = datetime.min.replace(tzinfo=UTC)


def _coerce(item: NoticeInput) -> Notice | None:
    if isinstance(item, Notice):
        return item
    try:
        return Notice.model_validate(item)
    except ValidationError:
        return None


def merge_notices(primary: Notice, secondary: Notice) -> Notice:
    """Overlay ``primary`` onto ``secondary``: primary's non-null fields win."""
    merged: dict[str, Any] = {}
    for name in Notice.model_fields:
        if name in _PROVENANCE_FIELDS:
            continue
        value = getattr(primary, name)
        merged[name] = value if value is not None else getattr(secondary, name)

    if primary.acknowledged or secondary.acknowledged:
        merged["acknowledged"] = True

    merged["verified_on_chain"] = primary.verified_on_chain or secondary.verified_on_chain
    merged["from_chain_only"] = False
    return Notice(**merged)


def _collapse(items: Iterable[NoticeInput]) -> tuple[dict[str, Notice], int]:
    """Key one side's records, folding duplicates together. Returns (by_key, dropped)."""
    by_key: dict[str, Notice] = {}
    dropped = 0
    for item in items:
        notice = _coerce(item)
        key = notice.key if notice is not None else None
        if notice is None or key is None:
            dropped += 1
            continue
        existing = by_key.get(key)
        by_key[key] = notice if existing is None else merge_notices(existing, notice)
    return by_key, dropped


def _sort_key(notice: Notice) -> tuple[datetime, str]:
    return notice.timestamp or _EPOCH, notice.key or ""


def reconcile(
    chain_notices: Iterable[NoticeInput],
    backend_notices: Iterable[NoticeInput],
) -> ReconciliationResult:
    """Merge both sources into one de-duplicated, newest-first list."""
    chain_by_key, chain_dropped = _collapse(chain_notices)
    backend_by_key, backend_dropped = _collapse(backend_notices)

    # Chain records key on the alert token id; backend rows may carry that id
    # under notice_id or alert_id, so index both.
    backend_token_index: dict[str, str] = {}
    # Staged cases: backend rows written before any token was minted.
    staged_case_index: dict[str, str] = {}
    for key, notice in backend_by_key.items():
        for token_id in (notice.notice_id, notice.alert_id):
            if token_id is not None:
                backend_token_index.setdefault(token_id, key)
        if notice.notice_id is None and notice.alert_id is None and notice.case_number:
            staged_case_index.setdefault(notice.case_number, key)

    merged: list[Notice] = []
    consumed: set[str] = set()
    matched = 0
    chain_only = 0

    for key, chain_notice in chain_by_key.items():
        backend_key = None
        for candidate in (key, chain_notice.notice_id, chain_notice.alert_id):
            if candidate is None:
                continue
            if candidate in backend_by_key and candidate not in consumed:
                backend_key = candidate
                break
            indexed = backend_token_index.get(candidate)
            if indexed is not None and indexed not in consumed:
                backend_key = indexed
                break

        if backend_key is None and chain_notice.case_number is not None:
            staged = staged_case_index.get(chain_notice.case_number)
            if staged is not None and staged not in consumed:
                backend_key = staged

        if backend_key is None:
            merged.append(
                chain_notice.model_copy(update={"verified_on_chain": True, "from_chain_only": True})
            )
            chain_only += 1
            continue

        consumed.add(backend_key)
        verified = chain_notice.model_copy(update={"verified_on_chain": True})
        merged.append(merge_notices(verified, backend_by_key[backend_key]))
        matched += 1

    backend_only = 0
    for key, backend_notice in backend_by_key.items():
        if key in consumed:
            continue
        merged.append(
            backend_notice.model_copy(update={"verified_on_chain": False, "from_chain_only": False})
        )
        backend_only += 1

    merged.sort(key=_sort_key, reverse=True)
    dropped = chain_dropped + backend_dropped

    if dropped:
        logger.info("reconciliation_dropped_entries", dropped=dropped)

    return ReconciliationResult(
        notices=merged,
        dropped=dropped,
        matched=matched,
        chain_only=chain_only,
        backend_only=backend_only,
    )
