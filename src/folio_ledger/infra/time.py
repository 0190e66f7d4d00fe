"""Time utilities for ledger timestamps."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def strictly_after(previous: datetime | None) -> datetime:
    """Current UTC time, nudged forward so it is later than ``previous``.

    Postings on one store must have distinct created_at values: running
    balance repair selects "everything created after" a voided row.
    """
    now = utc_now()
    if previous is not None and now <= previous:
        return previous + _TICK
    return now


def history_key(moment: datetime) -> str:
    """ISO-8601 key for an assignment history entry."""
    return moment.astimezone(timezone.utc).isoformat()
