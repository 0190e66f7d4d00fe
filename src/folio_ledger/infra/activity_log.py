"""Activity log: durable audit trail for ledger mutations.

Entries are appended after the ledger's own unit of work commits, in a
separate transaction, so an audit outage never unwinds a financial write.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Protocol, Sequence

from psycopg2.extensions import connection as PgConnection

from folio_ledger.infra.db import get_conn, txn


@dataclass(frozen=True)
class ActivityEntry:
    actor_id: str
    action: str
    entity_type: str
    entity_id: str
    description: str
    hotel_id: str
    changes: dict[str, Any] | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    context: dict[str, Any] = field(default_factory=dict)


class ActivityLog(Protocol):
    def log(self, entry: ActivityEntry) -> None: ...

    def bulk_log(self, entries: Sequence[ActivityEntry]) -> None: ...


def _json_default(value: Any) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _dump(value: dict[str, Any] | None) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=_json_default)


class PgActivityLog:
    """Writes entries to the ``activity_logs`` table."""

    def __init__(self, conn_factory: Callable[[], PgConnection] = get_conn):
        self._conn_factory = conn_factory

    def log(self, entry: ActivityEntry) -> None:
        self.bulk_log([entry])

    def bulk_log(self, entries: Sequence[ActivityEntry]) -> None:
        if not entries:
            return
        conn = self._conn_factory()
        try:
            with txn(conn) as cur:
                cur.executemany(
                    """
                    INSERT INTO activity_logs (
                        actor_id, action, entity_type, entity_id, description,
                        changes, meta, hotel_id, context
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    [
                        (
                            e.actor_id,
                            e.action,
                            e.entity_type,
                            e.entity_id,
                            e.description,
                            _dump(e.changes),
                            _dump(e.meta),
                            e.hotel_id,
                            _dump(e.context),
                        )
                        for e in entries
                    ],
                )
        finally:
            conn.close()


class InMemoryActivityLog:
    """Keeps entries in a list; handy for local runs and assertions."""

    def __init__(self) -> None:
        self.entries: list[ActivityEntry] = []
        self._lock = threading.Lock()

    def log(self, entry: ActivityEntry) -> None:
        self.bulk_log([entry])

    def bulk_log(self, entries: Sequence[ActivityEntry]) -> None:
        with self._lock:
            self.entries.extend(entries)

    def for_entity(self, entity_id: str) -> list[ActivityEntry]:
        return [e for e in self.entries if e.entity_id == entity_id]
