"""Ledger stores: one unit of work per mutating ledger operation.

A store's ``unit_of_work()`` yields a repository bound to a single
database transaction: every write inside the block lands, or none do.
"""

from __future__ import annotations

import threading
from contextlib import AbstractContextManager, contextmanager
from decimal import Decimal
from typing import Callable, Iterator, Protocol

from psycopg2 import errors as pg_errors
from psycopg2.extensions import connection as PgConnection

from folio_ledger.config import LedgerSettings
from folio_ledger.domain.errors import ConcurrencyConflictError
from folio_ledger.domain.ledger import BillingParty, Folio, FolioTransaction
from folio_ledger.infra.db import get_conn, txn
from folio_ledger.infra.repositories.folio_repository import PgLedgerRepository, allocate_sequence
from folio_ledger.infra.repositories.memory_repository import (
    InMemoryLedgerRepository,
    InMemoryLedgerState,
)

# Errors a concurrent writer on the same folio can cause. Surfaced to the
# caller as ConcurrencyConflictError; the engine never retries on its own.
_CONFLICT_ERRORS = (
    pg_errors.LockNotAvailable,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
)


class LedgerRepository(Protocol):
    """Operations both repositories provide inside a unit of work."""

    def lock_billing_party(self, party: BillingParty, property_id: str) -> None: ...
    def next_sequence(self, property_id: str, counter: str) -> int: ...
    def get_folio(self, folio_id: str, *, for_update: bool = False) -> Folio | None: ...
    def find_open_folio(self, party: BillingParty, property_id: str) -> Folio | None: ...
    def list_party_folios(self, party: BillingParty, property_id: str) -> list[Folio]: ...
    def insert_folio(self, folio: Folio) -> Folio: ...
    def save_folio(self, folio: Folio) -> Folio: ...
    def insert_transaction(self, txn: FolioTransaction) -> FolioTransaction: ...
    def save_transaction(self, txn: FolioTransaction) -> FolioTransaction: ...
    def get_transaction(
        self, transaction_id: str, *, for_update: bool = False
    ) -> FolioTransaction | None: ...
    def list_transactions(
        self, folio_id: str, *, include_voided: bool = True
    ) -> list[FolioTransaction]: ...
    def list_transactions_after(self, anchor: FolioTransaction) -> list[FolioTransaction]: ...
    def sum_unassigned_payments(self, company_id: str, property_id: str) -> Decimal: ...


class LedgerStore(Protocol):
    def unit_of_work(self) -> AbstractContextManager[LedgerRepository]: ...


class PgLedgerStore:
    """Postgres-backed store; one connection per unit of work.

    Folio and transaction numbers come from ``ledger_counters`` bumped on a
    second, short-lived connection, so only folio row locks are held for the
    whole unit of work.
    """

    def __init__(
        self,
        conn_factory: Callable[[], PgConnection] = get_conn,
        *,
        lock_timeout_ms: int | None = None,
    ):
        self._conn_factory = conn_factory
        self._lock_timeout_ms = lock_timeout_ms

    def _allocate_sequence(self, property_id: str, counter: str) -> int:
        conn = self._conn_factory()
        try:
            with txn(conn, lock_timeout_ms=self._lock_timeout_ms) as cur:
                return allocate_sequence(cur, property_id, counter)
        finally:
            conn.close()

    @contextmanager
    def unit_of_work(self) -> Iterator[PgLedgerRepository]:
        conn = self._conn_factory()
        try:
            with txn(conn, lock_timeout_ms=self._lock_timeout_ms) as cur:
                yield PgLedgerRepository(cur, allocate=self._allocate_sequence)
        except _CONFLICT_ERRORS as exc:
            raise ConcurrencyConflictError(
                f"Concurrent write on the same folio: {exc.pgerror or exc}"
            ) from exc
        finally:
            conn.close()


class InMemoryLedgerStore:
    """Process-local store. Units of work are serialised by one lock and
    rolled back by restoring the snapshot taken on entry."""

    def __init__(self) -> None:
        self._state = InMemoryLedgerState()
        self._lock = threading.RLock()

    @property
    def state(self) -> InMemoryLedgerState:
        return self._state

    @contextmanager
    def unit_of_work(self) -> Iterator[InMemoryLedgerRepository]:
        with self._lock:
            snapshot = self._state.snapshot()
            try:
                yield InMemoryLedgerRepository(self._state)
            except BaseException:
                self._state.folios = snapshot.folios
                self._state.transactions = snapshot.transactions
                self._state.counters = snapshot.counters
                self._state.last_created_at = snapshot.last_created_at
                raise


def build_store(settings: LedgerSettings) -> PgLedgerStore | InMemoryLedgerStore:
    if settings.store_backend == "memory":
        return InMemoryLedgerStore()
    return PgLedgerStore(lock_timeout_ms=settings.lock_timeout_ms)
