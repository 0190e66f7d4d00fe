"""Postgres integration tests for the ledger (skipped without DATABASE_URL).

Each test works in its own property so runs do not interfere; the schema
is applied from the migration SQL if it is missing.
"""

from __future__ import annotations

import os
import threading
import uuid
from decimal import Decimal
from pathlib import Path

import pytest

from folio_ledger.domain.errors import ConcurrencyConflictError
from folio_ledger.domain.ledger import BillingParty
from folio_ledger.infra.activity_log import PgActivityLog
from folio_ledger.infra.directory import InMemoryBillingPartyDirectory
from folio_ledger.infra.store import PgLedgerStore
from folio_ledger.services.ledger import FolioLedger

pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)

_SCHEMA = Path(__file__).resolve().parent.parent / "migrations" / "sql" / "001_folio_ledger.sql"


@pytest.fixture(scope="module", autouse=True)
def schema():
    from folio_ledger.infra.db import txn

    with txn() as cur:
        cur.execute(_SCHEMA.read_text())


@pytest.fixture
def property_id():
    return f"it-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def pg_ledger(property_id):
    directory = InMemoryBillingPartyDirectory()
    directory.add_company(property_id, "C101", "Acme Travel", credit_limit=Decimal("5000.00"))
    directory.add_guest(property_id, "G1", "Ada Lovelace")
    return FolioLedger(PgLedgerStore(lock_timeout_ms=2000), PgActivityLog(), directory)


def test_company_scenario_round_trip(pg_ledger, property_id):
    folio = pg_ledger.get_or_create_folio(
        BillingParty.company("C101"), property_id, "it-user"
    ).value
    charge = pg_ledger.post_transaction(folio.id, "CHARGE", "ROOM", "500", "it-user").value
    payment = pg_ledger.post_transaction(
        folio.id, "PAYMENT", "PAYMENT", "500", "it-user"
    ).value

    bulk = pg_ledger.assign_bulk(
        [{"target_transaction_id": charge.id, "new_assigned_amount": "500"}],
        "it-user",
        payment_transaction_id=payment.id,
    )
    assert bulk.audit_error is None
    assert bulk.value.payment.unassigned_amount == Decimal("0.00")
    assert bulk.value.payment.assignment_history[-1].payment_transaction_id == payment.id

    voided = pg_ledger.void_payment(payment.id, "it-user", "bank returned transfer").value

    assert voided.folio.balance == Decimal("500.00")
    assert pg_ledger.get_transaction(charge.id).balance == Decimal("500.00")
    assert pg_ledger.verify_folio(folio.id).ok
    assert pg_ledger.get_unassigned_payment_amount("C101", property_id) == Decimal("0.00")


def test_void_repairs_later_rows(pg_ledger, property_id):
    folio = pg_ledger.get_or_create_folio(BillingParty.guest("G1"), property_id, "it-user").value
    pg_ledger.post_transaction(folio.id, "CHARGE", "ROOM", "100", "it-user")
    payment = pg_ledger.post_transaction(folio.id, "PAYMENT", "PAYMENT", "40", "it-user").value
    tail = pg_ledger.post_transaction(folio.id, "CHARGE", "MINIBAR", "20", "it-user").value

    result = pg_ledger.void_payment(payment.id, "it-user", "declined").value

    assert result.repaired_count == 1
    assert pg_ledger.get_transaction(tail.id).balance == Decimal("120.00")


def test_numbers_are_gapless_under_concurrency(pg_ledger, property_id):
    folio = pg_ledger.get_or_create_folio(BillingParty.guest("G1"), property_id, "it-user").value
    barrier = threading.Barrier(5)
    numbers: list[int] = []
    conflicts: list[Exception] = []

    def worker():
        barrier.wait()
        for _ in range(4):
            while True:
                try:
                    txn = pg_ledger.post_transaction(
                        folio.id, "CHARGE", "ROOM", "1", "it-user"
                    ).value
                except ConcurrencyConflictError as exc:
                    conflicts.append(exc)
                    continue
                numbers.append(txn.transaction_number)
                break

    threads = [threading.Thread(target=worker) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(numbers) == list(range(1, 21))
    assert pg_ledger.get_folio(folio.id).balance == Decimal("20.00")
    assert pg_ledger.verify_folio(folio.id).ok
