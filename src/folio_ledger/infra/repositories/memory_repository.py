"""In-memory ledger repository for local development and tests.

Mirrors PgLedgerRepository method for method. State lives on an
InMemoryLedgerState owned by InMemoryLedgerStore; values are frozen, so
copying the dicts is enough to snapshot a unit of work.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal

from folio_ledger.domain.ledger import (
    ZERO,
    BillingParty,
    Folio,
    FolioKind,
    FolioTransaction,
    TransactionType,
)
from folio_ledger.infra.time import strictly_after, utc_now


@dataclass
class InMemoryLedgerState:
    folios: dict[str, Folio] = field(default_factory=dict)
    transactions: dict[str, FolioTransaction] = field(default_factory=dict)
    counters: dict[tuple[str, str], int] = field(default_factory=dict)
    last_created_at: datetime | None = None

    def snapshot(self) -> InMemoryLedgerState:
        return InMemoryLedgerState(
            folios=dict(self.folios),
            transactions=dict(self.transactions),
            counters=dict(self.counters),
            last_created_at=self.last_created_at,
        )


def _party_matches(folio: Folio, party: BillingParty) -> bool:
    if party.kind == FolioKind.COMPANY:
        return folio.company_id == party.party_id
    return folio.guest_id == party.party_id


class InMemoryLedgerRepository:
    """Ledger repository over an InMemoryLedgerState.

    The owning store holds its lock for the whole unit of work, so row
    locks are implicit and the ``for_update`` flags are accepted for
    interface parity only.
    """

    def __init__(self, state: InMemoryLedgerState):
        self._state = state

    def lock_billing_party(self, party: BillingParty, property_id: str) -> None:
        return None

    def next_sequence(self, property_id: str, counter: str) -> int:
        key = (property_id, counter)
        value = self._state.counters.get(key, 0) + 1
        self._state.counters[key] = value
        return value

    # Folios ------------------------------------------------

    def get_folio(self, folio_id: str, *, for_update: bool = False) -> Folio | None:
        return self._state.folios.get(folio_id)

    def find_open_folio(self, party: BillingParty, property_id: str) -> Folio | None:
        candidates = [
            f
            for f in self._state.folios.values()
            if f.property_id == property_id and f.is_open and _party_matches(f, party)
        ]
        candidates.sort(key=lambda f: f.created_at)
        return candidates[0] if candidates else None

    def list_party_folios(self, party: BillingParty, property_id: str) -> list[Folio]:
        folios = [
            f
            for f in self._state.folios.values()
            if f.property_id == property_id and _party_matches(f, party)
        ]
        return sorted(folios, key=lambda f: f.created_at)

    def insert_folio(self, folio: Folio) -> Folio:
        now = utc_now()
        stored = replace(folio, id=str(uuid.uuid4()), created_at=now, updated_at=now)
        self._state.folios[stored.id] = stored
        return stored

    def save_folio(self, folio: Folio) -> Folio:
        current = self._state.folios[folio.id]
        stored = replace(
            folio,
            # identity columns are immutable, same as the SQL UPDATE
            property_id=current.property_id,
            folio_number=current.folio_number,
            kind=current.kind,
            guest_id=current.guest_id,
            company_id=current.company_id,
            created_at=current.created_at,
            updated_at=utc_now(),
        )
        self._state.folios[folio.id] = stored
        return stored

    # Transactions ------------------------------------------

    def insert_transaction(self, txn: FolioTransaction) -> FolioTransaction:
        created_at = strictly_after(self._state.last_created_at)
        self._state.last_created_at = created_at
        stored = replace(txn, id=str(uuid.uuid4()), created_at=created_at)
        self._state.transactions[stored.id] = stored
        return stored

    def save_transaction(self, txn: FolioTransaction) -> FolioTransaction:
        current = self._state.transactions[txn.id]
        stored = replace(
            txn,
            folio_id=current.folio_id,
            property_id=current.property_id,
            transaction_number=current.transaction_number,
            transaction_code=current.transaction_code,
            transaction_type=current.transaction_type,
            category=current.category,
            created_at=current.created_at,
        )
        self._state.transactions[txn.id] = stored
        return stored

    def get_transaction(
        self, transaction_id: str, *, for_update: bool = False
    ) -> FolioTransaction | None:
        return self._state.transactions.get(transaction_id)

    def list_transactions(
        self, folio_id: str, *, include_voided: bool = True
    ) -> list[FolioTransaction]:
        txns = [
            t
            for t in self._state.transactions.values()
            if t.folio_id == folio_id and (include_voided or not t.is_voided)
        ]
        return sorted(txns, key=lambda t: t.statement_key)

    def list_transactions_after(self, anchor: FolioTransaction) -> list[FolioTransaction]:
        later = [
            t
            for t in self._state.transactions.values()
            if t.folio_id == anchor.folio_id
            and not t.is_voided
            and t.ordering_key > anchor.ordering_key
        ]
        return sorted(later, key=lambda t: t.ordering_key)

    def sum_unassigned_payments(self, company_id: str, property_id: str) -> Decimal:
        folio_ids = {
            f.id
            for f in self._state.folios.values()
            if f.company_id == company_id and f.property_id == property_id
        }
        return sum(
            (
                t.unassigned_amount
                for t in self._state.transactions.values()
                if t.folio_id in folio_ids
                and t.transaction_type == TransactionType.PAYMENT
                and not t.is_voided
            ),
            ZERO,
        )
