"""Billing-party directory: guests, company accounts and their
city-ledger payment methods.

These tables belong to the wider back office; the ledger only reads them
and treats guest/company ids as opaque foreign identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, Protocol

from psycopg2.extensions import connection as PgConnection

from folio_ledger.domain.ledger import ZERO, BillingParty, BillingPartyInfo, FolioKind
from folio_ledger.infra.db import get_conn, txn


class BillingPartyDirectory(Protocol):
    def get_party(self, party: BillingParty, property_id: str) -> BillingPartyInfo | None: ...

    def city_ledger_payment_method(self, company_id: str, property_id: str) -> str | None: ...


class PgBillingPartyDirectory:
    def __init__(self, conn_factory: Callable[[], PgConnection] = get_conn):
        self._conn_factory = conn_factory

    def get_party(self, party: BillingParty, property_id: str) -> BillingPartyInfo | None:
        conn = self._conn_factory()
        try:
            with txn(conn) as cur:
                if party.kind == FolioKind.COMPANY:
                    cur.execute(
                        """
                        SELECT company_name, credit_limit
                        FROM company_accounts
                        WHERE id = %s AND property_id = %s
                        """,
                        (party.party_id, property_id),
                    )
                    row = cur.fetchone()
                    if row is None:
                        return None
                    return BillingPartyInfo(
                        party=party,
                        display_name=row[0],
                        credit_limit=Decimal(row[1]) if row[1] is not None else ZERO,
                    )

                cur.execute(
                    """
                    SELECT first_name, last_name
                    FROM guests
                    WHERE id = %s AND property_id = %s
                    """,
                    (party.party_id, property_id),
                )
                row = cur.fetchone()
                if row is None:
                    return None
                name = " ".join(p for p in (row[0], row[1]) if p)
                return BillingPartyInfo(party=party, display_name=name or party.party_id)
        finally:
            conn.close()

    def city_ledger_payment_method(self, company_id: str, property_id: str) -> str | None:
        """Active CITY_LEDGER payment method designated for the company."""
        conn = self._conn_factory()
        try:
            with txn(conn) as cur:
                cur.execute(
                    """
                    SELECT pm.id
                    FROM payment_methods pm
                    JOIN company_accounts ca ON ca.id = %s
                    WHERE pm.property_id = %s
                      AND pm.method_type = 'CITY_LEDGER'
                      AND pm.is_active
                      AND pm.name ILIKE '%%' || ca.company_name || '%%'
                    ORDER BY pm.id
                    LIMIT 1
                    """,
                    (company_id, property_id),
                )
                row = cur.fetchone()
                return str(row[0]) if row else None
        finally:
            conn.close()


class InMemoryBillingPartyDirectory:
    def __init__(self) -> None:
        self._parties: dict[tuple[str, FolioKind, str], BillingPartyInfo] = {}
        self._city_ledger: dict[tuple[str, str], str] = {}

    def add_guest(self, property_id: str, guest_id: str, name: str) -> BillingParty:
        party = BillingParty.guest(guest_id)
        self._parties[(property_id, party.kind, guest_id)] = BillingPartyInfo(party, name)
        return party

    def add_company(
        self,
        property_id: str,
        company_id: str,
        name: str,
        *,
        credit_limit: Decimal = ZERO,
        city_ledger_method_id: str | None = None,
    ) -> BillingParty:
        party = BillingParty.company(company_id)
        self._parties[(property_id, party.kind, company_id)] = BillingPartyInfo(
            party, name, credit_limit
        )
        if city_ledger_method_id is not None:
            self._city_ledger[(property_id, company_id)] = city_ledger_method_id
        return party

    def get_party(self, party: BillingParty, property_id: str) -> BillingPartyInfo | None:
        return self._parties.get((property_id, party.kind, party.party_id))

    def city_ledger_payment_method(self, company_id: str, property_id: str) -> str | None:
        return self._city_ledger.get((property_id, company_id))
