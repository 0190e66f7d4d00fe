"""Shared test helper functions for folio ledger tests.

Regular functions, not fixtures; importable from conftest.py and tests.
"""

from __future__ import annotations

from decimal import Decimal

from folio_ledger.domain.ledger import BillingParty, Folio, FolioTransaction

PROPERTY_ID = "prop-1"
GUEST_ID = "G1"
COMPANY_ID = "C101"
ACTOR = "user-1"
ACME_CITY_LEDGER_METHOD = "pm-city-ledger-acme"


def D(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def open_guest_folio(ledger, guest_id: str = GUEST_ID, property_id: str = PROPERTY_ID) -> Folio:
    return ledger.get_or_create_folio(BillingParty.guest(guest_id), property_id, ACTOR).value


def open_company_folio(ledger, company_id: str = COMPANY_ID) -> Folio:
    return ledger.get_or_create_folio(BillingParty.company(company_id), PROPERTY_ID, ACTOR).value


def post_charge(ledger, folio: Folio, amount, category: str = "ROOM", **kwargs) -> FolioTransaction:
    return ledger.post_transaction(
        folio.id, "CHARGE", category, amount, ACTOR, property_id=folio.property_id, **kwargs
    ).value


def post_payment(ledger, folio: Folio, amount, **kwargs) -> FolioTransaction:
    return ledger.post_transaction(
        folio.id, "PAYMENT", "PAYMENT", amount, ACTOR, property_id=folio.property_id, **kwargs
    ).value
