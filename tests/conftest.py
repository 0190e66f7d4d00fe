"""Shared pytest fixtures for folio ledger tests."""
import sys
sys.dont_write_bytecode = True

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from folio_ledger.infra.activity_log import InMemoryActivityLog  # noqa: E402
from folio_ledger.infra.directory import InMemoryBillingPartyDirectory  # noqa: E402
from folio_ledger.infra.store import InMemoryLedgerStore  # noqa: E402
from folio_ledger.services.ledger import FolioLedger  # noqa: E402

from helpers import (  # noqa: E402
    ACME_CITY_LEDGER_METHOD,
    COMPANY_ID,
    GUEST_ID,
    PROPERTY_ID,
)


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def activity_log():
    return InMemoryActivityLog()


@pytest.fixture
def directory():
    """Directory with one guest and company C101 (with a city-ledger method)."""
    d = InMemoryBillingPartyDirectory()
    d.add_guest(PROPERTY_ID, GUEST_ID, "Ada Lovelace")
    d.add_guest(PROPERTY_ID, "G2", "Alan Turing")
    d.add_company(
        PROPERTY_ID,
        COMPANY_ID,
        "Acme Travel",
        credit_limit=Decimal("5000.00"),
        city_ledger_method_id=ACME_CITY_LEDGER_METHOD,
    )
    d.add_company(PROPERTY_ID, "C202", "Globex")
    d.add_guest("prop-2", GUEST_ID, "Ada Lovelace")
    return d


@pytest.fixture
def ledger(store, activity_log, directory):
    return FolioLedger(store, activity_log, directory)
