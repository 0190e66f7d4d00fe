"""Company (city-ledger) billing workflow.

Composes folio provisioning, posting and bulk assignment for payments
received from company accounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Sequence

from folio_ledger.domain.errors import InsufficientUnassignedAmountError
from folio_ledger.domain.folio import BulkAssignmentMapping, PaymentDetails
from folio_ledger.domain.ledger import (
    ZERO,
    BillingParty,
    Folio,
    FolioTransaction,
    TransactionCategory,
    TransactionType,
    non_negative_money,
)
from folio_ledger.infra.directory import BillingPartyDirectory
from folio_ledger.infra.store import LedgerRepository
from folio_ledger.services.assignment_service import (
    BulkAssignmentOutcome,
    assign_bulk,
    coerce_mappings,
)
from folio_ledger.services.folio_service import (
    get_or_create_folio,
    load_folio,
    load_transaction,
    post_transaction,
)


@dataclass(frozen=True)
class CompanyPaymentOutcome:
    payment: FolioTransaction
    folio: Folio
    folio_created: bool
    assignment: BulkAssignmentOutcome | None = None


@dataclass(frozen=True)
class CompanyFolioView:
    folio: Folio | None
    transactions: list[FolioTransaction]


def post_company_payment(
    repo: LedgerRepository,
    directory: BillingPartyDirectory,
    *,
    company_id: str,
    property_id: str,
    amount: Any,
    actor_id: str,
    description: str | None = None,
    payment_method_id: str | None = None,
    reference: str | None = None,
    voucher: str | None = None,
    notes: str | None = None,
    transaction_date: datetime | None = None,
    currency_code: str = "USD",
) -> CompanyPaymentOutcome:
    """Post a payment to the company's open folio, opening one if needed.

    When no payment method is given, the company's designated CITY_LEDGER
    method is used (None if the directory has none).
    """
    party = BillingParty.company(company_id)
    folio, created = get_or_create_folio(
        repo,
        directory,
        party=party,
        property_id=property_id,
        actor_id=actor_id,
        currency_code=currency_code,
    )
    if payment_method_id is None:
        payment_method_id = directory.city_ledger_payment_method(company_id, property_id)

    payment, folio = post_transaction(
        repo,
        folio_id=folio.id,
        transaction_type=TransactionType.PAYMENT,
        category=TransactionCategory.PAYMENT,
        amount=amount,
        actor_id=actor_id,
        details=PaymentDetails(
            description=description or "City ledger payment",
            payment_method_id=payment_method_id,
            reference=reference,
            voucher=voucher,
            notes=notes,
            transaction_date=transaction_date,
        ),
        property_id=property_id,
    )
    return CompanyPaymentOutcome(payment=payment, folio=folio, folio_created=created)


def post_company_payment_with_assignment(
    repo: LedgerRepository,
    directory: BillingPartyDirectory,
    *,
    company_id: str,
    property_id: str,
    amount: Any,
    actor_id: str,
    mappings: Sequence[BulkAssignmentMapping | dict[str, Any]],
    notes: str | None = None,
    **payment_fields: Any,
) -> CompanyPaymentOutcome:
    """Post a company payment and distribute it over target transactions
    in the same unit of work.

    Raises:
        InsufficientUnassignedAmountError: The mappings add up to more than
            the payment; checked before anything is written.
    """
    parsed = coerce_mappings(mappings)
    total_amount = non_negative_money(amount)
    requested = sum((m.new_assigned_amount for m in parsed), ZERO)
    if requested > total_amount:
        raise InsufficientUnassignedAmountError("new payment", requested, total_amount)

    # Party lock, then every folio this call will write, in id order, before
    # the payment is posted.
    party = BillingParty.company(company_id)
    repo.lock_billing_party(party, property_id)
    folio_ids = {
        load_transaction(repo, m.target_transaction_id, property_id=property_id).folio_id
        for m in parsed
    }
    existing = repo.find_open_folio(party, property_id)
    if existing is not None:
        folio_ids.add(existing.id)
    for folio_id in sorted(folio_ids):
        load_folio(repo, folio_id, for_update=True)

    outcome = post_company_payment(
        repo,
        directory,
        company_id=company_id,
        property_id=property_id,
        amount=total_amount,
        actor_id=actor_id,
        notes=notes,
        **payment_fields,
    )
    assignment = assign_bulk(
        repo,
        mappings=parsed,
        actor_id=actor_id,
        payment_transaction_id=outcome.payment.id,
        notes=notes,
        property_id=property_id,
    )
    folio = next(f for f in assignment.folios if f.id == outcome.folio.id)
    return CompanyPaymentOutcome(
        payment=assignment.payment or outcome.payment,
        folio=folio,
        folio_created=outcome.folio_created,
        assignment=assignment,
    )


def get_company_folio_with_transactions(
    repo: LedgerRepository, *, company_id: str, property_id: str
) -> CompanyFolioView:
    """The company's open folio (or most recent one) with its transactions."""
    party = BillingParty.company(company_id)
    folio = repo.find_open_folio(party, property_id)
    if folio is None:
        folios = repo.list_party_folios(party, property_id)
        folio = folios[-1] if folios else None
    if folio is None:
        return CompanyFolioView(folio=None, transactions=[])
    return CompanyFolioView(folio=folio, transactions=repo.list_transactions(folio.id))


def get_unassigned_payment_amount(
    repo: LedgerRepository, *, company_id: str, property_id: str
) -> Decimal:
    return repo.sum_unassigned_payments(company_id, property_id)
