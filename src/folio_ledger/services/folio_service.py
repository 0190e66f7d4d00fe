"""Folio service: provisioning, posting and totals for the folio ledger.

Rules:
- All amounts are Decimal, quantised to cents; stored amounts are magnitudes.
- Postings are only allowed on OPEN folios.
- Folio balance/aggregate fields are written by recalculate_totals() only.
- Every function runs inside the caller's unit of work (``repo``); the
  caller commits or rolls back.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from pydantic import BaseModel

from folio_ledger.domain.errors import (
    BillingPartyNotFoundError,
    FolioHasBalanceError,
    FolioNotClosedError,
    FolioNotFoundError,
    FolioNotOpenError,
    LedgerValidationError,
    NothingToSettleError,
    TransactionNotFoundError,
    TransactionNotPendingError,
)
from folio_ledger.domain.folio import ChargeDetails, PaymentDetails, RefundDetails, parse_details
from folio_ledger.domain.ledger import (
    ZERO,
    BillingParty,
    Folio,
    FolioKind,
    FolioStatus,
    FolioTransaction,
    SettlementStatus,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
    compose_amounts,
    non_negative_money,
    parse_category,
    parse_transaction_type,
)
from folio_ledger.domain.numbering import format_folio_number, generate_transaction_code
from folio_ledger.domain.totals import compute_totals, expected_running_balances
from folio_ledger.infra.directory import BillingPartyDirectory
from folio_ledger.infra.store import LedgerRepository
from folio_ledger.infra.time import utc_now

TRANSACTION_COUNTER = "transaction"

_DEFAULT_DESCRIPTIONS = {
    TransactionCategory.ROOM: "Room Charge",
    TransactionCategory.FOOD_BEVERAGE: "Food & Beverage",
    TransactionCategory.TELEPHONE: "Telephone Charge",
    TransactionCategory.LAUNDRY: "Laundry Service",
    TransactionCategory.MINIBAR: "Minibar Charge",
    TransactionCategory.SPA: "Spa Service",
    TransactionCategory.PARKING: "Parking Fee",
    TransactionCategory.INTERNET: "Internet Service",
    TransactionCategory.EXTRA_BED: "Extra Bed Charge",
    TransactionCategory.RESORT_FEE: "Resort Fee",
    TransactionCategory.SERVICE_CHARGE: "Service Charge",
    TransactionCategory.CANCELLATION_FEE: "Cancellation Fee",
    TransactionCategory.NO_SHOW_FEE: "No Show Fee",
    TransactionCategory.LATE_CHECKOUT_FEE: "Late Checkout Fee",
    TransactionCategory.PAYMENT: "Payment Received",
    TransactionCategory.TAX: "Tax Charge",
    TransactionCategory.CITY_TAX: "City Tax",
    TransactionCategory.DISCOUNT: "Discount",
    TransactionCategory.ADJUSTMENT: "Folio Adjustment",
    TransactionCategory.REFUND: "Refund",
}


def folio_counter(kind: FolioKind) -> str:
    return f"folio:{kind.value}"


# ── Loaders ──────────────────────────────────────────────


def load_folio(
    repo: LedgerRepository,
    folio_id: str,
    *,
    property_id: str | None = None,
    for_update: bool = False,
) -> Folio:
    """Fetch a folio, scoped to property_id when given.

    Raises:
        FolioNotFoundError: Missing, or belongs to another property.
    """
    folio = repo.get_folio(folio_id, for_update=for_update)
    if folio is None or (property_id is not None and folio.property_id != property_id):
        raise FolioNotFoundError(folio_id)
    return folio


def load_transaction(
    repo: LedgerRepository,
    transaction_id: str,
    *,
    property_id: str | None = None,
    for_update: bool = False,
) -> FolioTransaction:
    txn = repo.get_transaction(transaction_id, for_update=for_update)
    if txn is None or (property_id is not None and txn.property_id != property_id):
        raise TransactionNotFoundError(transaction_id)
    return txn


def lock_transaction(
    repo: LedgerRepository,
    transaction_id: str,
    *,
    property_id: str | None = None,
) -> tuple[Folio, FolioTransaction]:
    """Lock a transaction's folio, then the transaction itself.

    Folio first, always: every writer takes locks in the same order.
    """
    txn = load_transaction(repo, transaction_id, property_id=property_id)
    folio = load_folio(repo, txn.folio_id, for_update=True)
    txn = load_transaction(repo, transaction_id, for_update=True)
    return folio, txn


# ── Folio provisioning ───────────────────────────────────


def get_or_create_folio(
    repo: LedgerRepository,
    directory: BillingPartyDirectory,
    *,
    party: BillingParty,
    property_id: str,
    actor_id: str,
    reservation_id: str | None = None,
    folio_name: str | None = None,
    currency_code: str = "USD",
) -> tuple[Folio, bool]:
    """Find the open folio for a billing party, or open a new one.

    Returns:
        (folio, created); created is True when a row was inserted.

    Raises:
        BillingPartyNotFoundError: The directory does not know the party.
    """
    repo.lock_billing_party(party, property_id)

    existing = repo.find_open_folio(party, property_id)
    if existing is not None:
        return existing, False

    info = directory.get_party(party, property_id)
    if info is None:
        raise BillingPartyNotFoundError(party.party_id)

    sequence = repo.next_sequence(property_id, folio_counter(party.kind))
    now = utc_now()
    if folio_name is None:
        label = "Company Folio" if party.kind == FolioKind.COMPANY else "Guest Folio"
        folio_name = f"{label} - {info.display_name}"

    folio = repo.insert_folio(
        Folio(
            id="",
            property_id=property_id,
            folio_number=format_folio_number(party.kind, sequence),
            kind=party.kind,
            folio_name=folio_name,
            guest_id=party.party_id if party.kind == FolioKind.GUEST else None,
            company_id=party.party_id if party.kind == FolioKind.COMPANY else None,
            reservation_id=reservation_id,
            currency_code=currency_code,
            credit_limit=info.credit_limit,
            opened_at=now,
            opened_by=actor_id,
            last_modified_by=actor_id,
        )
    )
    return folio, True


# ── Totals recalculator ──────────────────────────────────


def recalculate_totals(repo: LedgerRepository, folio_id: str) -> Folio:
    """Re-derive a folio's aggregates and balance from its transactions.

    Idempotent: with no intervening write, a second call stores the same
    aggregate values. Safe to re-run whenever a caller is unsure whether
    an earlier recalculation committed.
    """
    folio = load_folio(repo, folio_id, for_update=True)
    totals = compute_totals(repo.list_transactions(folio_id, include_voided=False))
    settlement = totals.settlement_status

    settled_at = folio.settled_at
    if settlement == SettlementStatus.SETTLED:
        settled_at = settled_at or utc_now()
    else:
        settled_at = None

    return repo.save_folio(
        replace(
            folio,
            balance=totals.balance,
            total_charges=totals.total_charges,
            total_payments=totals.total_payments,
            total_adjustments=totals.total_adjustments,
            total_taxes=totals.total_taxes,
            total_service_charges=totals.total_service_charges,
            total_discounts=totals.total_discounts,
            total_refunds=totals.total_refunds,
            settlement_status=settlement,
            settled_at=settled_at,
        )
    )


# ── Transaction poster ───────────────────────────────────


def _money_detail(details: Any, name: str) -> Decimal:
    value = getattr(details, name, None)
    return ZERO if value is None else non_negative_money(value, field_name=name)


def post_transaction(
    repo: LedgerRepository,
    *,
    folio_id: str,
    transaction_type: TransactionType | str,
    category: TransactionCategory | str,
    amount: Any,
    actor_id: str,
    details: BaseModel | dict[str, Any] | None = None,
    status: TransactionStatus | str = TransactionStatus.POSTED,
    property_id: str | None = None,
) -> tuple[FolioTransaction, Folio]:
    """Post one financial movement to an open folio.

    Validates the input before any write, allocates the next property-wide
    transaction number, inserts the row, recalculates the folio and stamps
    the resulting balance on the new transaction.

    Args:
        repo: Repository bound to the caller's unit of work.
        folio_id: Target folio.
        transaction_type: CHARGE, PAYMENT, ADJUSTMENT, DISCOUNT, TAX or REFUND.
        category: Sub-classification valid for the type.
        amount: Non-negative magnitude; the type decides the sign.
        actor_id: Who posted it.
        details: Type-specific details (see ``domain.folio``).
        status: POSTED, or PENDING for charges awaiting night audit.
        property_id: Tenant scope; folios of other properties are not found.

    Returns:
        (transaction, folio) after recalculation.

    Raises:
        LedgerValidationError: Bad type/category/amount/details/status.
        FolioNotFoundError: Folio does not exist for this property.
        FolioNotOpenError: Folio is closed.
    """
    txn_type = parse_transaction_type(transaction_type)
    txn_category = parse_category(txn_type, category)
    base_amount = non_negative_money(amount)
    parsed = parse_details(txn_type, details)
    try:
        txn_status = TransactionStatus(status)
    except ValueError:
        raise LedgerValidationError(f"Unknown transaction status: {status}", field="status")
    if txn_status == TransactionStatus.VOIDED:
        raise LedgerValidationError("Transactions cannot be posted as VOIDED", field="status")
    if txn_status == TransactionStatus.PENDING and txn_type != TransactionType.CHARGE:
        raise LedgerValidationError("Only charges can be posted as PENDING", field="status")

    breakdown = compose_amounts(
        txn_type,
        amount=base_amount,
        tax_amount=_money_detail(parsed, "tax_amount"),
        service_charge_amount=_money_detail(parsed, "service_charge_amount"),
        discount_amount=_money_detail(parsed, "discount_amount"),
    )
    quantity = parsed.quantity if isinstance(parsed, ChargeDetails) else 1
    unit_price = (
        _money_detail(parsed, "unit_price")
        if getattr(parsed, "unit_price", None) is not None
        else (base_amount / quantity).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    )
    payment_method_id = (
        parsed.payment_method_id if isinstance(parsed, (PaymentDetails, RefundDetails)) else None
    )

    folio = load_folio(repo, folio_id, property_id=property_id, for_update=True)
    if not folio.is_open:
        raise FolioNotOpenError(folio.id, folio.status.value)

    now = utc_now()
    txn = repo.insert_transaction(
        FolioTransaction(
            id="",
            folio_id=folio.id,
            property_id=folio.property_id,
            transaction_number=repo.next_sequence(folio.property_id, TRANSACTION_COUNTER),
            transaction_code=generate_transaction_code(),
            transaction_type=txn_type,
            category=txn_category,
            description=parsed.description or _DEFAULT_DESCRIPTIONS.get(
                txn_category, "Miscellaneous Charge"
            ),
            amount=breakdown.amount,
            total_amount=breakdown.total_amount,
            net_amount=breakdown.net_amount,
            tax_amount=breakdown.tax_amount,
            service_charge_amount=breakdown.service_charge_amount,
            discount_amount=breakdown.discount_amount,
            quantity=quantity,
            unit_price=unit_price,
            assigned_amount=ZERO,
            unassigned_amount=breakdown.amount,
            status=txn_status,
            payment_method_id=payment_method_id,
            reference=parsed.reference,
            voucher=getattr(parsed, "voucher", None),
            notes=parsed.notes,
            posting_date=now,
            transaction_date=parsed.transaction_date or now,
            created_by=actor_id,
            last_modified_by=actor_id,
        )
    )

    folio = recalculate_totals(repo, folio.id)
    txn = repo.save_transaction(replace(txn, balance=folio.balance))
    return txn, folio


def shift_later_balances(
    repo: LedgerRepository, anchor: FolioTransaction, delta: Decimal
) -> int:
    """Add ``delta`` to the running balance of every non-voided transaction
    created after ``anchor`` on the same folio.

    Returns:
        Number of transactions repaired.
    """
    if delta == 0:
        return 0
    later = repo.list_transactions_after(anchor)
    for txn in later:
        repo.save_transaction(replace(txn, balance=txn.balance + delta))
    return len(later)


def post_pending_charge(
    repo: LedgerRepository,
    *,
    transaction_id: str,
    actor_id: str,
    amount: Any = None,
    property_id: str | None = None,
) -> tuple[FolioTransaction, Folio]:
    """Night audit: move a PENDING charge to POSTED, optionally re-priced.

    Tax, service charge and inline discount are kept; net/total are
    recomposed around the revised amount. A price change shifts this
    charge's running balance and every later one by the difference.

    Raises:
        TransactionNotFoundError: Unknown transaction.
        TransactionNotPendingError: Already posted or voided.
        FolioNotOpenError: Folio was closed in the meantime.
        LedgerValidationError: Revised amount below what is already assigned.
    """
    revised = non_negative_money(amount) if amount is not None else None

    folio, txn = lock_transaction(repo, transaction_id, property_id=property_id)
    if txn.status != TransactionStatus.PENDING:
        raise TransactionNotPendingError(txn.id, txn.status.value)
    if not folio.is_open:
        raise FolioNotOpenError(folio.id, folio.status.value)

    base_amount = revised if revised is not None else txn.amount
    if base_amount < txn.assigned_amount:
        raise LedgerValidationError(
            "Revised amount is below the amount already assigned", field="amount"
        )
    breakdown = compose_amounts(
        txn.transaction_type,
        amount=base_amount,
        tax_amount=txn.tax_amount,
        service_charge_amount=txn.service_charge_amount,
        discount_amount=txn.discount_amount,
    )
    delta = breakdown.total_amount - txn.total_amount

    txn = repo.save_transaction(
        replace(
            txn,
            amount=breakdown.amount,
            net_amount=breakdown.net_amount,
            total_amount=breakdown.total_amount,
            unit_price=(breakdown.amount / txn.quantity).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            ),
            unassigned_amount=breakdown.amount - txn.assigned_amount,
            balance=txn.balance + delta,
            status=TransactionStatus.POSTED,
            posting_date=utc_now(),
            last_modified_by=actor_id,
        )
    )
    shift_later_balances(repo, txn, delta)

    folio = recalculate_totals(repo, folio.id)
    return txn, folio


# ── Folio status transitions ─────────────────────────────


def close_folio(
    repo: LedgerRepository,
    *,
    folio_id: str,
    actor_id: str,
    property_id: str | None = None,
) -> Folio:
    """Close an open folio once nothing is owed on it."""
    load_folio(repo, folio_id, property_id=property_id, for_update=True)
    folio = recalculate_totals(repo, folio_id)
    if not folio.is_open:
        raise FolioNotOpenError(folio.id, folio.status.value)
    if folio.balance > 0:
        raise FolioHasBalanceError(folio.id, folio.balance)

    return repo.save_folio(
        replace(
            folio,
            status=FolioStatus.CLOSED,
            closed_at=utc_now(),
            closed_by=actor_id,
            last_modified_by=actor_id,
        )
    )


@dataclass(frozen=True)
class SettlementOutcome:
    payment: FolioTransaction
    folio: Folio

    @property
    def closed(self) -> bool:
        return not self.folio.is_open


def settle_folio(
    repo: LedgerRepository,
    *,
    folio_id: str,
    actor_id: str,
    amount: Any = None,
    payment_method_id: str | None = None,
    reference: str | None = None,
    notes: str | None = None,
    property_id: str | None = None,
) -> SettlementOutcome:
    """Take a payment against a folio's outstanding balance.

    Without an amount the whole balance is paid. When the payment brings
    the balance to zero or below, the folio is closed in the same unit of
    work; otherwise it stays open as PARTIALLY_SETTLED.

    Raises:
        NothingToSettleError: The balance is already zero or in credit.
        LedgerValidationError: A zero amount.
        FolioNotOpenError: Folio is closed.
    """
    folio = load_folio(repo, folio_id, property_id=property_id, for_update=True)
    if not folio.is_open:
        raise FolioNotOpenError(folio.id, folio.status.value)
    folio = recalculate_totals(repo, folio.id)
    if folio.balance <= 0:
        raise NothingToSettleError(folio.id, folio.balance)

    pay = folio.balance if amount is None else non_negative_money(amount)
    if pay == 0:
        raise LedgerValidationError("Settlement amount must be greater than zero", field="amount")

    payment, folio = post_transaction(
        repo,
        folio_id=folio.id,
        transaction_type=TransactionType.PAYMENT,
        category=TransactionCategory.PAYMENT,
        amount=pay,
        actor_id=actor_id,
        details=PaymentDetails(
            payment_method_id=payment_method_id, reference=reference, notes=notes
        ),
    )
    if folio.balance <= 0:
        folio = repo.save_folio(
            replace(
                folio,
                status=FolioStatus.CLOSED,
                closed_at=utc_now(),
                closed_by=actor_id,
                last_modified_by=actor_id,
            )
        )
    return SettlementOutcome(payment=payment, folio=folio)


def reopen_folio(
    repo: LedgerRepository,
    *,
    folio_id: str,
    actor_id: str,
    property_id: str | None = None,
) -> Folio:
    folio = load_folio(repo, folio_id, property_id=property_id, for_update=True)
    if folio.status != FolioStatus.CLOSED:
        raise FolioNotClosedError(folio.id)

    return repo.save_folio(
        replace(
            folio,
            status=FolioStatus.OPEN,
            closed_at=None,
            closed_by=None,
            last_modified_by=actor_id,
        )
    )


def record_print(
    repo: LedgerRepository,
    *,
    folio_id: str,
    property_id: str | None = None,
) -> Folio:
    folio = load_folio(repo, folio_id, property_id=property_id, for_update=True)
    return repo.save_folio(
        replace(folio, print_count=folio.print_count + 1, last_print_date=utc_now())
    )


# ── Reads ────────────────────────────────────────────────


@dataclass(frozen=True)
class FolioStatement:
    folio: Folio
    transactions: list[FolioTransaction]


@dataclass(frozen=True)
class BalanceDrift:
    transaction_id: str
    stored: Decimal
    expected: Decimal


@dataclass(frozen=True)
class FolioVerification:
    folio_id: str
    stored_balance: Decimal
    computed_balance: Decimal
    drift: list[BalanceDrift]

    @property
    def ok(self) -> bool:
        return self.stored_balance == self.computed_balance and not self.drift


def get_folio_statement(
    repo: LedgerRepository,
    *,
    folio_id: str,
    property_id: str | None = None,
    include_voided: bool = True,
) -> FolioStatement:
    folio = load_folio(repo, folio_id, property_id=property_id)
    return FolioStatement(
        folio=folio,
        transactions=repo.list_transactions(folio_id, include_voided=include_voided),
    )


def verify_folio(
    repo: LedgerRepository,
    *,
    folio_id: str,
    property_id: str | None = None,
) -> FolioVerification:
    """Rebuild the balance and every running-balance snapshot independently
    of the stored aggregates and report where they disagree."""
    folio = load_folio(repo, folio_id, property_id=property_id)
    transactions = repo.list_transactions(folio_id, include_voided=True)
    totals = compute_totals(transactions)
    expected = expected_running_balances(transactions)

    drift = [
        BalanceDrift(transaction_id=t.id, stored=t.balance, expected=expected[t.id])
        for t in sorted(transactions, key=lambda t: t.ordering_key)
        if t.id in expected and t.balance != expected[t.id]
    ]
    return FolioVerification(
        folio_id=folio.id,
        stored_balance=folio.balance,
        computed_balance=totals.balance,
        drift=drift,
    )
