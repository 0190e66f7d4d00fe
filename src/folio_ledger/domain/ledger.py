"""Folio ledger domain: enums, value objects and money helpers.

Value objects are frozen dataclasses. Repositories take one of these and
return a new persisted copy; nothing outside the repositories ever holds a
live handle to a stored row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .errors import LedgerValidationError

ZERO = Decimal("0.00")
_CENT = Decimal("0.01")


# ── Enums ─────────────────────────────────────────────────


class FolioKind(str, Enum):
    GUEST = "GUEST"
    COMPANY = "COMPANY"


class FolioStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_SETTLED = "PARTIALLY_SETTLED"
    SETTLED = "SETTLED"


class WorkflowStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class TransactionType(str, Enum):
    CHARGE = "CHARGE"
    PAYMENT = "PAYMENT"
    ADJUSTMENT = "ADJUSTMENT"
    DISCOUNT = "DISCOUNT"
    TAX = "TAX"
    REFUND = "REFUND"


class TransactionCategory(str, Enum):
    ROOM = "ROOM"
    FOOD_BEVERAGE = "FOOD_BEVERAGE"
    TELEPHONE = "TELEPHONE"
    LAUNDRY = "LAUNDRY"
    MINIBAR = "MINIBAR"
    SPA = "SPA"
    PARKING = "PARKING"
    INTERNET = "INTERNET"
    EXTRA_BED = "EXTRA_BED"
    RESORT_FEE = "RESORT_FEE"
    SERVICE_CHARGE = "SERVICE_CHARGE"
    CANCELLATION_FEE = "CANCELLATION_FEE"
    NO_SHOW_FEE = "NO_SHOW_FEE"
    LATE_CHECKOUT_FEE = "LATE_CHECKOUT_FEE"
    MISCELLANEOUS = "MISCELLANEOUS"
    PAYMENT = "PAYMENT"
    TAX = "TAX"
    CITY_TAX = "CITY_TAX"
    DISCOUNT = "DISCOUNT"
    ADJUSTMENT = "ADJUSTMENT"
    REFUND = "REFUND"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    POSTED = "POSTED"
    VOIDED = "VOIDED"


_NON_CHARGE_CATEGORIES = frozenset(
    {
        TransactionCategory.PAYMENT,
        TransactionCategory.TAX,
        TransactionCategory.CITY_TAX,
        TransactionCategory.DISCOUNT,
        TransactionCategory.ADJUSTMENT,
        TransactionCategory.REFUND,
    }
)

ALLOWED_CATEGORIES: dict[TransactionType, frozenset[TransactionCategory]] = {
    TransactionType.CHARGE: frozenset(set(TransactionCategory) - _NON_CHARGE_CATEGORIES),
    TransactionType.PAYMENT: frozenset({TransactionCategory.PAYMENT}),
    TransactionType.REFUND: frozenset({TransactionCategory.REFUND}),
    TransactionType.TAX: frozenset({TransactionCategory.TAX, TransactionCategory.CITY_TAX}),
    TransactionType.DISCOUNT: frozenset({TransactionCategory.DISCOUNT}),
    TransactionType.ADJUSTMENT: frozenset({TransactionCategory.ADJUSTMENT}),
}

# Types whose amount reduces what the billing party owes.
CREDIT_TYPES = frozenset({TransactionType.PAYMENT, TransactionType.DISCOUNT})

FOLIO_NUMBER_PREFIX = {FolioKind.GUEST: "GF", FolioKind.COMPANY: "CF"}


# ── Money ─────────────────────────────────────────────────


def to_money(value: Any, *, field_name: str = "amount") -> Decimal:
    """Coerce a value to a 2-place Decimal, rejecting NaN and Infinity."""
    if isinstance(value, bool):
        raise LedgerValidationError(f"{field_name} must be a decimal amount", field=field_name)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise LedgerValidationError(f"{field_name} must be a decimal amount", field=field_name)
    if not amount.is_finite():
        raise LedgerValidationError(f"{field_name} must be finite", field=field_name)
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


def non_negative_money(value: Any, *, field_name: str = "amount") -> Decimal:
    amount = to_money(value, field_name=field_name)
    if amount < 0:
        raise LedgerValidationError(f"{field_name} must be >= 0", field=field_name)
    return amount


def parse_transaction_type(value: TransactionType | str) -> TransactionType:
    try:
        return TransactionType(value)
    except ValueError:
        raise LedgerValidationError(f"Unknown transaction type: {value}", field="transaction_type")


def parse_category(
    transaction_type: TransactionType, value: TransactionCategory | str
) -> TransactionCategory:
    try:
        category = TransactionCategory(value)
    except ValueError:
        raise LedgerValidationError(f"Unknown transaction category: {value}", field="category")
    if category not in ALLOWED_CATEGORIES[transaction_type]:
        raise LedgerValidationError(
            f"Category {category.value} is not valid for {transaction_type.value} transactions",
            field="category",
        )
    return category


# ── Value objects ─────────────────────────────────────────


@dataclass(frozen=True)
class BillingParty:
    """The guest or company a folio bills."""

    kind: FolioKind
    party_id: str

    @classmethod
    def guest(cls, guest_id: str) -> BillingParty:
        return cls(FolioKind.GUEST, guest_id)

    @classmethod
    def company(cls, company_id: str) -> BillingParty:
        return cls(FolioKind.COMPANY, company_id)


@dataclass(frozen=True)
class BillingPartyInfo:
    """What the directory knows about a billing party."""

    party: BillingParty
    display_name: str
    credit_limit: Decimal = ZERO


@dataclass(frozen=True)
class AssignmentEntry:
    """One append-only record in a transaction's assignment history."""

    key: str
    assigned_amount: Decimal
    assigned_by: str
    assignment_date: datetime
    notes: str | None = None
    auto_assigned: bool = False
    payment_transaction_id: str | None = None
    previous_assigned_amount: Decimal | None = None


@dataclass(frozen=True)
class Folio:
    id: str
    property_id: str
    folio_number: str
    kind: FolioKind
    folio_name: str
    guest_id: str | None = None
    company_id: str | None = None
    reservation_id: str | None = None
    status: FolioStatus = FolioStatus.OPEN
    settlement_status: SettlementStatus = SettlementStatus.PENDING
    workflow_status: WorkflowStatus = WorkflowStatus.ACTIVE
    balance: Decimal = ZERO
    total_charges: Decimal = ZERO
    total_payments: Decimal = ZERO
    total_adjustments: Decimal = ZERO
    total_taxes: Decimal = ZERO
    total_service_charges: Decimal = ZERO
    total_discounts: Decimal = ZERO
    total_refunds: Decimal = ZERO
    currency_code: str = "USD"
    exchange_rate: Decimal = Decimal("1")
    credit_limit: Decimal = ZERO
    print_count: int = 0
    last_print_date: datetime | None = None
    opened_at: datetime | None = None
    opened_by: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    settled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_modified_by: str | None = None

    def __post_init__(self) -> None:
        if (self.guest_id is None) == (self.company_id is None):
            raise LedgerValidationError("A folio bills exactly one of guest_id or company_id")

    @property
    def billing_party(self) -> BillingParty:
        if self.company_id is not None:
            return BillingParty.company(self.company_id)
        return BillingParty.guest(self.guest_id)  # type: ignore[arg-type]

    @property
    def is_open(self) -> bool:
        return self.status == FolioStatus.OPEN


@dataclass(frozen=True)
class FolioTransaction:
    id: str
    folio_id: str
    property_id: str
    transaction_number: int
    transaction_code: str
    transaction_type: TransactionType
    category: TransactionCategory
    amount: Decimal
    total_amount: Decimal
    net_amount: Decimal
    description: str = ""
    tax_amount: Decimal = ZERO
    service_charge_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    quantity: int = 1
    unit_price: Decimal = ZERO
    assigned_amount: Decimal = ZERO
    unassigned_amount: Decimal = ZERO
    assignment_history: tuple[AssignmentEntry, ...] = field(default_factory=tuple)
    balance: Decimal = ZERO
    status: TransactionStatus = TransactionStatus.POSTED
    voided_at: datetime | None = None
    voided_by: str | None = None
    void_reason: str | None = None
    payment_method_id: str | None = None
    reference: str | None = None
    voucher: str | None = None
    notes: str | None = None
    posting_date: datetime | None = None
    transaction_date: datetime | None = None
    created_at: datetime | None = None
    created_by: str | None = None
    last_modified_by: str | None = None

    @property
    def is_voided(self) -> bool:
        return self.status == TransactionStatus.VOIDED

    @property
    def signed_amount(self) -> Decimal:
        """Contribution of this transaction to the folio balance."""
        if self.transaction_type in CREDIT_TYPES:
            return -self.total_amount
        return self.total_amount

    @property
    def ordering_key(self) -> tuple[datetime, int]:
        """Chronological key used for running-balance repair."""
        return (self.created_at, self.transaction_number)  # type: ignore[return-value]

    @property
    def statement_key(self) -> tuple[datetime, datetime, int]:
        return (self.transaction_date, self.created_at, self.transaction_number)  # type: ignore[return-value]


@dataclass(frozen=True)
class AmountBreakdown:
    amount: Decimal
    tax_amount: Decimal
    service_charge_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    total_amount: Decimal


def compose_amounts(
    transaction_type: TransactionType,
    *,
    amount: Decimal,
    tax_amount: Decimal = ZERO,
    service_charge_amount: Decimal = ZERO,
    discount_amount: Decimal = ZERO,
) -> AmountBreakdown:
    """Derive net/total amounts for a posting.

    Only charges carry tax, service charge and an inline discount; every other
    type is a single amount.
    """
    if transaction_type != TransactionType.CHARGE:
        return AmountBreakdown(amount, ZERO, ZERO, ZERO, amount, amount)

    if discount_amount > amount:
        raise LedgerValidationError(
            "discount_amount cannot exceed the charge amount", field="discount_amount"
        )
    net = amount - discount_amount
    return AmountBreakdown(
        amount=amount,
        tax_amount=tax_amount,
        service_charge_amount=service_charge_amount,
        discount_amount=discount_amount,
        net_amount=net,
        total_amount=net + tax_amount + service_charge_amount,
    )
