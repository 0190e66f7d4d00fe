"""Pure folio aggregation: no DB access here.

The service layer loads transactions and persists the result; these
functions only derive numbers from a list of transactions, which is what
makes recalculation idempotent and safe to re-run after a partial failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from .ledger import (
    ZERO,
    FolioTransaction,
    SettlementStatus,
    TransactionType,
)


@dataclass(frozen=True)
class FolioTotals:
    total_charges: Decimal = ZERO
    total_payments: Decimal = ZERO
    total_adjustments: Decimal = ZERO
    total_taxes: Decimal = ZERO
    total_service_charges: Decimal = ZERO
    total_discounts: Decimal = ZERO
    total_refunds: Decimal = ZERO
    transaction_count: int = 0

    @property
    def balance(self) -> Decimal:
        return (
            self.total_charges
            + self.total_taxes
            + self.total_service_charges
            - self.total_discounts
            - self.total_payments
            + self.total_adjustments
            + self.total_refunds
        )

    @property
    def settlement_status(self) -> SettlementStatus:
        if self.transaction_count == 0:
            return SettlementStatus.PENDING
        if self.balance <= 0:
            return SettlementStatus.SETTLED
        if self.total_payments > 0 or self.total_discounts > 0:
            return SettlementStatus.PARTIALLY_SETTLED
        return SettlementStatus.PENDING


def compute_totals(transactions: Iterable[FolioTransaction]) -> FolioTotals:
    """Aggregate the non-voided transactions of one folio."""
    charges = payments = adjustments = taxes = service = discounts = refunds = ZERO
    count = 0

    for txn in transactions:
        if txn.is_voided:
            continue
        count += 1
        kind = txn.transaction_type
        if kind == TransactionType.CHARGE:
            charges += txn.amount
            taxes += txn.tax_amount
            service += txn.service_charge_amount
            discounts += txn.discount_amount
        elif kind == TransactionType.TAX:
            taxes += txn.amount
        elif kind == TransactionType.DISCOUNT:
            discounts += txn.amount
        elif kind == TransactionType.PAYMENT:
            payments += txn.amount
        elif kind == TransactionType.ADJUSTMENT:
            adjustments += txn.amount
        elif kind == TransactionType.REFUND:
            refunds += txn.amount

    return FolioTotals(
        total_charges=charges,
        total_payments=payments,
        total_adjustments=adjustments,
        total_taxes=taxes,
        total_service_charges=service,
        total_discounts=discounts,
        total_refunds=refunds,
        transaction_count=count,
    )


def expected_running_balances(
    transactions: Iterable[FolioTransaction],
) -> dict[str, Decimal]:
    """Running balance each non-voided transaction should carry.

    Ordered by (created_at, transaction_number), i.e. the order in which
    postings landed.
    """
    running = ZERO
    expected: dict[str, Decimal] = {}
    for txn in sorted(transactions, key=lambda t: t.ordering_key):
        if txn.is_voided:
            continue
        running += txn.signed_amount
        expected[txn.id] = running
    return expected
