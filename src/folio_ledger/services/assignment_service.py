"""Payment assignment: allocating payments against charges.

Two operations with deliberately different semantics:

- assign_single(): *adds* to a payment's own assigned counter
  ("mark this much of my payment as spent").
- assign_bulk(): *sets* each target's assigned amount to an absolute value
  ("apply payments against these invoices"), optionally drawing the total
  from one payment.

Both append to the transactions' assignment history and never touch any
running balance.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Sequence

from pydantic import ValidationError

from folio_ledger.domain.errors import (
    InsufficientUnassignedAmountError,
    LedgerValidationError,
    NotAPaymentError,
    TransactionAlreadyVoidedError,
)
from folio_ledger.domain.folio import BulkAssignmentMapping
from folio_ledger.domain.ledger import (
    ZERO,
    AssignmentEntry,
    Folio,
    FolioTransaction,
    TransactionType,
    non_negative_money,
)
from folio_ledger.infra.store import LedgerRepository
from folio_ledger.infra.time import history_key, utc_now
from folio_ledger.services.folio_service import (
    load_folio,
    load_transaction,
    lock_transaction,
    recalculate_totals,
)


@dataclass(frozen=True)
class BulkAssignmentOutcome:
    targets: list[FolioTransaction]
    payment: FolioTransaction | None
    previous_amounts: dict[str, Decimal]
    folios: list[Folio]

    @property
    def total_assigned(self) -> Decimal:
        return sum((t.assigned_amount for t in self.targets), ZERO)


def _require_live_payment(txn: FolioTransaction) -> None:
    if txn.transaction_type != TransactionType.PAYMENT:
        raise NotAPaymentError(txn.id, txn.transaction_type.value)
    if txn.is_voided:
        raise TransactionAlreadyVoidedError(txn.id)


def assign_single(
    repo: LedgerRepository,
    *,
    payment_transaction_id: str,
    amount: Any,
    actor_id: str,
    notes: str | None = None,
    assignment_date: datetime | None = None,
    property_id: str | None = None,
) -> tuple[FolioTransaction, Folio]:
    """Mark part of a payment as allocated.

    Raises:
        LedgerValidationError: amount is not a positive decimal.
        NotAPaymentError: Transaction is not a PAYMENT.
        TransactionAlreadyVoidedError: Payment was voided.
        InsufficientUnassignedAmountError: amount exceeds what is unassigned.
    """
    to_assign = non_negative_money(amount)
    if to_assign == 0:
        raise LedgerValidationError("amount must be > 0", field="amount")

    folio, payment = lock_transaction(repo, payment_transaction_id, property_id=property_id)
    _require_live_payment(payment)
    if to_assign > payment.unassigned_amount:
        raise InsufficientUnassignedAmountError(payment.id, to_assign, payment.unassigned_amount)

    now = utc_now()
    entry = AssignmentEntry(
        key=history_key(now),
        assigned_amount=to_assign,
        assigned_by=actor_id,
        assignment_date=assignment_date or now,
        notes=notes,
    )
    payment = repo.save_transaction(
        replace(
            payment,
            assigned_amount=payment.assigned_amount + to_assign,
            unassigned_amount=payment.unassigned_amount - to_assign,
            assignment_history=payment.assignment_history + (entry,),
            last_modified_by=actor_id,
        )
    )
    return payment, recalculate_totals(repo, folio.id)


def coerce_mappings(
    mappings: Iterable[BulkAssignmentMapping | dict[str, Any]],
) -> list[BulkAssignmentMapping]:
    parsed: list[BulkAssignmentMapping] = []
    for m in mappings:
        try:
            mapping = m if isinstance(m, BulkAssignmentMapping) else BulkAssignmentMapping(**m)
        except ValidationError as exc:
            raise LedgerValidationError(
                f"Invalid mapping: {exc.errors()[0].get('msg')}", field="mappings"
            )
        parsed.append(
            BulkAssignmentMapping(
                target_transaction_id=mapping.target_transaction_id,
                new_assigned_amount=non_negative_money(
                    mapping.new_assigned_amount, field_name="new_assigned_amount"
                ),
            )
        )
    if not parsed:
        raise LedgerValidationError("At least one mapping is required", field="mappings")
    target_ids = [m.target_transaction_id for m in parsed]
    if len(set(target_ids)) != len(target_ids):
        raise LedgerValidationError("Each target may appear only once", field="mappings")
    return parsed


def assign_bulk(
    repo: LedgerRepository,
    *,
    mappings: Sequence[BulkAssignmentMapping | dict[str, Any]],
    actor_id: str,
    payment_transaction_id: str | None = None,
    notes: str | None = None,
    assignment_date: datetime | None = None,
    property_id: str | None = None,
) -> BulkAssignmentOutcome:
    """Drive each target's assigned amount to ``new_assigned_amount``.

    All-or-nothing: the first failing mapping raises and the caller's unit
    of work rolls every mapping back.

    When a payment is supplied, its own counters move by the sum of the
    mappings and every target history entry records it as the source.

    Raises:
        LedgerValidationError: Empty/duplicate mappings or bad amounts.
        TransactionNotFoundError: Unknown payment or target.
        NotAPaymentError: payment_transaction_id is not a PAYMENT.
        TransactionAlreadyVoidedError: Payment or a target was voided.
        InsufficientUnassignedAmountError: A mapping exceeds its target's
            unassigned amount, or the total exceeds the payment's.
    """
    parsed = coerce_mappings(mappings)
    total = sum((m.new_assigned_amount for m in parsed), ZERO)

    # Read everything first so folio locks can be taken in a stable order.
    payment = (
        load_transaction(repo, payment_transaction_id, property_id=property_id)
        if payment_transaction_id is not None
        else None
    )
    targets = [
        load_transaction(repo, m.target_transaction_id, property_id=property_id) for m in parsed
    ]
    folio_ids = sorted({t.folio_id for t in targets} | ({payment.folio_id} if payment else set()))
    for folio_id in folio_ids:
        load_folio(repo, folio_id, for_update=True)

    if payment is not None:
        payment = load_transaction(repo, payment.id, for_update=True)
        _require_live_payment(payment)
        if payment.id in {m.target_transaction_id for m in parsed}:
            raise LedgerValidationError("A payment cannot be assigned to itself", field="mappings")
        if total > payment.unassigned_amount:
            raise InsufficientUnassignedAmountError(payment.id, total, payment.unassigned_amount)

    now = utc_now()
    key = history_key(now)
    updated: list[FolioTransaction] = []
    previous: dict[str, Decimal] = {}

    for mapping in parsed:
        target = load_transaction(repo, mapping.target_transaction_id, for_update=True)
        if target.is_voided:
            raise TransactionAlreadyVoidedError(target.id)
        new_amount = mapping.new_assigned_amount
        if new_amount > target.unassigned_amount:
            raise InsufficientUnassignedAmountError(
                target.id, new_amount, target.unassigned_amount
            )

        entry = AssignmentEntry(
            key=key,
            assigned_amount=new_amount,
            previous_assigned_amount=target.assigned_amount,
            assigned_by=actor_id,
            assignment_date=assignment_date or now,
            notes=notes
            or (f"Bulk assignment from payment {payment.transaction_number}" if payment else None),
            auto_assigned=payment is not None,
            payment_transaction_id=payment.id if payment else None,
        )
        previous[target.id] = target.assigned_amount
        updated.append(
            repo.save_transaction(
                replace(
                    target,
                    assigned_amount=new_amount,
                    unassigned_amount=target.amount - new_amount,
                    assignment_history=target.assignment_history + (entry,),
                    last_modified_by=actor_id,
                )
            )
        )

    if payment is not None:
        payment = repo.save_transaction(
            replace(
                payment,
                assigned_amount=payment.assigned_amount + total,
                unassigned_amount=payment.unassigned_amount - total,
                assignment_history=payment.assignment_history
                + (
                    AssignmentEntry(
                        key=key,
                        assigned_amount=total,
                        assigned_by=actor_id,
                        assignment_date=assignment_date or now,
                        notes=notes,
                        auto_assigned=True,
                        payment_transaction_id=payment.id,
                    ),
                ),
                last_modified_by=actor_id,
            )
        )

    folios = [recalculate_totals(repo, folio_id) for folio_id in folio_ids]
    return BulkAssignmentOutcome(
        targets=updated, payment=payment, previous_amounts=previous, folios=folios
    )
