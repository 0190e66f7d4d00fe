"""Void engine: soft-delete a payment and repair later running balances."""

from __future__ import annotations

from dataclasses import dataclass, replace

from folio_ledger.domain.errors import (
    FolioNotOpenError,
    LedgerValidationError,
    TransactionAlreadyVoidedError,
    TransactionNotVoidableError,
)
from folio_ledger.domain.ledger import Folio, FolioTransaction, TransactionStatus, TransactionType
from folio_ledger.infra.store import LedgerRepository
from folio_ledger.infra.time import utc_now
from folio_ledger.services.folio_service import (
    lock_transaction,
    recalculate_totals,
    shift_later_balances,
)


@dataclass(frozen=True)
class VoidResult:
    transaction: FolioTransaction
    repaired_count: int
    folio: Folio


def void_payment(
    repo: LedgerRepository,
    *,
    transaction_id: str,
    voided_by: str,
    reason: str,
    property_id: str | None = None,
) -> VoidResult:
    """Void a PAYMENT transaction.

    The payment stays on the folio for audit with status VOIDED. Removing it
    raises what is owed, so every non-voided transaction created after it
    gets the full payment total added to its stored running balance before
    the folio totals are recalculated.

    Args:
        repo: Repository bound to the caller's unit of work.
        transaction_id: Payment to void.
        voided_by: Actor performing the void.
        reason: Mandatory free-text reason.
        property_id: Tenant scope.

    Returns:
        VoidResult with the voided transaction, the number of repaired
        later transactions and the recalculated folio.

    Raises:
        LedgerValidationError: Blank reason.
        TransactionNotFoundError: Unknown transaction.
        TransactionNotVoidableError: Not a PAYMENT.
        TransactionAlreadyVoidedError: Already voided.
        FolioNotOpenError: The folio is closed; reopen it first.
    """
    if not reason or not reason.strip():
        raise LedgerValidationError("A void reason is required", field="reason")

    folio, txn = lock_transaction(repo, transaction_id, property_id=property_id)
    if txn.transaction_type != TransactionType.PAYMENT:
        raise TransactionNotVoidableError(txn.id, txn.transaction_type.value)
    if txn.is_voided:
        raise TransactionAlreadyVoidedError(txn.id)
    if not folio.is_open:
        raise FolioNotOpenError(folio.id, folio.status.value)

    txn = repo.save_transaction(
        replace(
            txn,
            status=TransactionStatus.VOIDED,
            voided_at=utc_now(),
            voided_by=voided_by,
            void_reason=reason.strip(),
            last_modified_by=voided_by,
        )
    )
    repaired = shift_later_balances(repo, txn, abs(txn.total_amount))
    folio = recalculate_totals(repo, folio.id)
    return VoidResult(transaction=txn, repaired_count=repaired, folio=folio)
