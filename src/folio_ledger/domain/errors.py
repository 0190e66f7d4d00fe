"""Ledger error taxonomy.

Every failure raised by the ledger carries a stable ``code`` so callers
(HTTP layer, batch jobs) can branch on the category without string matching:

- VALIDATION: bad input, rejected before any write.
- NOT_FOUND: folio, transaction or billing party absent.
- PRECONDITION: state does not allow the operation; unit of work rolled back.
- CONCURRENCY: lock wait / serialization failure; caller decides on retry.
- AUDIT: activity log append failed after a committed financial write.
"""

from __future__ import annotations

from decimal import Decimal


class LedgerError(Exception):
    code = "LEDGER_ERROR"


# ── Validation ───────────────────────────────────────────


class LedgerValidationError(LedgerError):
    code = "VALIDATION"

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


# ── Not found ────────────────────────────────────────────


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    entity = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class FolioNotFoundError(NotFoundError):
    entity = "Folio"


class TransactionNotFoundError(NotFoundError):
    entity = "Transaction"


class BillingPartyNotFoundError(NotFoundError):
    entity = "Billing party"


# ── Precondition failures ────────────────────────────────


class PreconditionFailedError(LedgerError):
    code = "PRECONDITION"


class FolioNotOpenError(PreconditionFailedError):
    def __init__(self, folio_id: str, status: str):
        self.folio_id = folio_id
        self.status = status
        super().__init__(f"Folio {folio_id} is {status}; postings require an open folio")


class FolioNotClosedError(PreconditionFailedError):
    def __init__(self, folio_id: str):
        self.folio_id = folio_id
        super().__init__(f"Only closed folios can be reopened (folio {folio_id})")


class FolioHasBalanceError(PreconditionFailedError):
    def __init__(self, folio_id: str, balance: Decimal):
        self.folio_id = folio_id
        self.balance = balance
        super().__init__(f"Cannot close folio {folio_id} with outstanding balance {balance}")


class NothingToSettleError(PreconditionFailedError):
    def __init__(self, folio_id: str, balance: Decimal):
        self.folio_id = folio_id
        self.balance = balance
        super().__init__(f"Folio {folio_id} has no outstanding balance to settle ({balance})")


class InsufficientUnassignedAmountError(PreconditionFailedError):
    code = "INSUFFICIENT_UNASSIGNED_AMOUNT"

    def __init__(self, transaction_id: str, requested: Decimal, available: Decimal):
        self.transaction_id = transaction_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot assign {requested} on transaction {transaction_id}. "
            f"Maximum assignable amount is {available}"
        )


class TransactionAlreadyVoidedError(PreconditionFailedError):
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} is already voided")


class TransactionNotVoidableError(PreconditionFailedError):
    def __init__(self, transaction_id: str, transaction_type: str):
        self.transaction_id = transaction_id
        self.transaction_type = transaction_type
        super().__init__(
            f"Transaction {transaction_id} of type {transaction_type} cannot be voided "
            "through the payment void path"
        )


class NotAPaymentError(PreconditionFailedError):
    def __init__(self, transaction_id: str, transaction_type: str):
        self.transaction_id = transaction_id
        self.transaction_type = transaction_type
        super().__init__(f"Transaction {transaction_id} is a {transaction_type}, not a PAYMENT")


class TransactionNotPendingError(PreconditionFailedError):
    def __init__(self, transaction_id: str, status: str):
        self.transaction_id = transaction_id
        self.status = status
        super().__init__(f"Transaction {transaction_id} is {status}, expected PENDING")


# ── Concurrency / audit ──────────────────────────────────


class ConcurrencyConflictError(LedgerError):
    """Another writer holds the folio; the engine never retries on its own."""

    code = "CONCURRENCY"


class AuditLogError(LedgerError):
    """Activity log append failed after the financial write committed."""

    code = "AUDIT"

    def __init__(self, message: str, *, entry_count: int = 0):
        self.entry_count = entry_count
        super().__init__(message)
