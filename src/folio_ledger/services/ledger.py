"""FolioLedger: the ledger's public entry points.

Each write runs one service function inside one unit of work, then appends
its audit entries after the commit. An audit failure never unwinds the
financial write; it comes back on the result as ``audit_error``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Generic, Sequence, TypeVar

from pydantic import BaseModel

from folio_ledger.config import LedgerSettings, load_settings
from folio_ledger.domain.errors import AuditLogError
from folio_ledger.domain.folio import BulkAssignmentMapping
from folio_ledger.domain.ledger import (
    BillingParty,
    Folio,
    FolioTransaction,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
)
from folio_ledger.infra.activity_log import (
    ActivityEntry,
    ActivityLog,
    InMemoryActivityLog,
    PgActivityLog,
)
from folio_ledger.infra.directory import (
    BillingPartyDirectory,
    InMemoryBillingPartyDirectory,
    PgBillingPartyDirectory,
)
from folio_ledger.infra.store import LedgerStore, build_store
from folio_ledger.observability.correlation import get_correlation_id
from folio_ledger.observability.logging import get_logger
from folio_ledger.observability.redaction import safe_log_context
from folio_ledger.services import (
    assignment_service,
    company_folio_service,
    folio_service,
    void_service,
)
from folio_ledger.services.assignment_service import BulkAssignmentOutcome
from folio_ledger.services.company_folio_service import CompanyFolioView, CompanyPaymentOutcome
from folio_ledger.services.folio_service import (
    FolioStatement,
    FolioVerification,
    SettlementOutcome,
)
from folio_ledger.services.void_service import VoidResult

logger = get_logger(__name__)

T = TypeVar("T")

FOLIO_ENTITY = "Folio"
TRANSACTION_ENTITY = "FolioTransaction"


@dataclass(frozen=True)
class LedgerResult(Generic[T]):
    value: T
    audit_error: AuditLogError | None = None

    @property
    def warnings(self) -> list[str]:
        return [str(self.audit_error)] if self.audit_error else []


@dataclass
class _AuditBatch:
    property_id: str
    actor_id: str
    entries: list[ActivityEntry] = field(default_factory=list)

    def add(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        description: str,
        *,
        changes: dict[str, Any] | None = None,
        **meta: Any,
    ) -> None:
        self.entries.append(
            ActivityEntry(
                actor_id=self.actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                description=description,
                hotel_id=self.property_id,
                changes=changes,
                meta=meta,
                context={"correlation_id": get_correlation_id() or None},
            )
        )


class FolioLedger:
    """Folio ledger with injected storage, audit and directory collaborators."""

    def __init__(
        self,
        store: LedgerStore,
        activity_log: ActivityLog,
        directory: BillingPartyDirectory,
        *,
        default_currency: str = "USD",
    ):
        self.store = store
        self.activity_log = activity_log
        self.directory = directory
        self.default_currency = default_currency

    # ── Audit ────────────────────────────────────────────

    def _flush_audit(self, batch: _AuditBatch) -> AuditLogError | None:
        if not batch.entries:
            return None
        try:
            self.activity_log.bulk_log(batch.entries)
        except Exception as exc:
            error = AuditLogError(
                f"Activity log append failed: {exc}", entry_count=len(batch.entries)
            )
            error.__cause__ = exc
            logger.warning(
                "activity log append failed",
                extra={
                    "extra_fields": safe_log_context(
                        property_id=batch.property_id,
                        actions=[e.action for e in batch.entries],
                        entity_id=batch.entries[0].entity_id,
                        error_type=type(exc).__name__,
                    )
                },
            )
            return error
        return None

    # ── Folios ───────────────────────────────────────────

    def get_or_create_folio(
        self,
        party: BillingParty,
        property_id: str,
        actor_id: str,
        *,
        reservation_id: str | None = None,
        folio_name: str | None = None,
        currency_code: str | None = None,
    ) -> LedgerResult[Folio]:
        with self.store.unit_of_work() as repo:
            folio, created = folio_service.get_or_create_folio(
                repo,
                self.directory,
                party=party,
                property_id=property_id,
                actor_id=actor_id,
                reservation_id=reservation_id,
                folio_name=folio_name,
                currency_code=currency_code or self.default_currency,
            )

        batch = _AuditBatch(property_id, actor_id)
        if created:
            batch.add(
                "CREATE",
                FOLIO_ENTITY,
                folio.id,
                f"Folio {folio.folio_number} opened for {party.kind.value.lower()} {party.party_id}",
                folio_number=folio.folio_number,
                reservation_id=reservation_id,
            )
            logger.info(
                "folio opened",
                extra={
                    "extra_fields": safe_log_context(
                        property_id=property_id,
                        folio_id=folio.id,
                        folio_number=folio.folio_number,
                        kind=party.kind,
                    )
                },
            )
        return LedgerResult(folio, self._flush_audit(batch))

    def recalculate(self, folio_id: str, *, property_id: str | None = None) -> Folio:
        with self.store.unit_of_work() as repo:
            folio_service.load_folio(repo, folio_id, property_id=property_id)
            return folio_service.recalculate_totals(repo, folio_id)

    def close_folio(
        self, folio_id: str, actor_id: str, *, property_id: str | None = None
    ) -> LedgerResult[Folio]:
        with self.store.unit_of_work() as repo:
            folio = folio_service.close_folio(
                repo, folio_id=folio_id, actor_id=actor_id, property_id=property_id
            )

        batch = _AuditBatch(folio.property_id, actor_id)
        batch.add(
            "CLOSE",
            FOLIO_ENTITY,
            folio.id,
            f"Folio {folio.folio_number} closed",
            changes={"status": {"old": "OPEN", "new": "CLOSED"}},
            balance=folio.balance,
        )
        return LedgerResult(folio, self._flush_audit(batch))

    def settle_folio(
        self,
        folio_id: str,
        actor_id: str,
        *,
        amount: Any = None,
        payment_method_id: str | None = None,
        reference: str | None = None,
        notes: str | None = None,
        property_id: str | None = None,
    ) -> LedgerResult[SettlementOutcome]:
        with self.store.unit_of_work() as repo:
            outcome = folio_service.settle_folio(
                repo,
                folio_id=folio_id,
                actor_id=actor_id,
                amount=amount,
                payment_method_id=payment_method_id,
                reference=reference,
                notes=notes,
                property_id=property_id,
            )

        folio, payment = outcome.folio, outcome.payment
        batch = _AuditBatch(folio.property_id, actor_id)
        batch.add(
            "SETTLE",
            TRANSACTION_ENTITY,
            payment.id,
            f"PAYMENT #{payment.transaction_number} of {payment.amount} "
            f"settles folio {folio.folio_number}",
            folio_id=folio.id,
            amount=str(payment.amount),
            balance=str(folio.balance),
            settlement_status=folio.settlement_status.value,
        )
        if outcome.closed:
            batch.add(
                "CLOSE",
                FOLIO_ENTITY,
                folio.id,
                f"Folio {folio.folio_number} closed on settlement",
                changes={"status": {"old": "OPEN", "new": "CLOSED"}},
                balance=folio.balance,
            )
        return LedgerResult(outcome, self._flush_audit(batch))

    def reopen_folio(
        self, folio_id: str, actor_id: str, *, property_id: str | None = None
    ) -> LedgerResult[Folio]:
        with self.store.unit_of_work() as repo:
            folio = folio_service.reopen_folio(
                repo, folio_id=folio_id, actor_id=actor_id, property_id=property_id
            )

        batch = _AuditBatch(folio.property_id, actor_id)
        batch.add(
            "REOPEN",
            FOLIO_ENTITY,
            folio.id,
            f"Folio {folio.folio_number} reopened",
            changes={"status": {"old": "CLOSED", "new": "OPEN"}},
        )
        return LedgerResult(folio, self._flush_audit(batch))

    def record_print(self, folio_id: str, *, property_id: str | None = None) -> Folio:
        with self.store.unit_of_work() as repo:
            return folio_service.record_print(repo, folio_id=folio_id, property_id=property_id)

    # ── Postings ─────────────────────────────────────────

    def post_transaction(
        self,
        folio_id: str,
        transaction_type: TransactionType | str,
        category: TransactionCategory | str,
        amount: Any,
        actor_id: str,
        *,
        details: BaseModel | dict[str, Any] | None = None,
        status: TransactionStatus | str = TransactionStatus.POSTED,
        property_id: str | None = None,
    ) -> LedgerResult[FolioTransaction]:
        with self.store.unit_of_work() as repo:
            txn, folio = folio_service.post_transaction(
                repo,
                folio_id=folio_id,
                transaction_type=transaction_type,
                category=category,
                amount=amount,
                actor_id=actor_id,
                details=details,
                status=status,
                property_id=property_id,
            )

        batch = _AuditBatch(txn.property_id, actor_id)
        batch.add(
            "POST_TRANSACTION",
            TRANSACTION_ENTITY,
            txn.id,
            f"{txn.transaction_type.value} #{txn.transaction_number} of {txn.total_amount} "
            f"posted to folio {folio.folio_number}",
            folio_id=folio.id,
            transaction_type=txn.transaction_type.value,
            category=txn.category.value,
            amount=str(txn.amount),
            total_amount=str(txn.total_amount),
            status=txn.status.value,
            balance=str(folio.balance),
        )
        logger.info(
            "transaction posted",
            extra={
                "extra_fields": safe_log_context(
                    property_id=txn.property_id,
                    folio_id=folio.id,
                    transaction_id=txn.id,
                    transaction_number=txn.transaction_number,
                    transaction_type=txn.transaction_type,
                    total_amount=txn.total_amount,
                )
            },
        )
        return LedgerResult(txn, self._flush_audit(batch))

    def post_pending_charge(
        self,
        transaction_id: str,
        actor_id: str,
        *,
        amount: Any = None,
        property_id: str | None = None,
    ) -> LedgerResult[FolioTransaction]:
        with self.store.unit_of_work() as repo:
            before = folio_service.load_transaction(repo, transaction_id, property_id=property_id)
            txn, folio = folio_service.post_pending_charge(
                repo,
                transaction_id=transaction_id,
                actor_id=actor_id,
                amount=amount,
                property_id=property_id,
            )

        batch = _AuditBatch(txn.property_id, actor_id)
        batch.add(
            "POST_PENDING",
            TRANSACTION_ENTITY,
            txn.id,
            f"Pending charge #{txn.transaction_number} posted",
            changes={
                "status": {"old": before.status.value, "new": txn.status.value},
                "amount": {"old": str(before.amount), "new": str(txn.amount)},
            },
            folio_id=folio.id,
        )
        return LedgerResult(txn, self._flush_audit(batch))

    # ── Assignment ───────────────────────────────────────

    def assign_single(
        self,
        payment_transaction_id: str,
        amount: Any,
        actor_id: str,
        *,
        notes: str | None = None,
        property_id: str | None = None,
    ) -> LedgerResult[FolioTransaction]:
        with self.store.unit_of_work() as repo:
            payment, _ = assignment_service.assign_single(
                repo,
                payment_transaction_id=payment_transaction_id,
                amount=amount,
                actor_id=actor_id,
                notes=notes,
                property_id=property_id,
            )

        batch = _AuditBatch(payment.property_id, actor_id)
        batch.add(
            "ASSIGN",
            TRANSACTION_ENTITY,
            payment.id,
            f"Assigned {payment.assignment_history[-1].assigned_amount} "
            f"of payment #{payment.transaction_number}",
            assigned_amount=str(payment.assigned_amount),
            unassigned_amount=str(payment.unassigned_amount),
        )
        return LedgerResult(payment, self._flush_audit(batch))

    def assign_bulk(
        self,
        mappings: Sequence[BulkAssignmentMapping | dict[str, Any]],
        actor_id: str,
        *,
        payment_transaction_id: str | None = None,
        notes: str | None = None,
        property_id: str | None = None,
    ) -> LedgerResult[BulkAssignmentOutcome]:
        with self.store.unit_of_work() as repo:
            outcome = assignment_service.assign_bulk(
                repo,
                mappings=mappings,
                actor_id=actor_id,
                payment_transaction_id=payment_transaction_id,
                notes=notes,
                property_id=property_id,
            )

        return LedgerResult(outcome, self._flush_audit(self._bulk_audit(outcome, actor_id)))

    def _bulk_audit(self, outcome: BulkAssignmentOutcome, actor_id: str) -> _AuditBatch:
        batch = _AuditBatch(outcome.targets[0].property_id, actor_id)
        for target in outcome.targets:
            batch.add(
                "BULK_ASSIGN",
                TRANSACTION_ENTITY,
                target.id,
                f"Assigned amount of #{target.transaction_number} set to {target.assigned_amount}",
                changes={
                    "assigned_amount": {
                        "old": str(outcome.previous_amounts[target.id]),
                        "new": str(target.assigned_amount),
                    }
                },
                payment_transaction_id=outcome.payment.id if outcome.payment else None,
            )
        if outcome.payment is not None:
            batch.add(
                "BULK_ASSIGN",
                TRANSACTION_ENTITY,
                outcome.payment.id,
                f"Payment #{outcome.payment.transaction_number} distributed "
                f"{outcome.total_assigned} over {len(outcome.targets)} transaction(s)",
                total_assigned=str(outcome.total_assigned),
                unassigned_amount=str(outcome.payment.unassigned_amount),
            )
        return batch

    # ── Voids ────────────────────────────────────────────

    def void_payment(
        self,
        transaction_id: str,
        voided_by: str,
        reason: str,
        *,
        property_id: str | None = None,
    ) -> LedgerResult[VoidResult]:
        with self.store.unit_of_work() as repo:
            result = void_service.void_payment(
                repo,
                transaction_id=transaction_id,
                voided_by=voided_by,
                reason=reason,
                property_id=property_id,
            )

        txn = result.transaction
        batch = _AuditBatch(txn.property_id, voided_by)
        batch.add(
            "VOID",
            TRANSACTION_ENTITY,
            txn.id,
            f"Payment #{txn.transaction_number} of {txn.total_amount} voided",
            changes={"status": {"old": TransactionStatus.POSTED.value, "new": txn.status.value}},
            reason=txn.void_reason,
            repaired_count=result.repaired_count,
            folio_balance=str(result.folio.balance),
        )
        logger.info(
            "payment voided",
            extra={
                "extra_fields": safe_log_context(
                    property_id=txn.property_id,
                    folio_id=txn.folio_id,
                    transaction_id=txn.id,
                    repaired_count=result.repaired_count,
                    void_reason=txn.void_reason,
                )
            },
        )
        return LedgerResult(result, self._flush_audit(batch))

    # ── Company billing ──────────────────────────────────

    def post_company_payment(
        self,
        company_id: str,
        property_id: str,
        amount: Any,
        actor_id: str,
        **payment_fields: Any,
    ) -> LedgerResult[CompanyPaymentOutcome]:
        with self.store.unit_of_work() as repo:
            outcome = company_folio_service.post_company_payment(
                repo,
                self.directory,
                company_id=company_id,
                property_id=property_id,
                amount=amount,
                actor_id=actor_id,
                currency_code=self.default_currency,
                **payment_fields,
            )

        return LedgerResult(outcome, self._flush_audit(self._company_audit(outcome, actor_id)))

    def post_company_payment_with_assignment(
        self,
        company_id: str,
        property_id: str,
        amount: Any,
        actor_id: str,
        mappings: Sequence[BulkAssignmentMapping | dict[str, Any]],
        **payment_fields: Any,
    ) -> LedgerResult[CompanyPaymentOutcome]:
        with self.store.unit_of_work() as repo:
            outcome = company_folio_service.post_company_payment_with_assignment(
                repo,
                self.directory,
                company_id=company_id,
                property_id=property_id,
                amount=amount,
                actor_id=actor_id,
                mappings=mappings,
                currency_code=self.default_currency,
                **payment_fields,
            )

        batch = self._company_audit(outcome, actor_id)
        if outcome.assignment is not None:
            batch.entries.extend(self._bulk_audit(outcome.assignment, actor_id).entries)
        return LedgerResult(outcome, self._flush_audit(batch))

    def _company_audit(self, outcome: CompanyPaymentOutcome, actor_id: str) -> _AuditBatch:
        folio, payment = outcome.folio, outcome.payment
        batch = _AuditBatch(folio.property_id, actor_id)
        if outcome.folio_created:
            batch.add(
                "CREATE",
                FOLIO_ENTITY,
                folio.id,
                f"Folio {folio.folio_number} opened for company {folio.company_id}",
                folio_number=folio.folio_number,
            )
        batch.add(
            "POST_TRANSACTION",
            TRANSACTION_ENTITY,
            payment.id,
            f"City ledger payment #{payment.transaction_number} of {payment.amount} "
            f"posted to folio {folio.folio_number}",
            folio_id=folio.id,
            transaction_type=payment.transaction_type.value,
            amount=str(payment.amount),
            payment_method_id=payment.payment_method_id,
        )
        return batch

    # ── Reads ────────────────────────────────────────────

    def get_folio(self, folio_id: str, *, property_id: str | None = None) -> Folio:
        with self.store.unit_of_work() as repo:
            return folio_service.load_folio(repo, folio_id, property_id=property_id)

    def get_transaction(
        self, transaction_id: str, *, property_id: str | None = None
    ) -> FolioTransaction:
        with self.store.unit_of_work() as repo:
            return folio_service.load_transaction(repo, transaction_id, property_id=property_id)

    def get_folio_statement(
        self,
        folio_id: str,
        *,
        property_id: str | None = None,
        include_voided: bool = True,
    ) -> FolioStatement:
        with self.store.unit_of_work() as repo:
            return folio_service.get_folio_statement(
                repo, folio_id=folio_id, property_id=property_id, include_voided=include_voided
            )

    def get_company_folio_with_transactions(
        self, company_id: str, property_id: str
    ) -> CompanyFolioView:
        with self.store.unit_of_work() as repo:
            return company_folio_service.get_company_folio_with_transactions(
                repo, company_id=company_id, property_id=property_id
            )

    def get_unassigned_payment_amount(self, company_id: str, property_id: str) -> Decimal:
        with self.store.unit_of_work() as repo:
            return company_folio_service.get_unassigned_payment_amount(
                repo, company_id=company_id, property_id=property_id
            )

    def verify_folio(
        self, folio_id: str, *, property_id: str | None = None
    ) -> FolioVerification:
        with self.store.unit_of_work() as repo:
            return folio_service.verify_folio(repo, folio_id=folio_id, property_id=property_id)


def build_ledger(settings: LedgerSettings | None = None) -> FolioLedger:
    """Wire a FolioLedger from settings (environment by default)."""
    settings = settings or load_settings()
    store = build_store(settings)
    if settings.store_backend == "memory":
        return FolioLedger(
            store,
            InMemoryActivityLog(),
            InMemoryBillingPartyDirectory(),
            default_currency=settings.default_currency,
        )
    return FolioLedger(
        store,
        PgActivityLog(),
        PgBillingPartyDirectory(),
        default_currency=settings.default_currency,
    )
