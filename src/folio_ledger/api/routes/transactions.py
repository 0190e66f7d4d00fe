"""Transaction endpoints: night-audit posting, assignment and voids."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from folio_ledger.api.deps import get_actor_id, get_ledger
from folio_ledger.api.errors import to_http_exception
from folio_ledger.api.serializers import folio_to_dict, transaction_to_dict
from folio_ledger.domain.errors import LedgerError
from folio_ledger.domain.folio import BulkAssignmentMapping
from folio_ledger.services.ledger import FolioLedger

router = APIRouter(prefix="/transactions", tags=["transactions"])


# ── Request schemas ──────────────────────────────────────


class PostPendingRequest(BaseModel):
    amount: Decimal | None = Field(default=None, description="Revised amount, if any")


class AssignRequest(BaseModel):
    amount: Decimal
    notes: str | None = None


class BulkAssignRequest(BaseModel):
    payment_transaction_id: str | None = None
    mappings: list[BulkAssignmentMapping] = Field(..., min_length=1)
    notes: str | None = None


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


# ── Endpoints ────────────────────────────────────────────


@router.post("/bulk-assign")
def bulk_assign(
    body: BulkAssignRequest,
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    """Set each target's assigned amount; all mappings land or none do."""
    try:
        result = ledger.assign_bulk(
            body.mappings,
            actor_id,
            payment_transaction_id=body.payment_transaction_id,
            notes=body.notes,
            property_id=property_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="bulk_assign")

    outcome = result.value
    return {
        "transactions": [transaction_to_dict(t) for t in outcome.targets],
        "payment": transaction_to_dict(outcome.payment) if outcome.payment else None,
        "total_assigned": str(outcome.total_assigned),
        "warnings": result.warnings,
    }


@router.get("/{transaction_id}")
def get_transaction(
    transaction_id: str = Path(...),
    property_id: str = Query(...),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        txn = ledger.get_transaction(transaction_id, property_id=property_id)
    except LedgerError as exc:
        raise to_http_exception(exc, operation="get_transaction")
    return transaction_to_dict(txn)


@router.post("/{transaction_id}/post")
def post_pending(
    body: PostPendingRequest,
    transaction_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        result = ledger.post_pending_charge(
            transaction_id, actor_id, amount=body.amount, property_id=property_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="post_pending")
    return {"transaction": transaction_to_dict(result.value), "warnings": result.warnings}


@router.post("/{transaction_id}/assign")
def assign(
    body: AssignRequest,
    transaction_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    """Mark part of a payment as allocated."""
    try:
        result = ledger.assign_single(
            transaction_id, body.amount, actor_id, notes=body.notes, property_id=property_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="assign")
    return {"transaction": transaction_to_dict(result.value), "warnings": result.warnings}


@router.post("/{transaction_id}/void")
def void(
    body: VoidRequest,
    transaction_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        result = ledger.void_payment(
            transaction_id, actor_id, body.reason, property_id=property_id
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="void")

    voided = result.value
    return {
        "transaction": transaction_to_dict(voided.transaction),
        "repaired_count": voided.repaired_count,
        "folio": folio_to_dict(voided.folio),
        "warnings": result.warnings,
    }
