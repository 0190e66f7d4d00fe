"""Folio endpoints: provisioning, postings, statement and lifecycle."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from folio_ledger.api.deps import get_actor_id, get_ledger
from folio_ledger.api.errors import to_http_exception
from folio_ledger.api.serializers import folio_to_dict, transaction_to_dict
from folio_ledger.domain.errors import LedgerError
from folio_ledger.domain.ledger import (
    BillingParty,
    FolioKind,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
)
from folio_ledger.services.ledger import FolioLedger

router = APIRouter(prefix="/folios", tags=["folios"])


# ── Request schemas ──────────────────────────────────────


class CreateFolioRequest(BaseModel):
    kind: FolioKind
    party_id: str = Field(..., min_length=1, description="Guest or company id")
    reservation_id: str | None = None
    folio_name: str | None = None
    currency_code: str | None = Field(default=None, min_length=3, max_length=3)


class PostTransactionRequest(BaseModel):
    transaction_type: TransactionType
    category: TransactionCategory
    amount: Decimal = Field(..., description="Non-negative magnitude; the type decides the sign")
    status: TransactionStatus = TransactionStatus.POSTED
    details: dict[str, Any] | None = None


class SettleFolioRequest(BaseModel):
    amount: Decimal | None = Field(default=None, description="Defaults to the outstanding balance")
    payment_method_id: str | None = None
    reference: str | None = None
    notes: str | None = None


# ── Endpoints ────────────────────────────────────────────


@router.post("")
def create_folio(
    body: CreateFolioRequest,
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    """Return the party's open folio, opening a new one if none exists."""
    party = BillingParty(body.kind, body.party_id)
    try:
        result = ledger.get_or_create_folio(
            party,
            property_id,
            actor_id,
            reservation_id=body.reservation_id,
            folio_name=body.folio_name,
            currency_code=body.currency_code,
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="create_folio")
    return {"folio": folio_to_dict(result.value), "warnings": result.warnings}


@router.get("/{folio_id}")
def get_folio(
    folio_id: str = Path(...),
    property_id: str = Query(...),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        folio = ledger.get_folio(folio_id, property_id=property_id)
    except LedgerError as exc:
        raise to_http_exception(exc, operation="get_folio")
    return folio_to_dict(folio)  # type: ignore[return-value]


@router.get("/{folio_id}/statement")
def get_statement(
    folio_id: str = Path(...),
    property_id: str = Query(...),
    include_voided: bool = Query(True),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    """Folio with its transactions in statement order."""
    try:
        statement = ledger.get_folio_statement(
            folio_id, property_id=property_id, include_voided=include_voided
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="get_statement")
    return {
        "folio": folio_to_dict(statement.folio),
        "transactions": [transaction_to_dict(t) for t in statement.transactions],
    }


@router.post("/{folio_id}/transactions")
def post_transaction(
    body: PostTransactionRequest,
    folio_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        result = ledger.post_transaction(
            folio_id,
            body.transaction_type,
            body.category,
            body.amount,
            actor_id,
            details=body.details,
            status=body.status,
            property_id=property_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="post_transaction")
    return {"transaction": transaction_to_dict(result.value), "warnings": result.warnings}


@router.post("/{folio_id}/recalculate")
def recalculate(
    folio_id: str = Path(...),
    property_id: str = Query(...),
    verify: bool = Query(False, description="Also report running-balance drift"),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        folio = ledger.recalculate(folio_id, property_id=property_id)
        verification = ledger.verify_folio(folio_id, property_id=property_id) if verify else None
    except LedgerError as exc:
        raise to_http_exception(exc, operation="recalculate")

    response: dict[str, Any] = {"folio": folio_to_dict(folio)}
    if verification is not None:
        response["verification"] = {
            "ok": verification.ok,
            "stored_balance": str(verification.stored_balance),
            "computed_balance": str(verification.computed_balance),
            "drift": [
                {
                    "transaction_id": d.transaction_id,
                    "stored": str(d.stored),
                    "expected": str(d.expected),
                }
                for d in verification.drift
            ],
        }
    return response


@router.post("/{folio_id}/close")
def close_folio(
    folio_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        result = ledger.close_folio(folio_id, actor_id, property_id=property_id)
    except LedgerError as exc:
        raise to_http_exception(exc, operation="close_folio")
    return {"folio": folio_to_dict(result.value), "warnings": result.warnings}


@router.post("/{folio_id}/settle")
def settle_folio(
    body: SettleFolioRequest | None = None,
    folio_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    """Pay off the outstanding balance; the folio closes once nothing is owed."""
    body = body or SettleFolioRequest()
    try:
        result = ledger.settle_folio(
            folio_id,
            actor_id,
            amount=body.amount,
            payment_method_id=body.payment_method_id,
            reference=body.reference,
            notes=body.notes,
            property_id=property_id,
        )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="settle_folio")
    return {
        "transaction": transaction_to_dict(result.value.payment),
        "folio": folio_to_dict(result.value.folio),
        "warnings": result.warnings,
    }


@router.post("/{folio_id}/reopen")
def reopen_folio(
    folio_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    try:
        result = ledger.reopen_folio(folio_id, actor_id, property_id=property_id)
    except LedgerError as exc:
        raise to_http_exception(exc, operation="reopen_folio")
    return {"folio": folio_to_dict(result.value), "warnings": result.warnings}
