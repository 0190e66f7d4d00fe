"""Company (city-ledger) endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from folio_ledger.api.deps import get_actor_id, get_ledger
from folio_ledger.api.errors import to_http_exception
from folio_ledger.api.serializers import folio_to_dict, transaction_to_dict
from folio_ledger.domain.errors import LedgerError
from folio_ledger.domain.folio import BulkAssignmentMapping
from folio_ledger.services.ledger import FolioLedger

router = APIRouter(prefix="/companies", tags=["companies"])


class CompanyPaymentRequest(BaseModel):
    amount: Decimal
    description: str | None = Field(default=None, max_length=255)
    payment_method_id: str | None = None
    reference: str | None = None
    voucher: str | None = None
    notes: str | None = None
    transaction_date: datetime | None = None
    mappings: list[BulkAssignmentMapping] | None = Field(
        default=None, description="Distribute the payment over these transactions"
    )


@router.post("/{company_id}/payments")
def post_company_payment(
    body: CompanyPaymentRequest,
    company_id: str = Path(...),
    property_id: str = Query(...),
    actor_id: str = Depends(get_actor_id),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    """Post a city-ledger payment, optionally assigned in the same unit of work."""
    fields = body.model_dump(exclude={"amount", "mappings"}, exclude_none=True)
    try:
        if body.mappings:
            result = ledger.post_company_payment_with_assignment(
                company_id, property_id, body.amount, actor_id, body.mappings, **fields
            )
        else:
            result = ledger.post_company_payment(
                company_id, property_id, body.amount, actor_id, **fields
            )
    except LedgerError as exc:
        raise to_http_exception(exc, operation="post_company_payment")

    outcome = result.value
    response = {
        "payment": transaction_to_dict(outcome.payment),
        "folio": folio_to_dict(outcome.folio),
        "folio_created": outcome.folio_created,
        "warnings": result.warnings,
    }
    if outcome.assignment is not None:
        response["assigned"] = [transaction_to_dict(t) for t in outcome.assignment.targets]
    return response


@router.get("/{company_id}/folio")
def get_company_folio(
    company_id: str = Path(...),
    property_id: str = Query(...),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    view = ledger.get_company_folio_with_transactions(company_id, property_id)
    return {
        "folio": folio_to_dict(view.folio),
        "transactions": [transaction_to_dict(t) for t in view.transactions],
    }


@router.get("/{company_id}/unassigned-payments")
def get_unassigned_payments(
    company_id: str = Path(...),
    property_id: str = Query(...),
    ledger: FolioLedger = Depends(get_ledger),
) -> dict:
    amount = ledger.get_unassigned_payment_amount(company_id, property_id)
    return {"company_id": company_id, "unassigned_amount": str(amount)}
