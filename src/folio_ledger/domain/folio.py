"""Folio boundary schemas: typed posting details and assignment mappings.

Posting metadata is a closed, tagged structure: each transaction type has
its own details model and anything else is rejected at the boundary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import LedgerValidationError
from .ledger import TransactionType

# ── Posting details ──────────────────────────────────────


class _DetailsBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str | None = None
    reference: str | None = None
    notes: str | None = None
    transaction_date: datetime | None = None

    @field_validator("transaction_date")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        # naive timestamps are taken as UTC
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ChargeDetails(_DetailsBase):
    kind: Literal["CHARGE"] = "CHARGE"
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0)
    service_charge_amount: Decimal = Field(default=Decimal("0"), ge=0)
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0)
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal | None = Field(default=None, ge=0)


class PaymentDetails(_DetailsBase):
    kind: Literal["PAYMENT"] = "PAYMENT"
    payment_method_id: str | None = None
    voucher: str | None = None


class RefundDetails(_DetailsBase):
    kind: Literal["REFUND"] = "REFUND"
    payment_method_id: str | None = None


class AdjustmentDetails(_DetailsBase):
    kind: Literal["ADJUSTMENT", "DISCOUNT", "TAX"]


TransactionDetails = Annotated[
    Union[ChargeDetails, PaymentDetails, RefundDetails, AdjustmentDetails],
    Field(discriminator="kind"),
]

_details_adapter: TypeAdapter[Any] = TypeAdapter(TransactionDetails)


def parse_details(
    transaction_type: TransactionType,
    details: BaseModel | dict[str, Any] | None,
) -> ChargeDetails | PaymentDetails | RefundDetails | AdjustmentDetails:
    """Validate posting details for a transaction type.

    Raises:
        LedgerValidationError: Unknown fields, wrong kind, or bad values.
    """
    if isinstance(details, BaseModel):
        payload = details.model_dump(exclude_unset=True)
        payload.setdefault("kind", getattr(details, "kind", transaction_type.value))
    else:
        payload = dict(details or {})
        payload.setdefault("kind", transaction_type.value)

    if payload["kind"] != transaction_type.value:
        raise LedgerValidationError(
            f"Details of kind {payload['kind']} do not match {transaction_type.value}",
            field="details",
        )

    try:
        return _details_adapter.validate_python(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != payload["kind"])
        raise LedgerValidationError(
            f"Invalid details: {loc or 'details'}: {first.get('msg')}",
            field=loc or "details",
        )


# ── Assignment ───────────────────────────────────────────


class BulkAssignmentMapping(BaseModel):
    """Drive a target transaction's assigned amount to an absolute value."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    target_transaction_id: str
    new_assigned_amount: Decimal = Field(..., ge=0, allow_inf_nan=False)
