"""Folio ledger repository: persistence for folios and folio transactions.

Uses raw SQL with psycopg2 (no ORM). Every method takes or returns the
frozen value objects from ``folio_ledger.domain.ledger``; JSON encoding of
the assignment history happens here and nowhere else.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Sequence

from psycopg2.extensions import cursor as PgCursor

from folio_ledger.domain.ledger import (
    ZERO,
    AssignmentEntry,
    BillingParty,
    Folio,
    FolioKind,
    FolioStatus,
    FolioTransaction,
    SettlementStatus,
    TransactionCategory,
    TransactionStatus,
    TransactionType,
    WorkflowStatus,
)
from folio_ledger.infra.db import for_update as locked_fetchone

_FOLIO_COLUMNS = (
    "id",
    "property_id",
    "folio_number",
    "kind",
    "folio_name",
    "guest_id",
    "company_id",
    "reservation_id",
    "status",
    "settlement_status",
    "workflow_status",
    "balance",
    "total_charges",
    "total_payments",
    "total_adjustments",
    "total_taxes",
    "total_service_charges",
    "total_discounts",
    "total_refunds",
    "currency_code",
    "exchange_rate",
    "credit_limit",
    "print_count",
    "last_print_date",
    "opened_at",
    "opened_by",
    "closed_at",
    "closed_by",
    "settled_at",
    "created_at",
    "updated_at",
    "last_modified_by",
)

_TXN_COLUMNS = (
    "id",
    "folio_id",
    "property_id",
    "transaction_number",
    "transaction_code",
    "transaction_type",
    "category",
    "description",
    "amount",
    "total_amount",
    "net_amount",
    "tax_amount",
    "service_charge_amount",
    "discount_amount",
    "quantity",
    "unit_price",
    "assigned_amount",
    "unassigned_amount",
    "assignment_history",
    "balance",
    "status",
    "voided_at",
    "voided_by",
    "void_reason",
    "payment_method_id",
    "reference",
    "voucher",
    "notes",
    "posting_date",
    "transaction_date",
    "created_at",
    "created_by",
    "last_modified_by",
)

_FOLIO_SELECT = f"SELECT {', '.join(_FOLIO_COLUMNS)} FROM folios"
_TXN_SELECT = f"SELECT {', '.join(_TXN_COLUMNS)} FROM folio_transactions"

# Mutable columns; identity and numbering never change after insert.
_FOLIO_UPDATABLE = (
    "folio_name",
    "status",
    "settlement_status",
    "workflow_status",
    "balance",
    "total_charges",
    "total_payments",
    "total_adjustments",
    "total_taxes",
    "total_service_charges",
    "total_discounts",
    "total_refunds",
    "credit_limit",
    "print_count",
    "last_print_date",
    "closed_at",
    "closed_by",
    "settled_at",
    "last_modified_by",
)

_TXN_UPDATABLE = (
    "amount",
    "total_amount",
    "net_amount",
    "tax_amount",
    "service_charge_amount",
    "discount_amount",
    "unit_price",
    "assigned_amount",
    "unassigned_amount",
    "assignment_history",
    "balance",
    "status",
    "voided_at",
    "voided_by",
    "void_reason",
    "posting_date",
    "last_modified_by",
)


# ── Storage-boundary codecs ──────────────────────────────


def encode_history(entries: Sequence[AssignmentEntry]) -> str:
    """Encode assignment history as a JSON array (decimals as strings)."""
    return json.dumps(
        [
            {
                "key": e.key,
                "assignedAmount": str(e.assigned_amount),
                "previousAssignedAmount": (
                    str(e.previous_assigned_amount)
                    if e.previous_assigned_amount is not None
                    else None
                ),
                "assignedBy": e.assigned_by,
                "assignmentDate": e.assignment_date.isoformat(),
                "notes": e.notes,
                "autoAssigned": e.auto_assigned,
                "paymentTransactionId": e.payment_transaction_id,
            }
            for e in entries
        ]
    )


def decode_history(raw: Any) -> tuple[AssignmentEntry, ...]:
    """Decode the JSONB column (psycopg2 may hand back a list or a str)."""
    if raw is None:
        return ()
    items = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    entries = [
        AssignmentEntry(
            key=item["key"],
            assigned_amount=Decimal(item["assignedAmount"]),
            previous_assigned_amount=(
                Decimal(item["previousAssignedAmount"])
                if item.get("previousAssignedAmount") is not None
                else None
            ),
            assigned_by=item["assignedBy"],
            assignment_date=datetime.fromisoformat(item["assignmentDate"]),
            notes=item.get("notes"),
            auto_assigned=bool(item.get("autoAssigned", False)),
            payment_transaction_id=item.get("paymentTransactionId"),
        )
        for item in items
    ]
    return tuple(entries)


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


def row_to_folio(row: Sequence[Any]) -> Folio:
    data = dict(zip(_FOLIO_COLUMNS, row))
    for key in ("id", "guest_id", "company_id", "reservation_id", "opened_by", "closed_by",
                "last_modified_by"):
        data[key] = _str_or_none(data[key])
    data["kind"] = FolioKind(data["kind"])
    data["status"] = FolioStatus(data["status"])
    data["settlement_status"] = SettlementStatus(data["settlement_status"])
    data["workflow_status"] = WorkflowStatus(data["workflow_status"])
    return Folio(**data)


def row_to_transaction(row: Sequence[Any]) -> FolioTransaction:
    data = dict(zip(_TXN_COLUMNS, row))
    for key in ("id", "folio_id", "voided_by", "payment_method_id", "created_by",
                "last_modified_by"):
        data[key] = _str_or_none(data[key])
    data["transaction_type"] = TransactionType(data["transaction_type"])
    data["category"] = TransactionCategory(data["category"])
    data["status"] = TransactionStatus(data["status"])
    data["assignment_history"] = decode_history(data["assignment_history"])
    return FolioTransaction(**data)


def _column_value(obj: Any, column: str) -> Any:
    if column == "assignment_history":
        return encode_history(obj.assignment_history)
    value = getattr(obj, column)
    if isinstance(value, Enum):
        return value.value
    return value


def allocate_sequence(cur: PgCursor, property_id: str, counter: str) -> int:
    """Bump a ledger_counters row and return the new value."""
    cur.execute(
        """
        INSERT INTO ledger_counters (property_id, counter_name, last_value)
        VALUES (%s, %s, 1)
        ON CONFLICT (property_id, counter_name)
        DO UPDATE SET last_value = ledger_counters.last_value + 1
        RETURNING last_value
        """,
        (property_id, counter),
    )
    return cur.fetchone()[0]


# ── Repository ───────────────────────────────────────────


class PgLedgerRepository:
    """Ledger repository bound to one open psycopg2 cursor (one unit of work)."""

    def __init__(
        self,
        cur: PgCursor,
        allocate: Callable[[str, str], int] | None = None,
    ):
        self.cur = cur
        self._allocate = allocate

    # Locks -------------------------------------------------

    def lock_billing_party(self, party: BillingParty, property_id: str) -> None:
        """Serialize folio provisioning for one billing party until commit."""
        self.cur.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s))",
            (f"folio:{property_id}:{party.kind.value}:{party.party_id}",),
        )

    # Counters ----------------------------------------------

    def next_sequence(self, property_id: str, counter: str) -> int:
        """Increment and return a per-property counter.

        With an allocator (the store's default) the counter is bumped in its
        own short transaction: folios of one property never wait on each
        other's open units of work, and a rolled-back posting leaves a gap.
        Without one, the bump joins this unit of work and holds the counter
        row until commit.
        """
        if self._allocate is not None:
            return self._allocate(property_id, counter)
        return allocate_sequence(self.cur, property_id, counter)

    # Folios ------------------------------------------------

    def get_folio(self, folio_id: str, *, for_update: bool = False) -> Folio | None:
        query = f"{_FOLIO_SELECT} WHERE id = %s"
        if for_update:
            row = locked_fetchone(self.cur, query, (folio_id,))
        else:
            self.cur.execute(query, (folio_id,))
            row = self.cur.fetchone()
        return row_to_folio(row) if row else None

    def find_open_folio(self, party: BillingParty, property_id: str) -> Folio | None:
        column = "company_id" if party.kind == FolioKind.COMPANY else "guest_id"
        self.cur.execute(
            f"""
            {_FOLIO_SELECT}
            WHERE property_id = %s AND {column} = %s AND status = 'OPEN'
            ORDER BY created_at
            LIMIT 1
            """,
            (property_id, party.party_id),
        )
        row = self.cur.fetchone()
        return row_to_folio(row) if row else None

    def list_party_folios(self, party: BillingParty, property_id: str) -> list[Folio]:
        column = "company_id" if party.kind == FolioKind.COMPANY else "guest_id"
        self.cur.execute(
            f"{_FOLIO_SELECT} WHERE property_id = %s AND {column} = %s ORDER BY created_at",
            (property_id, party.party_id),
        )
        return [row_to_folio(r) for r in self.cur.fetchall()]

    def insert_folio(self, folio: Folio) -> Folio:
        columns = [c for c in _FOLIO_COLUMNS if c not in ("id", "created_at", "updated_at")]
        placeholders = ", ".join(["%s"] * len(columns))
        self.cur.execute(
            f"""
            INSERT INTO folios ({', '.join(columns)})
            VALUES ({placeholders})
            RETURNING {', '.join(_FOLIO_COLUMNS)}
            """,
            tuple(_column_value(folio, c) for c in columns),
        )
        return row_to_folio(self.cur.fetchone())

    def save_folio(self, folio: Folio) -> Folio:
        assignments = ", ".join(f"{c} = %s" for c in _FOLIO_UPDATABLE)
        self.cur.execute(
            f"""
            UPDATE folios
            SET {assignments}, updated_at = now()
            WHERE id = %s
            RETURNING {', '.join(_FOLIO_COLUMNS)}
            """,
            (*(_column_value(folio, c) for c in _FOLIO_UPDATABLE), folio.id),
        )
        return row_to_folio(self.cur.fetchone())

    # Transactions ------------------------------------------

    def insert_transaction(self, txn: FolioTransaction) -> FolioTransaction:
        # clock_timestamp(): several postings in one unit of work still get
        # distinct, ordered created_at values.
        columns = [c for c in _TXN_COLUMNS if c not in ("id", "created_at")]
        placeholders = ", ".join(["%s"] * len(columns))
        self.cur.execute(
            f"""
            INSERT INTO folio_transactions ({', '.join(columns)}, is_voided, created_at)
            VALUES ({placeholders}, %s, clock_timestamp())
            RETURNING {', '.join(_TXN_COLUMNS)}
            """,
            (*(_column_value(txn, c) for c in columns), txn.is_voided),
        )
        return row_to_transaction(self.cur.fetchone())

    def save_transaction(self, txn: FolioTransaction) -> FolioTransaction:
        assignments = ", ".join(f"{c} = %s" for c in _TXN_UPDATABLE)
        self.cur.execute(
            f"""
            UPDATE folio_transactions
            SET {assignments}, is_voided = %s, updated_at = now()
            WHERE id = %s
            RETURNING {', '.join(_TXN_COLUMNS)}
            """,
            (*(_column_value(txn, c) for c in _TXN_UPDATABLE), txn.is_voided, txn.id),
        )
        return row_to_transaction(self.cur.fetchone())

    def get_transaction(
        self, transaction_id: str, *, for_update: bool = False
    ) -> FolioTransaction | None:
        query = f"{_TXN_SELECT} WHERE id = %s"
        if for_update:
            row = locked_fetchone(self.cur, query, (transaction_id,))
        else:
            self.cur.execute(query, (transaction_id,))
            row = self.cur.fetchone()
        return row_to_transaction(row) if row else None

    def list_transactions(
        self, folio_id: str, *, include_voided: bool = True
    ) -> list[FolioTransaction]:
        query = f"{_TXN_SELECT} WHERE folio_id = %s"
        if not include_voided:
            query += " AND status <> 'VOIDED'"
        query += " ORDER BY transaction_date, created_at, transaction_number"
        self.cur.execute(query, (folio_id,))
        return [row_to_transaction(r) for r in self.cur.fetchall()]

    def list_transactions_after(self, anchor: FolioTransaction) -> list[FolioTransaction]:
        """Non-voided transactions on the anchor's folio created after it, locked."""
        self.cur.execute(
            f"""
            {_TXN_SELECT}
            WHERE folio_id = %s
              AND status <> 'VOIDED'
              AND (created_at, transaction_number) > (%s, %s)
            ORDER BY created_at, transaction_number
            FOR UPDATE
            """,
            (anchor.folio_id, anchor.created_at, anchor.transaction_number),
        )
        return [row_to_transaction(r) for r in self.cur.fetchall()]

    def sum_unassigned_payments(self, company_id: str, property_id: str) -> Decimal:
        self.cur.execute(
            """
            SELECT COALESCE(SUM(t.unassigned_amount), 0)
            FROM folio_transactions t
            JOIN folios f ON f.id = t.folio_id
            WHERE f.company_id = %s
              AND f.property_id = %s
              AND t.transaction_type = 'PAYMENT'
              AND t.status <> 'VOIDED'
            """,
            (company_id, property_id),
        )
        total = self.cur.fetchone()[0]
        return Decimal(total) if total is not None else ZERO
