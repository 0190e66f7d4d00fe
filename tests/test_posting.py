"""Tests for transaction posting, night-audit posting and folio recalculation."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from folio_ledger.domain.errors import (
    FolioNotFoundError,
    FolioNotOpenError,
    LedgerValidationError,
    TransactionNotFoundError,
    TransactionNotPendingError,
)
from folio_ledger.domain.folio import ChargeDetails, PaymentDetails
from folio_ledger.domain.ledger import (
    ZERO,
    BillingParty,
    SettlementStatus,
    TransactionStatus,
    TransactionType,
)
from folio_ledger.observability.correlation import correlation_scope
from folio_ledger.services.ledger import FolioLedger

from helpers import (
    ACTOR,
    PROPERTY_ID,
    D,
    open_company_folio,
    open_guest_folio,
    post_charge,
    post_payment,
)


class TestPostTransaction:
    def test_charge_with_tax_and_service(self, ledger):
        folio = open_guest_folio(ledger)

        txn = post_charge(
            ledger,
            folio,
            "200.00",
            details={"tax_amount": "20.00", "service_charge_amount": "10.00"},
        )

        assert txn.transaction_type == TransactionType.CHARGE
        assert txn.status == TransactionStatus.POSTED
        assert txn.transaction_number == 1
        assert txn.transaction_code.startswith("TXN-")
        assert txn.amount == D("200")
        assert txn.net_amount == D("200")
        assert txn.total_amount == D("230")
        assert txn.description == "Room Charge"
        assert txn.balance == D("230")

        folio = ledger.get_folio(folio.id)
        assert folio.balance == D("230")
        assert folio.total_charges == D("200")
        assert folio.total_taxes == D("20")
        assert folio.total_service_charges == D("10")
        assert folio.settlement_status == SettlementStatus.PENDING

    def test_payment_starts_fully_unassigned(self, ledger):
        folio = open_guest_folio(ledger)
        post_charge(ledger, folio, "100")

        payment = post_payment(
            ledger,
            folio,
            "40",
            details=PaymentDetails(payment_method_id="pm-card", reference="AUTH-1"),
        )

        assert payment.assigned_amount == ZERO
        assert payment.unassigned_amount == D("40")
        assert payment.assignment_history == ()
        assert payment.payment_method_id == "pm-card"
        assert payment.balance == D("60")

        folio = ledger.get_folio(folio.id)
        assert folio.total_payments == D("40")
        assert folio.settlement_status == SettlementStatus.PARTIALLY_SETTLED

    def test_every_type_carries_assignment_fields(self, ledger):
        folio = open_guest_folio(ledger)
        charge = post_charge(ledger, folio, "80", details=ChargeDetails(discount_amount="5"))

        assert charge.assigned_amount == ZERO
        assert charge.unassigned_amount == D("80")
        assert charge.total_amount == D("75")

    def test_transaction_numbers_are_property_wide(self, ledger):
        guest = open_guest_folio(ledger)
        company = open_company_folio(ledger)
        other = open_guest_folio(ledger, property_id="prop-2")

        first = post_charge(ledger, guest, "10")
        second = post_charge(ledger, company, "10")
        elsewhere = post_charge(ledger, other, "10")

        assert (first.transaction_number, second.transaction_number) == (1, 2)
        assert elsewhere.transaction_number == 1

    def test_quantity_and_unit_price(self, ledger):
        folio = open_guest_folio(ledger)
        txn = post_charge(ledger, folio, "90", category="MINIBAR", details={"quantity": 3})

        assert txn.quantity == 3
        assert txn.unit_price == D("30")
        assert txn.description == "Minibar Charge"

    def test_refund_and_adjustment_raise_balance(self, ledger):
        folio = open_guest_folio(ledger)
        post_payment(ledger, folio, "100")
        ledger.post_transaction(folio.id, "REFUND", "REFUND", "30", ACTOR)
        ledger.post_transaction(folio.id, "ADJUSTMENT", "ADJUSTMENT", "5", ACTOR)
        discount = ledger.post_transaction(folio.id, "DISCOUNT", "DISCOUNT", "10", ACTOR).value

        folio = ledger.get_folio(folio.id)
        assert folio.total_refunds == D("30")
        assert folio.total_adjustments == D("5")
        assert folio.total_discounts == D("10")
        assert folio.balance == D("-75")
        assert discount.balance == D("-75")

    def test_transaction_date_drives_statement_order(self, ledger):
        folio = open_guest_folio(ledger)
        may_1 = datetime(2026, 5, 1, tzinfo=timezone.utc)
        may_2 = datetime(2026, 5, 2, tzinfo=timezone.utc)
        later = post_charge(ledger, folio, "10", details={"transaction_date": may_2})
        earlier = post_charge(ledger, folio, "20", details={"transaction_date": may_1})

        statement = ledger.get_folio_statement(folio.id)
        assert [t.id for t in statement.transactions] == [earlier.id, later.id]
        # running balances still follow posting order
        assert later.balance == D("10")
        assert earlier.balance == D("30")

    def test_naive_transaction_date_taken_as_utc(self, ledger):
        folio = open_guest_folio(ledger)
        post_charge(ledger, folio, "100")

        txn = post_charge(
            ledger, folio, "20", details={"transaction_date": "2026-01-01T10:00:00"}
        )

        assert txn.transaction_date == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
        assert txn.balance == D("120")
        statement = ledger.get_folio_statement(folio.id)
        assert statement.transactions[0].id == txn.id


class TestPostingValidation:
    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"amount": "-1"}, "amount"),
            ({"amount": "NaN"}, "amount"),
            ({"transaction_type": "TRANSFER"}, "transaction_type"),
            ({"category": "PAYMENT"}, "category"),
            ({"details": {"tip": "5"}}, "tip"),
            ({"details": {"kind": "PAYMENT"}}, "details"),
            ({"details": {"tax_amount": "-2"}}, "tax_amount"),
            ({"status": "VOIDED"}, "status"),
            ({"status": "BOGUS"}, "status"),
        ],
    )
    def test_rejected_before_any_write(self, ledger, store, kwargs, field):
        folio = open_guest_folio(ledger)
        args = {
            "transaction_type": "CHARGE",
            "category": "ROOM",
            "amount": "10",
            "details": None,
            "status": TransactionStatus.POSTED,
        }
        args.update(kwargs)

        with pytest.raises(LedgerValidationError) as exc_info:
            ledger.post_transaction(
                folio.id,
                args["transaction_type"],
                args["category"],
                args["amount"],
                ACTOR,
                details=args["details"],
                status=args["status"],
            )

        assert exc_info.value.code == "VALIDATION"
        assert exc_info.value.field == field
        assert store.state.transactions == {}

    def test_pending_only_for_charges(self, ledger, store):
        folio = open_guest_folio(ledger)
        with pytest.raises(LedgerValidationError, match="Only charges"):
            post_payment(ledger, folio, "10", status="PENDING")
        assert store.state.transactions == {}

    def test_discount_above_amount(self, ledger, store):
        folio = open_guest_folio(ledger)
        with pytest.raises(LedgerValidationError):
            post_charge(ledger, folio, "10", details={"discount_amount": "11"})
        assert store.state.transactions == {}

    def test_closed_folio_refuses_postings(self, ledger, store):
        folio = open_guest_folio(ledger)
        ledger.close_folio(folio.id, ACTOR)

        with pytest.raises(FolioNotOpenError):
            post_charge(ledger, folio, "10")
        assert store.state.transactions == {}
        assert store.state.counters.get((PROPERTY_ID, "transaction")) is None

    def test_unknown_folio(self, ledger):
        with pytest.raises(FolioNotFoundError):
            ledger.post_transaction("missing", "CHARGE", "ROOM", "10", ACTOR)

    def test_folio_of_another_property(self, ledger):
        folio = open_guest_folio(ledger)
        with pytest.raises(FolioNotFoundError):
            ledger.post_transaction(
                folio.id, "CHARGE", "ROOM", "10", ACTOR, property_id="prop-2"
            )


class TestPostingAudit:
    def test_audit_entry_carries_correlation_id(self, ledger, activity_log):
        folio = open_guest_folio(ledger)

        with correlation_scope("req-42"):
            txn = post_charge(ledger, folio, "50")

        entry = activity_log.entries[-1]
        assert entry.action == "POST_TRANSACTION"
        assert entry.entity_type == "FolioTransaction"
        assert entry.entity_id == txn.id
        assert entry.actor_id == ACTOR
        assert entry.context == {"correlation_id": "req-42"}
        assert entry.meta["folio_id"] == folio.id
        assert entry.meta["total_amount"] == "50.00"

    def test_audit_failure_keeps_financial_write(self, store, directory):
        audit = MagicMock()
        audit.bulk_log.side_effect = RuntimeError("activity_logs unavailable")
        ledger = FolioLedger(store, audit, directory)

        result = ledger.get_or_create_folio(BillingParty.guest("G1"), PROPERTY_ID, ACTOR)
        assert result.audit_error is not None

        posted = ledger.post_transaction(result.value.id, "CHARGE", "ROOM", "25", ACTOR)

        assert posted.audit_error is not None
        assert posted.audit_error.code == "AUDIT"
        assert posted.audit_error.entry_count == 1
        assert isinstance(posted.audit_error.__cause__, RuntimeError)
        assert posted.warnings == [str(posted.audit_error)]
        assert ledger.get_transaction(posted.value.id).amount == D("25")
        assert ledger.get_folio(result.value.id).balance == D("25")


class TestPostPendingCharge:
    def _pending_with_payment(self, ledger):
        folio = open_guest_folio(ledger)
        charge = post_charge(ledger, folio, "100", status="PENDING")
        payment = post_payment(ledger, folio, "30")
        return folio, charge, payment

    def test_pending_charge_counts_toward_balance(self, ledger):
        folio, charge, payment = self._pending_with_payment(ledger)

        assert charge.status == TransactionStatus.PENDING
        assert charge.balance == D("100")
        assert payment.balance == D("70")
        assert ledger.get_folio(folio.id).balance == D("70")

    def test_repriced_post_shifts_later_balances(self, ledger, activity_log):
        folio, charge, payment = self._pending_with_payment(ledger)

        posted = ledger.post_pending_charge(charge.id, ACTOR, amount="120").value

        assert posted.status == TransactionStatus.POSTED
        assert posted.amount == D("120")
        assert posted.total_amount == D("120")
        assert posted.unassigned_amount == D("120")
        assert posted.balance == D("120")
        assert ledger.get_transaction(payment.id).balance == D("90")
        assert ledger.get_folio(folio.id).balance == D("90")
        assert ledger.verify_folio(folio.id).ok

        entry = activity_log.entries[-1]
        assert entry.action == "POST_PENDING"
        assert entry.changes["status"] == {"old": "PENDING", "new": "POSTED"}
        assert entry.changes["amount"] == {"old": "100.00", "new": "120.00"}

    def test_post_without_new_amount(self, ledger):
        folio, charge, payment = self._pending_with_payment(ledger)

        posted = ledger.post_pending_charge(charge.id, ACTOR).value

        assert posted.amount == D("100")
        assert ledger.get_transaction(payment.id).balance == D("70")

    def test_keeps_tax_around_revised_amount(self, ledger):
        folio = open_guest_folio(ledger)
        charge = post_charge(
            ledger, folio, "100", status="PENDING", details={"tax_amount": "10"}
        )

        posted = ledger.post_pending_charge(charge.id, ACTOR, amount="80").value

        assert posted.tax_amount == D("10")
        assert posted.total_amount == D("90")
        assert ledger.get_folio(folio.id).balance == D("90")

    def test_already_posted(self, ledger):
        folio, charge, _ = self._pending_with_payment(ledger)
        ledger.post_pending_charge(charge.id, ACTOR)

        with pytest.raises(TransactionNotPendingError):
            ledger.post_pending_charge(charge.id, ACTOR)

    def test_revised_amount_below_assigned(self, ledger):
        folio, charge, _ = self._pending_with_payment(ledger)
        ledger.assign_bulk(
            [{"target_transaction_id": charge.id, "new_assigned_amount": "60"}], ACTOR
        )

        with pytest.raises(LedgerValidationError, match="already assigned"):
            ledger.post_pending_charge(charge.id, ACTOR, amount="50")
        assert ledger.get_transaction(charge.id).status == TransactionStatus.PENDING

    def test_unknown_transaction(self, ledger):
        with pytest.raises(TransactionNotFoundError):
            ledger.post_pending_charge("missing", ACTOR)


class TestRecalculate:
    def test_idempotent(self, ledger):
        folio = open_guest_folio(ledger)
        post_charge(ledger, folio, "100")
        post_payment(ledger, folio, "100")

        first = ledger.recalculate(folio.id)
        second = ledger.recalculate(folio.id)

        assert first.balance == second.balance == ZERO
        assert first.settlement_status == second.settlement_status == SettlementStatus.SETTLED
        assert first.settled_at is not None
        assert second.settled_at == first.settled_at

    def test_settled_at_cleared_when_balance_reopens(self, ledger):
        folio = open_guest_folio(ledger)
        post_charge(ledger, folio, "100")
        post_payment(ledger, folio, "100")
        assert ledger.get_folio(folio.id).settled_at is not None

        post_charge(ledger, folio, "15")

        folio = ledger.get_folio(folio.id)
        assert folio.settlement_status == SettlementStatus.PARTIALLY_SETTLED
        assert folio.settled_at is None

    def test_repairs_stale_aggregates(self, ledger, store):
        folio = open_guest_folio(ledger)
        post_charge(ledger, folio, "100")
        store.state.folios[folio.id] = replace(
            store.state.folios[folio.id], balance=D("999"), total_charges=ZERO
        )

        repaired = ledger.recalculate(folio.id, property_id=PROPERTY_ID)

        assert repaired.balance == D("100")
        assert repaired.total_charges == D("100")
