"""Tests for observability utilities."""

import json
import logging
from decimal import Decimal
from unittest.mock import patch

from folio_ledger.domain.ledger import TransactionType
from folio_ledger.observability.correlation import (
    correlation_scope,
    get_correlation_id,
)
from folio_ledger.observability.logging import JsonFormatter, get_logger
from folio_ledger.observability.redaction import (
    redact_string,
    redact_value,
    safe_log_context,
)


class TestRedaction:
    """Tests for redaction helpers."""

    def test_redact_phone_number(self):
        result = redact_string("Call me at +55 11 99999-8888")
        assert "99999" not in result
        assert "[REDACTED]" in result

    def test_redact_email(self):
        result = redact_string("Folio sent to guest@example.com")
        assert "guest@example.com" not in result

    def test_redact_card_number(self):
        result = redact_string("paid with 4111 1111 1111 1111 at desk")
        assert "4111" not in result
        assert result == "paid with [REDACTED] at desk"

    def test_money_and_enums_pass_through(self):
        assert redact_value(Decimal("120.50")) == "120.50"
        assert redact_value(TransactionType.PAYMENT) == "PAYMENT"
        assert redact_value(None) == "null"
        assert redact_value(True) == "true"

    def test_containers_only_shape(self):
        assert redact_value({"card": "4111"}) == "dict(keys=['card'])"
        assert redact_value(["a", "b", "c"]) == "list(len=3)"

    def test_sensitive_keys_always_masked(self):
        ctx = safe_log_context(
            reference="AUTH-123", voucher="V-9", void_reason="guest disputed", folio_id="f1"
        )
        assert ctx["reference"] == "[REDACTED]"
        assert ctx["voucher"] == "[REDACTED]"
        assert ctx["void_reason"] == "[REDACTED]"
        assert ctx["folio_id"] == "f1"

    def test_sensitive_key_none_stays_null(self):
        assert safe_log_context(notes=None) == {"notes": "null"}


class TestJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("folio_ledger.test", logging.INFO, __file__, 1, "posted", (), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_includes_correlation_id(self):
        with correlation_scope("cid-7"):
            payload = json.loads(JsonFormatter().format(self._record()))

        assert payload["correlationId"] == "cid-7"
        assert payload["message"] == "posted"
        assert payload["level"] == "INFO"

    def test_merges_extra_fields(self):
        record = self._record(extra_fields={"folio_id": "f1", "balance": "10.00"})
        payload = json.loads(JsonFormatter().format(record))

        assert payload["folio_id"] == "f1"
        assert "correlationId" not in payload


class TestCorrelationScope:
    def test_generates_and_resets(self):
        with correlation_scope() as cid:
            assert cid
            assert get_correlation_id() == cid
        assert get_correlation_id() == ""


class TestGetLogger:
    def test_level_from_env(self):
        with patch.dict("os.environ", {"LOG_LEVEL": "warning"}):
            logger = get_logger("folio_ledger.test.level_env")
        assert logger.level == logging.WARNING
        assert logger.propagate is False

    def test_unknown_level_defaults_to_info(self):
        with patch.dict("os.environ", {"LOG_LEVEL": "chatty"}):
            logger = get_logger("folio_ledger.test.level_unknown")
        assert logger.level == logging.INFO
