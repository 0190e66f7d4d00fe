"""Tests for environment-driven settings and ledger wiring."""

import os
from unittest.mock import patch

import pytest

from folio_ledger.config import LedgerSettings, load_settings
from folio_ledger.infra.activity_log import InMemoryActivityLog, PgActivityLog
from folio_ledger.infra.store import InMemoryLedgerStore, PgLedgerStore
from folio_ledger.services.ledger import build_ledger


class TestLoadSettings:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = load_settings()

        assert settings == LedgerSettings()
        assert settings.store_backend == "postgres"
        assert settings.lock_timeout_ms == 5000

    def test_reads_environment(self):
        env = {
            "DATABASE_URL": "postgresql://u:p@h/db",
            "LEDGER_STORE": " Memory ",
            "LEDGER_DEFAULT_CURRENCY": "eur",
            "LEDGER_LOCK_TIMEOUT_MS": "250",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        assert settings.database_url == "postgresql://u:p@h/db"
        assert settings.store_backend == "memory"
        assert settings.default_currency == "EUR"
        assert settings.lock_timeout_ms == 250

    def test_password_and_log_level_read_where_used(self):
        env = {"DB_PASSWORD": "secret", "LOG_LEVEL": "debug"}
        with patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        assert settings == LedgerSettings()
        assert "secret" not in repr(settings)

    def test_unknown_backend(self):
        with patch.dict(os.environ, {"LEDGER_STORE": "sqlite"}, clear=True):
            with pytest.raises(ValueError, match="LEDGER_STORE"):
                load_settings()

    @pytest.mark.parametrize("raw", ["soon", "-1"])
    def test_bad_lock_timeout(self, raw):
        with patch.dict(os.environ, {"LEDGER_LOCK_TIMEOUT_MS": raw}, clear=True):
            with pytest.raises(ValueError, match="LEDGER_LOCK_TIMEOUT_MS"):
                load_settings()


class TestBuildLedger:
    def test_memory_backend(self):
        ledger = build_ledger(LedgerSettings(store_backend="memory", default_currency="BRL"))

        assert isinstance(ledger.store, InMemoryLedgerStore)
        assert isinstance(ledger.activity_log, InMemoryActivityLog)
        assert ledger.default_currency == "BRL"

    def test_postgres_backend_is_lazy(self):
        # no connection is opened until the first unit of work
        ledger = build_ledger(LedgerSettings(lock_timeout_ms=1200))

        assert isinstance(ledger.store, PgLedgerStore)
        assert isinstance(ledger.activity_log, PgActivityLog)
