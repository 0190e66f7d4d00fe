"""Tests for the Alembic DATABASE_URL helpers (no alembic context needed)."""

import os
from unittest.mock import patch

import pytest

from migrations.env_helpers import get_database_url, libpq_dsn_to_url, parse_libpq_dsn

DRIVER = "postgresql+psycopg2://"


class TestParseLibpqDsn:
    def test_plain_pairs(self):
        assert parse_libpq_dsn("dbname=ledger user=u host=h") == {
            "dbname": "ledger",
            "user": "u",
            "host": "h",
        }

    def test_quoted_value_keeps_spaces(self):
        assert parse_libpq_dsn("password='a b c' host=h") == {"password": "a b c", "host": "h"}

    def test_escaped_quote_inside_value(self):
        assert parse_libpq_dsn("password='it\\'s' user=u") == {"password": "it's", "user": "u"}

    def test_extra_whitespace_ignored(self):
        assert parse_libpq_dsn("  dbname=x   user=y ") == {"dbname": "x", "user": "y"}

    def test_empty(self):
        assert parse_libpq_dsn("") == {}


class TestLibpqDsnToUrl:
    def test_unix_socket_host_goes_to_query(self):
        dsn = "dbname=ledger user=ledger-sa password=s3cret host=/cloudsql/proj:us-central1:inst"

        assert libpq_dsn_to_url(dsn) == (
            f"{DRIVER}ledger-sa:s3cret@/ledger?host=%2Fcloudsql%2Fproj%3Aus-central1%3Ainst"
        )

    def test_tcp_host_and_port(self):
        dsn = "dbname=ledger user=admin password=pw host=db.internal port=6543"
        assert libpq_dsn_to_url(dsn) == f"{DRIVER}admin:pw@db.internal:6543/ledger"

    def test_defaults_to_localhost(self):
        with patch.dict(os.environ, {}, clear=True):
            url = libpq_dsn_to_url("dbname=ledger user=admin password=pw")
        assert url == f"{DRIVER}admin:pw@localhost:5432/ledger"

    def test_password_is_url_encoded(self):
        dsn = "dbname=ledger user=u password='p@ss w/rd' host=h"
        assert libpq_dsn_to_url(dsn) == f"{DRIVER}u:p%40ss+w%2Frd@h:5432/ledger"

    def test_db_password_fills_missing_password(self):
        with patch.dict(os.environ, {"DB_PASSWORD": "fromenv"}, clear=True):
            url = libpq_dsn_to_url("dbname=ledger user=u host=h")
        assert url == f"{DRIVER}u:fromenv@h:5432/ledger"


class TestGetDatabaseUrl:
    def test_missing(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_database_url()

    @pytest.mark.parametrize(
        "raw",
        ["postgres://u:p@h/db", "postgresql://u:p@h/db", "postgresql+psycopg2://u:p@h/db"],
    )
    def test_scheme_normalised_once(self, raw):
        with patch.dict(os.environ, {"DATABASE_URL": raw}, clear=True):
            assert get_database_url() == f"{DRIVER}u:p@h/db"

    def test_db_password_injected_into_url(self):
        env = {"DATABASE_URL": "postgresql://u@h:5433/db", "DB_PASSWORD": "secret"}
        with patch.dict(os.environ, env, clear=True):
            assert get_database_url() == f"{DRIVER}u:secret@h:5433/db"

    def test_url_password_wins_over_db_password(self):
        env = {"DATABASE_URL": "postgresql://u:p@h/db", "DB_PASSWORD": "other"}
        with patch.dict(os.environ, env, clear=True):
            assert get_database_url() == f"{DRIVER}u:p@h/db"

    def test_libpq_dsn_accepted(self):
        env = {"DATABASE_URL": "dbname=ledger user=u password=pw host=h"}
        with patch.dict(os.environ, env, clear=True):
            assert get_database_url() == f"{DRIVER}u:pw@h:5432/ledger"
