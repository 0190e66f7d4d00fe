"""Tests for database layer."""

import os
from unittest.mock import MagicMock, call, patch

import pytest


def _mock_conn():
    conn = MagicMock()
    cur = conn.cursor.return_value.__enter__.return_value
    return conn, cur


class TestGetConnPasswordFallback:
    """Tests for DB_PASSWORD fallback in get_conn() without a real DB."""

    def test_db_password_fallback_dsn_without_password(self):
        from folio_ledger.infra.db import get_conn

        env = {"DATABASE_URL": "dbname=db user=u host=h port=5432", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("folio_ledger.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with(
                "dbname=db user=u host=h port=5432",
                password="from-env",
            )

    def test_db_password_not_used_when_dsn_has_password(self):
        from folio_ledger.infra.db import get_conn

        env = {"DATABASE_URL": "dbname=db user=u password=from-dsn host=h", "DB_PASSWORD": "x"}
        with patch.dict(os.environ, env, clear=True), \
             patch("folio_ledger.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("dbname=db user=u password=from-dsn host=h")

    def test_db_password_fallback_url_without_password(self):
        from folio_ledger.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u@h/db", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("folio_ledger.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgres://u@h/db", password="from-env")

    def test_db_password_not_used_when_url_has_password(self):
        from folio_ledger.infra.db import get_conn

        env = {"DATABASE_URL": "postgres://u:p@h/db", "DB_PASSWORD": "from-env"}
        with patch.dict(os.environ, env, clear=True), \
             patch("folio_ledger.infra.db.psycopg2.connect", return_value=MagicMock()) as mock_connect:
            get_conn()
            mock_connect.assert_called_once_with("postgres://u:p@h/db")

    def test_missing_database_url(self):
        from folio_ledger.infra.db import get_conn

        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()


class TestTxn:
    """Commit/rollback behaviour of txn() against a mocked connection."""

    def test_commits_on_success(self):
        from folio_ledger.infra.db import txn

        conn, cur = _mock_conn()
        with txn(conn) as got:
            got.execute("SELECT 1")

        assert got is cur
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_not_called()

    def test_rolls_back_on_error(self):
        from folio_ledger.infra.db import txn

        conn, _ = _mock_conn()
        with pytest.raises(ValueError):
            with txn(conn):
                raise ValueError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_sets_lock_timeout(self):
        from folio_ledger.infra.db import txn

        conn, cur = _mock_conn()
        with txn(conn, lock_timeout_ms=2500):
            pass

        assert cur.execute.call_args_list[0] == call("SET LOCAL lock_timeout = 2500")

    def test_owns_and_closes_connection(self):
        from folio_ledger.infra.db import txn

        conn, _ = _mock_conn()
        with patch("folio_ledger.infra.db.get_conn", return_value=conn):
            with txn():
                pass

        conn.commit.assert_called_once()
        conn.close.assert_called_once()


class TestForUpdate:
    def test_appends_clause(self):
        from folio_ledger.infra.db import for_update

        cur = MagicMock()
        cur.fetchone.return_value = ("f1",)

        row = for_update(cur, "SELECT id FROM folios WHERE id = %s;", ("f1",), nowait=True)

        assert row == ("f1",)
        cur.execute.assert_called_once_with(
            "SELECT id FROM folios WHERE id = %s FOR UPDATE NOWAIT", ("f1",)
        )

    def test_skip_locked(self):
        from folio_ledger.infra.db import for_update

        cur = MagicMock()
        for_update(cur, "SELECT 1", skip_locked=True)
        cur.execute.assert_called_once_with("SELECT 1 FOR UPDATE SKIP LOCKED", None)

    def test_nowait_and_skip_locked_conflict(self):
        from folio_ledger.infra.db import for_update

        with pytest.raises(ValueError, match="Cannot use both"):
            for_update(MagicMock(), "SELECT 1", nowait=True, skip_locked=True)


# Skip integration tests if DATABASE_URL is not set
_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)


@_skip_no_db
class TestGetConn:
    def test_returns_connection(self):
        from folio_ledger.infra.db import get_conn

        conn = get_conn()
        try:
            assert conn is not None
            assert not conn.closed
        finally:
            conn.close()

    def test_txn_round_trip(self):
        from folio_ledger.infra.db import txn

        with txn() as cur:
            cur.execute("SELECT 1")
            assert cur.fetchone() == (1,)
