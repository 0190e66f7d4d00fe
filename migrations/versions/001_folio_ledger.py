"""Folio ledger schema.

Creates folios, folio_transactions, ledger_counters and activity_logs.

Revision ID: 001_folio_ledger
Revises:
Create Date: 2026-10-18
"""
from __future__ import annotations

from pathlib import Path

from alembic import op

revision = "001_folio_ledger"
down_revision = None
branch_labels = None
depends_on = None

_SQL_FILE = Path(__file__).resolve().parent.parent / "sql" / "001_folio_ledger.sql"


def upgrade() -> None:
    op.execute(_SQL_FILE.read_text())


def downgrade() -> None:
    op.execute(
        "DROP TABLE IF EXISTS activity_logs, ledger_counters, folio_transactions, folios"
    )
