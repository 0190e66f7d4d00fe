"""Runtime settings for the folio ledger.

Ledger behaviour comes from environment variables read once into an
immutable LedgerSettings. DB_PASSWORD is read by infra.db.get_conn and
LOG_LEVEL by observability.logging, where they are used.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

StoreBackend = Literal["postgres", "memory"]

_DEFAULT_LOCK_TIMEOUT_MS = 5000


@dataclass(frozen=True)
class LedgerSettings:
    """Ledger configuration.

    Attributes:
        database_url: libpq DSN or URL for the ledger database.
        store_backend: "postgres" for production, "memory" for local dev.
        default_currency: Currency code stamped on newly provisioned folios.
        lock_timeout_ms: How long a writer waits on a locked folio before
                         failing with a concurrency conflict.
    """

    database_url: str | None = None
    store_backend: StoreBackend = "postgres"
    default_currency: str = "USD"
    lock_timeout_ms: int = _DEFAULT_LOCK_TIMEOUT_MS


def load_settings() -> LedgerSettings:
    """Build LedgerSettings from the environment.

    Raises:
        ValueError: If LEDGER_STORE or LEDGER_LOCK_TIMEOUT_MS is invalid.
    """
    backend = os.environ.get("LEDGER_STORE", "postgres").strip().lower()
    if backend not in ("postgres", "memory"):
        raise ValueError(f"LEDGER_STORE must be 'postgres' or 'memory', got {backend!r}")

    raw_timeout = os.environ.get("LEDGER_LOCK_TIMEOUT_MS", str(_DEFAULT_LOCK_TIMEOUT_MS))
    try:
        lock_timeout_ms = int(raw_timeout)
    except ValueError:
        raise ValueError(f"LEDGER_LOCK_TIMEOUT_MS must be an integer, got {raw_timeout!r}")
    if lock_timeout_ms < 0:
        raise ValueError("LEDGER_LOCK_TIMEOUT_MS must be >= 0")

    return LedgerSettings(
        database_url=os.environ.get("DATABASE_URL") or None,
        store_backend=backend,  # type: ignore[arg-type]
        default_currency=os.environ.get("LEDGER_DEFAULT_CURRENCY", "USD").upper(),
        lock_timeout_ms=lock_timeout_ms,
    )
