"""Database URL helpers for Alembic migrations.

Kept apart from env.py so they can be tested without an alembic context.
DATABASE_URL may be a URL or a libpq ``key=value`` DSN; DB_PASSWORD fills
in a missing password in either form.
"""

from __future__ import annotations

import os
from urllib.parse import quote_plus, urlparse, urlunparse

_DRIVER_PREFIX = "postgresql+psycopg2://"


def parse_libpq_dsn(dsn: str) -> dict[str, str]:
    """Split a libpq DSN into its keys; single-quoted values may contain
    spaces and backslash escapes."""
    tokens: dict[str, str] = {}
    pos, end = 0, len(dsn)
    while pos < end:
        while pos < end and dsn[pos] == " ":
            pos += 1
        eq = dsn.find("=", pos)
        if pos >= end or eq == -1:
            break
        key, pos = dsn[pos:eq], eq + 1

        if pos < end and dsn[pos] == "'":
            pos += 1
            chars: list[str] = []
            while pos < end and dsn[pos] != "'":
                if dsn[pos] == "\\" and pos + 1 < end:
                    pos += 1
                chars.append(dsn[pos])
                pos += 1
            tokens[key] = "".join(chars)
            pos += 1
        else:
            stop = dsn.find(" ", pos)
            stop = end if stop == -1 else stop
            tokens[key] = dsn[pos:stop]
            pos = stop
    return tokens


def libpq_dsn_to_url(dsn: str) -> str:
    """Convert a libpq DSN to a SQLAlchemy URL.

    A host starting with ``/`` is a unix socket directory and goes into the
    ``host`` query parameter.
    """
    tokens = parse_libpq_dsn(dsn)
    password = tokens.get("password") or os.environ.get("DB_PASSWORD", "")

    credentials = f"{quote_plus(tokens.get('user', ''))}:{quote_plus(password)}"
    dbname = quote_plus(tokens.get("dbname", ""))
    host = tokens.get("host", "localhost")

    if host.startswith("/"):
        return f"{_DRIVER_PREFIX}{credentials}@/{dbname}?host={quote_plus(host)}"
    return f"{_DRIVER_PREFIX}{credentials}@{host}:{tokens.get('port', '5432')}/{dbname}"


def _with_password(url: str, password: str) -> str:
    parsed = urlparse(url)
    if parsed.password:
        return url
    netloc = f"{quote_plus(parsed.username or '')}:{quote_plus(password)}@{parsed.hostname}"
    if parsed.port:
        netloc += f":{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def get_database_url() -> str:
    """SQLAlchemy URL for the ledger database.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is required to run migrations")
    if "://" not in url:
        return libpq_dsn_to_url(url)

    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            url = _DRIVER_PREFIX + url[len(scheme):]
            break
    db_password = os.environ.get("DB_PASSWORD", "")
    return _with_password(url, db_password) if db_password else url
