"""Human-readable identifiers for folios and transactions."""

from __future__ import annotations

import re
import secrets
import string

from .ledger import FOLIO_NUMBER_PREFIX, FolioKind

FOLIO_NUMBER_WIDTH = 6

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_FOLIO_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z]+)(?P<seq>\d+)$")


def format_folio_number(kind: FolioKind, sequence: int) -> str:
    """Format e.g. ``CF000042`` for the 42nd company folio of a property."""
    if sequence < 1:
        raise ValueError("sequence must be >= 1")
    return f"{FOLIO_NUMBER_PREFIX[kind]}{sequence:0{FOLIO_NUMBER_WIDTH}d}"


def parse_folio_sequence(folio_number: str) -> int:
    """Extract the numeric suffix of a folio number.

    Raises:
        ValueError: If the number does not match PREFIX + digits.
    """
    match = _FOLIO_NUMBER_RE.match(folio_number)
    if match is None:
        raise ValueError(f"Malformed folio number: {folio_number}")
    return int(match.group("seq"))


def generate_transaction_code(prefix: str = "TXN") -> str:
    """Opaque external reference, e.g. ``TXN-7K2Q9ZLD``."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(8))
    return f"{prefix}-{suffix}"
