"""JSON shapes for ledger value objects.

Money is rendered as a string so no precision is lost on the wire.
"""

from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from folio_ledger.domain.ledger import Folio, FolioTransaction


def jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return jsonable(asdict(value))
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def folio_to_dict(folio: Folio | None) -> dict[str, Any] | None:
    if folio is None:
        return None
    return jsonable(folio)


def transaction_to_dict(txn: FolioTransaction) -> dict[str, Any]:
    data = jsonable(txn)
    data["is_voided"] = txn.is_voided
    return data
