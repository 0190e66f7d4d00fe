"""Mapping of ledger errors to HTTP responses."""

import logging

from fastapi import HTTPException

from folio_ledger.domain.errors import (
    ConcurrencyConflictError,
    LedgerError,
    LedgerValidationError,
    NotFoundError,
    PreconditionFailedError,
)
from folio_ledger.observability.logging import get_logger
from folio_ledger.observability.redaction import safe_log_context

logger = get_logger(__name__)


def http_status_for(exc: LedgerError) -> int:
    if isinstance(exc, LedgerValidationError):
        return 422
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (PreconditionFailedError, ConcurrencyConflictError)):
        return 409
    return 500


def to_http_exception(exc: LedgerError, *, operation: str) -> HTTPException:
    status = http_status_for(exc)
    logger.log(
        logging.WARNING if status >= 409 else logging.INFO,
        "ledger operation rejected",
        extra={
            "extra_fields": safe_log_context(
                operation=operation,
                code=exc.code,
                status=status,
                error=str(exc),
            )
        },
    )
    detail: dict[str, object] = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, LedgerValidationError) and exc.field:
        detail["field"] = exc.field
    return HTTPException(status_code=status, detail=detail)
