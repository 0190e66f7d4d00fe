"""FastAPI application factory for the folio ledger."""

from fastapi import FastAPI, Request, Response

from folio_ledger.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from folio_ledger.services.ledger import FolioLedger, build_ledger

from .routes import companies, folios, transactions


def create_app(ledger: FolioLedger | None = None) -> FastAPI:
    """Create the FastAPI app.

    Args:
        ledger: Pre-wired ledger (tests, embedding). If None, one is built
                from the environment (see ``folio_ledger.config``).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Folio Ledger",
        docs_url=None,
        redoc_url=None,
    )
    app.state.ledger = ledger or build_ledger()

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    app.include_router(folios.router)
    app.include_router(transactions.router)
    app.include_router(companies.router)

    return app
